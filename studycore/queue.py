from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from studycore.clock import utc
from studycore.config import BATCH_SIZE
from studycore.models import Card, DueBatch
from studycore.srs import is_due


def partition_due(cards: Iterable[Card], now: datetime) -> tuple[list[Card], list[Card]]:
    """Split cards into (due, not_due) by next_review <= now, keeping order."""
    due: list[Card] = []
    not_due: list[Card] = []
    for c in cards:
        (due if is_due(c, now) else not_due).append(c)
    return due, not_due


def count_due(cards: Iterable[Card], now: datetime) -> int:
    return sum(1 for c in cards if is_due(c, now))


def filter_by_tags(cards: Iterable[Card], tag_ids: Iterable[str] | None) -> list[Card]:
    """Keep cards carrying at least one of tag_ids; no filter when empty/None."""
    wanted = set(tag_ids or ())
    if not wanted:
        return list(cards)
    return [c for c in cards if wanted.intersection(c.tag_ids)]


def due_sort_key(c: Card) -> tuple[datetime, str]:
    return utc(c.next_review), c.id


def new_sort_key(c: Card) -> tuple[datetime, str]:
    return utc(c.created_at), c.id


def resolve_due_batch(
    candidates: Sequence[Card],
    batch_number: int,
    tag_ids: Iterable[str] | None,
    now: datetime,
    batch_size: int = BATCH_SIZE,
) -> DueBatch:
    """Build one page of the global due queue.

    - Tag filter is applied before batching.
    - When nothing matching is due, fall back to up to batch_size new cards
      (interval 0). total_due then carries the unfiltered due count, so 0 means
      nothing is due at all and >0 means the filter excluded every due card.
    """
    due_all, _ = partition_due(candidates, now)
    due = sorted(filter_by_tags(due_all, tag_ids), key=due_sort_key)

    if due:
        offset = batch_number * batch_size
        return DueBatch(
            cards=due[offset : offset + batch_size],
            total_due=len(due),
            has_more_batches=(batch_number + 1) * batch_size < len(due),
            is_new_cards_fallback=False,
        )

    fresh = sorted(
        (c for c in filter_by_tags(candidates, tag_ids) if c.interval == 0),
        key=new_sort_key,
    )[:batch_size]
    return DueBatch(
        cards=fresh,
        total_due=len(due_all),
        has_more_batches=False,
        is_new_cards_fallback=bool(fresh),
    )
