from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

import aiosqlite
import structlog

from studycore import db as store_db
from studycore.clock import clock, utc
from studycore.config import BATCH_SIZE, today_for
from studycore.errors import CardNotFoundError, ValidationError
from studycore.models import (
    Card,
    DueBatch,
    GlobalStats,
    RateResult,
    Rating,
    ReviewRecord,
    SessionSummary,
    UserStats,
)
from studycore.progress import compute_daily_progress, compute_progress_percent
from studycore.queue import count_due, due_sort_key, partition_due, resolve_due_batch
from studycore.session import CounterStore, SessionStore, counters, store
from studycore.srs import apply_rating
from studycore.streak import calculate_streak, update_longest_streak
from studycore.validators import (
    validate_batch_number,
    validate_id,
    validate_rating,
    validate_tag_ids,
)

logger = structlog.get_logger()


def _check(result: tuple[bool, str | None]) -> None:
    ok, err = result
    if not ok:
        raise ValidationError(err or "Invalid input")


async def rate_card(
    user_id: str,
    card_id: str,
    rating: Rating | int,
    *,
    now: Optional[datetime] = None,
    idempotency_key: Optional[str] = None,
    sessions: Optional[SessionStore] = None,
    source_counters: Optional[CounterStore] = None,
) -> RateResult:
    """Apply a rating to one card and report what to study next.

    The card update and its review log row are written in one IMMEDIATE
    transaction. Session totals move only after that commit, so a storage
    failure leaves both the card and the session untouched.
    A repeated idempotency_key for the same card applies nothing.
    """
    _check(validate_id(user_id, "user id"))
    _check(validate_id(card_id, "card id"))
    _check(validate_rating(rating))
    rating = Rating(rating)
    now = utc(now or clock.now())
    sessions = sessions or store
    source_counters = source_counters or counters

    logger.info(
        "review_received",
        user_id=user_id,
        card_id=card_id,
        rating=int(rating),
        idempotency_key=idempotency_key,
    )

    async with store_db.get_db() as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            card = await store_db.get_card_by_id(db, user_id, card_id)
            if card is None:
                raise CardNotFoundError(f"Card {card_id} not found for user {user_id}")

            if idempotency_key is not None:
                existing = await store_db.get_review_by_key(db, user_id, card_id, idempotency_key)
                if existing is not None:
                    await db.rollback()
                    logger.info(
                        "idempotent_reuse",
                        user_id=user_id,
                        card_id=card_id,
                        next_review=existing.next_review.isoformat(),
                    )
                    recorded = replace(
                        card,
                        interval=existing.interval,
                        ease_factor=existing.ease_factor,
                        next_review=existing.next_review,
                    )
                    nxt, remaining = await _next_due(db, user_id, card_id, now)
                    return RateResult(card=recorded, next_card=nxt, remaining_count=remaining, idempotent=True)

            updated = apply_rating(card, rating, now)
            await store_db.update_schedule_fields(db, updated)
            await store_db.insert_review(
                db,
                ReviewRecord(
                    user_id=user_id,
                    card_id=card_id,
                    rating=rating,
                    idempotency_key=idempotency_key or uuid.uuid4().hex,
                    interval=updated.interval,
                    next_review=updated.next_review,
                    ease_factor=updated.ease_factor,
                ),
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

        tracker = await sessions.get(user_id)
        tracker.record(rating)
        await source_counters.add(user_id, updated.deck_id)

        logger.info(
            "review_scheduled",
            user_id=user_id,
            card_id=card_id,
            old_interval=card.interval,
            interval_days=updated.interval,
            ease_factor=updated.ease_factor,
            next_review=updated.next_review.isoformat(),
        )

        nxt, remaining = await _next_due(db, user_id, card_id, now)
    return RateResult(card=updated, next_card=nxt, remaining_count=remaining)


async def _next_due(
    db: aiosqlite.Connection, user_id: str, exclude_card_id: str, now: datetime
) -> tuple[Optional[Card], int]:
    """Earliest due card other than the one just rated, and how many are due."""
    cards = await store_db.list_due_candidates_for_user(db, user_id)
    due, _ = partition_due((c for c in cards if c.id != exclude_card_id), now)
    due.sort(key=due_sort_key)
    return (due[0] if due else None), len(due)


async def get_due_cards(
    user_id: str,
    batch_number: int = 0,
    tag_ids: Optional[Iterable[str]] = None,
    *,
    now: Optional[datetime] = None,
    batch_size: int = BATCH_SIZE,
) -> DueBatch:
    """One batch of the user's due queue across all their decks."""
    _check(validate_id(user_id, "user id"))
    _check(validate_batch_number(batch_number))
    tag_list = list(tag_ids) if tag_ids is not None else None
    _check(validate_tag_ids(tag_list))
    now = utc(now or clock.now())

    async with store_db.get_db() as db:
        candidates = await store_db.list_due_candidates_for_user(db, user_id)

    batch = resolve_due_batch(candidates, batch_number, tag_list, now, batch_size)
    logger.info(
        "due_batch_resolved",
        user_id=user_id,
        batch_number=batch_number,
        tag_filter=len(tag_list or ()),
        returned=len(batch.cards),
        total_due=batch.total_due,
        fallback=batch.is_new_cards_fallback,
    )
    return batch


async def complete_session(
    user_id: str,
    *,
    now: Optional[datetime] = None,
    sessions: Optional[SessionStore] = None,
    source_counters: Optional[CounterStore] = None,
) -> SessionSummary:
    """Fold the live session into today's log and the user's streak.

    Sessions on the same day add up in the daily log. A session that rated
    nothing leaves the stored counters alone.
    """
    _check(validate_id(user_id, "user id"))
    now = utc(now or clock.now())
    sessions = sessions or store
    source_counters = source_counters or counters
    today = today_for(now)
    tracker = await sessions.get(user_id)

    async with store_db.get_db() as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            log = await store_db.get_log_for_date(db, user_id, today)
            prior = compute_daily_progress(log)
            stats = await store_db.get_user_stats(db, user_id) or UserStats(user_id=user_id)
            is_new_day = False
            if tracker.cards_reviewed > 0:
                res = calculate_streak(stats.last_study_date, stats.current_streak, today)
                is_new_day = res.is_new_day
                stats.current_streak = res.streak
                stats.last_study_date = res.last_study_date
                stats.longest_streak = update_longest_streak(res.streak, stats.longest_streak)
                stats.total_reviews += tracker.cards_reviewed
                await store_db.set_streak_and_date(db, stats)
                await store_db.upsert_increment(db, user_id, today, tracker.cards_reviewed)
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

    by_deck = await source_counters.for_user(user_id)
    summary = SessionSummary(
        cards_reviewed=tracker.cards_reviewed,
        again=tracker.again,
        hard=tracker.hard,
        good=tracker.good,
        easy=tracker.easy,
        today_total=prior + tracker.cards_reviewed,
        current_streak=stats.current_streak,
        longest_streak=stats.longest_streak,
        is_new_day=is_new_day,
        by_deck=by_deck,
    )
    await sessions.clear(user_id)
    await source_counters.clear_user(user_id)
    logger.info(
        "session_completed",
        user_id=user_id,
        study_date=today.isoformat(),
        cards_reviewed=summary.cards_reviewed,
        today_total=summary.today_total,
        streak=summary.current_streak,
        new_day=is_new_day,
        decks=by_deck,
    )
    return summary


async def get_global_stats(user_id: str, *, now: Optional[datetime] = None) -> GlobalStats:
    """Dashboard numbers: due count, today's progress, streak, goal percent."""
    _check(validate_id(user_id, "user id"))
    now = utc(now or clock.now())
    async with store_db.get_db() as db:
        cards = await store_db.list_due_candidates_for_user(db, user_id)
        log = await store_db.get_log_for_date(db, user_id, today_for(now))
        stats = await store_db.get_user_stats(db, user_id)

    completed = compute_daily_progress(log)
    goal = stats.daily_goal if stats else None
    return GlobalStats(
        total_due_count=count_due(cards, now),
        completed_today=completed,
        current_streak=stats.current_streak if stats else 0,
        has_new_cards=any(c.interval == 0 for c in cards),
        daily_goal=goal,
        progress_percent=compute_progress_percent(completed, goal),
    )
