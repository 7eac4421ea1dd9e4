from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Iterable

import structlog

from studycore.clock import utc
from studycore.config import (
    AGAIN_EASE_DELTA,
    DEFAULT_EASE,
    DEFAULT_INTERVAL,
    EASY_BONUS,
    EASY_EASE_DELTA,
    FIRST_INTERVALS,
    HARD_EASE_DELTA,
    HARD_INTERVAL_FACTOR,
    MAX_INTERVAL_DAYS,
    MIN_EASE,
)
from studycore.errors import InvariantViolation, ValidationError
from studycore.models import Card, Rating
from studycore.validators import validate_rating

logger = structlog.get_logger()


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def new_card(
    card_id: str,
    deck_id: str,
    payload: dict[str, Any],
    now: datetime,
    tag_ids: Iterable[str] = (),
) -> Card:
    """Build a never-reviewed card; it is due immediately."""
    created = utc(now)
    return Card(
        id=card_id,
        deck_id=deck_id,
        payload=dict(payload),
        interval=DEFAULT_INTERVAL,
        ease_factor=DEFAULT_EASE,
        next_review=created,
        created_at=created,
        tag_ids=list(tag_ids),
    )


def check_card_defaults(card: Card, now: datetime) -> bool:
    return (
        card.interval == DEFAULT_INTERVAL
        and card.ease_factor == DEFAULT_EASE
        and utc(card.next_review) <= utc(now)
    )


def is_due(card: Card, now: datetime) -> bool:
    return utc(card.next_review) <= utc(now)


def check_invariants(card: Card) -> None:
    """Raise InvariantViolation for state no rating could have produced."""
    problem = None
    if card.ease_factor < MIN_EASE:
        problem = f"ease_factor {card.ease_factor} below {MIN_EASE}"
    elif card.interval < 0:
        problem = f"negative interval {card.interval}"
    if problem is not None:
        logger.error(
            "card_invariant_violation",
            card_id=card.id,
            interval=card.interval,
            ease_factor=card.ease_factor,
            problem=problem,
        )
        raise InvariantViolation(f"Card {card.id}: {problem}")


def _ease(current: float, delta: float) -> float:
    return max(MIN_EASE, round(current + delta, 2))


def next_interval(interval: int, ease: float, rating: Rating) -> int:
    """Interval in days after a rating, before the global cap."""
    if rating == Rating.AGAIN:
        return 0
    if interval == 0:
        return FIRST_INTERVALS[int(rating)]
    if rating == Rating.HARD:
        return max(1, round_half_up(interval * HARD_INTERVAL_FACTOR))
    if rating == Rating.GOOD:
        return round_half_up(interval * ease)
    return round_half_up(interval * ease * EASY_BONUS)


def apply_rating(card: Card, rating: Rating | int, now: datetime) -> Card:
    """Return the card's next state for a rating given at `now`.

    Again: interval 0, ease -0.20, due immediately.
    Hard: interval x1.2, ease -0.15.
    Good: interval x ease.
    Easy: interval x ease x1.3, ease +0.15.
    A card with interval 0 answered Hard/Good/Easy starts at 1/1/4 days.
    """
    ok, err = validate_rating(rating)
    if not ok:
        raise ValidationError(err or "Invalid rating")
    rating = Rating(rating)
    check_invariants(card)

    ease = card.ease_factor
    if rating == Rating.AGAIN:
        ease = _ease(ease, AGAIN_EASE_DELTA)
    elif rating == Rating.HARD:
        ease = _ease(ease, HARD_EASE_DELTA)
    elif rating == Rating.EASY:
        ease = _ease(ease, EASY_EASE_DELTA)

    # Growth uses the ease the card had when it was rated
    interval = min(next_interval(card.interval, card.ease_factor, rating), MAX_INTERVAL_DAYS)
    return replace(
        card,
        interval=interval,
        ease_factor=ease,
        next_review=utc(now) + timedelta(days=interval),
        tag_ids=list(card.tag_ids),
    )
