from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import IntEnum
from typing import Any, Literal, Optional

TagCategory = Literal["topic", "concept"]


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


RATING_LABELS = {
    Rating.AGAIN: "again",
    Rating.HARD: "hard",
    Rating.GOOD: "good",
    Rating.EASY: "easy",
}


@dataclass
class Card:
    id: str
    deck_id: str
    payload: dict[str, Any]
    interval: int
    ease_factor: float
    next_review: datetime
    created_at: datetime
    tag_ids: list[str] = field(default_factory=list)


@dataclass
class Deck:
    id: str
    user_id: str
    title: str


@dataclass
class Tag:
    id: str
    name: str
    category: TagCategory


@dataclass
class DailyStudyLog:
    user_id: str
    study_date: date
    cards_reviewed: int


@dataclass
class UserStats:
    user_id: str
    current_streak: int = 0
    longest_streak: int = 0
    total_reviews: int = 0
    last_study_date: Optional[date] = None
    daily_goal: Optional[int] = None


@dataclass
class ReviewRecord:
    user_id: str
    card_id: str
    rating: Rating
    idempotency_key: str
    interval: int
    next_review: datetime
    ease_factor: float


@dataclass(frozen=True)
class DueBatch:
    cards: list[Card]
    total_due: int
    has_more_batches: bool
    is_new_cards_fallback: bool


@dataclass(frozen=True)
class RateResult:
    card: Card
    next_card: Optional[Card]
    remaining_count: int
    idempotent: bool = False


@dataclass(frozen=True)
class SessionSummary:
    cards_reviewed: int
    again: int
    hard: int
    good: int
    easy: int
    today_total: int
    current_streak: int
    longest_streak: int
    is_new_day: bool
    by_deck: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class GlobalStats:
    total_due_count: int
    completed_today: int
    current_streak: int
    has_new_cards: bool
    daily_goal: Optional[int]
    progress_percent: Optional[int]
