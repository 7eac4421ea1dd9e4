from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class StreakResult:
    streak: int
    last_study_date: date
    is_new_day: bool


def calculate_streak(last_study_date: Optional[date], current_streak: int, today: date) -> StreakResult:
    """Streak after studying on `today`.

    First study ever -> 1. Same day -> unchanged. Next day -> +1.
    A gap of more than one day starts over at 1.
    """
    if last_study_date is None:
        return StreakResult(1, today, True)
    days = (today - last_study_date).days
    if days == 0:
        return StreakResult(current_streak, last_study_date, False)
    if days == 1:
        return StreakResult(current_streak + 1, today, True)
    return StreakResult(1, today, True)


def update_longest_streak(current_streak: int, longest_streak: int) -> int:
    return max(current_streak, longest_streak)
