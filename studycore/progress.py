from __future__ import annotations

from typing import Optional

from studycore.config import HEATMAP_LIGHT_MAX, HEATMAP_MEDIUM_MAX
from studycore.models import DailyStudyLog
from studycore.srs import round_half_up


def compute_daily_progress(log: Optional[DailyStudyLog]) -> int:
    """Cards reviewed on the log's date; 0 when there is no log."""
    if log is None:
        return 0
    return log.cards_reviewed


def compute_progress_percent(completed_today: int, daily_goal: Optional[int]) -> Optional[int]:
    """Percent of the daily goal done, capped at 100; None without a goal."""
    if daily_goal is None or daily_goal <= 0:
        return None
    return min(100, round_half_up(completed_today / daily_goal * 100))


def heatmap_intensity(count: int) -> int:
    if count <= 0:
        return 0
    if count <= HEATMAP_LIGHT_MAX:
        return 1
    if count <= HEATMAP_MEDIUM_MAX:
        return 2
    return 3
