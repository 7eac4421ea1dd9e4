from __future__ import annotations

import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Final
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


load_dotenv()

ROOT_DIR: Final[Path] = Path(__file__).resolve().parents[1]
DATA_DIR: Final[Path] = Path(os.getenv("DATA_DIR", str(ROOT_DIR / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)
DB_PATH: Final[Path] = DATA_DIR / "study.db"

# Calendar days (streaks, daily logs) are counted in this zone
STUDY_TZ: Final[str] = os.getenv("STUDY_TZ", "UTC")
LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")

# Due queue
BATCH_SIZE: Final[int] = int(os.getenv("BATCH_SIZE", "50"))

# SM-2 parameters
DEFAULT_INTERVAL: Final[int] = 0
DEFAULT_EASE: Final[float] = 2.5
MIN_EASE: Final[float] = 1.3
AGAIN_EASE_DELTA: Final[float] = -0.20
HARD_EASE_DELTA: Final[float] = -0.15
EASY_EASE_DELTA: Final[float] = 0.15
HARD_INTERVAL_FACTOR: Final[float] = 1.2
EASY_BONUS: Final[float] = 1.3
MAX_INTERVAL_DAYS: Final[int] = 100 * 365

# Interval (days) when a card with interval 0 is answered correctly
FIRST_INTERVALS: Final[dict[int, int]] = {
    2: 1,  # hard
    3: 1,  # good
    4: 4,  # easy
}

# Golden List of canonical topic tags, in display order
GOLDEN_TOPIC_TAGS: Final[tuple[str, ...]] = (
    "General",
    "Safety",
    "Operations",
    "Management",
    "Technical",
    "Compliance",
    "Customer Service",
    "Logistics",
    "Finance",
    "Human Resources",
    "Quality Control",
    "IT Systems",
    "Leadership",
    "Communication",
)

# Upper bounds of heatmap intensity levels 1 and 2; above is level 3
HEATMAP_LIGHT_MAX: Final[int] = 5
HEATMAP_MEDIUM_MAX: Final[int] = 15


def today_for(now: datetime, tz: str | None = None) -> date:
    """Return the study calendar date of an aware timestamp."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz or STUDY_TZ)).date()
