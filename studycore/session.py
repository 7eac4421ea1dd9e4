from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Tuple

from studycore.models import RATING_LABELS, Rating


@dataclass
class SessionTracker:
    """Rating totals of one live study session."""

    again: int = 0
    hard: int = 0
    good: int = 0
    easy: int = 0
    cards_reviewed: int = 0

    def record(self, rating: Rating) -> None:
        rating = Rating(rating)
        if rating == Rating.AGAIN:
            self.again += 1
        elif rating == Rating.HARD:
            self.hard += 1
        elif rating == Rating.GOOD:
            self.good += 1
        else:
            self.easy += 1
        self.cards_reviewed += 1

    def breakdown(self) -> dict[str, int]:
        return {RATING_LABELS[r]: getattr(self, RATING_LABELS[r]) for r in Rating}


class SessionStore:
    def __init__(self) -> None:
        self._data: Dict[str, SessionTracker] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> SessionTracker:
        async with self._lock:
            return self._data.setdefault(user_id, SessionTracker())

    async def clear(self, user_id: str) -> None:
        async with self._lock:
            self._data.pop(user_id, None)


class CounterStore:
    """Per (user, resource) counters, e.g. cards studied from one deck this session.

    Missing keys read as 0.
    """

    def __init__(self) -> None:
        self._data: Dict[Tuple[str, str], int] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str, resource_id: str) -> int:
        async with self._lock:
            return self._data.get((user_id, resource_id), 0)

    async def add(self, user_id: str, resource_id: str, delta: int = 1) -> int:
        async with self._lock:
            total = self._data.get((user_id, resource_id), 0) + delta
            self._data[(user_id, resource_id)] = total
            return total

    async def for_user(self, user_id: str) -> dict[str, int]:
        async with self._lock:
            return {k[1]: v for k, v in self._data.items() if k[0] == user_id}

    async def reset(self, user_id: str, resource_id: str) -> None:
        async with self._lock:
            self._data.pop((user_id, resource_id), None)

    async def clear_user(self, user_id: str) -> None:
        async with self._lock:
            for key in [k for k in self._data if k[0] == user_id]:
                del self._data[key]


store = SessionStore()
counters = CounterStore()
