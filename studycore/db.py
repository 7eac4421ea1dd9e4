from __future__ import annotations

"""SQLite stores for cards, daily logs, user stats and the review log.

Store functions take an open connection and never commit, so a caller can
group several of them into one transaction.
"""

import contextlib
import json
from datetime import date, datetime
from typing import AsyncIterator, Optional

import aiosqlite

from studycore.clock import utc
from studycore.config import DB_PATH
from studycore.errors import ValidationError
from studycore.models import (
    Card,
    DailyStudyLog,
    Deck,
    Rating,
    ReviewRecord,
    Tag,
    UserStats,
)


@contextlib.asynccontextmanager
async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    db = await aiosqlite.connect(DB_PATH.as_posix())
    db.row_factory = aiosqlite.Row
    try:
        await db.execute("PRAGMA foreign_keys=ON")
        yield db
    finally:
        await db.close()


async def init_db() -> None:
    async with get_db() as db:
        await db.executescript(
            """
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS decks (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_decks_user ON decks(user_id);

            -- Decks assigned to a user besides the ones they own
            CREATE TABLE IF NOT EXISTS user_decks (
                user_id TEXT NOT NULL,
                deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
                is_active INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY(user_id, deck_id)
            );

            CREATE TABLE IF NOT EXISTS cards (
                id TEXT PRIMARY KEY,
                deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
                payload_json TEXT NOT NULL DEFAULT '{}',
                interval INTEGER NOT NULL DEFAULT 0,
                ease_factor REAL NOT NULL DEFAULT 2.5,
                next_review TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_cards_deck ON cards(deck_id);
            CREATE INDEX IF NOT EXISTS idx_cards_next_review ON cards(next_review);

            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                category TEXT NOT NULL CHECK(category IN ('topic','concept'))
            );

            CREATE TABLE IF NOT EXISTS card_tags (
                card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
                tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
                PRIMARY KEY(card_id, tag_id)
            );

            CREATE TABLE IF NOT EXISTS user_stats (
                user_id TEXT PRIMARY KEY,
                current_streak INTEGER NOT NULL DEFAULT 0,
                longest_streak INTEGER NOT NULL DEFAULT 0,
                total_reviews INTEGER NOT NULL DEFAULT 0,
                last_study_date DATE,
                daily_goal INTEGER
            );

            CREATE TABLE IF NOT EXISTS study_logs (
                user_id TEXT NOT NULL,
                study_date DATE NOT NULL,
                cards_reviewed INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY(user_id, study_date)
            );

            CREATE TABLE IF NOT EXISTS review_log (
                user_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                rating INTEGER NOT NULL CHECK(rating BETWEEN 1 AND 4),
                idempotency_key TEXT NOT NULL,
                interval INTEGER NOT NULL,
                next_review TEXT NOT NULL,
                ease_factor REAL NOT NULL,
                created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
                UNIQUE(user_id, card_id, idempotency_key)
            );
            """
        )
        await db.commit()


def to_db_ts(dt: datetime) -> str:
    """Fixed-width UTC text, so string order equals time order."""
    return utc(dt).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def from_db_ts(s: str) -> datetime:
    return utc(datetime.fromisoformat(s))


# --- cards -----------------------------------------------------------------

_USER_CARDS_SQL = """
    SELECT c.id, c.deck_id, c.payload_json, c.interval, c.ease_factor, c.next_review, c.created_at
    FROM cards c
    JOIN decks d ON d.id = c.deck_id
    WHERE (d.user_id = ?
           OR d.id IN (SELECT deck_id FROM user_decks WHERE user_id = ? AND is_active = 1))
"""


def _row_to_card(row: aiosqlite.Row, tag_ids: list[str]) -> Card:
    return Card(
        id=str(row["id"]),
        deck_id=str(row["deck_id"]),
        payload=json.loads(row["payload_json"] or "{}"),
        interval=int(row["interval"]),
        ease_factor=float(row["ease_factor"]),
        next_review=from_db_ts(row["next_review"]),
        created_at=from_db_ts(row["created_at"]),
        tag_ids=tag_ids,
    )


async def _tag_ids_by_card(db: aiosqlite.Connection, card_ids: list[str]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {cid: [] for cid in card_ids}
    if not card_ids:
        return out
    # Chunk to stay under SQLite's host parameter limit
    for i in range(0, len(card_ids), 500):
        chunk = card_ids[i : i + 500]
        marks = ",".join("?" for _ in chunk)
        cur = await db.execute(
            f"SELECT card_id, tag_id FROM card_tags WHERE card_id IN ({marks}) ORDER BY tag_id",
            chunk,
        )
        for r in await cur.fetchall():
            out[str(r["card_id"])].append(str(r["tag_id"]))
    return out


async def list_due_candidates_for_user(db: aiosqlite.Connection, user_id: str) -> list[Card]:
    """All cards in decks the user owns or is actively assigned to."""
    cur = await db.execute(_USER_CARDS_SQL + " ORDER BY c.next_review ASC, c.id ASC", (user_id, user_id))
    rows = await cur.fetchall()
    tags = await _tag_ids_by_card(db, [str(r["id"]) for r in rows])
    return [_row_to_card(r, tags[str(r["id"])]) for r in rows]


async def get_card_by_id(db: aiosqlite.Connection, user_id: str, card_id: str) -> Optional[Card]:
    cur = await db.execute(_USER_CARDS_SQL + " AND c.id = ?", (user_id, user_id, card_id))
    row = await cur.fetchone()
    if row is None:
        return None
    tags = await _tag_ids_by_card(db, [card_id])
    return _row_to_card(row, tags[card_id])


async def update_schedule_fields(db: aiosqlite.Connection, card: Card) -> None:
    await db.execute(
        "UPDATE cards SET interval=?, ease_factor=?, next_review=? WHERE id=?",
        (card.interval, card.ease_factor, to_db_ts(card.next_review), card.id),
    )


async def insert_deck(db: aiosqlite.Connection, deck: Deck) -> None:
    await db.execute(
        "INSERT INTO decks(id, user_id, title) VALUES(?,?,?)",
        (deck.id, deck.user_id, deck.title),
    )


async def assign_deck(db: aiosqlite.Connection, user_id: str, deck_id: str, active: bool = True) -> None:
    await db.execute(
        "INSERT INTO user_decks(user_id, deck_id, is_active) VALUES(?,?,?) "
        "ON CONFLICT(user_id, deck_id) DO UPDATE SET is_active=excluded.is_active",
        (user_id, deck_id, int(active)),
    )


async def insert_tag(db: aiosqlite.Connection, tag: Tag) -> None:
    await db.execute(
        "INSERT INTO tags(id, name, category) VALUES(?,?,?)",
        (tag.id, tag.name, tag.category),
    )


async def insert_card(db: aiosqlite.Connection, card: Card) -> None:
    await db.execute(
        """
        INSERT INTO cards(id, deck_id, payload_json, interval, ease_factor, next_review, created_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        (
            card.id,
            card.deck_id,
            json.dumps(card.payload, ensure_ascii=False),
            card.interval,
            card.ease_factor,
            to_db_ts(card.next_review),
            to_db_ts(card.created_at),
        ),
    )
    await db.executemany(
        "INSERT OR IGNORE INTO card_tags(card_id, tag_id) VALUES(?,?)",
        [(card.id, t) for t in card.tag_ids],
    )


# --- daily logs ------------------------------------------------------------

async def get_log_for_date(db: aiosqlite.Connection, user_id: str, d: date) -> Optional[DailyStudyLog]:
    cur = await db.execute(
        "SELECT cards_reviewed FROM study_logs WHERE user_id=? AND study_date=?",
        (user_id, d.isoformat()),
    )
    row = await cur.fetchone()
    if row is None:
        return None
    return DailyStudyLog(user_id=user_id, study_date=d, cards_reviewed=int(row["cards_reviewed"]))


async def upsert_increment(db: aiosqlite.Connection, user_id: str, d: date, delta: int) -> None:
    if delta < 0:
        raise ValidationError(f"Daily log increment must be non-negative, got {delta}")
    await db.execute(
        "INSERT INTO study_logs(user_id, study_date, cards_reviewed) VALUES(?,?,?) "
        "ON CONFLICT(user_id, study_date) DO UPDATE SET cards_reviewed = cards_reviewed + excluded.cards_reviewed",
        (user_id, d.isoformat(), delta),
    )


async def list_logs(db: aiosqlite.Connection, user_id: str, start: date, end: date) -> list[DailyStudyLog]:
    """Logs with start <= study_date <= end, oldest first."""
    cur = await db.execute(
        "SELECT study_date, cards_reviewed FROM study_logs WHERE user_id=? AND study_date BETWEEN ? AND ? "
        "ORDER BY study_date ASC",
        (user_id, start.isoformat(), end.isoformat()),
    )
    return [
        DailyStudyLog(user_id=user_id, study_date=date.fromisoformat(r["study_date"]), cards_reviewed=int(r["cards_reviewed"]))
        for r in await cur.fetchall()
    ]


# --- user stats ------------------------------------------------------------

async def get_user_stats(db: aiosqlite.Connection, user_id: str) -> Optional[UserStats]:
    cur = await db.execute(
        "SELECT current_streak, longest_streak, total_reviews, last_study_date, daily_goal "
        "FROM user_stats WHERE user_id=?",
        (user_id,),
    )
    row = await cur.fetchone()
    if row is None:
        return None
    return UserStats(
        user_id=user_id,
        current_streak=int(row["current_streak"]),
        longest_streak=int(row["longest_streak"]),
        total_reviews=int(row["total_reviews"]),
        last_study_date=date.fromisoformat(row["last_study_date"]) if row["last_study_date"] else None,
        daily_goal=int(row["daily_goal"]) if row["daily_goal"] is not None else None,
    )


async def set_streak_and_date(db: aiosqlite.Connection, stats: UserStats) -> None:
    """Write streak fields; daily_goal is left as stored."""
    await db.execute(
        """
        INSERT INTO user_stats(user_id, current_streak, longest_streak, total_reviews, last_study_date)
        VALUES(?,?,?,?,?)
        ON CONFLICT(user_id) DO UPDATE SET
            current_streak=excluded.current_streak,
            longest_streak=excluded.longest_streak,
            total_reviews=excluded.total_reviews,
            last_study_date=excluded.last_study_date
        """,
        (
            stats.user_id,
            stats.current_streak,
            stats.longest_streak,
            stats.total_reviews,
            stats.last_study_date.isoformat() if stats.last_study_date else None,
        ),
    )


async def get_daily_goal(db: aiosqlite.Connection, user_id: str) -> Optional[int]:
    stats = await get_user_stats(db, user_id)
    return stats.daily_goal if stats else None


async def set_daily_goal(db: aiosqlite.Connection, user_id: str, goal: Optional[int]) -> None:
    await db.execute(
        "INSERT INTO user_stats(user_id, daily_goal) VALUES(?,?) "
        "ON CONFLICT(user_id) DO UPDATE SET daily_goal=excluded.daily_goal",
        (user_id, goal),
    )


# --- review log ------------------------------------------------------------

async def get_review_by_key(
    db: aiosqlite.Connection, user_id: str, card_id: str, idempotency_key: str
) -> Optional[ReviewRecord]:
    cur = await db.execute(
        "SELECT rating, interval, next_review, ease_factor FROM review_log WHERE user_id=? AND card_id=? AND idempotency_key=?",
        (user_id, card_id, idempotency_key),
    )
    row = await cur.fetchone()
    if row is None:
        return None
    return ReviewRecord(
        user_id=user_id,
        card_id=card_id,
        rating=Rating(int(row["rating"])),
        idempotency_key=idempotency_key,
        interval=int(row["interval"]),
        next_review=from_db_ts(row["next_review"]),
        ease_factor=float(row["ease_factor"]),
    )


async def insert_review(db: aiosqlite.Connection, record: ReviewRecord) -> None:
    await db.execute(
        "INSERT INTO review_log(user_id, card_id, rating, idempotency_key, interval, next_review, ease_factor) VALUES(?,?,?,?,?,?,?)",
        (
            record.user_id,
            record.card_id,
            int(record.rating),
            record.idempotency_key,
            record.interval,
            to_db_ts(record.next_review),
            record.ease_factor,
        ),
    )
