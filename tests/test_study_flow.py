from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import aiosqlite
import pytest

import studycore.db as dbmod
from studycore.clock import FixedClock
from studycore.db import get_card_by_id, get_db, get_log_for_date, get_user_stats, insert_card, insert_deck, insert_tag, set_daily_goal
from studycore.errors import CardNotFoundError, InvariantViolation, ValidationError
from studycore.models import Deck, Rating, Tag
from studycore.srs import new_card
from studycore.study import complete_session, get_due_cards, get_global_stats, rate_card


DAY1 = datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc)


async def seed(cards: list, decks: tuple[str, ...] = ("d1",), user_id: str = "u1") -> None:
    async with get_db() as db:
        for d in decks:
            await insert_deck(db, Deck(d, user_id, f"Deck {d}"))
        await insert_tag(db, Tag("t-safety", "Safety", "topic"))
        await insert_tag(db, Tag("t-finance", "Finance", "topic"))
        for c in cards:
            await insert_card(db, c)
        await db.commit()


def due_card(cid: str, deck: str = "d1", minutes_ago: int = 5, interval: int = 3, tags: tuple[str, ...] = ()):
    c = new_card(cid, deck, {"front": cid}, DAY1 - timedelta(days=10), tag_ids=tags)
    return replace(c, interval=interval, next_review=DAY1 - timedelta(minutes=minutes_ago))


@pytest.mark.asyncio
async def test_rate_card_persists_and_reports_next(db_file, sessions, source_counters):
    await seed([due_card("a", minutes_ago=30), due_card("b", minutes_ago=20), due_card("c", minutes_ago=10)])

    res = await rate_card("u1", "a", Rating.GOOD, now=DAY1, sessions=sessions, source_counters=source_counters)

    assert res.card.interval == 8  # round(3 * 2.5)
    assert res.next_card is not None and res.next_card.id == "b"
    assert res.remaining_count == 2
    assert res.idempotent is False
    async with get_db() as db:
        stored = await get_card_by_id(db, "u1", "a")
    assert stored is not None
    assert stored.next_review == DAY1 + timedelta(days=8)
    tracker = await sessions.get("u1")
    assert (tracker.cards_reviewed, tracker.good) == (1, 1)
    assert await source_counters.get("u1", "d1") == 1


@pytest.mark.asyncio
async def test_again_keeps_card_due(db_file, sessions, source_counters):
    await seed([due_card("a"), due_card("b", minutes_ago=1)])
    res = await rate_card("u1", "a", Rating.AGAIN, now=DAY1, sessions=sessions, source_counters=source_counters)
    assert res.card.interval == 0
    assert res.card.next_review == DAY1
    batch = await get_due_cards("u1", now=DAY1)
    assert {c.id for c in batch.cards} == {"a", "b"}


@pytest.mark.asyncio
async def test_rate_card_validation_and_lookup(db_file, sessions, source_counters):
    await seed([due_card("a")])
    with pytest.raises(ValidationError):
        await rate_card("u1", "a", 7, now=DAY1, sessions=sessions, source_counters=source_counters)
    with pytest.raises(CardNotFoundError):
        await rate_card("u1", "missing", Rating.GOOD, now=DAY1, sessions=sessions, source_counters=source_counters)
    with pytest.raises(CardNotFoundError):
        await rate_card("someone-else", "a", Rating.GOOD, now=DAY1, sessions=sessions, source_counters=source_counters)
    assert (await sessions.get("u1")).cards_reviewed == 0


@pytest.mark.asyncio
async def test_corrupted_card_is_not_touched(db_file, sessions, source_counters):
    await seed([replace(due_card("bad"), ease_factor=1.1)])
    with pytest.raises(InvariantViolation):
        await rate_card("u1", "bad", Rating.GOOD, now=DAY1, sessions=sessions, source_counters=source_counters)
    async with get_db() as db:
        stored = await get_card_by_id(db, "u1", "bad")
    assert stored is not None and stored.ease_factor == pytest.approx(1.1)
    assert (await sessions.get("u1")).cards_reviewed == 0


@pytest.mark.asyncio
async def test_storage_failure_leaves_card_and_session_unchanged(db_file, sessions, source_counters, monkeypatch):
    await seed([due_card("a")])

    async def broken_insert(db, record):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(dbmod, "insert_review", broken_insert)
    with pytest.raises(aiosqlite.OperationalError):
        await rate_card("u1", "a", Rating.EASY, now=DAY1, sessions=sessions, source_counters=source_counters)

    async with get_db() as db:
        stored = await get_card_by_id(db, "u1", "a")
    assert stored is not None and stored.interval == 3
    assert (await sessions.get("u1")).cards_reviewed == 0
    assert await source_counters.get("u1", "d1") == 0


@pytest.mark.asyncio
async def test_idempotent_retry_applies_once(db_file, sessions, source_counters):
    await seed([due_card("a"), due_card("b")])
    first = await rate_card("u1", "a", Rating.GOOD, now=DAY1, idempotency_key="k1", sessions=sessions, source_counters=source_counters)
    again = await rate_card(
        "u1", "a", Rating.GOOD, now=DAY1 + timedelta(seconds=2), idempotency_key="k1", sessions=sessions, source_counters=source_counters
    )
    assert again.idempotent is True
    assert again.card.interval == first.card.interval == 8
    assert again.card.next_review == first.card.next_review
    assert (await sessions.get("u1")).cards_reviewed == 1

    other = await rate_card("u1", "a", Rating.GOOD, now=DAY1, idempotency_key="k2", sessions=sessions, source_counters=source_counters)
    assert other.idempotent is False
    assert other.card.interval == 20

    late = await rate_card("u1", "a", Rating.GOOD, now=DAY1, idempotency_key="k1", sessions=sessions, source_counters=source_counters)
    assert late.idempotent is True
    assert (late.card.interval, late.card.next_review) == (8, first.card.next_review)
    assert late.card.ease_factor == first.card.ease_factor
    async with get_db() as db:
        stored = await get_card_by_id(db, "u1", "a")
    assert stored is not None and stored.interval == 20


@pytest.mark.asyncio
async def test_concurrent_ratings_on_one_card_apply_in_sequence(db_file, sessions, source_counters):
    await seed([due_card("a")])
    results = await asyncio.gather(
        *(rate_card("u1", "a", Rating.GOOD, now=DAY1, sessions=sessions, source_counters=source_counters) for _ in range(5))
    )

    # 3 -> 8 -> 20 -> 50 -> 125 -> 313 with ease 2.5
    assert sorted(r.card.interval for r in results) == [8, 20, 50, 125, 313]
    async with get_db() as db:
        stored = await get_card_by_id(db, "u1", "a")
    assert stored is not None and stored.interval == 313
    assert (await sessions.get("u1")).cards_reviewed == 5
    assert await source_counters.get("u1", "d1") == 5


@pytest.mark.asyncio
async def test_due_cards_tag_filter_and_fallback(db_file):
    future = DAY1 + timedelta(days=3)
    await seed(
        [
            due_card("s1", tags=("t-safety",)),
            due_card("f1", tags=("t-finance",)),
            replace(new_card("n1", "d1", {}, DAY1 - timedelta(days=1), tag_ids=("t-finance",)), next_review=future),
        ]
    )
    only_safety = await get_due_cards("u1", 0, ["t-safety"], now=DAY1)
    assert [c.id for c in only_safety.cards] == ["s1"]
    assert only_safety.total_due == 1

    none_due = await get_due_cards("u1", 0, None, now=DAY1 - timedelta(days=5))
    assert none_due.is_new_cards_fallback is True
    assert [c.id for c in none_due.cards] == ["n1"]
    assert none_due.total_due == 0


@pytest.mark.asyncio
async def test_due_cards_span_all_decks_and_batches(db_file):
    cards = [due_card(f"a{i:02d}", deck="d1", minutes_ago=i + 1) for i in range(30)]
    cards += [due_card(f"b{i:02d}", deck="d2", minutes_ago=i + 100) for i in range(30)]
    await seed(cards, decks=("d1", "d2"))
    first = await get_due_cards("u1", 0, now=DAY1, batch_size=50)
    second = await get_due_cards("u1", 1, now=DAY1, batch_size=50)
    assert first.total_due == 60
    assert first.has_more_batches is True
    assert len(second.cards) == 10
    assert second.has_more_batches is False
    assert {c.id for c in first.cards} | {c.id for c in second.cards} == {c.id for c in cards}


@pytest.mark.asyncio
async def test_get_due_cards_rejects_bad_input(db_file):
    with pytest.raises(ValidationError):
        await get_due_cards("u1", -1, now=DAY1)
    with pytest.raises(ValidationError):
        await get_due_cards("u1", 0, ["ok", ""], now=DAY1)


@pytest.mark.asyncio
async def test_sessions_accumulate_and_streak_moves_once_per_day(db_file, sessions, source_counters):
    await seed([due_card(c, deck="d2" if c == "c" else "d1") for c in "abcde"], decks=("d1", "d2"))
    clock = FixedClock(DAY1)

    for cid, r in [("a", Rating.GOOD), ("b", Rating.AGAIN), ("c", Rating.EASY)]:
        await rate_card("u1", cid, r, now=clock.now(), sessions=sessions, source_counters=source_counters)
    s1 = await complete_session("u1", now=clock.now(), sessions=sessions, source_counters=source_counters)
    assert (s1.cards_reviewed, s1.again, s1.good, s1.easy) == (3, 1, 1, 1)
    assert s1.today_total == 3
    assert (s1.current_streak, s1.is_new_day) == (1, True)
    assert s1.by_deck == {"d1": 2, "d2": 1}
    assert await source_counters.get("u1", "d1") == 0

    clock.advance(hours=2)
    await rate_card("u1", "d", Rating.HARD, now=clock.now(), sessions=sessions, source_counters=source_counters)
    s2 = await complete_session("u1", now=clock.now(), sessions=sessions, source_counters=source_counters)
    assert s2.today_total == 4
    assert (s2.current_streak, s2.is_new_day) == (1, False)
    assert s2.by_deck == {"d1": 1}

    clock.advance(days=1)
    await rate_card("u1", "e", Rating.GOOD, now=clock.now(), sessions=sessions, source_counters=source_counters)
    s3 = await complete_session("u1", now=clock.now(), sessions=sessions, source_counters=source_counters)
    assert s3.today_total == 1
    assert (s3.current_streak, s3.longest_streak, s3.is_new_day) == (2, 2, True)

    async with get_db() as db:
        day1 = await get_log_for_date(db, "u1", DAY1.date())
        stats = await get_user_stats(db, "u1")
    assert day1 is not None and day1.cards_reviewed == 4
    assert stats is not None and stats.total_reviews == 5


@pytest.mark.asyncio
async def test_empty_session_writes_nothing(db_file, sessions, source_counters):
    summary = await complete_session("u1", now=DAY1, sessions=sessions, source_counters=source_counters)
    assert summary.today_total == 0
    assert summary.current_streak == 0
    async with get_db() as db:
        assert await get_user_stats(db, "u1") is None
        assert await get_log_for_date(db, "u1", DAY1.date()) is None


@pytest.mark.asyncio
async def test_global_stats(db_file, sessions, source_counters):
    await seed([due_card("a"), due_card("b"), new_card("n1", "d1", {}, DAY1 - timedelta(hours=1))])
    async with get_db() as db:
        await set_daily_goal(db, "u1", 4)
        await db.commit()
    await rate_card("u1", "a", Rating.GOOD, now=DAY1, sessions=sessions, source_counters=source_counters)
    await complete_session("u1", now=DAY1, sessions=sessions, source_counters=source_counters)

    stats = await get_global_stats("u1", now=DAY1)
    assert stats.total_due_count == 2  # b and n1
    assert stats.completed_today == 1
    assert stats.current_streak == 1
    assert stats.has_new_cards is True
    assert stats.daily_goal == 4
    assert stats.progress_percent == 25
