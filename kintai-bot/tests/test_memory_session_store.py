# tests/test_memory_session_store.py
from datetime import datetime, timedelta, timezone

import pytest

from services.memory_session_store import MemorySessionStore
from services.session_store import SessionKey, SessionRecord

START = datetime(2026, 3, 16, 0, 0, tzinfo=timezone.utc)
KEY = SessionKey("U1", "C1")


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _session(record_id="rec-1", **overrides):
    base = dict(
        user_id="U1",
        channel_id="C1",
        display_name="alice",
        project_label="general",
        start=START,
        record_id=record_id,
        sheet_name="2026-03",
    )
    base.update(overrides)
    return SessionRecord(**base)


@pytest.mark.asyncio
async def test_acquire_then_conflict():
    """同じキーの2回目の確保は既存セッションを返して失敗すること"""
    store = MemorySessionStore(clock=FakeClock(START))
    first = await store.try_acquire_open(KEY, _session())
    second = await store.try_acquire_open(KEY, _session("rec-2"))

    assert first.acquired is True
    assert second.acquired is False
    assert second.existing.record_id == "rec-1"


@pytest.mark.asyncio
async def test_peek_and_release():
    store = MemorySessionStore(clock=FakeClock(START))
    await store.try_acquire_open(KEY, _session())
    assert (await store.peek_open(KEY)).record_id == "rec-1"

    await store.release(KEY)
    assert await store.peek_open(KEY) is None
    assert (await store.try_acquire_open(KEY, _session("rec-2"))).acquired is True


@pytest.mark.asyncio
async def test_expired_entry_is_released():
    """TTLを過ぎたエントリは存在しないものとして扱うこと"""
    clock = FakeClock(START)
    store = MemorySessionStore(ttl_seconds=86400, clock=clock)
    await store.try_acquire_open(KEY, _session())

    clock.now = START + timedelta(hours=23, minutes=59)
    assert await store.peek_open(KEY) is not None

    clock.now = START + timedelta(hours=24)
    assert await store.peek_open(KEY) is None
    assert (await store.try_acquire_open(KEY, _session("rec-2"))).acquired is True


@pytest.mark.asyncio
async def test_ttl_counts_from_session_start():
    """さかのぼって開始した勤務は開始時刻から24時間で期限切れになること"""
    clock = FakeClock(START + timedelta(hours=3))
    store = MemorySessionStore(ttl_seconds=86400, clock=clock)
    await store.try_acquire_open(KEY, _session())
    await store.confirm_open(KEY, _session())

    clock.now = START + timedelta(hours=23, minutes=59)
    assert await store.peek_open(KEY) is not None

    clock.now = START + timedelta(hours=24)
    assert await store.peek_open(KEY) is None


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    """返されたレコードを変更してもストアに影響しないこと"""
    store = MemorySessionStore(clock=FakeClock(START))
    await store.try_acquire_open(KEY, _session())
    peeked = await store.peek_open(KEY)
    peeked.project_label = "changed"
    assert (await store.peek_open(KEY)).project_label == "general"


@pytest.mark.asyncio
async def test_purge_expired():
    clock = FakeClock(START)
    store = MemorySessionStore(ttl_seconds=60, clock=clock)
    await store.try_acquire_open(KEY, _session())
    await store.try_acquire_open(SessionKey("U2", "C1"), _session(user_id="U2"))
    assert len(store) == 2

    clock.now = START + timedelta(seconds=61)
    assert store.purge_expired() == 2
    assert len(store) == 0
