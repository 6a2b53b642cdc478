from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from graph.nodes.acquire_node import acquire_node
from graph.nodes.ledger_append_node import ledger_append_node
from graph.nodes.mirror_node import mirror_node
from graph.state import initial_state
from services.errors import BackendUnavailable
from services.ledger_rows import HEADERS, build_open_row
from services.session_store import AcquireResult, SessionKey, SessionRecord

NOW = datetime(2026, 3, 16, 0, 0, tzinfo=timezone.utc)


def _session(record_id="rec-1"):
    return SessionRecord("U1", "C1", "alice", "general", NOW, record_id, "2026-03")


def _make_state(**overrides):
    base = initial_state(
        user_id="U1",
        channel_id="C1",
        display_name="alice",
        project_label="general",
        now=NOW,
        record_id="rec-1",
    )
    base.update(overrides)
    return base


@pytest.mark.asyncio
async def test_acquire_success_builds_session():
    """確保に成功したらセッションを状態に入れること"""
    store = AsyncMock()
    store.try_acquire_open.return_value = AcquireResult(acquired=True)

    result = await acquire_node(_make_state(), session_store=store)

    session = result["session"]
    assert session.record_id == "rec-1"
    assert session.start == NOW
    assert session.sheet_name == "2026-03"
    store.try_acquire_open.assert_awaited_once_with(SessionKey("U1", "C1"), session)


@pytest.mark.asyncio
async def test_acquire_conflict_with_other_session():
    store = AsyncMock()
    store.try_acquire_open.return_value = AcquireResult(acquired=False, existing=_session("other"))

    result = await acquire_node(_make_state(), session_store=store)

    assert result["outcome"] == "already_open"
    assert result["conflict"].record_id == "other"


@pytest.mark.asyncio
async def test_acquire_conflict_with_own_record_resumes():
    """同じコマンドの前回の試行が確保したセッションなら続行すること"""
    store = AsyncMock()
    store.try_acquire_open.return_value = AcquireResult(acquired=False, existing=_session("rec-1"))

    result = await acquire_node(_make_state(attempt=2), session_store=store)

    assert "outcome" not in result
    assert result["session"].record_id == "rec-1"


@pytest.mark.asyncio
async def test_ledger_append_first_attempt():
    ledger = AsyncMock()
    store = AsyncMock()
    session = _session()

    await ledger_append_node(_make_state(session=session), ledger=ledger, session_store=store, document_id="doc")

    ledger.ensure_monthly_sheet.assert_awaited_once_with("doc", "2026-03")
    ledger.read_range.assert_not_awaited()
    ledger.append_row.assert_awaited_once_with("doc", "2026-03", build_open_row(session))


@pytest.mark.asyncio
async def test_ledger_append_retry_skips_existing_row():
    """再試行時、前回の試行で追記済みなら追記しないこと"""
    ledger = AsyncMock()
    session = _session()
    ledger.read_range.return_value = [list(HEADERS), build_open_row(session)]

    await ledger_append_node(
        _make_state(session=session, attempt=2), ledger=ledger, session_store=AsyncMock(), document_id="doc"
    )

    ledger.append_row.assert_not_awaited()


@pytest.mark.asyncio
async def test_ledger_append_retry_appends_when_missing():
    ledger = AsyncMock()
    ledger.read_range.return_value = [list(HEADERS)]

    await ledger_append_node(
        _make_state(session=_session(), attempt=2), ledger=ledger, session_store=AsyncMock(), document_id="doc"
    )

    ledger.append_row.assert_awaited_once()


@pytest.mark.asyncio
async def test_ledger_append_failure_releases_and_reraises():
    """追記に失敗したら確保を解除して例外を再送出すること"""
    ledger = AsyncMock()
    ledger.append_row.side_effect = BackendUnavailable("503")
    store = AsyncMock()

    with pytest.raises(BackendUnavailable):
        await ledger_append_node(_make_state(session=_session()), ledger=ledger, session_store=store, document_id="doc")

    store.release.assert_awaited_once_with(SessionKey("U1", "C1"))


@pytest.mark.asyncio
async def test_ledger_append_failure_keeps_original_error_when_release_fails():
    ledger = AsyncMock()
    ledger.ensure_monthly_sheet.side_effect = BackendUnavailable("503")
    store = AsyncMock()
    store.release.side_effect = RuntimeError("store down")

    with pytest.raises(BackendUnavailable):
        await ledger_append_node(_make_state(session=_session()), ledger=ledger, session_store=store, document_id="doc")


@pytest.mark.asyncio
async def test_mirror_confirms_open():
    store = AsyncMock()
    session = _session()
    result = await mirror_node(_make_state(session=session), session_store=store)
    assert result["outcome"] == "opened"
    store.confirm_open.assert_awaited_once_with(session.key, session)
