# tests/test_command_dispatch.py
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from services.command_dispatch import (
    CommandDispatcher,
    CommandOptions,
    SlashCommand,
    parse_command_text,
    resolve_requested,
)
from services.errors import InvalidTimeText
from services.memory_ledger import MemoryLedger
from services.memory_session_store import MemorySessionStore
from services.permissions import StaticDirectory
from services.retry_coordinator import RetryCoordinator
from services.server_config import ServerConfigRepository

# JST 2026-03-16 12:00
NOW = datetime(2026, 3, 16, 3, 0, tzinfo=timezone.utc)


def test_parse_start_positional():
    """/start は [time] [day] の順"""
    assert parse_command_text("9:00 yesterday") == CommandOptions("9:00", "yesterday", "")
    assert parse_command_text("") == CommandOptions()


def test_parse_key_value_options():
    options = parse_command_text("day=-1 time=0930")
    assert options.time_text == "0930"
    assert options.date_text == "-1"


def test_parse_end_note_and_options():
    """/end は位置引数すべてを作業内容とみなす"""
    options = parse_command_text("資料作成 レビュー time=18:00", note_positional=True)
    assert options.note == "資料作成 レビュー"
    assert options.time_text == "18:00"

    quoted = parse_command_text('todo="設計 見直し" day=today', note_positional=True)
    assert quoted.note == "設計 見直し"
    assert quoted.date_text == "today"


def test_parse_end_leading_time():
    """/end の先頭が時刻なら退勤時刻、残りを作業内容とすること"""
    options = parse_command_text("18:00 coded", note_positional=True)
    assert options == CommandOptions(time_text="18:00", note="coded")

    assert parse_command_text("1800", note_positional=True).time_text == "1800"
    assert parse_command_text("3件対応", note_positional=True) == CommandOptions(note="3件対応")
    explicit = parse_command_text("17:00 time=18:00", note_positional=True)
    assert explicit.time_text == "18:00"
    assert explicit.note == "17:00"


def test_parse_unbalanced_quote_falls_back():
    options = parse_command_text("don't stop", note_positional=True)
    assert options.note == "don't stop"


def test_resolve_requested():
    assert resolve_requested(CommandOptions(), NOW) is None
    assert resolve_requested(CommandOptions(time_text="9:00"), NOW) == datetime(2026, 3, 16, 0, 0, tzinfo=timezone.utc)
    with pytest.raises(InvalidTimeText):
        resolve_requested(CommandOptions(time_text="99:99"), NOW)


def test_slash_command_from_form():
    cmd = SlashCommand.from_form({"command": "/start", "team_id": "T1", "extra": "ignored"})
    assert cmd.command == "/start"
    assert cmd.team_id == "T1"
    assert cmd.text == ""


def _make_dispatcher(servers=None, directory=None, require_note=True, allowed=("*",), sleep=None):
    ledger = MemoryLedger()
    store = MemorySessionStore(clock=lambda: NOW)

    def ledger_factory(server):
        ledger.add_document(server.document_id)
        return ledger

    dispatcher = CommandDispatcher(
        servers=ServerConfigRepository(
            servers if servers is not None else {"T1": {"document_id": "doc", "document_url": "https://example.com/doc"}}
        ),
        ledger_factory=ledger_factory,
        store_factory=lambda ledger, server: store,
        directory=directory or StaticDirectory(admin_user_ids=["UADMIN"]),
        coordinator=RetryCoordinator(sleep=sleep or AsyncMock()),
        require_note=require_note,
        allowed_channel_ids=allowed,
        clock=lambda: NOW,
    )
    return dispatcher, ledger, store


def _cmd(command, text="", user_id="U1"):
    return SlashCommand(
        command=command,
        text=text,
        team_id="T1",
        channel_id="C0001",
        channel_name="general",
        user_id=user_id,
        user_name="alice",
        response_url="https://hooks.slack.com/commands/x",
    )


def test_supports_and_allow_list():
    dispatcher, _, _ = _make_dispatcher(allowed=["C0001"])
    assert dispatcher.supports("/start")
    assert dispatcher.supports("/kintai-status")
    assert not dispatcher.supports("/unknown")
    assert dispatcher.is_channel_allowed("C0001")
    assert not dispatcher.is_channel_allowed("C9999")

    open_dispatcher, _, _ = _make_dispatcher()
    assert open_dispatcher.is_channel_allowed("C9999")


def test_provisional_ack():
    dispatcher, _, _ = _make_dispatcher()
    assert dispatcher.provisional_ack(_cmd("/start")) == {"response_type": "in_channel", "text": "処理中..."}
    assert dispatcher.provisional_ack(_cmd("/kintai-status"))["response_type"] == "ephemeral"


@pytest.mark.asyncio
async def test_start_then_end():
    """出勤・退勤が台帳に記録され、成功メッセージで仮応答が書き換わること"""
    dispatcher, ledger, _ = _make_dispatcher()
    responder = AsyncMock()

    assert await dispatcher.run(_cmd("/start", "9:00"), responder) is True
    text = responder.replace.await_args.args[0]
    assert responder.replace.await_args.kwargs["private"] is False
    assert "general" in text
    assert "2026/03/16 09:00:00" in text

    responder = AsyncMock()
    assert await dispatcher.run(_cmd("/end", "資料作成"), responder) is True
    text = responder.replace.await_args.args[0]
    assert "3時間0分" in text
    assert "資料作成" in text

    row = ledger.sheet("doc", "2026-03")[1]
    assert row[2] == "3時間0分"


@pytest.mark.asyncio
async def test_start_twice_reports_already_open_privately():
    dispatcher, _, _ = _make_dispatcher()
    await dispatcher.run(_cmd("/start"), AsyncMock())

    responder = AsyncMock()
    assert await dispatcher.run(_cmd("/start"), responder) is False
    responder.delete.assert_awaited_once()
    assert "既に" in responder.send_private.await_args.args[0]


@pytest.mark.asyncio
async def test_parse_error_lists_formats():
    dispatcher, _, _ = _make_dispatcher()
    responder = AsyncMock()
    await dispatcher.run(_cmd("/start", "25:00"), responder)
    text = responder.send_private.await_args.args[0]
    assert "HH:MM" in text
    assert "YYYY-MM-DD" in text


@pytest.mark.asyncio
async def test_end_without_note():
    dispatcher, _, store = _make_dispatcher()
    responder = AsyncMock()
    assert await dispatcher.run(_cmd("/end", ""), responder) is False
    assert "作業内容" in responder.send_private.await_args.args[0]


@pytest.mark.asyncio
async def test_missing_configuration():
    """台帳が未設定のワークスペースは ConfigurationMissing で1回だけ試行すること"""
    sleep = AsyncMock()
    dispatcher, _, store = _make_dispatcher(servers={}, sleep=sleep)
    responder = AsyncMock()

    assert await dispatcher.run(_cmd("/start"), responder) is False
    assert "未設定" in responder.send_private.await_args.args[0]
    sleep.assert_not_awaited()
    assert len(store) == 0


@pytest.mark.asyncio
async def test_channel_label_from_directory():
    directory = AsyncMock()
    directory.channel_label.return_value = "project-x"
    dispatcher, ledger, _ = _make_dispatcher(directory=directory)

    await dispatcher.run(_cmd("/start"), AsyncMock())

    directory.channel_label.assert_awaited_once_with("C0001", "general")
    assert ledger.sheet("doc", "2026-03")[1][0] == "project-x"


@pytest.mark.asyncio
async def test_status_requires_admin():
    dispatcher, _, _ = _make_dispatcher()
    responder = AsyncMock()
    assert await dispatcher.run(_cmd("/kintai-status", user_id="U1"), responder) is False
    assert "管理者" in responder.send_private.await_args.args[0]


@pytest.mark.asyncio
async def test_status_for_admin():
    dispatcher, _, _ = _make_dispatcher()
    responder = AsyncMock()
    assert await dispatcher.run(_cmd("/kintai-status", user_id="UADMIN"), responder) is True
    text = responder.replace.await_args.args[0]
    assert responder.replace.await_args.kwargs["private"] is True
    assert "https://example.com/doc" in text
    assert "まだありません" in text


@pytest.mark.asyncio
async def test_workspaces_sharing_credentials_get_their_own_document():
    """同じ認証ファイルを使うワークスペースでも、それぞれの台帳に記録されること"""
    dispatcher, ledger, _ = _make_dispatcher(
        servers={
            "T1": {"document_id": "doc", "credentials_path": "token.json"},
            "T2": {"document_id": "doc2", "credentials_path": "token.json"},
        }
    )

    await dispatcher.run(_cmd("/start"), AsyncMock())
    other = replace(_cmd("/start"), team_id="T2", channel_id="C0002")
    responder = AsyncMock()
    assert await dispatcher.run(other, responder) is True

    assert len(ledger.sheet("doc", "2026-03")) == 2
    assert len(ledger.sheet("doc2", "2026-03")) == 2


@pytest.mark.asyncio
async def test_end_with_leading_time():
    """/end 11:30 資料作成 は 11:30 を退勤時刻として記録すること"""
    dispatcher, ledger, _ = _make_dispatcher()
    await dispatcher.run(_cmd("/start", "9:00"), AsyncMock())

    responder = AsyncMock()
    assert await dispatcher.run(_cmd("/end", "11:30 資料作成"), responder) is True
    assert "資料作成" in responder.replace.await_args.args[0]
    assert ledger.sheet("doc", "2026-03")[1][2:5] == ["2時間30分", "2026/03/16 09:00:00", "2026/03/16 11:30:00"]
