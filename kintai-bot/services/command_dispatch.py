# services/command_dispatch.py
import logging
import shlex
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from services.clock_time import ParseError, month_key, parse_clock_time, parse_time_text, utc_now
from services.errors import InvalidTimeText, NotAuthorized
from services.ledger_interface import LedgerInterface
from services.ledger_rows import header_range
from services.messages import (
    MESSAGES,
    render_close_success,
    render_error,
    render_open_success,
    render_status,
)
from services.permissions import is_authorized
from services.retry_coordinator import RetryCoordinator
from services.server_config import ServerConfig, ServerConfigRepository
from services.session_machine import SessionMachine
from services.session_store import SessionStore

logger = logging.getLogger(__name__)

START_COMMAND = "/start"
END_COMMAND = "/end"
STATUS_COMMAND = "/kintai-status"

# key=value 形式で指定できるオプション
OPTION_KEYS = {
    "time": "time_text",
    "day": "date_text",
    "date": "date_text",
    "todo": "note",
    "note": "note",
}


@dataclass
class SlashCommand:
    command: str
    text: str = ""
    team_id: str = ""
    channel_id: str = ""
    channel_name: str = ""
    user_id: str = ""
    user_name: str = ""
    response_url: str = ""

    @classmethod
    def from_form(cls, form) -> "SlashCommand":
        return cls(**{name: form.get(name, "") for name in cls.__dataclass_fields__})


@dataclass
class CommandOptions:
    time_text: Optional[str] = None
    date_text: Optional[str] = None
    note: str = ""


@dataclass
class StatusReport:
    document_url: str
    header_found: bool


def parse_command_text(text: str, note_positional: bool = False) -> CommandOptions:
    """コマンド引数を解析する

    /start は [time] [day] の順。/end は先頭が時刻として読めればそれを退勤時刻とし、
    残りの位置引数すべてを作業内容とみなす。
    time=.. day=.. todo=.. の形式はどちらでも使える。
    """
    try:
        tokens = shlex.split(text or "")
    except ValueError:
        tokens = (text or "").split()

    options = CommandOptions()
    positional = []
    for token in tokens:
        key, sep, value = token.partition("=")
        field = OPTION_KEYS.get(key.lower()) if sep else None
        if field is None:
            positional.append(token)
        elif field == "note":
            options.note = value
        else:
            setattr(options, field, value or None)

    if note_positional:
        if (
            positional
            and options.time_text is None
            and not isinstance(parse_time_text(positional[0]), ParseError)
        ):
            options.time_text = positional.pop(0)
        if positional and not options.note:
            options.note = " ".join(positional)
        return options

    for token in positional:
        if options.time_text is None:
            options.time_text = token
        elif options.date_text is None:
            options.date_text = token
    return options


def resolve_requested(options: CommandOptions, now: datetime) -> Optional[datetime]:
    """明示指定された時刻をUTCに変換する。指定がなければNone"""
    if options.time_text is None and options.date_text is None:
        return None
    parsed = parse_clock_time(options.time_text, options.date_text, now)
    if isinstance(parsed, ParseError):
        raise InvalidTimeText(options.time_text, options.date_text, parsed.reason)
    return parsed


class CommandDispatcher:
    """スラッシュコマンドを状態遷移に振り分ける"""

    def __init__(
        self,
        servers: ServerConfigRepository,
        ledger_factory: Callable[[ServerConfig], LedgerInterface],
        store_factory: Callable[[LedgerInterface, ServerConfig], SessionStore],
        directory,
        coordinator: RetryCoordinator,
        require_note: bool = True,
        allowed_channel_ids: Iterable[str] = ("*",),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._servers = servers
        self._ledger_factory = ledger_factory
        self._store_factory = store_factory
        self._directory = directory
        self._coordinator = coordinator
        self._require_note = require_note
        self._allowed = set(allowed_channel_ids)
        self._clock = clock
        self._ledgers: dict[str, LedgerInterface] = {}
        self._stores: dict[str, SessionStore] = {}
        self._handlers = {
            START_COMMAND: self._handle_start,
            END_COMMAND: self._handle_end,
            STATUS_COMMAND: self._handle_status,
        }

    def supports(self, command: str) -> bool:
        return command in self._handlers

    def is_channel_allowed(self, channel_id: str) -> bool:
        return "*" in self._allowed or channel_id in self._allowed

    def provisional_ack(self, cmd: SlashCommand) -> dict:
        """即時に返す仮応答。status は本人にだけ見せる"""
        response_type = "ephemeral" if cmd.command == STATUS_COMMAND else "in_channel"
        return {"response_type": response_type, "text": MESSAGES["processing"]}

    def _ledger(self, config: ServerConfig) -> LedgerInterface:
        if config.document_id not in self._ledgers:
            self._ledgers[config.document_id] = self._ledger_factory(config)
        return self._ledgers[config.document_id]

    def _machine(self, config: ServerConfig, now: datetime, record_id: str) -> SessionMachine:
        ledger = self._ledger(config)
        if config.document_id not in self._stores:
            self._stores[config.document_id] = self._store_factory(ledger, config)
        return SessionMachine(
            ledger,
            self._stores[config.document_id],
            config.document_id,
            now=now,
            record_id=record_id,
        )

    async def run(self, cmd: SlashCommand, responder) -> bool:
        """バックグラウンドで1コマンドを処理し、仮応答を確定させる"""
        handler = self._handlers[cmd.command]
        logger.info("%s from %s in %s/%s", cmd.command, cmd.user_id, cmd.team_id, cmd.channel_id)
        return await handler(cmd, responder)

    async def _handle_start(self, cmd: SlashCommand, responder) -> bool:
        options = parse_command_text(cmd.text)
        now = self._clock()
        record_id = str(uuid.uuid4())
        machine = None

        async def action(attempt_number: int):
            nonlocal machine
            config = self._servers.require(cmd.team_id)
            requested = resolve_requested(options, now)
            if machine is None:
                machine = self._machine(config, now, record_id)
            label = await self._directory.channel_label(cmd.channel_id, cmd.channel_name)
            return await machine.handle_open(
                cmd.user_id,
                cmd.channel_id,
                cmd.user_name,
                label,
                requested=requested,
                attempt=attempt_number,
            )

        return await self._coordinator.execute(
            responder, action, render_open_success, render_error
        )

    async def _handle_end(self, cmd: SlashCommand, responder) -> bool:
        options = parse_command_text(cmd.text, note_positional=True)
        now = self._clock()
        record_id = str(uuid.uuid4())
        machine = None

        async def action(attempt_number: int):
            nonlocal machine
            config = self._servers.require(cmd.team_id)
            requested = resolve_requested(options, now)
            if machine is None:
                machine = self._machine(config, now, record_id)
            return await machine.handle_close(
                cmd.user_id,
                cmd.channel_id,
                requested=requested,
                note=options.note,
                require_note=self._require_note,
                attempt=attempt_number,
            )

        return await self._coordinator.execute(
            responder, action, render_close_success, render_error
        )

    async def _handle_status(self, cmd: SlashCommand, responder) -> bool:
        now = self._clock()

        async def action(attempt_number: int):
            bits = await self._directory.permission_bits(cmd.user_id)
            if not is_authorized(bits):
                raise NotAuthorized(cmd.user_id)
            config = self._servers.require(cmd.team_id)
            header = await self._ledger(config).read_range(
                config.document_id, header_range(month_key(now))
            )
            return StatusReport(document_url=config.document_url, header_found=bool(header))

        return await self._coordinator.execute(
            responder, action, render_status, render_error, private=True
        )
