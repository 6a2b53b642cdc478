# services/clock_time.py
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

# 組織タイムゾーン（JST固定。夏時間なし）
JST = timezone(timedelta(hours=9), "JST")

DISPLAY_FORMAT = "%Y/%m/%d %H:%M:%S"

ACCEPTED_TIME_FORMATS = ["09:00 (HH:MM形式)", "0900 (HHMM形式)", "900 (HMM形式)"]
ACCEPTED_DATE_FORMATS = [
    "2026-03-15 (YYYY-MM-DD形式)",
    "20260315 (YYYYMMDD形式)",
    "today / yesterday",
    "-1, 0, 1 (今日からの相対日数)",
]

_COLON_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")
_COMPACT_TIME = re.compile(r"^(\d{1,2})(\d{2})$")
_DASH_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_RELATIVE_DATE = re.compile(r"^([+-]?\d{1,2})$")
_LEDGER_DATETIME = re.compile(
    r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?$"
)


@dataclass
class ParseError:
    """時刻・日付文字列の解析失敗（例外ではなく値として返す）"""

    reason: str
    text: str = ""


def utc_now() -> datetime:
    """テスト時にモック可能な現在時刻取得"""
    return datetime.now(timezone.utc)


def to_jst(instant: datetime) -> datetime:
    return instant.astimezone(JST)


def parse_time_text(time_text: str) -> Union[time, ParseError]:
    """HH:MM / HHMM / HMM 形式の時刻を解析する"""
    text = time_text.strip()
    match = _COLON_TIME.match(text)
    if match is None and len(text) in (3, 4):
        match = _COMPACT_TIME.match(text)
    if match is None:
        return ParseError("時刻形式が正しくありません", time_text)

    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return ParseError("時刻の範囲が正しくありません", time_text)
    return time(hour, minute)


def parse_date_text(date_text: str, now: datetime) -> Union[date, ParseError]:
    """日付文字列を解析する（today/yesterday/相対日数はJSTの今日基準）"""
    text = date_text.strip().lower()
    today = to_jst(now).date()

    if text == "today":
        return today
    if text == "yesterday":
        return today - timedelta(days=1)

    match = _DASH_DATE.match(text) or _COMPACT_DATE.match(text)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return ParseError("存在しない日付です", date_text)

    match = _RELATIVE_DATE.match(text)
    if match:
        return today + timedelta(days=int(match.group(1)))

    return ParseError("日付形式が正しくありません", date_text)


def parse_clock_time(
    time_text: Optional[str] = None,
    date_text: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Union[datetime, ParseError]:
    """ユーザー指定の時刻・日付をJSTとして解釈し、UTCの絶対時刻を返す

    どちらも未指定の場合は now をそのまま返す。
    日付のみ指定された場合は、その日の現在時刻（JST、分単位）を使う。
    """
    if now is None:
        now = utc_now()
    if not time_text and not date_text:
        return now

    local_now = to_jst(now)

    if date_text:
        target_date = parse_date_text(date_text, now)
        if isinstance(target_date, ParseError):
            return target_date
    else:
        target_date = local_now.date()

    if time_text:
        target_time = parse_time_text(time_text)
        if isinstance(target_time, ParseError):
            return target_time
    else:
        target_time = time(local_now.hour, local_now.minute)

    local = datetime.combine(target_date, target_time, tzinfo=JST)
    return local.astimezone(timezone.utc)


def is_future_relative_to(instant: datetime, now: datetime) -> bool:
    return instant > now


def format_jst(instant: datetime) -> str:
    """YYYY/MM/DD HH:MM:SS（JST）"""
    return to_jst(instant).strftime(DISPLAY_FORMAT)


def parse_jst_text(text: str) -> Optional[datetime]:
    """台帳セルの日時文字列（JST）をUTCの絶対時刻に戻す。解析できなければNone"""
    match = _LEDGER_DATETIME.match((text or "").strip())
    if match is None:
        return None
    year, month, day, hour, minute = (int(g) for g in match.groups()[:5])
    second = int(match.group(6) or 0)
    try:
        local = datetime(year, month, day, hour, minute, second, tzinfo=JST)
    except ValueError:
        return None
    return local.astimezone(timezone.utc)


def format_duration(start: datetime, end: datetime) -> str:
    """労働時間を「H時間M分」で返す（秒は切り捨て）"""
    total_minutes = max(int((end - start).total_seconds()) // 60, 0)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}時間{minutes}分"


def month_key(instant: datetime) -> str:
    """台帳の月次シート名（JSTのYYYY-MM）"""
    return to_jst(instant).strftime("%Y-%m")


def previous_month_key(instant: datetime) -> str:
    first_of_month = to_jst(instant).replace(day=1)
    return (first_of_month - timedelta(days=1)).strftime("%Y-%m")
