from datetime import datetime
from typing import Optional


class ClockError(Exception):
    """勤怠コマンド処理で発生するエラーの基底クラス"""

    kind = "error"
    retryable = False


class InvalidTimeText(ClockError):
    kind = "parse_error"

    def __init__(self, time_text: Optional[str], date_text: Optional[str], reason: str):
        super().__init__(reason)
        self.time_text = time_text
        self.date_text = date_text
        self.reason = reason


class NoteRequired(ClockError):
    kind = "note_required"

    def __init__(self):
        super().__init__("作業内容が入力されていません")


class FutureTimeRejected(ClockError):
    kind = "future_time"

    def __init__(self, requested: datetime, now: datetime):
        super().__init__(f"未来の時刻は指定できません: {requested.isoformat()}")
        self.requested = requested
        self.now = now


class StartTooOld(ClockError):
    kind = "start_too_old"

    def __init__(self, requested: datetime, now: datetime):
        super().__init__(f"24時間以上前の時刻は指定できません: {requested.isoformat()}")
        self.requested = requested
        self.now = now


class AlreadyOpen(ClockError):
    kind = "already_open"

    def __init__(self, start: Optional[datetime], project_label: str = ""):
        super().__init__("既に勤務を開始しています")
        self.start = start
        self.project_label = project_label


class NotOpen(ClockError):
    kind = "not_open"

    def __init__(self):
        super().__init__("勤務が開始されていません")


class EndBeforeStart(ClockError):
    kind = "end_before_start"

    def __init__(self, start: datetime, end: datetime):
        super().__init__("終了時刻が開始時刻より前です")
        self.start = start
        self.end = end


class ConfigurationMissing(ClockError):
    kind = "config_missing"

    def __init__(self, guild_id: str):
        super().__init__(f"サーバー設定がありません: {guild_id}")
        self.guild_id = guild_id


class NotAuthorized(ClockError):
    kind = "not_authorized"

    def __init__(self, user_id: str):
        super().__init__(f"権限がありません: {user_id}")
        self.user_id = user_id


class BackendRejected(ClockError):
    """スプレッドシート側が恒久的なエラーを返した（再試行しても変わらない）"""

    kind = "backend_rejected"


class BackendUnavailable(ClockError):
    """通信エラー・タイムアウト・5xx（再試行対象）"""

    kind = "backend_unavailable"
    retryable = True


class TransientFailureExhausted(ClockError):
    kind = "exhausted"

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(str(last_error) or type(last_error).__name__)
        self.last_error = last_error
        self.attempts = attempts
