# services/messages.py
from services.clock_time import ACCEPTED_DATE_FORMATS, ACCEPTED_TIME_FORMATS, format_jst
from services.errors import (
    AlreadyOpen,
    ClockError,
    EndBeforeStart,
    InvalidTimeText,
    TransientFailureExhausted,
)

MESSAGES = {
    "processing": "処理中...",
    "unknown_command": "不明なコマンドです: {command}",
    "channel_not_allowed": "このチャンネルでは勤怠コマンドを使用できません。",
    "opened": "✅ *{project}* で勤務を開始しました\n開始時刻: {start}",
    "closed": (
        "🏁 *{project}* の勤務を終了しました\n"
        "開始時刻: {start}\n終了時刻: {end}\n勤務時間: {duration}"
    ),
    "closed_note": "\n作業内容: {note}",
    "status": "📄 勤怠スプレッドシート: {url}\n接続状態: {state}",
    "status_connected": "正常",
    "status_missing_header": "接続済み（今月のシートはまだありません）",
    "parse_error": "❌ 時刻の形式が正しくありません（{reason}）\n使用できる形式:\n{formats}",
    "note_required": "❌ 作業内容を入力してください。例: `/end 資料作成` / `/end 18:00 資料作成` / `/end todo=資料作成 time=18:00`",
    "future_time": "❌ 未来の時刻は指定できません（指定: {requested}）",
    "start_too_old": "❌ 24時間以上前の時刻は指定できません（指定: {requested}）",
    "already_open": "❌ 既に勤務を開始しています（開始時刻: {start}）",
    "already_open_project": "❌ 既に *{project}* で勤務を開始しています（開始時刻: {start}）",
    "not_open": "❌ 勤務が開始されていません。先に `/start` を実行してください。",
    "end_before_start": "❌ 終了時刻が開始時刻より前です（開始: {start} / 終了: {end}）",
    "config_missing": "❌ このワークスペースは勤怠スプレッドシートが未設定です。管理者に連絡してください。",
    "not_authorized": "❌ このコマンドは管理者のみ実行できます。",
    "backend_rejected": "❌ スプレッドシートへの書き込みが拒否されました（{detail}）",
    "exhausted": "❌ 処理に失敗しました。時間をおいて再度お試しください（エラー: {detail}）",
    "unexpected": "❌ 予期しないエラーが発生しました。管理者に連絡してください。",
}


def _format_list() -> str:
    lines = ["時刻: " + " / ".join(ACCEPTED_TIME_FORMATS)]
    lines.append("日付: " + " / ".join(ACCEPTED_DATE_FORMATS))
    return "\n".join(f"• {line}" for line in lines)


def render_open_success(result) -> str:
    session = result.session
    return MESSAGES["opened"].format(project=session.project_label, start=format_jst(session.start))


def render_close_success(result) -> str:
    session = result.session
    text = MESSAGES["closed"].format(
        project=session.project_label,
        start=format_jst(session.start),
        end=format_jst(result.end),
        duration=result.duration,
    )
    if result.note:
        text += MESSAGES["closed_note"].format(note=result.note)
    return text


def render_status(report) -> str:
    state = MESSAGES["status_connected"] if report.header_found else MESSAGES["status_missing_header"]
    return MESSAGES["status"].format(url=report.document_url, state=state)


def render_error(error: BaseException) -> str:
    """エラーを本人向けメッセージに変換する"""
    if not isinstance(error, ClockError):
        return MESSAGES["unexpected"]

    if isinstance(error, InvalidTimeText):
        return MESSAGES["parse_error"].format(reason=error.reason, formats=_format_list())
    if isinstance(error, AlreadyOpen):
        start = format_jst(error.start) if error.start else "不明"
        if error.project_label:
            return MESSAGES["already_open_project"].format(project=error.project_label, start=start)
        return MESSAGES["already_open"].format(start=start)
    if isinstance(error, EndBeforeStart):
        return MESSAGES["end_before_start"].format(
            start=format_jst(error.start), end=format_jst(error.end)
        )
    if isinstance(error, TransientFailureExhausted):
        return MESSAGES["exhausted"].format(detail=error)
    if error.kind in ("future_time", "start_too_old"):
        return MESSAGES[error.kind].format(requested=format_jst(error.requested))
    if error.kind in ("backend_rejected", "backend_unavailable"):
        return MESSAGES["backend_rejected"].format(detail=error)
    return MESSAGES.get(error.kind, MESSAGES["unexpected"])
