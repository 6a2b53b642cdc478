import operator
from datetime import datetime
from typing import Annotated, Optional, TypedDict

from services.session_store import SessionRecord


class ClockState(TypedDict):
    user_id: str                         # Slack user_id
    channel_id: str                      # Slack channel_id
    display_name: str                    # ユーザー名
    project_label: str                   # チャンネル表示名（プロジェクト名）
    now: datetime                        # コマンド受付時刻（UTC、再試行でも同じ値）
    requested: Optional[datetime]        # 明示指定された時刻（UTC）
    record_id: str                       # コマンドごとのuuid（再試行でも同じ値）
    attempt: int                         # 試行回数（1始まり）
    session: Optional[SessionRecord]     # 対象の勤務
    prior: Optional[SessionRecord]       # 前回の試行で見つけた勤務（退勤の再試行用）
    end: Optional[datetime]              # 退勤時刻（UTC）
    duration: Optional[str]              # 労働時間 "H時間M分"
    outcome: Optional[str]               # "opened" / "closed" / 拒否理由
    conflict: Optional[SessionRecord]    # 既に開いている勤務
    trace: Annotated[list[str], operator.add]  # 通過したノード名


def initial_state(**values) -> dict:
    """グラフ実行用の初期状態"""
    base = {
        "user_id": "",
        "channel_id": "",
        "display_name": "",
        "project_label": "",
        "now": None,
        "requested": None,
        "record_id": "",
        "attempt": 1,
        "session": None,
        "prior": None,
        "end": None,
        "duration": None,
        "outcome": None,
        "conflict": None,
        "trace": [],
    }
    base.update(values)
    return base
