# services/ledger_rows.py
import re
from typing import Iterator, Optional

from services.clock_time import format_jst, parse_jst_text
from services.session_store import SessionRecord

# 台帳のカラム定義（A〜H）
PROJECT = 0      # A: プロジェクト名（チャンネル名）
USERNAME = 1     # B: ユーザー名
DURATION = 2     # C: 差分（労働時間）
START_TIME = 3   # D: 開始時刻
END_TIME = 4     # E: 終了時刻
CHANNEL_ID = 5   # F: channel_id
USER_ID = 6      # G: user_id
RECORD_ID = 7    # H: uuid

HEADERS = [
    "プロジェクト名",
    "ユーザー名",
    "差分",
    "開始時刻",
    "終了時刻",
    "channel_id",
    "user_id",
    "uuid",
]
COLUMN_COUNT = len(HEADERS)
LAST_COLUMN = "H"

_A1_RANGE = re.compile(
    r"^(?:'?(?P<sheet>[^'!]+)'?!)?(?P<c1>[A-Z]+)(?P<r1>\d*)(?::(?P<c2>[A-Z]+)(?P<r2>\d*))?$"
)


def a1(sheet_name: str, cells: str) -> str:
    """シート名付きのA1範囲（'2026-03'!A:H）"""
    return f"'{sheet_name}'!{cells}"


def full_range(sheet_name: str) -> str:
    return a1(sheet_name, f"A:{LAST_COLUMN}")


def header_range(sheet_name: str) -> str:
    return a1(sheet_name, f"A1:{LAST_COLUMN}1")


def close_range(sheet_name: str, row_number: int) -> str:
    """差分〜終了時刻（C〜E列）"""
    return a1(sheet_name, f"C{row_number}:E{row_number}")


def column_index(letters: str) -> int:
    index = 0
    for ch in letters:
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def parse_a1(cell_range: str) -> tuple[str, int, Optional[int], int, Optional[int]]:
    """A1範囲を (sheet, 開始列, 開始行, 終了列, 終了行) に分解する（0始まり、行省略はNone）"""
    match = _A1_RANGE.match(cell_range.strip())
    if match is None:
        raise ValueError(f"Unsupported A1 range: {cell_range}")
    sheet = match.group("sheet") or ""
    c1 = column_index(match.group("c1"))
    r1 = int(match.group("r1")) - 1 if match.group("r1") else None
    c2 = column_index(match.group("c2")) if match.group("c2") else c1
    if match.group("c2"):
        r2 = int(match.group("r2")) - 1 if match.group("r2") else None
    else:
        r2 = r1
    return sheet, c1, r1, c2, r2


def pad_row(row: list) -> list[str]:
    """Sheets APIは末尾の空セルを省略するので8列に揃える"""
    cells = ["" if v is None else str(v) for v in row]
    return cells + [""] * (COLUMN_COUNT - len(cells))


def build_open_row(session: SessionRecord) -> list[str]:
    return [
        session.project_label,
        session.display_name,
        "",
        format_jst(session.start),
        "",
        session.channel_id,
        session.user_id,
        session.record_id,
    ]


def build_close_cells(session: SessionRecord, end_text: str, duration: str) -> list[list[str]]:
    return [[duration, format_jst(session.start), end_text]]


def session_from_row(row: list, sheet_name: str) -> Optional[SessionRecord]:
    """台帳の行からセッションを復元する。開始時刻が読めない行はNone"""
    cells = pad_row(row)
    start = parse_jst_text(cells[START_TIME])
    if start is None:
        return None
    return SessionRecord(
        user_id=cells[USER_ID],
        channel_id=cells[CHANNEL_ID],
        display_name=cells[USERNAME],
        project_label=cells[PROJECT],
        start=start,
        record_id=cells[RECORD_ID],
        sheet_name=sheet_name,
        end=parse_jst_text(cells[END_TIME]),
    )


def find_rows_by_record_id(values: list[list], record_id: str) -> list[tuple[int, list[str]]]:
    """record_id の行をすべて (シート上の行番号, 行) で返す。ヘッダー行は除外

    タイムアウトした追記がサーバー側で遅れて反映された場合、同じ record_id の行が複数ありうる。
    """
    found = []
    for index in range(1, len(values)):
        cells = pad_row(values[index])
        if cells[RECORD_ID] == record_id:
            found.append((index + 1, cells))
    return found


def find_row_by_record_id(values: list[list], record_id: str) -> Optional[tuple[int, list[str]]]:
    found = find_rows_by_record_id(values, record_id)
    return found[0] if found else None


def iter_open_rows(
    values: list[list], user_id: str, channel_id: str
) -> Iterator[tuple[int, list[str]]]:
    """終了時刻が空の行を下（新しい行）から順に返す

    同じ record_id の別の行が終了済みなら、その勤務は閉じているので返さない。
    """
    closed = {
        cells[RECORD_ID]
        for cells in map(pad_row, values[1:])
        if cells[END_TIME] and cells[RECORD_ID]
    }
    for index in range(len(values) - 1, 0, -1):
        cells = pad_row(values[index])
        if (
            cells[USER_ID] == user_id
            and cells[CHANNEL_ID] == channel_id
            and cells[END_TIME] == ""
            and cells[RECORD_ID] not in closed
        ):
            yield index + 1, cells
