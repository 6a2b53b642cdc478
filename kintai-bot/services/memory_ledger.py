import asyncio
import logging
import uuid

from services.errors import BackendRejected
from services.ledger_interface import LedgerInterface
from services.ledger_rows import HEADERS, parse_a1

logger = logging.getLogger(__name__)


class MemoryLedger(LedgerInterface):
    """プロセス内に保持する台帳。Google Sheetsなしでの動作確認用。"""

    def __init__(self):
        self._documents: dict[str, dict[str, list[list[str]]]] = {}
        self._lock = asyncio.Lock()

    def add_document(self, document_id: str) -> None:
        self._documents.setdefault(document_id, {})

    def sheet(self, document_id: str, sheet_name: str) -> list[list[str]]:
        return self._documents.get(document_id, {}).get(sheet_name, [])

    def _document(self, document_id: str) -> dict[str, list[list[str]]]:
        if document_id not in self._documents:
            raise BackendRejected(f"スプレッドシートが見つかりません: {document_id}")
        return self._documents[document_id]

    def _rows(self, document_id: str, sheet_name: str) -> list[list[str]]:
        sheets = self._document(document_id)
        if sheet_name not in sheets:
            raise BackendRejected(f"シートが見つかりません: {sheet_name}")
        return sheets[sheet_name]

    async def create_spreadsheet(self, title: str, month_key: str) -> tuple[str, str]:
        document_id = f"memory-{uuid.uuid4().hex[:12]}"
        async with self._lock:
            self._documents[document_id] = {month_key: [list(HEADERS)]}
        logger.info("Created in-memory spreadsheet %s (%s)", document_id, title)
        return document_id, f"memory://{document_id}"

    async def ensure_monthly_sheet(self, document_id: str, month_key: str) -> None:
        async with self._lock:
            sheets = self._document(document_id)
            rows = sheets.setdefault(month_key, [])
            if not rows:
                rows.append(list(HEADERS))

    async def append_row(self, document_id: str, sheet_name: str, row: list[str]) -> None:
        async with self._lock:
            self._rows(document_id, sheet_name).append([str(v) for v in row])

    async def update_range(self, document_id: str, cell_range: str, values: list[list[str]]) -> None:
        sheet_name, c1, r1, _, _ = parse_a1(cell_range)
        if r1 is None:
            raise BackendRejected(f"更新範囲には行番号が必要です: {cell_range}")
        async with self._lock:
            rows = self._rows(document_id, sheet_name)
            for offset, new_cells in enumerate(values):
                row_index = r1 + offset
                while len(rows) <= row_index:
                    rows.append([])
                row = rows[row_index]
                needed = c1 + len(new_cells)
                if len(row) < needed:
                    row.extend([""] * (needed - len(row)))
                row[c1:needed] = [str(v) for v in new_cells]

    async def read_range(self, document_id: str, cell_range: str) -> list[list[str]]:
        sheet_name, c1, r1, c2, r2 = parse_a1(cell_range)
        async with self._lock:
            rows = self._document(document_id).get(sheet_name, [])
            start = r1 if r1 is not None else 0
            stop = r2 + 1 if r2 is not None else len(rows)
            result = []
            for row in rows[start:stop]:
                cells = row[c1 : c2 + 1]
                # Sheets APIと同じく末尾の空セルは返さない
                while cells and cells[-1] == "":
                    cells = cells[:-1]
                result.append(list(cells))
            return result
