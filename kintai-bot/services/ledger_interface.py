from abc import ABC, abstractmethod


class LedgerInterface(ABC):
    """勤怠台帳（スプレッドシート）の抽象インターフェース

    失敗時は BackendUnavailable（再試行対象）または BackendRejected を送出する。
    """

    @abstractmethod
    async def create_spreadsheet(self, title: str, month_key: str) -> tuple[str, str]:
        """スプレッドシートを新規作成し (document_id, document_url) を返す"""
        ...

    @abstractmethod
    async def ensure_monthly_sheet(self, document_id: str, month_key: str) -> None:
        """月次シート（YYYY-MM）とヘッダー行がなければ作成する"""
        ...

    @abstractmethod
    async def append_row(self, document_id: str, sheet_name: str, row: list[str]) -> None:
        """シート末尾に1行追加"""
        ...

    @abstractmethod
    async def update_range(self, document_id: str, cell_range: str, values: list[list[str]]) -> None:
        """A1形式の範囲を上書き"""
        ...

    @abstractmethod
    async def read_range(self, document_id: str, cell_range: str) -> list[list[str]]:
        """A1形式の範囲を読み取る（シートがなければ空リスト）"""
        ...
