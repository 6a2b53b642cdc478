# services/sheets_ledger.py
import asyncio
import logging
import os
from typing import Callable, Optional

from services.errors import BackendRejected, BackendUnavailable
from services.ledger_interface import LedgerInterface
from services.ledger_rows import HEADERS, full_range, header_range

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
SPREADSHEET_URL = "https://docs.google.com/spreadsheets/d/{document_id}"


class SheetsLedger(LedgerInterface):
    """Google Sheets API v4 による勤怠台帳

    各API呼び出しはワーカースレッドで実行し、ソケットにも timeout 秒のタイムアウトを設定する。
    待ち時間が timeout 秒を超えた場合も、送信済みのリクエストが終わるまで待ってから
    BackendUnavailable を送出する。再試行が始まる時点で、先の書き込みは
    反映済みか失敗済みになっている。
    401 を受けた場合はトークンを1回だけリフレッシュして同じ呼び出しを再実行する。
    """

    def __init__(
        self,
        token_path: str,
        timeout: float = 10.0,
        service_factory: Optional[Callable] = None,
    ):
        self._token_path = token_path
        self._timeout = timeout
        self._service_factory = service_factory
        self._creds = None
        self._service = None
        self._known_sheets: dict[str, set[str]] = {}

    def _load_credentials(self):
        from google.oauth2.credentials import Credentials
        from google.auth.transport.requests import Request

        if not os.path.exists(self._token_path):
            raise BackendRejected(f"認証トークンが見つかりません: {self._token_path}")

        creds = Credentials.from_authorized_user_file(self._token_path, SCOPES)
        if not creds.valid and creds.expired and creds.refresh_token:
            creds.refresh(Request())
            self._save_credentials(creds)
        return creds

    def _save_credentials(self, creds) -> None:
        with open(self._token_path, "w") as token:
            token.write(creds.to_json())

    def _get_service(self):
        """Sheets APIクライアントを取得（初回のみ生成）"""
        if self._service is None:
            if self._service_factory is not None:
                self._service = self._service_factory()
            else:
                from googleapiclient.discovery import build

                self._creds = self._load_credentials()
                self._service = build(
                    "sheets", "v4", http=self._new_http(), cache_discovery=False
                )
        return self._service

    def _new_http(self):
        """認証付きのHTTP接続（リクエストごとに新しく作る）"""
        import httplib2
        from google_auth_httplib2 import AuthorizedHttp

        return AuthorizedHttp(self._creds, http=httplib2.Http(timeout=self._timeout))

    async def _run_request(self, operation: str, request):
        kwargs = {} if self._service_factory is not None else {"http": self._new_http()}
        call = asyncio.ensure_future(asyncio.to_thread(request.execute, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            settled = await asyncio.gather(call, return_exceptions=True)
            logger.warning("%s finished after timeout: %r", operation, settled[0])
            raise BackendUnavailable(
                f"{operation}がタイムアウトしました（{self._timeout:g}秒）"
            ) from e

    def _refresh_credentials(self) -> None:
        """認証期限切れ時のトークン再取得。クライアントは作り直す"""
        from google.auth.transport.requests import Request

        if self._creds is None:
            self._creds = self._load_credentials()
        if self._creds.refresh_token:
            self._creds.refresh(Request())
            self._save_credentials(self._creds)
        if self._service_factory is None:
            self._service = None

    async def _execute(self, operation: str, make_request: Callable, missing_ok: bool = False):
        from google.auth.exceptions import RefreshError, TransportError
        from googleapiclient.errors import HttpError
        from httplib2 import HttpLib2Error

        for refreshed in (False, True):
            try:
                request = make_request(self._get_service())
                return await self._run_request(operation, request)
            except HttpError as e:
                status = e.resp.status
                if missing_ok and status == 400 and "Unable to parse range" in str(e):
                    return {}
                if status == 401 and not refreshed:
                    logger.info("%s: 401 received, refreshing credentials", operation)
                    try:
                        await asyncio.to_thread(self._refresh_credentials)
                    except RefreshError as refresh_error:
                        raise BackendRejected(
                            f"{operation}に失敗しました: 認証の更新に失敗しました"
                        ) from refresh_error
                    except (TransportError, HttpLib2Error, OSError) as refresh_error:
                        raise BackendUnavailable(
                            f"{operation}に失敗しました: {refresh_error}"
                        ) from refresh_error
                    continue
                if status >= 500 or status == 429:
                    raise BackendUnavailable(f"{operation}に失敗しました: HTTP {status}") from e
                raise BackendRejected(f"{operation}に失敗しました: HTTP {status}") from e
            except RefreshError as e:
                raise BackendRejected(f"{operation}に失敗しました: 認証の更新に失敗しました") from e
            except (TransportError, HttpLib2Error, OSError) as e:
                raise BackendUnavailable(f"{operation}に失敗しました: {e}") from e
        raise BackendRejected(f"{operation}に失敗しました: 認証エラーが続いています")

    async def _sheet_titles(self, document_id: str) -> set[str]:
        data = await self._execute(
            "スプレッドシート情報取得",
            lambda s: s.spreadsheets().get(
                spreadsheetId=document_id, fields="sheets.properties.title"
            ),
        )
        return {sheet["properties"]["title"] for sheet in data.get("sheets", [])}

    async def create_spreadsheet(self, title: str, month_key: str) -> tuple[str, str]:
        body = {
            "properties": {"title": title, "locale": "ja_JP", "timeZone": "Asia/Tokyo"},
            "sheets": [{"properties": {"title": month_key}}],
        }
        data = await self._execute(
            "スプレッドシート作成",
            lambda s: s.spreadsheets().create(
                body=body, fields="spreadsheetId,spreadsheetUrl"
            ),
        )
        document_id = data["spreadsheetId"]
        await self.update_range(document_id, header_range(month_key), [HEADERS])
        self._known_sheets.setdefault(document_id, set()).add(month_key)
        url = data.get("spreadsheetUrl") or SPREADSHEET_URL.format(document_id=document_id)
        return document_id, url

    async def ensure_monthly_sheet(self, document_id: str, month_key: str) -> None:
        known = self._known_sheets.setdefault(document_id, set())
        if month_key in known:
            return

        if month_key not in await self._sheet_titles(document_id):
            body = {"requests": [{"addSheet": {"properties": {"title": month_key}}}]}
            try:
                await self._execute(
                    "月次シート作成",
                    lambda s: s.spreadsheets().batchUpdate(spreadsheetId=document_id, body=body),
                )
                logger.info("Created monthly sheet %s in %s", month_key, document_id)
            except BackendRejected:
                # 別のリクエストが先に作成した場合は続行
                if month_key not in await self._sheet_titles(document_id):
                    raise

        header = await self.read_range(document_id, header_range(month_key))
        if not header:
            await self.update_range(document_id, header_range(month_key), [HEADERS])
        known.add(month_key)

    async def append_row(self, document_id: str, sheet_name: str, row: list[str]) -> None:
        await self._execute(
            "行の追加",
            lambda s: s.spreadsheets().values().append(
                spreadsheetId=document_id,
                range=full_range(sheet_name),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [row]},
            ),
        )

    async def update_range(self, document_id: str, cell_range: str, values: list[list[str]]) -> None:
        await self._execute(
            "範囲の更新",
            lambda s: s.spreadsheets().values().update(
                spreadsheetId=document_id,
                range=cell_range,
                valueInputOption="RAW",
                body={"values": values},
            ),
        )

    async def read_range(self, document_id: str, cell_range: str) -> list[list[str]]:
        data = await self._execute(
            "範囲の取得",
            lambda s: s.spreadsheets().values().get(spreadsheetId=document_id, range=cell_range),
            missing_ok=True,
        )
        return data.get("values", [])


def authorize_installed_app(client_secrets_path: str, token_path: str) -> None:
    """トークンファイルがない・無効な場合にブラウザでOAuth認可を行い保存する"""
    from google.oauth2.credentials import Credentials
    from google_auth_oauthlib.flow import InstalledAppFlow
    from google.auth.transport.requests import Request

    creds = None
    if os.path.exists(token_path):
        creds = Credentials.from_authorized_user_file(token_path, SCOPES)

    if creds and creds.valid:
        return

    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
    else:
        if not os.path.exists(client_secrets_path):
            raise FileNotFoundError(f"OAuthクライアント情報が見つかりません: {client_secrets_path}")
        flow = InstalledAppFlow.from_client_secrets_file(client_secrets_path, SCOPES)
        creds = flow.run_local_server(port=0)

    with open(token_path, "w") as token:
        token.write(creds.to_json())
    logger.info("Saved Google credentials to %s", token_path)
