import asyncio
import logging
import sys
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class InteractionResponder(ABC):
    """スラッシュコマンドの仮応答（処理中...）を確定させるインターフェース"""

    @abstractmethod
    async def replace(self, text: str, private: bool = False) -> bool:
        """仮応答を書き換える。private なら実行したユーザーにだけ見せる"""
        ...

    @abstractmethod
    async def delete(self) -> bool:
        """仮応答を削除する"""
        ...

    @abstractmethod
    async def send_private(self, text: str) -> bool:
        """実行したユーザーにだけ見えるメッセージを送る"""
        ...


class ConsoleResponder(InteractionResponder):
    """コンソール出力による応答（response_url がない場合のフォールバック）"""

    async def replace(self, text: str, private: bool = False) -> bool:
        print(f"[勤怠通知] {text}", file=sys.stdout)
        return True

    async def delete(self) -> bool:
        return True

    async def send_private(self, text: str) -> bool:
        print(f"[勤怠エラー] {text}", file=sys.stderr)
        return True


class SlackResponder(InteractionResponder):
    """Slackの response_url への応答"""

    def __init__(self, response_url: str, client=None):
        if client is None:
            from slack_sdk.webhook import WebhookClient
            client = WebhookClient(response_url)
        self._client = client

    async def _send(self, **kwargs) -> bool:
        response = await asyncio.to_thread(self._client.send, **kwargs)
        if response.status_code >= 400:
            logger.warning("response_url returned %s: %s", response.status_code, response.body)
            return False
        return True

    async def replace(self, text: str, private: bool = False) -> bool:
        response_type = "ephemeral" if private else "in_channel"
        return await self._send(text=text, response_type=response_type, replace_original=True)

    async def delete(self) -> bool:
        return await self._send(delete_original=True)

    async def send_private(self, text: str) -> bool:
        return await self._send(text=text, response_type="ephemeral", replace_original=False)


def create_responder(response_url: str) -> InteractionResponder:
    """response_url があればSlack、なければコンソールに応答する"""
    if response_url:
        return SlackResponder(response_url)
    return ConsoleResponder()
