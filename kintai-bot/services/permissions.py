# services/permissions.py
import asyncio
import enum
import logging
from typing import Iterable

logger = logging.getLogger(__name__)


class Permission(enum.IntFlag):
    NONE = 0
    ADMINISTRATOR = 1 << 3
    MANAGE_GUILD = 1 << 5


def is_authorized(permission_bits: int, required: Permission = Permission.ADMINISTRATOR) -> bool:
    """必要な権限ビットがすべて立っているか"""
    return (Permission(permission_bits) & required) == required


def fallback_channel_label(channel_id: str) -> str:
    return f"チャンネル_{channel_id[-4:]}"


class StaticDirectory:
    """設定ファイルの管理者リストと受信したチャンネル名だけで判定する"""

    def __init__(self, admin_user_ids: Iterable[str] = ()):
        self._admins = set(admin_user_ids)

    async def permission_bits(self, user_id: str) -> Permission:
        if user_id in self._admins:
            return Permission.ADMINISTRATOR | Permission.MANAGE_GUILD
        return Permission.NONE

    async def channel_label(self, channel_id: str, channel_name: str = "") -> str:
        return channel_name or fallback_channel_label(channel_id)


class SlackDirectory(StaticDirectory):
    """Slack Web API（users.info / conversations.info）で権限とチャンネル名を解決する"""

    def __init__(self, token: str, admin_user_ids: Iterable[str] = (), client=None):
        super().__init__(admin_user_ids)
        if client is None:
            from slack_sdk import WebClient
            client = WebClient(token=token)
        self._client = client

    async def permission_bits(self, user_id: str) -> Permission:
        from slack_sdk.errors import SlackApiError

        bits = await super().permission_bits(user_id)
        try:
            response = await asyncio.to_thread(self._client.users_info, user=user_id)
        except SlackApiError as e:
            logger.warning("users.info failed for %s: %s", user_id, e.response.get("error"))
            return bits

        user = response["user"]
        if user.get("is_owner") or user.get("is_primary_owner"):
            bits |= Permission.ADMINISTRATOR | Permission.MANAGE_GUILD
        elif user.get("is_admin"):
            bits |= Permission.ADMINISTRATOR
        return bits

    async def channel_label(self, channel_id: str, channel_name: str = "") -> str:
        from slack_sdk.errors import SlackApiError

        try:
            response = await asyncio.to_thread(self._client.conversations_info, channel=channel_id)
        except SlackApiError as e:
            logger.warning("conversations.info failed for %s: %s", channel_id, e.response.get("error"))
            return await super().channel_label(channel_id, channel_name)

        name = response["channel"].get("name")
        return name or await super().channel_label(channel_id, channel_name)
