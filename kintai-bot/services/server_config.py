from dataclasses import dataclass
from typing import Optional

from services.errors import ConfigurationMissing


@dataclass(frozen=True)
class ServerConfig:
    """ワークスペース（team_id）ごとの台帳設定"""

    guild_id: str
    document_id: str
    document_url: str = ""
    credentials_path: str = "token.json"


class ServerConfigRepository:
    """設定ファイルの servers セクションからワークスペース設定を引く"""

    def __init__(self, servers: Optional[dict] = None):
        self._servers = servers or {}

    def has_config(self, guild_id: str) -> bool:
        return self.get_config(guild_id) is not None

    def get_config(self, guild_id: str) -> Optional[ServerConfig]:
        entry = self._servers.get(guild_id)
        if not entry or not entry.get("document_id"):
            return None
        return ServerConfig(
            guild_id=guild_id,
            document_id=entry["document_id"],
            document_url=entry.get("document_url", ""),
            credentials_path=entry.get("credentials_path", "token.json"),
        )

    def require(self, guild_id: str) -> ServerConfig:
        config = self.get_config(guild_id)
        if config is None:
            raise ConfigurationMissing(guild_id)
        return config
