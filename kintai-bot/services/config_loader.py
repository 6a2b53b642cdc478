import copy

import yaml
from pathlib import Path

DEFAULT_CONFIG = {
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
    },
    "slack": {
        "allowed_channel_ids": ["*"],
        "admin_user_ids": [],
    },
    "session_store": {
        "backend": "ledger",
        "ttl_seconds": 86400,
        "purge_interval_minutes": 30,
    },
    "retry": {
        "max_attempts": 3,
        "base_delay_seconds": 1.0,
    },
    "ledger": {
        "backend": "sheets",
        "timeout_seconds": 10,
        "spreadsheet_title": "勤怠記録",
    },
    "commands": {
        "require_note": True,
    },
    "logging": {
        "level": "INFO",
    },
    "servers": {},
}


def _deep_merge(base: dict, override: dict) -> dict:
    """ベース設定にオーバーライドをマージする"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str = "config.yaml") -> dict:
    """YAML設定ファイルをロードし、デフォルト設定とマージして返す"""
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
        return _deep_merge(DEFAULT_CONFIG, user_config)
    return copy.deepcopy(DEFAULT_CONFIG)


def save_server_entry(path: str, team_id: str, entry: dict) -> None:
    """設定ファイルの servers セクションにワークスペースの台帳設定を書き込む"""
    config_path = Path(path)
    data = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    data.setdefault("servers", {})[team_id] = entry
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
