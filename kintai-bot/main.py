"""勤怠管理Bot - エントリーポイント"""
import asyncio
import logging
import os

import click
from dotenv import load_dotenv

from services.clock_time import month_key, utc_now
from services.command_dispatch import CommandDispatcher
from services.config_loader import load_config, save_server_entry
from services.ledger_session_store import LedgerSessionStore
from services.logging_cfg import configure_logging
from services.memory_ledger import MemoryLedger
from services.memory_session_store import MemorySessionStore
from services.permissions import SlackDirectory, StaticDirectory
from services.retry_coordinator import RetryCoordinator
from services.server_config import ServerConfigRepository
from schedulers.scheduler import SessionPurgeScheduler

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


def create_ledger_factory(config: dict):
    """設定に基づいて台帳の生成関数を返す"""
    ledger_config = config["ledger"]
    if ledger_config["backend"] == "memory":
        shared = MemoryLedger()

        def memory_factory(server):
            shared.add_document(server.document_id)
            return shared

        return memory_factory

    from services.sheets_ledger import SheetsLedger

    def sheets_factory(server):
        return SheetsLedger(server.credentials_path, timeout=ledger_config["timeout_seconds"])

    return sheets_factory


def create_store_factory(config: dict):
    """設定に基づいてセッションストアの生成関数を返す（memory の場合はストア本体も返す）"""
    store_config = config["session_store"]
    if store_config["backend"] == "memory":
        shared = MemorySessionStore(ttl_seconds=store_config["ttl_seconds"])
        return (lambda ledger, server: shared), shared

    def ledger_store_factory(ledger, server):
        return LedgerSessionStore(ledger, server.document_id)

    return ledger_store_factory, None


def create_dispatcher(config: dict):
    """設定に基づいてコマンドディスパッチャを生成"""
    slack_config = config["slack"]
    token = os.getenv("SLACK_BOT_TOKEN", "")
    admin_ids = slack_config.get("admin_user_ids") or []
    if token:
        directory = SlackDirectory(token=token, admin_user_ids=admin_ids)
    else:
        directory = StaticDirectory(admin_user_ids=admin_ids)

    retry_config = config["retry"]
    coordinator = RetryCoordinator(
        max_attempts=retry_config["max_attempts"],
        base_delay=retry_config["base_delay_seconds"],
    )
    store_factory, memory_store = create_store_factory(config)
    dispatcher = CommandDispatcher(
        servers=ServerConfigRepository(config["servers"]),
        ledger_factory=create_ledger_factory(config),
        store_factory=store_factory,
        directory=directory,
        coordinator=coordinator,
        require_note=config["commands"]["require_note"],
        allowed_channel_ids=slack_config.get("allowed_channel_ids") or ["*"],
    )
    return dispatcher, memory_store


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    help="設定ファイルのパス（既定: $KINTAI_CONFIG_PATH または config.yaml）",
)
@click.pass_context
def cli(ctx, config_path):
    """勤怠管理Bot"""
    load_dotenv()
    config_path = config_path or os.getenv("KINTAI_CONFIG_PATH", DEFAULT_CONFIG_PATH)
    config = load_config(config_path)
    configure_logging(config["logging"]["level"])
    ctx.obj = {"config": config, "config_path": config_path}


@cli.command()
@click.option("--host", default=None, help="待ち受けアドレス")
@click.option("--port", default=None, type=int, help="待ち受けポート")
@click.pass_context
def serve(ctx, host, port):
    """Slackのスラッシュコマンドを受け付けるサーバーを起動"""
    import uvicorn
    from services.webhook import create_app

    config = ctx.obj["config"]
    dispatcher, memory_store = create_dispatcher(config)
    app = create_app(dispatcher, signing_secret=os.getenv("SLACK_SIGNING_SECRET") or None)

    scheduler = None
    if memory_store is not None:
        interval = config["session_store"]["purge_interval_minutes"]
        scheduler = SessionPurgeScheduler(memory_store, interval_minutes=interval)
        scheduler.start()

    server_config = config["server"]
    host = host or server_config["host"]
    port = port or server_config["port"]
    logger.info("Listening for slash commands on %s:%d", host, port)
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_config=None,
        )
    finally:
        if scheduler is not None:
            scheduler.stop()


@cli.command("setup-sheet")
@click.argument("team_id")
@click.option("--token-path", default="token.json", help="Google認証トークンの保存先")
@click.option("--title", default=None, help="スプレッドシートのタイトル")
@click.pass_context
def setup_sheet(ctx, team_id, token_path, title):
    """ワークスペース用の勤怠スプレッドシートを作成して設定ファイルに登録"""
    from services.sheets_ledger import SheetsLedger, authorize_installed_app

    config = ctx.obj["config"]
    ledger_config = config["ledger"]
    authorize_installed_app(
        os.getenv("GOOGLE_CLIENT_SECRETS_PATH", "credentials.json"), token_path
    )

    ledger = SheetsLedger(token_path, timeout=ledger_config["timeout_seconds"])
    document_id, document_url = asyncio.run(
        ledger.create_spreadsheet(
            title or ledger_config["spreadsheet_title"], month_key(utc_now())
        )
    )
    save_server_entry(
        ctx.obj["config_path"],
        team_id,
        {
            "document_id": document_id,
            "document_url": document_url,
            "credentials_path": token_path,
        },
    )
    click.echo(f"スプレッドシートを作成しました: {document_url}")


if __name__ == "__main__":
    cli()
