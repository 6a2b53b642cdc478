# services/webhook.py
import logging
from typing import Callable, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request

from services.command_dispatch import CommandDispatcher, SlashCommand
from services.messages import MESSAGES
from services.responder import InteractionResponder, create_responder

logger = logging.getLogger(__name__)


def create_app(
    dispatcher: CommandDispatcher,
    signing_secret: Optional[str] = None,
    responder_factory: Callable[[str], InteractionResponder] = create_responder,
) -> FastAPI:
    """スラッシュコマンドを受け付けるFastAPIアプリを生成する"""
    app = FastAPI(title="kintai-bot")

    verifier = None
    if signing_secret:
        from slack_sdk.signature import SignatureVerifier
        verifier = SignatureVerifier(signing_secret)

    @app.get("/")
    async def health():
        return {"status": "ok"}

    @app.post("/slack/commands")
    async def slash_command(request: Request, background_tasks: BackgroundTasks):
        body = await request.body()
        if verifier is not None and not verifier.is_valid_request(body, dict(request.headers)):
            logger.warning("Rejected request with invalid Slack signature")
            raise HTTPException(status_code=401, detail="invalid signature")

        form = await request.form()
        cmd = SlashCommand.from_form(form)

        if not dispatcher.supports(cmd.command):
            return {
                "response_type": "ephemeral",
                "text": MESSAGES["unknown_command"].format(command=cmd.command),
            }
        if not dispatcher.is_channel_allowed(cmd.channel_id):
            logger.info("Command %s from disallowed channel %s", cmd.command, cmd.channel_id)
            return {"response_type": "ephemeral", "text": MESSAGES["channel_not_allowed"]}

        background_tasks.add_task(dispatcher.run, cmd, responder_factory(cmd.response_url))
        return dispatcher.provisional_ack(cmd)

    return app
