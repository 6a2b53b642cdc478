import hashlib
import hmac
import time
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from services.webhook import create_app

FORM = {
    "command": "/start",
    "text": "9:00",
    "team_id": "T1",
    "channel_id": "C0001",
    "channel_name": "general",
    "user_id": "U1",
    "user_name": "alice",
    "response_url": "https://hooks.slack.com/commands/x",
}


def _make_dispatcher(supported=True, allowed=True):
    dispatcher = MagicMock()
    dispatcher.supports.return_value = supported
    dispatcher.is_channel_allowed.return_value = allowed
    dispatcher.provisional_ack.return_value = {"response_type": "in_channel", "text": "処理中..."}
    dispatcher.run = AsyncMock(return_value=True)
    return dispatcher


def test_health():
    client = TestClient(create_app(_make_dispatcher()))
    assert client.get("/").json() == {"status": "ok"}


def test_slash_command_acknowledges_and_runs_in_background():
    """仮応答を返し、バックグラウンドでコマンドを処理すること"""
    dispatcher = _make_dispatcher()
    responder = MagicMock()
    factory = MagicMock(return_value=responder)
    client = TestClient(create_app(dispatcher, responder_factory=factory))

    response = client.post("/slack/commands", data=FORM)

    assert response.status_code == 200
    assert response.json() == {"response_type": "in_channel", "text": "処理中..."}
    factory.assert_called_once_with("https://hooks.slack.com/commands/x")
    cmd = dispatcher.run.await_args.args[0]
    assert cmd.command == "/start"
    assert cmd.text == "9:00"
    assert dispatcher.run.await_args.args[1] is responder


def test_unknown_command_is_rejected_privately():
    dispatcher = _make_dispatcher(supported=False)
    client = TestClient(create_app(dispatcher))

    response = client.post("/slack/commands", data={**FORM, "command": "/foo"})

    assert response.json()["response_type"] == "ephemeral"
    assert "/foo" in response.json()["text"]
    dispatcher.run.assert_not_awaited()


def test_disallowed_channel_never_reaches_core():
    """許可されていないチャンネルからのコマンドは処理しないこと"""
    dispatcher = _make_dispatcher(allowed=False)
    client = TestClient(create_app(dispatcher))

    response = client.post("/slack/commands", data=FORM)

    assert response.json()["response_type"] == "ephemeral"
    dispatcher.run.assert_not_awaited()


def _signed_headers(secret, body):
    timestamp = str(int(time.time()))
    base = f"v0:{timestamp}:{body}".encode()
    signature = "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()
    return {
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": signature,
        "Content-Type": "application/x-www-form-urlencoded",
    }


def test_invalid_signature_is_rejected():
    dispatcher = _make_dispatcher()
    client = TestClient(create_app(dispatcher, signing_secret="secret"))

    response = client.post("/slack/commands", data=FORM)

    assert response.status_code == 401
    dispatcher.run.assert_not_awaited()


def test_valid_signature_is_accepted():
    dispatcher = _make_dispatcher()
    client = TestClient(create_app(dispatcher, signing_secret="secret", responder_factory=MagicMock()))
    body = "command=%2Fstart&team_id=T1&channel_id=C0001&user_id=U1&response_url="

    response = client.post("/slack/commands", content=body, headers=_signed_headers("secret", body))

    assert response.status_code == 200
    dispatcher.run.assert_awaited_once()
