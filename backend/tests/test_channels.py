"""Tests for per-channel rendering and delivery."""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from pulseguard.exceptions import ConfigurationError, DeliveryError
from pulseguard.models.enums import NotificationEvent
from pulseguard.schemas.notification import (
    DiscordConfig,
    EmailConfig,
    SlackConfig,
    TelegramConfig,
    WebhookConfig,
    parse_channel_config,
)
from pulseguard.services.channels import ChannelSender, NotificationPayload
from pulseguard.services.email_sender import EmailSenderService

from conftest import T0, RecordingTransport


@pytest.fixture
def payload():
    return NotificationPayload(
        event=NotificationEvent.DOWN,
        message="Example API is down: HTTP 503 - Server Error",
        timestamp=T0,
        service={
            "id": 1,
            "name": "Example API",
            "type": "HTTP",
            "target": "https://example.com/health",
            "status": "offline",
            "response_time_ms": 120,
            "uptime_percent": 99.5,
            "last_checked_at": "2024-06-01T12:00:00Z",
        },
    )


class TestChannelConfig:
    def test_camel_case_keys_accepted(self):
        config = parse_channel_config("discord", '{"webhookUrl": "https://discord.test/hook", "mentionRole": "42"}')
        assert isinstance(config, DiscordConfig)
        assert config.webhook_url == "https://discord.test/hook"
        assert config.mention_role == "42"

    def test_email_recipients_from_comma_string(self):
        config = parse_channel_config(
            "email",
            '{"smtp_host": "smtp.test", "from_email": "pg@test", "to_emails": "a@test, b@test"}',
        )
        assert config.to_emails == ["a@test", "b@test"]

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError):
            parse_channel_config("pager", "{}")

    def test_malformed_json(self):
        with pytest.raises(ConfigurationError):
            parse_channel_config("webhook", "{url:")


class TestChannelSender:
    async def test_webhook_method_and_headers(self, payload):
        transport = RecordingTransport()
        config = WebhookConfig(url="https://hooks.test/in", method="put", headers={"Authorization": "Bearer t"})

        await ChannelSender(transport=transport).send("webhook", config, payload)

        [request] = transport.requests
        assert request.method == "PUT"
        assert request.headers["Authorization"] == "Bearer t"
        assert json.loads(request.content)["message"] == payload.message

    async def test_discord_embed_and_mention(self, payload):
        transport = RecordingTransport(status_code=204)
        config = DiscordConfig(webhook_url="https://discord.test/hook", mention_role="42")

        await ChannelSender(transport=transport).send("discord", config, payload)

        body = json.loads(transport.requests[0].content)
        assert body["content"] == "<@&42>"
        embed = body["embeds"][0]
        assert embed["color"] == 0xFF0000
        assert embed["description"] == payload.message
        assert {"name": "Uptime", "value": "99.50%", "inline": True} in embed["fields"]

    async def test_slack_attachment(self, payload):
        transport = RecordingTransport()
        config = SlackConfig(webhook_url="https://hooks.slack.test/x", channel="#ops", mention_channel=True)

        await ChannelSender(transport=transport).send("slack", config, payload)

        body = json.loads(transport.requests[0].content)
        assert body["channel"] == "#ops"
        attachment = body["attachments"][0]
        assert attachment["color"] == "#FF0000"
        assert attachment["pretext"] == "<!channel>"

    async def test_telegram_html_message(self, payload):
        transport = RecordingTransport(json_body={"ok": True, "result": {}})
        config = TelegramConfig(bot_token="123:abc", chat_id=-1001)

        await ChannelSender(transport=transport, telegram_api="https://tg.test").send("telegram", config, payload)

        [request] = transport.requests
        assert request.url.path == "/bot123:abc/sendMessage"
        body = json.loads(request.content)
        assert body["chat_id"] == "-1001"
        assert body["parse_mode"] == "HTML"
        assert "<b>Service:</b> Example API" in body["text"]

    async def test_telegram_api_rejection(self, payload):
        transport = RecordingTransport(json_body={"ok": False, "description": "chat not found"})
        config = TelegramConfig(bot_token="123:abc", chat_id="1")

        with pytest.raises(DeliveryError, match="chat not found"):
            await ChannelSender(transport=transport).send("telegram", config, payload)

    async def test_telegram_error_hides_token(self, payload):
        transport = RecordingTransport(status_code=401, json_body={"ok": False})
        config = TelegramConfig(bot_token="123:secret", chat_id="1")

        with pytest.raises(DeliveryError) as excinfo:
            await ChannelSender(transport=transport).send("telegram", config, payload)
        assert "secret" not in str(excinfo.value)
        assert excinfo.value.status_code == 401

    async def test_email_delegates_to_smtp_sender(self, payload):
        email_sender = MagicMock(spec=EmailSenderService)
        email_sender.send_email = AsyncMock()
        config = EmailConfig(smtp_host="smtp.test", from_email="pg@test", to_emails=["ops@test"])

        result = await ChannelSender(email_sender=email_sender).send("email", config, payload)

        assert result == {"recipients": 1}
        _, subject, text_body, html_body = email_sender.send_email.await_args.args
        assert subject.endswith("PulseGuard: Service Down - Example API")
        assert "Target: https://example.com/health" in text_body
        assert "Example API is down" in html_body

    async def test_network_error_becomes_delivery_error(self, payload):
        def handler(request):
            raise httpx.ConnectError("no route to host", request=request)

        with pytest.raises(DeliveryError, match="no route to host"):
            await ChannelSender(transport=httpx.MockTransport(handler)).send(
                "webhook", WebhookConfig(url="https://hooks.test"), payload
            )


class TestEmailSender:
    async def test_requires_recipients(self):
        config = EmailConfig(smtp_host="smtp.test", from_email="pg@test", to_emails=[])
        with pytest.raises(DeliveryError):
            await EmailSenderService().send_email(config, "subject", "body")

    async def test_smtp_failure_becomes_delivery_error(self):
        service = EmailSenderService()
        service._send_blocking = MagicMock(side_effect=ConnectionRefusedError("refused"))
        config = EmailConfig(smtp_host="smtp.test", from_email="pg@test", to_emails=["ops@test"])

        with pytest.raises(DeliveryError, match="Cannot reach smtp.test:587"):
            await service.send_email(config, "subject", "body")
