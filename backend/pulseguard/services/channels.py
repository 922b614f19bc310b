"""Channel senders - render a notification for each channel type and deliver it.

A sender makes exactly one outbound attempt and raises DeliveryError when the
channel is unreachable or answers with a non-2xx status.
"""
import html
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..exceptions import DeliveryError
from ..models.enums import ChannelType, NotificationEvent
from ..schemas.notification import (
    ChannelConfig,
    DiscordConfig,
    EmailConfig,
    SlackConfig,
    TelegramConfig,
    WebhookConfig,
)
from .email_sender import EmailSenderService, email_sender_service

logger = logging.getLogger(__name__)

EVENT_TITLES = {
    NotificationEvent.DOWN: "Service Down",
    NotificationEvent.UP: "Service Recovered",
    NotificationEvent.DEGRADED: "Service Degraded",
    NotificationEvent.SSL_EXPIRY: "SSL Certificate Expired",
    NotificationEvent.SSL_WARNING: "SSL Certificate Expiring Soon",
    NotificationEvent.CONTENT_MISMATCH: "Content Mismatch",
    NotificationEvent.TEST: "Test Notification",
}

EVENT_EMOJI = {
    NotificationEvent.DOWN: "\U0001F534",
    NotificationEvent.UP: "\U0001F7E2",
    NotificationEvent.DEGRADED: "\U0001F7E1",
    NotificationEvent.SSL_EXPIRY: "\U0001F7E0",
    NotificationEvent.SSL_WARNING: "\U0001F7E1",
    NotificationEvent.CONTENT_MISMATCH: "\U0001F7E0",
    NotificationEvent.TEST: "\U0001F535",
}

EVENT_COLORS = {
    NotificationEvent.DOWN: 0xFF0000,
    NotificationEvent.UP: 0x36A64F,
    NotificationEvent.DEGRADED: 0xFFD700,
    NotificationEvent.SSL_EXPIRY: 0xFF8C00,
    NotificationEvent.SSL_WARNING: 0xFFD700,
    NotificationEvent.CONTENT_MISMATCH: 0xFF8C00,
    NotificationEvent.TEST: 0x7289DA,
}

DEFAULT_COLOR = 0x7289DA
FOOTER = "PulseGuard Monitor"


@dataclass
class NotificationPayload:
    """Channel-independent content of one notification."""
    event: NotificationEvent
    message: str
    timestamp: datetime
    service: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return EVENT_TITLES.get(self.event, self.event.value)

    @property
    def emoji(self) -> str:
        return EVENT_EMOJI.get(self.event, "\U0001F514")

    @property
    def color(self) -> int:
        return EVENT_COLORS.get(self.event, DEFAULT_COLOR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.value,
            "timestamp": self.timestamp.isoformat() + "Z",
            "message": self.message,
            "service": self.service,
            "metadata": self.metadata,
        }

    def fields(self) -> Dict[str, str]:
        """Service facts shown by the chat and email renderers."""
        if not self.service:
            return {}
        facts = {
            "Service": str(self.service.get("name")),
            "Target": str(self.service.get("target") or "N/A"),
        }
        if self.service.get("response_time_ms") is not None:
            facts["Response time"] = f"{self.service['response_time_ms']}ms"
        if self.service.get("uptime_percent") is not None:
            facts["Uptime"] = f"{self.service['uptime_percent']:.2f}%"
        return facts


class ChannelSender:
    """Delivers a NotificationPayload to one channel."""

    def __init__(
        self,
        timeout: float = settings.notification_timeout_seconds,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        email_sender: EmailSenderService = email_sender_service,
        telegram_api: str = "https://api.telegram.org",
    ):
        self.timeout = timeout
        self.transport = transport
        self.email_sender = email_sender
        self.telegram_api = telegram_api.rstrip("/")

    async def send(self, channel_type: str, config: ChannelConfig, payload: NotificationPayload) -> Dict[str, Any]:
        """Deliver payload. Returns delivery metadata, raises DeliveryError."""
        handlers = {
            ChannelType.WEBHOOK: self._send_webhook,
            ChannelType.DISCORD: self._send_discord,
            ChannelType.SLACK: self._send_slack,
            ChannelType.TELEGRAM: self._send_telegram,
            ChannelType.EMAIL: self._send_email,
        }
        handler = handlers[ChannelType(channel_type)]
        logger.debug(f"Delivering '{payload.event.value}' via {channel_type}")
        return await handler(config, payload)

    async def _request(self, method: str, url: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"Timeout after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise DeliveryError(f"HTTP {response.status_code}: {response.reason_phrase}", status_code=response.status_code)
        return response

    async def _send_webhook(self, config: WebhookConfig, payload: NotificationPayload) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "PulseGuard-Webhook/1.0",
            **config.headers,
        }
        response = await self._request(config.method, config.url, payload.to_dict(), headers)
        return {"status_code": response.status_code}

    async def _send_discord(self, config: DiscordConfig, payload: NotificationPayload) -> Dict[str, Any]:
        embed = {
            "title": f"{payload.emoji} {payload.title}",
            "description": payload.message,
            "color": payload.color,
            "fields": [{"name": name, "value": value, "inline": True} for name, value in payload.fields().items()],
            "timestamp": payload.timestamp.isoformat() + "Z",
            "footer": {"text": FOOTER},
        }

        content = ""
        if config.mention_role:
            content = f"<@&{config.mention_role}>"
        elif config.mention_user:
            content = f"<@{config.mention_user}>"
        elif config.mention_everyone:
            content = "@everyone"

        body = {"content": content, "username": config.username, "embeds": [embed]}
        if config.avatar_url:
            body["avatar_url"] = config.avatar_url

        response = await self._request("POST", config.webhook_url, body)
        return {"status_code": response.status_code}

    async def _send_slack(self, config: SlackConfig, payload: NotificationPayload) -> Dict[str, Any]:
        attachment = {
            "color": f"#{payload.color:06X}",
            "pretext": "<!channel>" if config.mention_channel else "",
            "title": f"{payload.emoji} {payload.title}",
            "text": payload.message,
            "fields": [{"title": name, "value": value, "short": True} for name, value in payload.fields().items()],
            "footer": FOOTER,
            "ts": int(payload.timestamp.timestamp()),
        }
        body = {"username": config.username, "icon_emoji": config.icon_emoji, "attachments": [attachment]}
        if config.channel:
            body["channel"] = config.channel

        response = await self._request("POST", config.webhook_url, body)
        return {"status_code": response.status_code}

    async def _send_telegram(self, config: TelegramConfig, payload: NotificationPayload) -> Dict[str, Any]:
        lines = [f"{payload.emoji} <b>{html.escape(payload.title)}</b>", "", html.escape(payload.message), ""]
        for name, value in payload.fields().items():
            lines.append(f"<b>{html.escape(name)}:</b> {html.escape(value)}")
        lines.append("")
        lines.append(f"<i>{FOOTER}</i>")

        body = {
            "chat_id": config.chat_id,
            "text": "\n".join(lines),
            "parse_mode": "HTML",
            "disable_web_page_preview": config.disable_preview,
        }
        url = f"{self.telegram_api}/bot{config.bot_token}/sendMessage"
        try:
            response = await self._request("POST", url, body)
        except DeliveryError as e:
            # Never log or store the URL, it contains the bot token
            raise DeliveryError(f"Telegram API error: {e}", status_code=e.status_code) from None

        result = response.json()
        if not result.get("ok", False):
            raise DeliveryError(f"Telegram API error: {result.get('description', 'unknown error')}")
        return {"status_code": response.status_code}

    async def _send_email(self, config: EmailConfig, payload: NotificationPayload) -> Dict[str, Any]:
        service_name = payload.service.get("name") if payload.service else None
        subject = f"{payload.emoji} PulseGuard: {payload.title}"
        if service_name:
            subject = f"{subject} - {service_name}"

        facts = payload.fields()
        text_lines = [payload.title, "", payload.message, ""]
        text_lines.extend(f"{name}: {value}" for name, value in facts.items())
        text_lines.append(f"Time: {payload.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}")

        rows = "".join(
            f"<tr><td><b>{html.escape(name)}</b></td><td>{html.escape(value)}</td></tr>"
            for name, value in facts.items()
        )
        html_body = (
            f'<div style="font-family:sans-serif;max-width:600px">'
            f'<h2 style="background:#{payload.color:06X};color:#fff;padding:16px;margin:0">'
            f"{payload.emoji} {html.escape(payload.title)}</h2>"
            f'<div style="padding:16px;border:1px solid #ddd">'
            f"<p>{html.escape(payload.message)}</p><table>{rows}</table>"
            f'<p style="font-size:12px;color:#666">{payload.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")}</p>'
            f"</div><p style=\"font-size:12px;color:#999\">Sent by {FOOTER}</p></div>"
        )

        await self.email_sender.send_email(config, subject, "\n".join(text_lines), html_body)
        return {"recipients": len(config.to_emails)}
