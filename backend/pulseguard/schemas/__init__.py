"""Pydantic schemas for stored JSON and API responses."""
from .service import (
    CheckResultResponse,
    ServiceStateUpdate,
    parse_headers,
)
from .notification import (
    ChannelConfig,
    ChannelTestResponse,
    WebhookConfig,
    DiscordConfig,
    SlackConfig,
    TelegramConfig,
    EmailConfig,
    parse_channel_config,
    parse_rule_events,
)
from .monitoring import MonitoringStatus

__all__ = [
    "CheckResultResponse",
    "ServiceStateUpdate",
    "parse_headers",
    "ChannelConfig",
    "ChannelTestResponse",
    "WebhookConfig",
    "DiscordConfig",
    "SlackConfig",
    "TelegramConfig",
    "EmailConfig",
    "parse_channel_config",
    "parse_rule_events",
    "MonitoringStatus",
]
