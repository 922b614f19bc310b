"""Notification schemas - rule events and per-type channel configuration.

Channel configs were historically written with camelCase keys by the UI, so
every config accepts both camelCase and snake_case field names.
"""
import logging
from typing import Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..exceptions import ConfigurationError
from ..models.enums import ChannelType, NotificationEvent

logger = logging.getLogger(__name__)


class _ChannelConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WebhookConfig(_ChannelConfig):
    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()


class DiscordConfig(_ChannelConfig):
    webhook_url: str
    username: str = "PulseGuard"
    avatar_url: Optional[str] = None
    mention_role: Optional[str] = None
    mention_user: Optional[str] = None
    mention_everyone: bool = False


class SlackConfig(_ChannelConfig):
    webhook_url: str
    channel: Optional[str] = None
    username: str = "PulseGuard"
    icon_emoji: str = ":shield:"
    mention_channel: bool = False


class TelegramConfig(_ChannelConfig):
    bot_token: str
    chat_id: str
    disable_preview: bool = False

    @field_validator("chat_id", mode="before")
    @classmethod
    def chat_id_as_str(cls, v):
        return str(v)


class EmailConfig(_ChannelConfig):
    smtp_host: str
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_secure: bool = False  # implicit TLS; port 465 implies it
    use_starttls: bool = True
    from_email: str
    to_emails: List[str]

    @field_validator("to_emails", mode="before")
    @classmethod
    def split_recipients(cls, v):
        if isinstance(v, str):
            return [addr.strip() for addr in v.split(",") if addr.strip()]
        return v


ChannelConfig = Union[WebhookConfig, DiscordConfig, SlackConfig, TelegramConfig, EmailConfig]

CHANNEL_CONFIG_TYPES = {
    ChannelType.WEBHOOK: WebhookConfig,
    ChannelType.DISCORD: DiscordConfig,
    ChannelType.SLACK: SlackConfig,
    ChannelType.TELEGRAM: TelegramConfig,
    ChannelType.EMAIL: EmailConfig,
}


def parse_channel_config(channel_type: str, raw: Optional[str]) -> ChannelConfig:
    """Parse a stored channel config into the model for its type.

    Raises ConfigurationError for unknown types, malformed JSON or missing
    required fields.
    """
    try:
        config_type = CHANNEL_CONFIG_TYPES[ChannelType(channel_type)]
    except ValueError:
        raise ConfigurationError(f"Unsupported channel type: {channel_type}", source="channel")
    try:
        return config_type.model_validate_json(raw or "{}")
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid {channel_type} channel config: {e.errors()[0]['msg']}", source="channel"
        ) from e


_events_adapter = TypeAdapter(List[str])


def parse_rule_events(raw: Optional[str], rule_id: Optional[int] = None) -> Set[NotificationEvent]:
    """Parse a rule's stored events list.

    Unknown event names are dropped. Malformed JSON yields an empty set so the
    rule never matches.
    """
    if not raw:
        return set()
    try:
        names = _events_adapter.validate_json(raw)
    except ValidationError:
        logger.warning(f"Rule {rule_id} has malformed events JSON, ignoring rule")
        return set()

    events = set()
    for name in names:
        try:
            events.add(NotificationEvent(name))
        except ValueError:
            logger.warning(f"Rule {rule_id} lists unknown event '{name}'")
    return events


class ChannelTestResponse(BaseModel):
    """Result of sending a test notification."""
    channel_id: int
    success: bool
    error: Optional[str] = None
