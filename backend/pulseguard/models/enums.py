"""Closed value sets shared by models, probes and notifications."""
from enum import Enum


class ServiceType(str, Enum):
    HTTP = "HTTP"
    HTTPS = "HTTPS"
    PING = "PING"
    DNS = "DNS"
    TCP = "TCP"
    SSL = "SSL"


class ServiceStatus(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    DEGRADED = "degraded"
    OFFLINE = "offline"
    TIMEOUT = "timeout"


# Statuses that count as available for uptime purposes
AVAILABLE_STATUSES = frozenset({ServiceStatus.ONLINE, ServiceStatus.DEGRADED})

# Statuses that mean the service is down
DOWN_STATUSES = frozenset({ServiceStatus.OFFLINE, ServiceStatus.TIMEOUT})


class NotificationEvent(str, Enum):
    DOWN = "down"
    UP = "up"
    DEGRADED = "degraded"
    SSL_EXPIRY = "ssl_expiry"
    SSL_WARNING = "ssl_warning"
    CONTENT_MISMATCH = "content_mismatch"
    TEST = "test"


class ChannelType(str, Enum):
    WEBHOOK = "webhook"
    DISCORD = "discord"
    SLACK = "slack"
    TELEGRAM = "telegram"
    EMAIL = "email"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


def is_available(status) -> bool:
    """True for statuses that count toward online time."""
    return ServiceStatus(status) in AVAILABLE_STATUSES


def is_down(status) -> bool:
    return ServiceStatus(status) in DOWN_STATUSES
