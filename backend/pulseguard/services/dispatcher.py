"""Notification dispatcher - turns status transitions into channel deliveries."""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from ..exceptions import ConfigurationError, DeliveryError
from ..models import NotificationChannel, NotificationHistory, Service
from ..models.enums import DeliveryStatus, NotificationEvent, ServiceStatus, is_down
from ..schemas.notification import parse_channel_config, parse_rule_events
from ..utils.clock import utcnow
from .channels import ChannelSender, NotificationPayload
from .checker import CheckResult
from .repository import MonitorRepository

logger = logging.getLogger(__name__)


class Transition(NamedTuple):
    event: NotificationEvent
    # True while a failure streak persists; fires once per streak and rule
    repeat: bool = False


def classify_transition(previous: Optional[str], new: str) -> Optional[Transition]:
    """Compare the previous and new status of a service.

    Returns None when there is nothing to report: no previous status yet, or
    the status did not change.
    """
    if previous is None:
        return None
    previous = ServiceStatus(previous)
    new = ServiceStatus(new)
    if previous == ServiceStatus.UNKNOWN:
        return None

    if is_down(new):
        return Transition(NotificationEvent.DOWN, repeat=is_down(previous))
    if new == ServiceStatus.ONLINE and is_down(previous):
        return Transition(NotificationEvent.UP)
    if new == ServiceStatus.DEGRADED and previous != ServiceStatus.DEGRADED:
        return Transition(NotificationEvent.DEGRADED)
    return None


def service_snapshot(service: Service) -> Dict[str, Any]:
    """Service fields included in every notification payload."""
    return {
        "id": service.id,
        "name": service.name,
        "type": service.type,
        "target": service.target,
        "status": service.status,
        "response_time_ms": service.response_time_ms,
        "uptime_percent": service.uptime_percent,
        "last_checked_at": service.last_checked_at.isoformat() + "Z" if service.last_checked_at else None,
    }


def build_message(event: NotificationEvent, service: Optional[Service], result: Optional[CheckResult], metadata: Dict[str, Any]) -> str:
    name = service.name if service else "PulseGuard"
    detail = result.message if result else None

    if event == NotificationEvent.DOWN:
        return f"{name} is down: {detail}" if detail else f"{name} is down"
    if event == NotificationEvent.UP:
        return f"{name} is back online"
    if event == NotificationEvent.DEGRADED:
        return f"{name} is degraded: {detail}" if detail else f"{name} is degraded"
    if event == NotificationEvent.SSL_EXPIRY:
        return f"SSL certificate for {name} has expired"
    if event == NotificationEvent.SSL_WARNING:
        return f"SSL certificate for {name} expires in {metadata.get('days_remaining')} days"
    if event == NotificationEvent.CONTENT_MISMATCH:
        return f"Content check failed for {name}: expected content not found"
    return "This is a test notification from PulseGuard. Your channel is configured correctly."


class NotificationDispatcher:
    """Matches rules for an event, applies cooldown and threshold, delivers and records."""

    def __init__(
        self,
        repository: MonitorRepository,
        sender: Optional[ChannelSender] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.sender = sender or ChannelSender()
        self.clock = clock

    async def dispatch(
        self,
        service: Service,
        event: NotificationEvent,
        result: Optional[CheckResult] = None,
        now: Optional[datetime] = None,
        repeat: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Deliver event to every matching rule of service.

        Returns the number of successful deliveries. Delivery failures are
        recorded in history; persistence errors propagate.
        """
        now = now or self.clock()
        metadata = dict(metadata or {})
        if result is not None:
            metadata.setdefault("status", ServiceStatus(result.status).value)
            metadata.setdefault("response_time_ms", result.response_time_ms)
            metadata.setdefault("check_message", result.message)
            if result.status_code is not None:
                metadata.setdefault("status_code", result.status_code)

        rules = await self.repository.find_enabled_rules_for_service(service.id)
        if not rules:
            return 0

        payload = NotificationPayload(
            event=event,
            message=build_message(event, service, result, metadata),
            timestamp=now,
            service=service_snapshot(service),
            metadata=metadata,
        )

        delivered = 0
        for rule, channel in rules:
            if event not in parse_rule_events(rule.events, rule.id):
                continue

            if rule.last_notified_at is not None:
                elapsed = (now - rule.last_notified_at).total_seconds()
                if elapsed < (rule.cooldown or 0):
                    logger.debug(f"Rule {rule.id} in cooldown for {service.name}: {elapsed:.0f}s < {rule.cooldown}s")
                    continue

            if event == NotificationEvent.DOWN:
                threshold = rule.threshold or 1
                failures = rule.consecutive_failures or 0
                if failures < threshold:
                    logger.debug(f"Rule {rule.id} below threshold for {service.name}: {failures}/{threshold} failures")
                    continue
                if repeat and rule.down_notified:
                    continue

            success, _ = await self._deliver(channel, payload, service.id)
            if success:
                delivered += 1

            fields: Dict[str, Any] = {"last_notified_at": now}
            if event == NotificationEvent.DOWN:
                fields["down_notified"] = True
            elif event == NotificationEvent.UP:
                fields["consecutive_failures"] = 0
                fields["down_notified"] = False
            await self.repository.update_rule(rule.id, fields)

        return delivered

    async def send_test(self, channel: NotificationChannel) -> Tuple[bool, Optional[str]]:
        """Send a test notification through one channel, ignoring rules."""
        payload = NotificationPayload(
            event=NotificationEvent.TEST,
            message=build_message(NotificationEvent.TEST, None, None, {}),
            timestamp=self.clock(),
            metadata={"channel": channel.name},
        )
        return await self._deliver(channel, payload, None)

    async def _deliver(
        self,
        channel: NotificationChannel,
        payload: NotificationPayload,
        service_id: Optional[int],
    ) -> Tuple[bool, Optional[str]]:
        error = None
        try:
            config = parse_channel_config(channel.type, channel.config)
            await self.sender.send(channel.type, config, payload)
            logger.info(f"Notification '{payload.event.value}' sent via {channel.type} channel '{channel.name}'")
        except ConfigurationError as e:
            error = str(e)
            logger.warning(f"Channel '{channel.name}' is misconfigured: {error}")
        except DeliveryError as e:
            error = str(e)
            logger.error(f"Failed to send '{payload.event.value}' via {channel.type} channel '{channel.name}': {error}")
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception(f"Unexpected error sending via channel '{channel.name}'")

        history = NotificationHistory(
            channel_id=channel.id,
            service_id=service_id,
            event=payload.event.value,
            message=payload.message,
            status=(DeliveryStatus.FAILED if error else DeliveryStatus.SENT).value,
            error_message=error,
            details=json.dumps(payload.metadata, default=str),
            sent_at=payload.timestamp,
        )
        await self.repository.append_notification_history(history)
        return error is None, error
