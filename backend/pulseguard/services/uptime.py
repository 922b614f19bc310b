"""Time-weighted availability accounting."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..models.enums import is_available


@dataclass(frozen=True)
class UptimeState:
    """Cumulative availability counters of one service."""
    total_monitored_time_ms: int = 0
    online_time_ms: int = 0
    uptime_percent: float = 100.0
    last_checked_at: Optional[datetime] = None

    @classmethod
    def from_service(cls, service) -> "UptimeState":
        return cls(
            total_monitored_time_ms=service.total_monitored_time_ms or 0,
            online_time_ms=service.online_time_ms or 0,
            uptime_percent=service.uptime_percent if service.uptime_percent is not None else 100.0,
            last_checked_at=service.last_checked_at,
        )


def _percent(online_ms: int, total_ms: int) -> float:
    if total_ms <= 0:
        return 100.0
    return min(100.0, max(0.0, online_ms / total_ms * 100))


def accumulate(prev: UptimeState, status, now: datetime) -> UptimeState:
    """Fold one check result into the cumulative counters.

    The time since the previous check is attributed entirely to the new
    status. Degraded counts as available: the service answered, just not
    well. The very first check has no elapsed time, so uptime is 100 or 0
    depending on that single result.
    """
    available = is_available(status)

    if prev.last_checked_at is None:
        return UptimeState(
            total_monitored_time_ms=0,
            online_time_ms=0,
            uptime_percent=100.0 if available else 0.0,
            last_checked_at=now,
        )

    # Clock adjustments can put now before the last check
    elapsed = max(0, int((now - prev.last_checked_at).total_seconds() * 1000))
    total = prev.total_monitored_time_ms + elapsed
    online = min(total, prev.online_time_ms + (elapsed if available else 0))

    return UptimeState(
        total_monitored_time_ms=total,
        online_time_ms=online,
        uptime_percent=_percent(online, total),
        last_checked_at=now,
    )
