"""Services for probing, scheduling, and notifying."""
from .checker import CheckerService, CheckResult, ProbeTarget
from .dispatcher import NotificationDispatcher
from .maintenance import MaintenanceService
from .repository import MonitorRepository
from .scheduler import SchedulerService

__all__ = [
    "CheckerService",
    "CheckResult",
    "ProbeTarget",
    "NotificationDispatcher",
    "MaintenanceService",
    "MonitorRepository",
    "SchedulerService",
]
