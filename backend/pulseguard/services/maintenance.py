"""Maintenance service - answers whether alerting is suppressed for a service."""
import logging
from datetime import datetime
from typing import Optional

from ..models import MaintenanceWindow
from ..utils.clock import utcnow
from .repository import MonitorRepository

logger = logging.getLogger(__name__)


class MaintenanceService:
    """Read-only view over maintenance windows.

    Only notifications are gated by maintenance. Checks, logs and uptime
    accounting carry on as usual.
    """

    def __init__(self, repository: MonitorRepository):
        self.repository = repository

    async def active_window(self, service_id: int, now: Optional[datetime] = None) -> Optional[MaintenanceWindow]:
        """The window covering now, preferring the one that ends last."""
        windows = await self.repository.find_active_maintenance_windows(service_id, now or utcnow())
        return windows[0] if windows else None

    async def is_under_maintenance(self, service_id: int, now: Optional[datetime] = None) -> bool:
        return await self.active_window(service_id, now) is not None
