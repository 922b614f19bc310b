"""Repository - the storage operations the monitoring core depends on.

Each method uses its own short-lived session so ticks for different services
never share a transaction. Writes go through retry_on_lock, which replays the
whole unit of work in a fresh session on transient database errors.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import async_session
from ..models import (
    MaintenanceWindow,
    NotificationChannel,
    NotificationHistory,
    NotificationRule,
    PerformanceMetric,
    Service,
    ServiceLog,
)
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)


class MonitorRepository:
    """Reads and writes services, check records, rules and maintenance windows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session):
        self._session_factory = session_factory

    async def _add(self, entry) -> None:
        async def _op():
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()

        await retry_on_lock(_op)

    async def _execute_write(self, statement) -> int:
        async def _op():
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await session.commit()
                return result.rowcount

        return await retry_on_lock(_op)

    # Services

    async def load_service(self, service_id: int) -> Optional[Service]:
        async with self._session_factory() as session:
            return await session.get(Service, service_id)

    async def list_active_services(self) -> List[Service]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Service)
                .where(Service.is_active.is_(True), Service.is_deleted.is_(False))
                .order_by(Service.id)
            )
            return list(result.scalars().all())

    async def update_service_state(self, service_id: int, fields: Dict[str, Any]) -> None:
        """Partial update of status and metric columns."""
        if not fields:
            return
        await self._execute_write(
            update(Service).where(Service.id == service_id).values(**fields)
        )

    # Check records

    async def append_service_log(self, entry: ServiceLog) -> None:
        await self._add(entry)

    async def append_performance_metric(self, entry: PerformanceMetric) -> None:
        await self._add(entry)

    async def purge_records_before(self, cutoff: datetime) -> Tuple[int, int]:
        """Delete logs and metrics older than cutoff. Returns (logs, metrics) deleted."""
        logs = await self._execute_write(delete(ServiceLog).where(ServiceLog.timestamp < cutoff))
        metrics = await self._execute_write(delete(PerformanceMetric).where(PerformanceMetric.timestamp < cutoff))
        return logs, metrics

    # Maintenance

    async def find_active_maintenance_windows(self, service_id: int, now: datetime) -> List[MaintenanceWindow]:
        """Active windows covering now for this service or for all services."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(MaintenanceWindow)
                .where(
                    MaintenanceWindow.is_active.is_(True),
                    or_(
                        MaintenanceWindow.service_id == service_id,
                        MaintenanceWindow.service_id.is_(None),
                    ),
                    MaintenanceWindow.start_time <= now,
                    MaintenanceWindow.end_time >= now,
                )
                .order_by(MaintenanceWindow.end_time.desc())
            )
            return list(result.scalars().all())

    # Notifications

    async def find_enabled_rules_for_service(
        self, service_id: int
    ) -> List[Tuple[NotificationRule, NotificationChannel]]:
        """Enabled rules of a service joined with their enabled channels."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationRule, NotificationChannel)
                .join(NotificationChannel, NotificationRule.channel_id == NotificationChannel.id)
                .where(
                    NotificationRule.service_id == service_id,
                    NotificationRule.is_enabled.is_(True),
                    NotificationChannel.is_enabled.is_(True),
                )
                .order_by(NotificationRule.id)
            )
            return [(rule, channel) for rule, channel in result.all()]

    async def get_channel(self, channel_id: int) -> Optional[NotificationChannel]:
        async with self._session_factory() as session:
            return await session.get(NotificationChannel, channel_id)

    async def update_rule(self, rule_id: int, fields: Dict[str, Any]) -> None:
        await self._execute_write(
            update(NotificationRule).where(NotificationRule.id == rule_id).values(**fields)
        )

    async def increment_consecutive_failures(self, service_id: int) -> None:
        await self._execute_write(
            update(NotificationRule)
            .where(NotificationRule.service_id == service_id, NotificationRule.is_enabled.is_(True))
            .values(consecutive_failures=NotificationRule.consecutive_failures + 1)
        )

    async def reset_consecutive_failures(self, service_id: int) -> None:
        await self._execute_write(
            update(NotificationRule)
            .where(
                NotificationRule.service_id == service_id,
                or_(NotificationRule.consecutive_failures != 0, NotificationRule.down_notified.is_(True)),
            )
            .values(consecutive_failures=0, down_notified=False)
        )

    async def append_notification_history(self, entry: NotificationHistory) -> None:
        await self._add(entry)
