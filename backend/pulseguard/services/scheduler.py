"""Scheduler service - one recurring check job per active service.

Each job runs a tick: probe, fold the result into the uptime counters,
persist, classify the status transition and hand qualifying events to the
notification dispatcher unless a maintenance window suppresses them.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models import Service, ServiceLog, PerformanceMetric
from ..models.enums import NotificationEvent, ServiceStatus, ServiceType
from ..schemas.monitoring import MonitoringStatus
from ..schemas.service import ServiceStateUpdate
from ..utils.clock import to_naive_utc, utcnow
from .checker import CheckerService, CheckResult, ProbeTarget, checker_service
from .dispatcher import NotificationDispatcher, Transition, classify_transition
from .maintenance import MaintenanceService
from .repository import MonitorRepository
from .uptime import UptimeState, accumulate

logger = logging.getLogger(__name__)

MIN_CHECK_INTERVAL = 10
MAX_CHECK_INTERVAL = 3600
DEFAULT_CHECK_INTERVAL = 60

JOB_PREFIX = "service-"


def clamp_interval(seconds: Optional[int]) -> int:
    return max(MIN_CHECK_INTERVAL, min(MAX_CHECK_INTERVAL, seconds or DEFAULT_CHECK_INTERVAL))


def job_id(service_id: int) -> str:
    return f"{JOB_PREFIX}{service_id}"


class SchedulerService:
    """Owns the per-service jobs and the in-memory state the ticks share.

    Ticks run on the asyncio loop. Recorded checks of one service are
    serialised by a per-service lock, whether scheduled or on demand. The
    previous status of a service is only kept while its job exists.
    """

    def __init__(
        self,
        repository: MonitorRepository,
        dispatcher: NotificationDispatcher,
        maintenance: MaintenanceService,
        checker: CheckerService = checker_service,
        retention_days: int = settings.record_retention_days,
        ssl_warning_days: int = settings.ssl_warning_days,
        ssl_notification_interval: timedelta = timedelta(hours=settings.ssl_notification_interval_hours),
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.maintenance = maintenance
        self.checker = checker
        self.retention_days = retention_days
        self.ssl_warning_days = ssl_warning_days
        self.ssl_notification_interval = ssl_notification_interval

        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._running = False
        self._last_statuses: Dict[int, str] = {}
        self._ssl_notified_at: Dict[Tuple[int, NotificationEvent], datetime] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def start(self):
        """Start the scheduler and the hourly retention job."""
        if self._running:
            return

        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(hours=1),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler. In-flight ticks are not interrupted."""
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._running = False
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._running

    # Job management

    def start_monitoring(self, service: Service) -> bool:
        """Schedule service, replacing any existing job. The first check runs immediately."""
        if not service.is_active or service.is_deleted:
            logger.warning(f"Not monitoring service {service.id} ({service.name}): inactive or deleted")
            self.stop_monitoring(service.id)
            return False

        interval = clamp_interval(service.check_interval)
        if self.scheduler.get_job(job_id(service.id)) is None:
            # A fresh start classifies nothing on its first tick
            self._last_statuses.pop(service.id, None)
        elif not self._running:
            # replace_existing only applies once jobs reach the job store
            self.scheduler.remove_job(job_id(service.id))
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=interval),
            args=[service.id],
            id=job_id(service.id),
            name=service.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=interval,
            next_run_time=datetime.now(timezone.utc),
        )
        logger.info(f"Started monitoring {service.name} (id={service.id}) every {interval}s")
        return True

    def stop_monitoring(self, service_id: int) -> bool:
        """Remove the job of a service. Returns False when it was not scheduled."""
        self._last_statuses.pop(service_id, None)
        if self.scheduler.get_job(job_id(service_id)) is None:
            return False
        self.scheduler.remove_job(job_id(service_id))
        logger.info(f"Stopped monitoring service {service_id}")
        return True

    def stop_all_monitoring(self):
        for service_id in self.monitored_service_ids():
            self.stop_monitoring(service_id)
        self._last_statuses.clear()
        self._ssl_notified_at.clear()

    async def start_all_monitoring(self) -> int:
        """Schedule every active, non-deleted service. Returns how many were scheduled."""
        services = await self.repository.list_active_services()
        started = sum(1 for service in services if self.start_monitoring(service))
        logger.info(f"Monitoring {started} active service(s)")
        return started

    def monitored_service_ids(self) -> List[int]:
        ids = []
        for job in self.scheduler.get_jobs():
            if job.id.startswith(JOB_PREFIX):
                ids.append(int(job.id[len(JOB_PREFIX):]))
        return sorted(ids)

    def get_monitoring_status(self) -> MonitoringStatus:
        service_ids = self.monitored_service_ids()
        return MonitoringStatus(
            running=self._running,
            active_services=len(service_ids),
            service_ids=service_ids,
            last_statuses=dict(self._last_statuses),
        )

    # Ticks

    async def run_tick(self, service_id: int, now: Optional[datetime] = None) -> Optional[CheckResult]:
        """Scheduled check of one service. Never raises."""
        try:
            async with self._lock_for(service_id):
                service = await self.repository.load_service(service_id)
                if service is None or not service.is_active or service.is_deleted:
                    logger.info(f"Service {service_id} is gone or inactive, cancelling its job")
                    self.stop_monitoring(service_id)
                    return None
                return await self._check_and_record(service, now)
        except SQLAlchemyError as e:
            logger.error(f"Database error while checking service {service_id}: {e}")
        except Exception:
            logger.exception(f"Unexpected error while checking service {service_id}")
        return None

    async def run_on_demand_check(self, service: Service, record: bool = True, now: Optional[datetime] = None) -> CheckResult:
        """Check a service outside its schedule.

        With record=False only the probe runs: nothing is persisted and no
        notification is sent. A recorded check waits for any running tick of
        the same service and starts from the state that tick stored.
        Database errors propagate to the caller.
        """
        if not record:
            return await self.checker.check_service(service)
        async with self._lock_for(service.id):
            current = await self.repository.load_service(service.id)
            return await self._check_and_record(current or service, now)

    def _lock_for(self, service_id: int) -> asyncio.Lock:
        return self._locks.setdefault(service_id, asyncio.Lock())

    async def _check_and_record(self, service: Service, now: Optional[datetime] = None) -> CheckResult:
        target = ProbeTarget.from_service(service)
        result = await self.checker.check(target)

        certificate = None
        if target.type == ServiceType.SSL:
            certificate = result
        elif target.type == ServiceType.HTTPS:
            certificate = await self.checker.inspect_certificate(target)

        now = now or utcnow()
        status = ServiceStatus(result.status)
        logger.debug(f"Service {service.name}: {status.value} ({result.response_time_ms}ms) {result.message}")

        uptime = accumulate(UptimeState.from_service(service), status, now)
        update = {
            "status": status.value,
            "response_time_ms": result.response_time_ms,
            "last_checked_at": now,
            "uptime_percent": uptime.uptime_percent,
            "total_monitored_time_ms": uptime.total_monitored_time_ms,
            "online_time_ms": uptime.online_time_ms,
        }
        if result.content_match is not None:
            update["last_content_match"] = result.content_match

        ssl_days = None
        if certificate is not None and "days_until_expiry" in certificate.data:
            ssl_days = certificate.data["days_until_expiry"]
            update["ssl_days_remaining"] = ssl_days
            update["ssl_expiry_date"] = to_naive_utc(datetime.fromisoformat(certificate.data["valid_to"]))

        fields = ServiceStateUpdate(**update).model_dump(exclude_unset=True)
        previous_content_match = service.last_content_match

        await self.repository.update_service_state(service.id, fields)
        await self.repository.append_service_log(ServiceLog(
            service_id=service.id,
            timestamp=now,
            status=status.value,
            response_time_ms=result.response_time_ms,
            message=result.message,
        ))
        await self.repository.append_performance_metric(PerformanceMetric(
            service_id=service.id,
            timestamp=now,
            response_time_ms=result.response_time_ms or 0,
            status=status.value,
            uptime_percent=uptime.uptime_percent,
        ))

        # Payload snapshots should show the state just written
        for name, value in fields.items():
            setattr(service, name, value)

        events: List[Tuple[Transition, dict]] = []
        transition = classify_transition(self._last_statuses.get(service.id), status)
        if transition is not None:
            events.append((transition, {}))
        if result.content_match is False and previous_content_match is not False:
            events.append((
                Transition(NotificationEvent.CONTENT_MISMATCH),
                {"content_match": service.content_match},
            ))
        if ssl_days is not None:
            ssl_event = self._ssl_event(service.id, ssl_days, now)
            if ssl_event is not None:
                events.append((
                    Transition(ssl_event),
                    {"days_remaining": ssl_days, "expiry_date": certificate.data.get("valid_to")},
                ))

        if status == ServiceStatus.ONLINE:
            await self.repository.reset_consecutive_failures(service.id)
        else:
            await self.repository.increment_consecutive_failures(service.id)

        if events:
            window = await self.maintenance.active_window(service.id, now)
            if window is not None:
                names = ", ".join(t.event.value for t, _ in events)
                logger.info(f"Service {service.name} is under maintenance ('{window.title}'), suppressing: {names}")
            else:
                for transition, metadata in events:
                    await self.dispatcher.dispatch(
                        service,
                        transition.event,
                        result,
                        now=now,
                        repeat=transition.repeat,
                        metadata=metadata,
                    )

        # A tick still in flight after stop_monitoring must not bring the status back
        if self.scheduler.get_job(job_id(service.id)) is not None:
            self._last_statuses[service.id] = status.value
        return result

    def _ssl_event(self, service_id: int, days: int, now: datetime) -> Optional[NotificationEvent]:
        """Expiry event for a certificate, at most once per interval per service and event."""
        if days <= 0:
            event = NotificationEvent.SSL_EXPIRY
        elif days <= self.ssl_warning_days:
            event = NotificationEvent.SSL_WARNING
        else:
            return None

        last = self._ssl_notified_at.get((service_id, event))
        if last is not None and now - last < self.ssl_notification_interval:
            return None
        self._ssl_notified_at[(service_id, event)] = now
        return event

    async def _cleanup_old_records(self):
        """Delete logs and metrics older than the retention period."""
        try:
            cutoff = utcnow() - timedelta(days=self.retention_days)
            logs, metrics = await self.repository.purge_records_before(cutoff)
            logger.info(f"Cleaned up {logs} log(s) and {metrics} metric(s) older than {self.retention_days} days")
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up records: {e}")
