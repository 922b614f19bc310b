"""Monitoring control API - start/stop jobs, run checks, test channels."""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from ..models.enums import ServiceStatus
from ..schemas.monitoring import MonitoringStatus
from ..schemas.notification import ChannelTestResponse
from ..schemas.service import CheckResultResponse
from ..services.dispatcher import NotificationDispatcher
from ..services.repository import MonitorRepository
from ..services.scheduler import SchedulerService

router = APIRouter(prefix="/api", tags=["monitoring"])


def get_scheduler(request: Request) -> SchedulerService:
    return request.app.state.scheduler


def get_repository(request: Request) -> MonitorRepository:
    return request.app.state.repository


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


async def _load_service(repository: MonitorRepository, service_id: int):
    service = await repository.load_service(service_id)
    if not service or service.is_deleted:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.get("/monitoring/status", response_model=MonitoringStatus)
async def get_monitoring_status(scheduler: SchedulerService = Depends(get_scheduler)):
    """Scheduled services and their last observed status."""
    return scheduler.get_monitoring_status()


@router.post("/monitoring/services/{service_id}/start")
async def start_service_monitoring(
    service_id: int,
    scheduler: SchedulerService = Depends(get_scheduler),
    repository: MonitorRepository = Depends(get_repository),
):
    service = await _load_service(repository, service_id)
    if not scheduler.start_monitoring(service):
        raise HTTPException(status_code=409, detail="Service is not active")
    return {"service_id": service_id, "monitoring": True}


@router.post("/monitoring/services/{service_id}/stop")
async def stop_service_monitoring(service_id: int, scheduler: SchedulerService = Depends(get_scheduler)):
    scheduler.stop_monitoring(service_id)
    return {"service_id": service_id, "monitoring": False}


@router.post("/services/{service_id}/check", response_model=CheckResultResponse)
async def check_service_now(
    service_id: int,
    record: bool = True,
    scheduler: SchedulerService = Depends(get_scheduler),
    repository: MonitorRepository = Depends(get_repository),
):
    """Run a check immediately.

    By default the result is recorded and notifications fire exactly as for a
    scheduled check. Pass record=false to only probe.
    """
    service = await _load_service(repository, service_id)
    try:
        result = await scheduler.run_on_demand_check(service, record=record)
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail="Check ran but could not be recorded")

    return CheckResultResponse(
        service_id=service_id,
        status=ServiceStatus(result.status).value,
        response_time_ms=result.response_time_ms,
        message=result.message,
        status_code=result.status_code,
        content_match=result.content_match,
        data=result.data,
    )


@router.post("/notifications/channels/{channel_id}/test", response_model=ChannelTestResponse)
async def send_test_notification(
    channel_id: int,
    repository: MonitorRepository = Depends(get_repository),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send a test notification through a channel."""
    channel = await repository.get_channel(channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")

    success, error = await dispatcher.send_test(channel)
    return ChannelTestResponse(channel_id=channel_id, success=success, error=error)
