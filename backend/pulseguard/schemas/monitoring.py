"""Monitoring status schemas."""
from typing import Dict, List
from pydantic import BaseModel


class MonitoringStatus(BaseModel):
    """Snapshot of the scheduler's per-service jobs."""
    running: bool
    active_services: int
    service_ids: List[int]
    last_statuses: Dict[int, str]
