"""Service schemas - parsing stored service definition fields."""
import logging
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, RootModel, ValidationError

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RequestHeaders(RootModel[Dict[str, str]]):
    """Custom request headers stored as a JSON object."""


def parse_headers(raw: Optional[str], service_id: Optional[int] = None) -> Dict[str, str]:
    """Parse the stored headers column.

    Malformed JSON or non-string values are a configuration failure: the
    problem is logged and the service is checked without custom headers.
    """
    if not raw:
        return {}
    try:
        return RequestHeaders.model_validate_json(raw).root
    except ValidationError as e:
        error = ConfigurationError(f"Invalid headers JSON: {e.error_count()} error(s)", source="headers")
        logger.warning(f"Ignoring headers for service {service_id}: {error}")
        return {}


class ServiceStateUpdate(BaseModel):
    """Fields the scheduler writes back after each check."""
    status: str
    response_time_ms: Optional[int] = None
    last_checked_at: datetime
    uptime_percent: float = Field(ge=0, le=100)
    total_monitored_time_ms: int = Field(ge=0)
    online_time_ms: int = Field(ge=0)
    last_content_match: Optional[bool] = None
    ssl_expiry_date: Optional[datetime] = None
    ssl_days_remaining: Optional[int] = None


class CheckResultResponse(BaseModel):
    """Check result returned by the on-demand check endpoint."""
    service_id: int
    status: str
    response_time_ms: Optional[int] = None
    message: str
    status_code: Optional[int] = None
    content_match: Optional[bool] = None
    data: dict = Field(default_factory=dict)
