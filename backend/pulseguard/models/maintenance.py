"""MaintenanceWindow model - periods during which alerting is suppressed."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean

from ..database import Base
from ..utils.clock import utcnow


class MaintenanceWindow(Base):
    """Declared maintenance. A NULL service_id applies to every service."""

    __tablename__ = "maintenance_windows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
