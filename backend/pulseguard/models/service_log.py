"""ServiceLog model - audit trail of check results."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class ServiceLog(Base):
    """One check result for a service. Never updated after insert."""

    __tablename__ = "service_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
    status = Column(String, nullable=False)  # online, degraded, offline, timeout
    response_time_ms = Column(Integer, nullable=True)
    message = Column(String, nullable=True)

    service = relationship("Service", back_populates="logs")
