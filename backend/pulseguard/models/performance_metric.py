"""PerformanceMetric model - time series for response time charts."""
from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class PerformanceMetric(Base):
    """Response time and uptime snapshot at the moment of a check."""

    __tablename__ = "performance_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
    response_time_ms = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    uptime_percent = Column(Float, nullable=False)

    service = relationship("Service", back_populates="metrics")
