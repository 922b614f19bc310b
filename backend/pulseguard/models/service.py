"""Service model - endpoints being monitored."""
from sqlalchemy import Column, Integer, Float, String, DateTime, Boolean
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class Service(Base):
    """A monitored target - HTTP(S) URL, host, TCP port, DNS name or TLS endpoint."""

    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(String, default="HTTP")  # HTTP, HTTPS, PING, DNS, TCP, SSL
    target = Column(String, nullable=False)  # URL or host[:port]
    host = Column(String, nullable=True)  # Overrides the host parsed from target
    port = Column(Integer, nullable=True)  # Overrides the port parsed from target
    description = Column(String, nullable=True)
    check_interval = Column(Integer, default=60)  # seconds, 10-3600
    is_active = Column(Boolean, default=True)
    is_deleted = Column(Boolean, default=False)
    deleted_at = Column(DateTime, nullable=True)

    # Definition extras
    content_match = Column(String, nullable=True)  # "/regex/flags" or plain substring
    headers = Column(String, nullable=True)  # JSON object of extra request headers

    # Written by the scheduler on every check
    status = Column(String, default="unknown")
    response_time_ms = Column(Integer, nullable=True)
    uptime_percent = Column(Float, default=100.0)
    total_monitored_time_ms = Column(Integer, default=0)
    online_time_ms = Column(Integer, default=0)
    last_checked_at = Column(DateTime, nullable=True)
    last_content_match = Column(Boolean, nullable=True)
    ssl_expiry_date = Column(DateTime, nullable=True)
    ssl_days_remaining = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    logs = relationship("ServiceLog", back_populates="service", cascade="all, delete-orphan")
    metrics = relationship("PerformanceMetric", back_populates="service", cascade="all, delete-orphan")
    rules = relationship("NotificationRule", back_populates="service", cascade="all, delete-orphan")
