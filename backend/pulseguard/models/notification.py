"""Notification models - channels, per-service rules and delivery history."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class NotificationChannel(Base):
    """Delivery target. Config is JSON whose shape depends on type."""

    __tablename__ = "notification_channels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # webhook, discord, slack, telegram, email
    config = Column(String, nullable=False, default="{}")
    is_enabled = Column(Boolean, default=True)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    rules = relationship("NotificationRule", back_populates="channel", cascade="all, delete-orphan")


class NotificationRule(Base):
    """Binds a service to a channel for a set of events."""

    __tablename__ = "notification_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Integer, ForeignKey("notification_channels.id", ondelete="CASCADE"), nullable=False, index=True)
    events = Column(String, nullable=False, default="[]")  # JSON list of event names
    threshold = Column(Integer, default=1)  # consecutive failures before "down" fires
    cooldown = Column(Integer, default=300)  # seconds between notifications
    is_enabled = Column(Boolean, default=True)
    consecutive_failures = Column(Integer, default=0)
    down_notified = Column(Boolean, default=False)  # "down" already sent during the current failure streak
    last_notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    service = relationship("Service", back_populates="rules")
    channel = relationship("NotificationChannel", back_populates="rules")


class NotificationHistory(Base):
    """Record of one delivery attempt."""

    __tablename__ = "notification_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(Integer, ForeignKey("notification_channels.id", ondelete="SET NULL"), nullable=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True, index=True)
    event = Column(String, nullable=False)
    message = Column(String, nullable=False)
    status = Column(String, nullable=False)  # sent, failed
    error_message = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", String, nullable=True)
    sent_at = Column(DateTime, default=utcnow, index=True)
