"""Outbox of driver notifications awaiting delivery."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.types import JSON

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class NotificationType(str, Enum):
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_SUSPENDED = "subscription.suspended"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    PAYOUT_SUCCEEDED = "payout.succeeded"
    PAYOUT_FAILED = "payout.failed"
    PAYOUT_KEY_VERIFIED = "payout_key.verified"
    PAYOUT_KEY_INVALIDATED = "payout_key.invalidated"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_status", "status"),)

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    notification_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value)
    retries = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=5)
    last_retried_at = Column(DateTime(timezone=True), nullable=True)
    http_status = Column(Integer, nullable=True)
    response = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
