"""Notification outbox repository for data access."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.config import settings
from cyclepay.models.notification import Notification, NotificationStatus


class NotificationRepository:
    """Repository for Notification model."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        driver_id: UUID,
        notification_type: str,
        payload: dict[str, Any],
    ) -> Notification:
        notification = Notification(
            driver_id=driver_id,
            notification_type=notification_type,
            payload=payload,
            max_retries=settings.notification_max_retries,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def get_by_id(self, notification_id: UUID) -> Notification | None:
        return self.db.query(Notification).filter(Notification.id == notification_id).first()

    def get_for_driver(self, driver_id: UUID) -> list[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.driver_id == driver_id)
            .order_by(Notification.created_at.asc())
            .all()
        )

    def get_undelivered(self) -> list[Notification]:
        """Pending notifications and failed ones that still have retries left."""
        return (
            self.db.query(Notification)
            .filter(
                (Notification.status == NotificationStatus.PENDING.value)
                | (
                    (Notification.status == NotificationStatus.FAILED.value)
                    & (Notification.retries < Notification.max_retries)
                )
            )
            .order_by(Notification.created_at.asc())
            .all()
        )

    def mark_sent(self, notification_id: UUID, http_status: int) -> None:
        notification = self.get_by_id(notification_id)
        if notification:
            notification.status = NotificationStatus.SENT.value  # type: ignore[assignment]
            notification.http_status = http_status  # type: ignore[assignment]
            self.db.commit()

    def mark_failed(
        self,
        notification_id: UUID,
        http_status: int | None = None,
        response: str | None = None,
    ) -> None:
        notification = self.get_by_id(notification_id)
        if notification:
            notification.status = NotificationStatus.FAILED.value  # type: ignore[assignment]
            notification.http_status = http_status  # type: ignore[assignment]
            notification.response = response  # type: ignore[assignment]
            self.db.commit()

    def increment_retry(self, notification_id: UUID) -> None:
        notification = self.get_by_id(notification_id)
        if notification:
            notification.retries = int(notification.retries) + 1  # type: ignore[assignment]
            notification.last_retried_at = datetime.now(UTC)  # type: ignore[assignment]
            self.db.commit()
