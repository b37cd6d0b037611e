"""Driver notification outbox.

Notifications are written as rows first and delivered later, so a failed send
is recorded and retried instead of being lost.
"""

import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from cyclepay.core.config import settings
from cyclepay.models.notification import Notification, NotificationStatus, NotificationType
from cyclepay.repositories.notification_repository import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for queuing and delivering driver notifications."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = NotificationRepository(db)

    def enqueue(
        self,
        driver_id: UUID,
        notification_type: NotificationType,
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        """Record a notification for later delivery."""
        notification = self.repo.create(
            driver_id=driver_id,
            notification_type=notification_type.value,
            payload={"driver_id": str(driver_id), **(payload or {})},
        )
        logger.info("Queued %s notification for driver %s", notification_type.value, driver_id)
        return notification

    def deliver(self, notification_id: UUID) -> bool:
        """POST a notification to the configured delivery endpoint.

        Returns:
            True if delivery succeeded, False otherwise.
        """
        notification = self.repo.get_by_id(notification_id)
        if not notification:
            logger.error("Notification %s not found", notification_id)
            return False

        if not settings.notification_webhook_url:
            self.repo.mark_failed(notification_id, response="Delivery URL not configured")
            return False

        body = json.dumps(
            {
                "id": str(notification.id),
                "type": notification.notification_type,
                "payload": notification.payload,
            },
            default=str,
        ).encode("utf-8")

        try:
            with httpx.Client(timeout=30.0) as client:
                resp = client.post(
                    settings.notification_webhook_url,
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Notification delivery failed for %s: %s", notification_id, exc)
            self.repo.mark_failed(notification_id, response=str(exc)[:1000])
            return False

        if 200 <= resp.status_code < 300:
            self.repo.mark_sent(notification_id, resp.status_code)
            return True

        self.repo.mark_failed(
            notification_id,
            http_status=resp.status_code,
            response=resp.text[:1000] if resp.text else None,
        )
        return False

    def deliver_pending(self) -> int:
        """Deliver queued notifications, retrying failures with exponential backoff.

        Backoff: 2^retries minutes after the last attempt.

        Returns:
            Number of delivery attempts made.
        """
        attempted = 0
        now = datetime.now(UTC)

        for notification in self.repo.get_undelivered():
            if notification.status == NotificationStatus.FAILED.value:
                if notification.last_retried_at:
                    backoff = timedelta(minutes=2 ** int(notification.retries))
                    last = notification.last_retried_at.replace(tzinfo=UTC)
                    if now < last + backoff:
                        continue
                self.repo.increment_retry(notification.id)  # type: ignore[arg-type]
            self.deliver(notification.id)  # type: ignore[arg-type]
            attempted += 1

        return attempted
