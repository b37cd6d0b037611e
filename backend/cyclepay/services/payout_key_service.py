"""Payout key registration and verification by trace transfer."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.errors import (
    GatewayError,
    GatewayRejectedError,
    GatewayTransientError,
    NotFoundError,
    ValidationError,
)
from cyclepay.models.driver import Driver, PayoutKeyStatus, PayoutKeyType
from cyclepay.models.notification import NotificationType
from cyclepay.models.pending_key_validation import PendingKeyValidation
from cyclepay.models.shared import generate_uuid, utc_now
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.pending_key_validation_repository import (
    PendingKeyValidationRepository,
)
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.notification_service import NotificationService
from cyclepay.services.payment_gateway import (
    PixGatewayBase,
    TransferDestination,
    TransferResult,
    TransferState,
    get_payment_gateway,
)
from cyclepay.services.payout_service import PayoutJob, PayoutService

logger = logging.getLogger(__name__)


class PayoutKeyService:
    """Verifies that a driver's payout key reaches an account by sending it a trace amount."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self._gateway = gateway
        self.driver_repo = DriverRepository(db)
        self.validation_repo = PendingKeyValidationRepository(db)
        self.notification_service = NotificationService(db)
        self.payout_service = PayoutService(db, gateway)
        self.config = ConfigService(db)

    @property
    def gateway(self) -> PixGatewayBase:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    def register_key(
        self, driver_id: UUID, payout_key: str, payout_key_type: str
    ) -> tuple[Driver, list[PayoutJob]]:
        """Store a new payout key and start its verification.

        The key is pending until the trace transfer lands. A provider that settles
        the transfer immediately verifies the key on the spot, in which case the
        payouts held for the driver are returned for enqueueing.
        """
        payout_key = payout_key.strip()
        if not payout_key:
            raise ValidationError("Payout key is required")
        try:
            key_type = PayoutKeyType(payout_key_type)
        except ValueError:
            raise ValidationError(
                f"Unsupported payout key type: {payout_key_type}",
                details={"allowed": [t.value for t in PayoutKeyType]},
            ) from None

        driver = self.driver_repo.get_by_id(driver_id)
        if not driver:
            raise NotFoundError(f"Driver {driver_id} not found")

        self.validation_repo.delete_for_driver(driver_id)
        self.driver_repo.set_payout_key(
            driver_id, payout_key, key_type.value, PayoutKeyStatus.PENDING_VALIDATION
        )
        record = self.validation_repo.create(
            driver_id=driver_id,
            payout_key=payout_key,
            payout_key_type=key_type.value,
            idempotency_key=f"key-validation-{generate_uuid().hex}",
        )
        logger.info("Payout key of driver %s pending validation", driver_id)

        try:
            jobs = self._submit(record)
        except GatewayTransientError as e:
            # the validation monitor resubmits records without a transfer id
            logger.warning("Trace transfer for driver %s deferred: %s", driver_id, e.message)
            jobs = []
        refreshed = self.driver_repo.get_by_id(driver_id)
        return refreshed or driver, jobs

    def resolve_validation(
        self, record_id: UUID, success: bool, holder_name: str | None = None
    ) -> list[PayoutJob]:
        """Close a key validation.

        A verified key re-drives the driver's held payouts; the jobs are returned
        for the caller to enqueue. A rejected key is marked invalid.
        """
        record = self.validation_repo.get_by_id(record_id)
        if not record:
            raise NotFoundError(f"Key validation {record_id} not found")
        driver_id = UUID(str(record.driver_id))
        payout_key = str(record.payout_key)

        if not self.validation_repo.delete(record_id):
            return []

        driver = self.driver_repo.get_by_id(driver_id)
        if driver is None or driver.payout_key != payout_key:
            logger.info("Key validation %s is stale, the driver changed keys", record_id)
            return []

        if success:
            self.driver_repo.set_payout_key_status(
                driver_id, PayoutKeyStatus.VERIFIED, verified_at=utc_now(), holder_name=holder_name
            )
            self.notification_service.enqueue(driver_id, NotificationType.PAYOUT_KEY_VERIFIED)
            logger.info("Payout key of driver %s verified", driver_id)
            return self.payout_service.reprocess_pending_payouts(driver_id)

        self.driver_repo.set_payout_key_status(driver_id, PayoutKeyStatus.INVALIDATED_AFTER_FAILURE)
        self.notification_service.enqueue(driver_id, NotificationType.PAYOUT_KEY_INVALIDATED)
        logger.warning("Payout key of driver %s failed validation", driver_id)
        return []

    def monitor_pending_validations(self) -> list[PayoutJob]:
        """Poll in-flight validations; resubmit those whose transfer never reached the provider."""
        jobs: list[PayoutJob] = []
        for record in self.validation_repo.get_all():
            try:
                if not record.transfer_id:
                    jobs.extend(self._submit(record))
                    continue
                result = self.gateway.query_transfer(str(record.transfer_id))
            except GatewayError as e:
                logger.warning("Could not poll key validation %s: %s", record.id, e.message)
                continue
            jobs.extend(self._apply(record, result))
        return jobs

    def _submit(self, record: PendingKeyValidation) -> list[PayoutJob]:
        try:
            result = self.gateway.send_transfer(
                amount=self.config.get_decimal(ConfigKey.KEY_VALIDATION_AMOUNT),
                destination=TransferDestination(
                    key=str(record.payout_key), key_type=str(record.payout_key_type)
                ),
                idempotency_key=str(record.idempotency_key),
                description="Validacao de chave Pix",
            )
        except GatewayRejectedError as e:
            logger.warning("Trace transfer for key validation %s rejected: %s", record.id, e.message)
            return self.resolve_validation(UUID(str(record.id)), success=False)
        return self._apply(record, result)

    def _apply(self, record: PendingKeyValidation, result: TransferResult) -> list[PayoutJob]:
        record_id = UUID(str(record.id))
        if result.state == TransferState.PAID:
            return self.resolve_validation(record_id, success=True, holder_name=result.holder_name)
        if result.state == TransferState.FAILED:
            return self.resolve_validation(record_id, success=False)
        if result.transfer_id and record.transfer_id != result.transfer_id:
            self.validation_repo.set_transfer_id(record_id, result.transfer_id)
        return []
