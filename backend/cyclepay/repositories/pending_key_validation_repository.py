"""Pending key validation repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.pending_key_validation import PendingKeyValidation


class PendingKeyValidationRepository:
    """Repository for PendingKeyValidation model."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        driver_id: UUID,
        payout_key: str,
        payout_key_type: str,
        idempotency_key: str,
    ) -> PendingKeyValidation:
        record = PendingKeyValidation(
            driver_id=driver_id,
            payout_key=payout_key,
            payout_key_type=payout_key_type,
            idempotency_key=idempotency_key,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_by_id(self, record_id: UUID) -> PendingKeyValidation | None:
        return (
            self.db.query(PendingKeyValidation).filter(PendingKeyValidation.id == record_id).first()
        )

    def get_for_driver(self, driver_id: UUID) -> list[PendingKeyValidation]:
        return (
            self.db.query(PendingKeyValidation)
            .filter(PendingKeyValidation.driver_id == driver_id)
            .all()
        )

    def get_all(self) -> list[PendingKeyValidation]:
        return (
            self.db.query(PendingKeyValidation)
            .order_by(PendingKeyValidation.created_at.asc())
            .all()
        )

    def set_transfer_id(self, record_id: UUID, transfer_id: str) -> None:
        self.db.query(PendingKeyValidation).filter(PendingKeyValidation.id == record_id).update(
            {"transfer_id": transfer_id}, synchronize_session=False
        )
        self.db.commit()

    def delete(self, record_id: UUID) -> bool:
        deleted = (
            self.db.query(PendingKeyValidation)
            .filter(PendingKeyValidation.id == record_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return bool(deleted)

    def delete_for_driver(self, driver_id: UUID) -> int:
        deleted = (
            self.db.query(PendingKeyValidation)
            .filter(PendingKeyValidation.driver_id == driver_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted)
