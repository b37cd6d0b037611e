"""Driver repository for data access."""

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.driver import Driver, PayoutKeyStatus


class DriverRepository:
    """Repository for Driver model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, driver_id: UUID) -> Driver | None:
        return self.db.query(Driver).filter(Driver.id == driver_id).first()

    def create(self, name: str, tax_id: str, email: str | None = None) -> Driver:
        driver = Driver(name=name, tax_id=tax_id, email=email)
        self.db.add(driver)
        self.db.commit()
        self.db.refresh(driver)
        return driver

    def set_payout_key(
        self,
        driver_id: UUID,
        payout_key: str,
        payout_key_type: str,
        status: PayoutKeyStatus,
    ) -> Driver | None:
        driver = self.get_by_id(driver_id)
        if not driver:
            return None
        driver.payout_key = payout_key  # type: ignore[assignment]
        driver.payout_key_type = payout_key_type  # type: ignore[assignment]
        driver.payout_key_status = status.value  # type: ignore[assignment]
        driver.payout_key_verified_at = None  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(driver)
        return driver

    def set_payout_key_status(
        self,
        driver_id: UUID,
        status: PayoutKeyStatus,
        verified_at: datetime | None = None,
        holder_name: str | None = None,
    ) -> Driver | None:
        driver = self.get_by_id(driver_id)
        if not driver:
            return None
        driver.payout_key_status = status.value  # type: ignore[assignment]
        if verified_at is not None:
            driver.payout_key_verified_at = verified_at  # type: ignore[assignment]
        if holder_name:
            driver.payout_key_holder_name = holder_name  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(driver)
        return driver

    def get_with_verified_key(self) -> list[Driver]:
        return (
            self.db.query(Driver)
            .filter(
                Driver.payout_key.isnot(None),
                Driver.payout_key_status == PayoutKeyStatus.VERIFIED.value,
            )
            .all()
        )

    def deactivate(self, driver_id: UUID) -> None:
        self.db.query(Driver).filter(Driver.id == driver_id).update(
            {"active": False}, synchronize_session=False
        )
        self.db.commit()
