"""Business configuration lookup: database override first, settings default second."""

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum

from sqlalchemy.orm import Session

from cyclepay.core.config import settings
from cyclepay.core.errors import ValidationError
from cyclepay.repositories.config_entry_repository import ConfigEntryRepository

logger = logging.getLogger(__name__)


class ConfigKey(str, Enum):
    PLATFORM_FEE_PER_TRANSFER = "PLATFORM_FEE_PER_TRANSFER"
    PRO_RATA_CYCLE_DAYS = "PRO_RATA_CYCLE_DAYS"
    PRO_RATA_MIN_CHARGE = "PRO_RATA_MIN_CHARGE"
    OVERAGE_RATE_PER_UNIT = "OVERAGE_RATE_PER_UNIT"
    RENEWAL_GENERATION_DAY = "RENEWAL_GENERATION_DAY"
    RENEWAL_LEAD_DAYS = "RENEWAL_LEAD_DAYS"
    TRIAL_DAYS = "TRIAL_DAYS"
    PIX_EXPIRATION_SECONDS = "PIX_EXPIRATION_SECONDS"
    PIX_GRACE_DAYS = "PIX_GRACE_DAYS"
    ABANDONMENT_GRACE_DAYS = "ABANDONMENT_GRACE_DAYS"
    PAYOUT_MAX_ATTEMPTS = "PAYOUT_MAX_ATTEMPTS"
    KEY_VALIDATION_AMOUNT = "KEY_VALIDATION_AMOUNT"


SETTINGS_DEFAULTS: dict[ConfigKey, str] = {
    ConfigKey.PLATFORM_FEE_PER_TRANSFER: "platform_fee_per_transfer",
    ConfigKey.PRO_RATA_CYCLE_DAYS: "pro_rata_cycle_days",
    ConfigKey.PRO_RATA_MIN_CHARGE: "pro_rata_min_charge",
    ConfigKey.OVERAGE_RATE_PER_UNIT: "overage_rate_per_unit",
    ConfigKey.RENEWAL_GENERATION_DAY: "renewal_generation_day",
    ConfigKey.RENEWAL_LEAD_DAYS: "renewal_lead_days",
    ConfigKey.TRIAL_DAYS: "trial_days",
    ConfigKey.PIX_EXPIRATION_SECONDS: "pix_expiration_seconds",
    ConfigKey.PIX_GRACE_DAYS: "pix_grace_days",
    ConfigKey.ABANDONMENT_GRACE_DAYS: "abandonment_grace_days",
    ConfigKey.PAYOUT_MAX_ATTEMPTS: "payout_max_attempts",
    ConfigKey.KEY_VALIDATION_AMOUNT: "key_validation_amount",
}


class ConfigService:
    """Reads business configuration keys."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ConfigEntryRepository(db)

    def get(self, key: ConfigKey, fallback: str | None = None) -> str | None:
        """Return the stored value for ``key``, else ``fallback``, else the settings default."""
        value = self.repo.get_value(key.value)
        if value is not None:
            return value
        if fallback is not None:
            return fallback
        attr = SETTINGS_DEFAULTS.get(key)
        if attr is None:
            return None
        return str(getattr(settings, attr))

    def get_decimal(self, key: ConfigKey, fallback: Decimal | None = None) -> Decimal:
        raw = self.get(key, None if fallback is None else str(fallback))
        try:
            return Decimal(str(raw).replace(",", "."))
        except (InvalidOperation, TypeError) as e:
            raise ValidationError(f"Config {key.value} is not a number: {raw!r}") from e

    def get_int(self, key: ConfigKey, fallback: int | None = None) -> int:
        raw = self.get(key, None if fallback is None else str(fallback))
        try:
            return int(str(raw))
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Config {key.value} is not an integer: {raw!r}") from e

    def set(self, key: ConfigKey, value: str) -> None:
        self.repo.set_value(key.value, value)
        logger.info("Config %s set to %s", key.value, value)
