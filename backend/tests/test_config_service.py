"""Tests for business configuration lookup."""

from decimal import Decimal

import pytest

from cyclepay.core.errors import ValidationError
from cyclepay.services.config_service import ConfigKey, ConfigService


@pytest.fixture
def config(db_session):
    return ConfigService(db_session)


class TestConfigService:
    def test_settings_default(self, config):
        assert config.get_decimal(ConfigKey.PLATFORM_FEE_PER_TRANSFER) == Decimal("0.99")
        assert config.get_int(ConfigKey.TRIAL_DAYS) == 7
        assert config.get_int(ConfigKey.RENEWAL_GENERATION_DAY) == 25

    def test_stored_value_overrides_default(self, config):
        config.set(ConfigKey.TRIAL_DAYS, "14")
        assert config.get_int(ConfigKey.TRIAL_DAYS) == 14

        config.set(ConfigKey.TRIAL_DAYS, "3")
        assert config.get_int(ConfigKey.TRIAL_DAYS) == 3

    def test_decimal_comma_accepted(self, config):
        config.set(ConfigKey.PLATFORM_FEE_PER_TRANSFER, "1,50")
        assert config.get_decimal(ConfigKey.PLATFORM_FEE_PER_TRANSFER) == Decimal("1.50")

    def test_fallback_used_before_settings_default(self, config):
        assert config.get_int(ConfigKey.TRIAL_DAYS, fallback=30) == 30

    def test_malformed_value(self, config):
        config.set(ConfigKey.PAYOUT_MAX_ATTEMPTS, "three")
        with pytest.raises(ValidationError):
            config.get_int(ConfigKey.PAYOUT_MAX_ATTEMPTS)

        config.set(ConfigKey.KEY_VALIDATION_AMOUNT, "cheap")
        with pytest.raises(ValidationError):
            config.get_decimal(ConfigKey.KEY_VALIDATION_AMOUNT)
