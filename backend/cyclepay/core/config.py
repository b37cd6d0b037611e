from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "cyclepay"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DATABASE_DSN: str = "sqlite:////tmp/cyclepay.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Active Pix provider: "inter", "c6" or "mock"
    PIX_PROVIDER: str = "mock"
    gateway_timeout_seconds: float = 30.0

    # Banco Inter settings
    inter_base_url: str = "https://cdpj.partners.bancointer.com.br"
    inter_client_id: str = ""
    inter_client_secret: str = ""
    inter_cert_path: str = ""
    inter_key_path: str = ""
    inter_pix_key: str = ""
    inter_scope: str = (
        "cob.write cob.read cobv.write cobv.read pix.read "
        "pagamento-pix.write pagamento-pix.read"
    )

    # C6 Bank settings
    c6_base_url: str = "https://baas-api.c6bank.info"
    c6_client_id: str = ""
    c6_client_secret: str = ""
    c6_cert_path: str = ""
    c6_key_path: str = ""
    c6_pix_key: str = ""
    c6_payer_name: str = "CyclePay"

    # Outbound notification delivery
    notification_webhook_url: str = ""
    notification_max_retries: int = 5

    # Defaults for business configuration keys (overridable in config_entries)
    platform_fee_per_transfer: Decimal = Decimal("0.99")
    pro_rata_cycle_days: int = 30
    pro_rata_min_charge: Decimal = Decimal("0.01")
    overage_rate_per_unit: Decimal = Decimal("2.50")
    renewal_generation_day: int = 25
    renewal_lead_days: int = 5
    trial_days: int = 7
    pix_expiration_seconds: int = 3600
    pix_grace_days: int = 30
    abandonment_grace_days: int = 30
    payout_max_attempts: int = 3
    key_validation_amount: Decimal = Decimal("0.01")
    default_passenger_due_day: int = 10

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()
