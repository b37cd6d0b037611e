"""Pix gateway abstraction layer.

Supports multiple Pix providers (Banco Inter, C6 Bank, mock). Every provider
exposes the same contract: a cached OAuth token, immediate and dated charges,
idempotent charge cancellation, and outbound transfers keyed by a
caller-supplied idempotency key.
"""

import logging
import re
import ssl
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any
from uuid import UUID

import httpx
from pydantic import ValidationError as PydanticValidationError

from cyclepay.core.config import settings
from cyclepay.core.errors import (
    GatewayAuthError,
    GatewayRejectedError,
    GatewayTransientError,
    ValidationError,
)
from cyclepay.models.shared import to_money, utc_now
from cyclepay.schemas.webhook import PaymentConfirmedEvent

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
EXTERNAL_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]{26,35}$")
CNPJ_LENGTH = 14
CHARGE_REMOVED_STATUS = "REMOVIDA_PELO_USUARIO_RECEBEDOR"


class GatewayProvider(str, Enum):
    INTER = "inter"
    C6 = "c6"
    MOCK = "mock"


class TransferState(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    WAITING_APPROVAL = "waiting_approval"


@dataclass(frozen=True)
class GatewayToken:
    access_token: str
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at - now > TOKEN_REFRESH_MARGIN


@dataclass
class PayerInfo:
    tax_id: str
    name: str


@dataclass
class ChargeResult:
    """A payment instruction issued by the provider."""

    external_id: str
    payment_instruction: str
    instruction_url: str | None = None
    expires_at: datetime | None = None


@dataclass
class TransferDestination:
    key: str
    key_type: str | None = None
    holder_name: str | None = None


@dataclass
class TransferResult:
    transfer_id: str
    state: TransferState
    end_to_end_id: str | None = None
    holder_name: str | None = None
    detail: str | None = None


class TokenCache:
    """Access token shared by every caller of one gateway.

    A token is reused until less than five minutes of validity remain; the
    refresh runs under a lock so only one request for a new token is in flight.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._lock = threading.Lock()
        self._token: GatewayToken | None = None
        self._clock = clock

    def get(self, fetch: Callable[[], GatewayToken]) -> str:
        token = self._token
        if token is not None and token.is_fresh(self._clock()):
            return token.access_token
        with self._lock:
            token = self._token
            if token is not None and token.is_fresh(self._clock()):
                return token.access_token
            token = fetch()
            self._token = token
            return token.access_token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None


def build_external_id(charge_id: UUID, attempt: int = 0) -> str:
    """Provider transaction id for a charge: the charge id without separators.

    Re-issued instructions append a three-digit attempt counter so they never
    collide with the one they replace.
    """
    external_id = str(charge_id).replace("-", "")
    if attempt:
        if attempt > 999:
            raise ValidationError("Too many payment instructions issued for this charge")
        external_id = f"{external_id}{attempt:03d}"
    if not EXTERNAL_ID_PATTERN.match(external_id):
        raise ValidationError(f"Invalid external id: {external_id}")
    return external_id


def format_amount(amount: Decimal | int | str) -> str:
    """Two-decimal string used in provider payloads."""
    return f"{to_money(amount):.2f}"


def only_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


class PixGatewayBase(ABC):
    """Abstract base class for Pix providers.

    Charges follow the Central Bank ``cob``/``cobv`` API that every provider
    implements under its own path prefix; transfers and auth differ per provider.
    """

    token_path: str = ""
    pix_api_prefix: str = ""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        pix_key: str,
        cert_path: str = "",
        key_path: str = "",
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        token_cache: TokenCache | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.pix_key = pix_key
        self.cert_path = cert_path
        self.key_path = key_path
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self.transport = transport
        self.token_cache = token_cache or TokenCache()
        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    @property
    @abstractmethod
    def provider_name(self) -> GatewayProvider:
        """Return the provider enum value."""
        pass  # pragma: no cover

    @abstractmethod
    def send_transfer(
        self,
        amount: Decimal,
        destination: TransferDestination,
        idempotency_key: str,
        description: str = "",
    ) -> TransferResult:
        """Send an outbound Pix transfer."""
        pass  # pragma: no cover

    @abstractmethod
    def query_transfer(self, transfer_id: str) -> TransferResult:
        """Look up a transfer and map its state onto paid/failed/waiting_approval."""
        pass  # pragma: no cover

    def token_form(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }

    def _http(self) -> httpx.Client:
        """Shared HTTP client carrying the provider's client certificate."""
        with self._client_lock:
            if self._client is None:
                verify: ssl.SSLContext | bool = True
                if self.cert_path and self.key_path and self.transport is None:
                    verify = ssl.create_default_context()
                    verify.load_cert_chain(self.cert_path, self.key_path)
                self._client = httpx.Client(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    verify=verify,
                    transport=self.transport,
                )
            return self._client

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def get_token(self) -> str:
        return self.token_cache.get(self._fetch_token)

    def _fetch_token(self) -> GatewayToken:
        provider = self.provider_name.value
        try:
            resp = self._http().post(
                self.token_path,
                data=self.token_form(),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise GatewayAuthError(f"{provider} token request failed: {e}") from e

        if resp.status_code >= 400:
            raise GatewayAuthError(
                f"{provider} token request rejected: {resp.text[:500]}",
                provider_status=resp.status_code,
            )
        body = self._json(resp)
        access_token = body.get("access_token")
        if not access_token:
            raise GatewayAuthError(f"{provider} token response has no access_token")

        expires_in = int(body.get("expires_in") or 3600)
        logger.info("%s access token refreshed, valid for %ds", provider, expires_in)
        return GatewayToken(str(access_token), utc_now() + timedelta(seconds=expires_in))

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Authenticated request. Maps transport and HTTP failures onto gateway errors."""
        provider = self.provider_name.value
        token = self.get_token()
        request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        try:
            resp = self._http().request(method, path, json=json, headers=request_headers)
        except httpx.HTTPError as e:
            raise GatewayTransientError(f"{provider} {method} {path} failed: {e}") from e

        if resp.status_code == 401:
            self.token_cache.invalidate()
            raise GatewayAuthError(
                f"{provider} rejected the access token", provider_status=resp.status_code
            )
        if allow_not_found and resp.status_code == 404:
            return None
        if resp.status_code == 429 or resp.status_code >= 500:
            raise GatewayTransientError(
                f"{provider} {method} {path} returned {resp.status_code}",
                provider_status=resp.status_code,
            )
        if resp.status_code >= 400:
            raise GatewayRejectedError(
                f"{provider} {method} {path} rejected: {resp.text[:500]}",
                provider_status=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"items": body}

    def _charge_path(self, external_id: str, with_maturity: bool) -> str:
        kind = "cobv" if with_maturity else "cob"
        return f"{self.pix_api_prefix}/{kind}/{external_id}"

    def create_charge(
        self,
        external_id: str,
        amount: Decimal,
        payer: PayerInfo | None,
        due_date: date | None = None,
        expiration_seconds: int = 3600,
        grace_days: int = 30,
        description: str = "",
    ) -> ChargeResult:
        """Issue a payment instruction.

        With ``due_date`` the charge stays redeemable until ``due_date + grace_days``;
        without it the instruction expires ``expiration_seconds`` after creation.
        """
        if not EXTERNAL_ID_PATTERN.match(external_id):
            raise ValidationError(f"Invalid external id: {external_id}")

        body: dict[str, Any] = {
            "valor": {"original": format_amount(amount)},
            "chave": self.pix_key,
            "solicitacaoPagador": description[:140],
        }
        if payer is not None:
            tax_id = only_digits(payer.tax_id)
            tax_field = "cnpj" if len(tax_id) == CNPJ_LENGTH else "cpf"
            body["devedor"] = {tax_field: tax_id, "nome": payer.name}
        if due_date is not None:
            body["calendario"] = {
                "dataDeVencimento": due_date.isoformat(),
                "validadeAposVencimento": grace_days,
            }
            expires_at = datetime.combine(
                due_date + timedelta(days=grace_days), time(23, 59, 59), tzinfo=UTC
            )
        else:
            body["calendario"] = {"expiracao": expiration_seconds}
            expires_at = utc_now() + timedelta(seconds=expiration_seconds)

        resp = self._request("PUT", self._charge_path(external_id, due_date is not None), json=body)
        data = self._json(resp) if resp is not None else {}
        instruction = data.get("pixCopiaECola")
        if not instruction:
            raise GatewayRejectedError(
                f"{self.provider_name.value} returned no payment instruction for {external_id}"
            )
        location = (data.get("loc") or {}).get("location") or data.get("location")
        logger.info(
            "%s charge %s issued (%s)",
            self.provider_name.value,
            external_id,
            "cobv" if due_date else "cob",
        )
        return ChargeResult(
            external_id=str(data.get("txid") or external_id),
            payment_instruction=str(instruction),
            instruction_url=location,
            expires_at=expires_at,
        )

    def cancel_charge(self, external_id: str, with_maturity: bool = False) -> None:
        """Invalidate a payment instruction. Unknown charges count as cancelled."""
        resp = self._request(
            "PATCH",
            self._charge_path(external_id, with_maturity),
            json={"status": CHARGE_REMOVED_STATUS},
            allow_not_found=True,
        )
        if resp is None:
            logger.info(
                "%s charge %s not found, nothing to cancel", self.provider_name.value, external_id
            )

    def parse_webhook(self, payload: dict[str, Any]) -> list[PaymentConfirmedEvent]:
        """Normalize a ``{"pix": [...]}`` notification into payment events."""
        events: list[PaymentConfirmedEvent] = []
        for item in payload.get("pix") or []:
            try:
                events.append(
                    PaymentConfirmedEvent(
                        external_transaction_id=item.get("txid") or "",
                        amount=item.get("valor"),
                        paid_at=item.get("horario"),
                        end_to_end_id=item.get("endToEndId"),
                        payer_info=item.get("pagador"),
                    )
                )
            except PydanticValidationError as e:
                logger.warning(
                    "Dropping malformed %s pix notification: %s", self.provider_name.value, e
                )
        return events


class MockPixGateway(PixGatewayBase):
    """Offline provider for development: synthetic instructions, instantly settled transfers."""

    def __init__(self, **kwargs: Any):
        super().__init__(
            base_url=kwargs.pop("base_url", "https://mock.pix.local"),
            client_id=kwargs.pop("client_id", "mock"),
            client_secret=kwargs.pop("client_secret", "mock"),
            pix_key=kwargs.pop("pix_key", "mock@cyclepay.local"),
            **kwargs,
        )
        self.charges: dict[str, ChargeResult] = {}
        self.cancelled: list[str] = []
        self.transfers: dict[str, TransferResult] = {}

    @property
    def provider_name(self) -> GatewayProvider:
        return GatewayProvider.MOCK

    def get_token(self) -> str:
        return "MOCK-ACCESS-TOKEN"

    def create_charge(
        self,
        external_id: str,
        amount: Decimal,
        payer: PayerInfo | None,
        due_date: date | None = None,
        expiration_seconds: int = 3600,
        grace_days: int = 30,
        description: str = "",
    ) -> ChargeResult:
        if not EXTERNAL_ID_PATTERN.match(external_id):
            raise ValidationError(f"Invalid external id: {external_id}")
        if due_date is not None:
            expires_at = datetime.combine(
                due_date + timedelta(days=grace_days), time(23, 59, 59), tzinfo=UTC
            )
        else:
            expires_at = utc_now() + timedelta(seconds=expiration_seconds)
        result = ChargeResult(
            external_id=external_id,
            payment_instruction=(
                f"00020126580014br.gov.bcb.pix{format_amount(amount)}MOCK{external_id}"
            ),
            instruction_url=f"{self.base_url}/{external_id}",
            expires_at=expires_at,
        )
        self.charges[external_id] = result
        return result

    def cancel_charge(self, external_id: str, with_maturity: bool = False) -> None:
        self.cancelled.append(external_id)

    def send_transfer(
        self,
        amount: Decimal,
        destination: TransferDestination,
        idempotency_key: str,
        description: str = "",
    ) -> TransferResult:
        existing = self.transfers.get(idempotency_key)
        if existing is not None:
            return existing
        result = TransferResult(
            transfer_id=f"MOCK-{idempotency_key}",
            state=TransferState.PAID,
            end_to_end_id=f"E2E{idempotency_key.replace('-', '')[:28]}",
            holder_name=destination.holder_name,
        )
        self.transfers[idempotency_key] = result
        return result

    def query_transfer(self, transfer_id: str) -> TransferResult:
        for result in self.transfers.values():
            if result.transfer_id == transfer_id:
                return result
        return TransferResult(transfer_id=transfer_id, state=TransferState.PAID)


@lru_cache(maxsize=None)
def _build_gateway(provider: GatewayProvider) -> PixGatewayBase:
    from cyclepay.services.payment_gateways.c6 import C6Gateway
    from cyclepay.services.payment_gateways.inter import InterGateway

    providers: dict[GatewayProvider, type[PixGatewayBase]] = {
        GatewayProvider.INTER: InterGateway,
        GatewayProvider.C6: C6Gateway,
        GatewayProvider.MOCK: MockPixGateway,
    }
    return providers[provider]()


def get_payment_gateway(provider: GatewayProvider | str | None = None) -> PixGatewayBase:
    """Return the process-wide gateway instance for a provider (default: configured one)."""
    try:
        name = GatewayProvider(provider or settings.PIX_PROVIDER)
    except ValueError:
        raise ValidationError(f"Unsupported Pix provider: {provider}") from None
    return _build_gateway(name)


def reset_payment_gateways() -> None:
    """Drop cached gateway instances so the next lookup builds fresh ones."""
    _build_gateway.cache_clear()
