"""C6 Bank Pix provider.

C6 has no direct Pix-out endpoint: a transfer is scheduled as a payment group
(``/v1/schedule_payments/decode``) and then submitted for approval
(``/v1/schedule_payments/submit``). Until someone approves it in the bank the
transfer stays in ``waiting_approval``.
"""

import logging
from decimal import Decimal
from typing import Any

from cyclepay.core.config import settings
from cyclepay.core.errors import GatewayRejectedError
from cyclepay.models.shared import to_money, utc_today
from cyclepay.services.payment_gateway import (
    GatewayProvider,
    PixGatewayBase,
    TransferDestination,
    TransferResult,
    TransferState,
)

logger = logging.getLogger(__name__)

PAID_STATUSES = {"PAID", "PROCESSED", "SETTLED", "EXECUTED"}
FAILED_STATUSES = {"ERROR", "FAILED", "REJECTED", "CANCELED", "CANCELLED", "EXPIRED"}


def map_item_status(status: str | None) -> TransferState:
    normalized = (status or "").upper()
    if normalized in PAID_STATUSES:
        return TransferState.PAID
    if normalized in FAILED_STATUSES:
        return TransferState.FAILED
    return TransferState.WAITING_APPROVAL


class C6Gateway(PixGatewayBase):
    """C6 Bank provider."""

    token_path = "/v1/auth/"
    pix_api_prefix = "/v2/pix"
    schedule_path = "/v1/schedule_payments"

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        pix_key: str | None = None,
        cert_path: str | None = None,
        key_path: str | None = None,
        payer_name: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            base_url=base_url or settings.c6_base_url,
            client_id=client_id or settings.c6_client_id,
            client_secret=client_secret or settings.c6_client_secret,
            pix_key=pix_key or settings.c6_pix_key,
            cert_path=cert_path or settings.c6_cert_path,
            key_path=key_path or settings.c6_key_path,
            **kwargs,
        )
        self.payer_name = payer_name or settings.c6_payer_name

    @property
    def provider_name(self) -> GatewayProvider:
        return GatewayProvider.C6

    def send_transfer(
        self,
        amount: Decimal,
        destination: TransferDestination,
        idempotency_key: str,
        description: str = "",
    ) -> TransferResult:
        body = {
            "items": [
                {
                    "amount": float(to_money(amount)),
                    "transaction_date": utc_today().isoformat(),
                    "description": description[:140],
                    "content": destination.key,
                    "beneficiary_name": destination.holder_name or "",
                    "payer_name": self.payer_name,
                }
            ]
        }
        resp = self._request(
            "POST",
            f"{self.schedule_path}/decode",
            json=body,
            headers={"x-idempotency-key": idempotency_key},
        )
        data = self._json(resp) if resp is not None else {}
        group_id = data.get("group_id") or data.get("id")
        if not group_id:
            raise GatewayRejectedError("c6 decode returned no payment group")

        self._request("POST", f"{self.schedule_path}/submit", json={"group_id": group_id})
        logger.info("c6 transfer %s submitted as group %s", idempotency_key, group_id)
        return TransferResult(
            transfer_id=str(group_id),
            state=TransferState.WAITING_APPROVAL,
            detail="submitted",
        )

    def query_transfer(self, transfer_id: str) -> TransferResult:
        resp = self._request("GET", f"{self.schedule_path}/{transfer_id}/items")
        data = self._json(resp) if resp is not None else {}
        items = data.get("items") or []
        if not items:
            return TransferResult(transfer_id=transfer_id, state=TransferState.WAITING_APPROVAL)
        item = items[0]
        status = item.get("status")
        return TransferResult(
            transfer_id=transfer_id,
            state=map_item_status(status),
            end_to_end_id=item.get("end_to_end_id"),
            holder_name=item.get("beneficiary_name"),
            detail=item.get("error_message") or status,
        )
