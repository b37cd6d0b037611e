"""Banco Inter Pix provider.

Charges use the ``/pix/v2/cob`` and ``/pix/v2/cobv`` endpoints; outbound
transfers go through the banking API (``/banking/v2/pix``), which takes the
idempotency key in the ``x-id-idempotente`` header.
"""

import logging
from decimal import Decimal
from typing import Any

from cyclepay.core.config import settings
from cyclepay.services.payment_gateway import (
    GatewayProvider,
    PixGatewayBase,
    TransferDestination,
    TransferResult,
    TransferState,
    format_amount,
)

logger = logging.getLogger(__name__)

# tipoRetorno of a transfer submission
SUBMISSION_STATES: dict[str, TransferState] = {
    "PROCESSADO": TransferState.PAID,
    "APROVACAO": TransferState.WAITING_APPROVAL,
    "AGENDADO": TransferState.WAITING_APPROVAL,
}

PAID_STATUSES = {"REALIZADO", "PAGO", "EFETIVADO", "PROCESSADO"}
FAILED_STATUSES = {"REJEITADO", "CANCELADO", "DEVOLVIDO", "FALHA", "ERRO", "EXPIRADO"}


def map_transfer_status(status: str | None) -> TransferState:
    normalized = (status or "").upper()
    if normalized in PAID_STATUSES:
        return TransferState.PAID
    if normalized in FAILED_STATUSES:
        return TransferState.FAILED
    return TransferState.WAITING_APPROVAL


class InterGateway(PixGatewayBase):
    """Banco Inter provider."""

    token_path = "/oauth/v2/token"
    pix_api_prefix = "/pix/v2"
    transfer_path = "/banking/v2/pix"

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        pix_key: str | None = None,
        cert_path: str | None = None,
        key_path: str | None = None,
        scope: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            base_url=base_url or settings.inter_base_url,
            client_id=client_id or settings.inter_client_id,
            client_secret=client_secret or settings.inter_client_secret,
            pix_key=pix_key or settings.inter_pix_key,
            cert_path=cert_path or settings.inter_cert_path,
            key_path=key_path or settings.inter_key_path,
            **kwargs,
        )
        self.scope = scope or settings.inter_scope

    @property
    def provider_name(self) -> GatewayProvider:
        return GatewayProvider.INTER

    def token_form(self) -> dict[str, str]:
        return {**super().token_form(), "scope": self.scope}

    def send_transfer(
        self,
        amount: Decimal,
        destination: TransferDestination,
        idempotency_key: str,
        description: str = "",
    ) -> TransferResult:
        body = {
            "valor": format_amount(amount),
            "descricao": description[:140],
            "destinatario": {"tipo": "CHAVE", "chave": destination.key},
        }
        resp = self._request(
            "POST",
            self.transfer_path,
            json=body,
            headers={"x-id-idempotente": idempotency_key},
        )
        data = self._json(resp) if resp is not None else {}
        kind = str(data.get("tipoRetorno") or data.get("status") or "").upper()
        state = SUBMISSION_STATES.get(kind, map_transfer_status(kind))
        transfer_id = str(data.get("codigoSolicitacao") or data.get("endToEndId") or "")
        logger.info("inter transfer %s submitted: %s", idempotency_key, kind or "unknown")
        return TransferResult(
            transfer_id=transfer_id,
            state=state,
            end_to_end_id=data.get("endToEndId"),
            detail=kind or None,
        )

    def query_transfer(self, transfer_id: str) -> TransferResult:
        resp = self._request("GET", f"{self.transfer_path}/{transfer_id}")
        data = self._json(resp) if resp is not None else {}
        detail = data.get("transacaoPix") or data
        status = detail.get("status")
        recipient = detail.get("recebedor") or data.get("recebedor") or {}
        return TransferResult(
            transfer_id=transfer_id,
            state=map_transfer_status(status),
            end_to_end_id=detail.get("endToEnd") or detail.get("endToEndId"),
            holder_name=recipient.get("nome"),
            detail=status,
        )
