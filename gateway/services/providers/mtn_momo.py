"""MTN Mobile Money adapter (collection and disbursement APIs).

Every operation fetches a fresh access token for the product it talks to,
then calls the product with three MoMo-specific headers:

  * ``X-Reference-Id``: our id for the upstream transaction (uuid4)
  * ``X-Target-Environment``: the provider environment tag
  * ``Ocp-Apim-Subscription-Key``: collection or payout key

Initiation only returns an HTTP accept/reject. A 200/202 is recorded as
COMPLETED straight away; status polls and callbacks can still report a
different upstream outcome later.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx
from fastapi.concurrency import run_in_threadpool

from gateway.core.constants import (
    CompletedBy,
    StatusCode,
    TransactionStatus,
    TransactionType,
)
from gateway.core.errors import (
    DuplicateReference,
    RequestValidationError,
    TokenAcquisitionFailed,
    UpstreamRejected,
    UpstreamUnreachable,
)
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, create_response
from gateway.models.transaction import Transaction
from gateway.schemas.request import GatewayRequest
from gateway.services.providers.base import ProviderAdapter, UpstreamStatus, WebhookEvent
from gateway.services.providers.tokens import AccessToken, product_url, subscription_key

logger = get_logger(__name__)

ACCEPTED_STATUSES = (StatusCode.OK, StatusCode.ACCEPTED)
SUCCESSFUL = "SUCCESSFUL"


class MtnMomoAdapter(ProviderAdapter):
    """Mobile money: validate, collect, transfer, balance, status, callbacks."""

    # ── Capabilities ─────────────────────────────────────────────────

    async def validate_account(self, request: GatewayRequest) -> GatewayResponse:
        """Look up the registered name behind an MSISDN."""
        ids = request.correlation_ids()
        msisdn = request.details.get("msisdn")
        if not msisdn:
            return create_response(
                StatusCode.BAD_REQUEST,
                {"error": "msisdn missing", **ids},
            )

        token_response = await self.tokens.acquire(self.config, TransactionType.VALIDATION)
        if not token_response.success:
            return token_response
        token = AccessToken.from_response(self.code, TransactionType.VALIDATION, token_response)

        url = (
            f"{product_url(self.config, TransactionType.COLLECTION)}"
            f"/v1_0/accountholder/msisdn/{msisdn}/basicuserinfo"
        )
        try:
            response = await self.http.get(
                url, headers=self._headers(token, TransactionType.COLLECTION)
            )
            payload = _json_object(response)
        except (httpx.HTTPError, ValueError) as exc:
            await self.log_failure(request, _describe(exc))
            return create_response(
                StatusCode.INTERNAL_SERVER_ERROR,
                {"error": _describe(exc), **ids},
                "MSISDN validation action failed",
            )

        name = payload.get("name") or " ".join(
            part for part in (payload.get("given_name"), payload.get("family_name")) if part
        )
        if name:
            return create_response(
                StatusCode.OK,
                {"valid": True, "name": name, "msisdn": msisdn},
            )
        return create_response(
            StatusCode.UNPROCESSABLE_ENTITY,
            payload,
            "MSISDN User not found",
        )

    async def collect(self, request: GatewayRequest) -> GatewayResponse:
        """Request-to-pay: pull funds from the payer's wallet."""
        return await self._initiate(request, TransactionType.COLLECTION)

    async def transfer(self, request: GatewayRequest) -> GatewayResponse:
        """Disbursement: push funds to the payee's wallet."""
        return await self._initiate(request, TransactionType.PAYOUT)

    async def check_balance(self, request: GatewayRequest) -> GatewayResponse:
        ids = request.correlation_ids()
        trans_type = _balance_type(request.details.get("type"))

        token_response = await self.tokens.acquire(self.config, trans_type)
        if not token_response.success:
            return token_response
        token = AccessToken.from_response(self.code, trans_type, token_response)

        url = f"{product_url(self.config, trans_type)}/v1_0/account/balance"
        try:
            response = await self.http.get(url, headers=self._headers(token, trans_type))
            payload = _json_object(response)
        except (httpx.HTTPError, ValueError) as exc:
            await self.log_failure(request, _describe(exc))
            return create_response(
                StatusCode.INTERNAL_SERVER_ERROR,
                {"error": _describe(exc), **ids},
                "Balance enquiry failed",
            )

        if response.status_code == StatusCode.OK and "availableBalance" in payload:
            return create_response(
                StatusCode.OK,
                {
                    "available_balance": payload["availableBalance"],
                    "currency": payload.get("currency"),
                    "type": trans_type.value,
                },
            )
        return create_response(
            StatusCode.UNPROCESSABLE_ENTITY,
            payload,
            "Balance enquiry failed",
        )

    async def query_transaction_status(
        self,
        request: GatewayRequest,
        txn: Transaction,
    ) -> UpstreamStatus:
        """Ask MoMo for the current state of *txn*.

        Raises:
            TokenAcquisitionFailed: The token result, to be returned as is.
            UpstreamUnreachable: The status endpoint could not be read.
        """
        trans_type = TransactionType(txn.type)
        token_response = await self.tokens.acquire(self.config, trans_type)
        if not token_response.success:
            raise TokenAcquisitionFailed(token_response)
        token = AccessToken.from_response(self.code, trans_type, token_response)

        resource = "transfer" if trans_type == TransactionType.PAYOUT else "requesttopay"
        url = f"{product_url(self.config, trans_type)}/v1_0/{resource}/{txn.provider_ref}"
        try:
            response = await self.http.get(url, headers=self._headers(token, trans_type))
            payload = _json_object(response)
        except (httpx.HTTPError, ValueError) as exc:
            await self.log_failure(request, _describe(exc))
            raise UpstreamUnreachable(_describe(exc))

        return UpstreamStatus(http_status=response.status_code, payload=payload)

    def parse_webhook(self, payload: dict[str, Any]) -> Optional[WebhookEvent]:
        """Callbacks echo the ``externalId`` we sent, which is the gateway ref."""
        external_id = payload.get("externalId")
        reference_id = payload.get("referenceId")
        if not external_id and not reference_id:
            return None
        return WebhookEvent(
            successful=payload.get("status") == SUCCESSFUL,
            payload=payload,
            gateway_ref=external_id,
            provider_ref=reference_id,
            financial_transaction_id=payload.get("financialTransactionId"),
        )

    # ── Initiation ───────────────────────────────────────────────────

    async def _initiate(
        self,
        request: GatewayRequest,
        trans_type: TransactionType,
    ) -> GatewayResponse:
        ids = request.correlation_ids()
        details = request.details

        # 1. Validate before anything is written or sent
        try:
            self.require(details, "msisdn", "amount", "currency")
            amount = self.parse_amount(details["amount"])
        except RequestValidationError as exc:
            return exc.to_response(ids)

        # 2. Record the transaction as PENDING
        reference_id = str(uuid.uuid4())
        try:
            await run_in_threadpool(
                self.ledger.insert_one,
                {
                    "gateway_ref": request.gateway_ref,
                    "py_ref": request.py_ref,
                    "provider": self.code,
                    "type": trans_type.value,
                    "status": TransactionStatus.PENDING.value,
                    "amount": amount,
                    "currency": str(details["currency"]).upper(),
                    "msisdn": str(details["msisdn"]),
                    "provider_ref": reference_id,
                    "request_body": request.body,
                },
            )
        except (DuplicateReference, RequestValidationError) as exc:
            return exc.to_response(ids)

        # 3. Fresh token for this product
        token_response = await self.tokens.acquire(self.config, trans_type)
        if not token_response.success:
            await self._finish(request, TransactionStatus.FAILED, token_response.message)
            return token_response
        token = AccessToken.from_response(self.code, trans_type, token_response)

        # 4. Initiate upstream
        resource = "transfer" if trans_type == TransactionType.PAYOUT else "requesttopay"
        url = f"{product_url(self.config, trans_type)}/v1_0/{resource}"
        try:
            response = await self.http.post(
                url,
                json=self._initiation_body(request, trans_type, amount),
                headers=self._headers(token, trans_type, reference_id, with_callback=True),
            )
        except httpx.HTTPError as exc:
            # The record stays PENDING; a poll or callback can still settle it.
            await self.log_failure(request, _describe(exc))
            return create_response(
                StatusCode.INTERNAL_SERVER_ERROR,
                {"status": TransactionStatus.PENDING.value, **ids},
                _describe(exc),
            )

        # 5. Accepted upstream counts as completed
        if response.status_code in ACCEPTED_STATUSES:
            await self._finish(request, TransactionStatus.COMPLETED)
            logger.info(
                "%s accepted: gateway_ref=%s py_ref=%s reference_id=%s",
                trans_type.value,
                request.gateway_ref,
                request.py_ref,
                reference_id,
            )
            return create_response(
                StatusCode.OK,
                {"status": TransactionStatus.COMPLETED.value, **ids},
            )

        reason = response.reason_phrase
        await self._finish(request, TransactionStatus.FAILED, reason)
        logger.warning(
            "%s rejected: gateway_ref=%s http_status=%d reason=%s",
            trans_type.value,
            request.gateway_ref,
            response.status_code,
            reason,
        )
        return UpstreamRejected(reason).to_response(
            {"status": TransactionStatus.FAILED.value, **ids}
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _finish(
        self,
        request: GatewayRequest,
        status: TransactionStatus,
        message: Optional[str] = None,
    ) -> None:
        updated = await run_in_threadpool(
            self.ledger.update_one,
            {"gateway_ref": request.gateway_ref},
            {
                "status": status.value,
                "completed_by": CompletedBy.REQUEST.value,
                "completed_at": datetime.utcnow(),
                "message": message,
            },
            expected_status=TransactionStatus.PENDING.value,
        )
        if not updated:
            logger.info(
                "Record already settled by another path: gateway_ref=%s",
                request.gateway_ref,
            )

    def _headers(
        self,
        token: AccessToken,
        trans_type: TransactionType,
        reference_id: Optional[str] = None,
        with_callback: bool = False,
    ) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": token.authorization,
            "X-Target-Environment": self.config.provider_env or "sandbox",
            "Ocp-Apim-Subscription-Key": subscription_key(self.config, trans_type),
        }
        if reference_id:
            headers["X-Reference-Id"] = reference_id
        if with_callback and self._wants_callback(trans_type):
            headers["X-Callback-Url"] = self.config.provider_callback_url or ""
        return headers

    def _wants_callback(self, trans_type: TransactionType) -> bool:
        if not self.config.provider_callback_url:
            return False
        if trans_type == TransactionType.PAYOUT:
            return self.config.request_payout_callback
        return self.config.request_callback

    @staticmethod
    def _initiation_body(
        request: GatewayRequest,
        trans_type: TransactionType,
        amount: Decimal,
    ) -> dict[str, Any]:
        details = request.details
        note = str(details.get("description") or f"Payment {request.py_ref}")
        party_key = "payee" if trans_type == TransactionType.PAYOUT else "payer"
        return {
            "amount": format(amount, "f"),
            "currency": str(details["currency"]).upper(),
            "externalId": request.gateway_ref,
            party_key: {"partyIdType": "MSISDN", "partyId": str(details["msisdn"])},
            "payerMessage": note,
            "payeeNote": note,
        }


def _balance_type(raw: Any) -> TransactionType:
    if str(raw or "").lower() in ("payout", "disbursement"):
        return TransactionType.PAYOUT
    return TransactionType.COLLECTION


def _json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON body; non-object bodies are wrapped, empty ones become {}."""
    if not response.content:
        return {}
    payload = response.json()
    return payload if isinstance(payload, dict) else {"response": payload}


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__
