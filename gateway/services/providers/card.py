"""Hosted-checkout card processor adapter.

No token exchange: the order is posted with the static secret and the
processor answers with a checkout link. The payer finishes on the hosted
page, so a successful call leaves the transaction PENDING until the
processor's webhook reports the outcome.
"""

from __future__ import annotations

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
from gateway.core.errors import DuplicateReference, RequestValidationError
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, create_response
from gateway.schemas.request import GatewayRequest, generate_order_id
from gateway.services.providers.base import ProviderAdapter, WebhookEvent
from gateway.services.providers.tokens import strip_trailing_slash

logger = get_logger(__name__)

SUCCESS = "SUCCESS"
WEBHOOK_SUCCESSFUL = "successful"


class CardAdapter(ProviderAdapter):
    """Card payments: collect through hosted checkout, settle by webhook."""

    async def collect(self, request: GatewayRequest) -> GatewayResponse:
        ids = request.correlation_ids()
        details = request.details

        if not details.get("currency"):
            return create_response(StatusCode.BAD_REQUEST, ids, "missing currency.")
        if not details.get("amount"):
            return create_response(StatusCode.BAD_REQUEST, ids, "missing amount.")
        try:
            amount = self.parse_amount(details["amount"])
        except RequestValidationError as exc:
            return exc.to_response(ids)

        order_id = generate_order_id()
        try:
            await run_in_threadpool(
                self.ledger.insert_one,
                {
                    "gateway_ref": request.gateway_ref,
                    "py_ref": request.py_ref,
                    "provider": self.code,
                    "type": TransactionType.PURCHASE.value,
                    "status": TransactionStatus.PENDING.value,
                    "amount": amount,
                    "currency": str(details["currency"]).upper(),
                    "msisdn": details.get("msisdn"),
                    "provider_ref": order_id,
                    "request_body": request.body,
                },
            )
        except (DuplicateReference, RequestValidationError) as exc:
            return exc.to_response(ids)

        parameters = self._order_parameters(details, order_id, amount)
        try:
            response = await self.http.post(
                strip_trailing_slash(self.config.server_url or ""),
                json=parameters,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.config.secret_key}",
                },
            )
            payload = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as exc:
            message = str(exc) or type(exc).__name__
            await self.log_failure(request, message)
            return create_response(StatusCode.INTERNAL_SERVER_ERROR, ids, message)

        if not isinstance(payload, dict):
            payload = {"response": payload}

        if str(payload.get("status", "")).upper() == SUCCESS:
            link = (payload.get("data") or {}).get("link")
            await run_in_threadpool(
                self.ledger.update_one,
                {"gateway_ref": request.gateway_ref},
                {"metadata_json": {"checkout": payload}},
            )
            logger.info(
                "Checkout created: gateway_ref=%s order_id=%s",
                request.gateway_ref,
                order_id,
            )
            return create_response(
                StatusCode.OK,
                {
                    "status": TransactionStatus.PENDING.value,
                    "order_id": order_id,
                    "url": link,
                    **ids,
                },
            )

        await run_in_threadpool(
            self.ledger.update_one,
            {"gateway_ref": request.gateway_ref},
            {
                "status": TransactionStatus.FAILED.value,
                "completed_by": CompletedBy.REQUEST.value,
                "completed_at": datetime.utcnow(),
                "message": payload.get("message"),
                "metadata_json": {"checkout": payload},
            },
            expected_status=TransactionStatus.PENDING.value,
        )
        logger.warning(
            "Checkout rejected: gateway_ref=%s message=%s",
            request.gateway_ref,
            payload.get("message"),
        )
        return create_response(StatusCode.BAD_REQUEST, {**payload, **ids})

    def parse_webhook(self, payload: dict[str, Any]) -> Optional[WebhookEvent]:
        """Accept both the flat push and the ``{"event", "data"}`` envelope."""
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        tx_ref = data.get("tx_ref") or data.get("txRef")
        if not tx_ref:
            return None
        financial_id = data.get("flw_ref") or data.get("flwRef") or data.get("id")
        return WebhookEvent(
            successful=data.get("status") == WEBHOOK_SUCCESSFUL,
            payload=payload,
            provider_ref=str(tx_ref),
            financial_transaction_id=str(financial_id) if financial_id else None,
        )

    def _order_parameters(
        self,
        details: dict[str, Any],
        order_id: str,
        amount: Decimal,
    ) -> dict[str, Any]:
        customizations = {
            "title": self.config.checkout_title,
            "description": self.config.checkout_description,
        }
        if self.config.checkout_logo:
            customizations["logo"] = self.config.checkout_logo
        return {
            "tx_ref": order_id,
            "amount": int(amount) if amount == amount.to_integral_value() else float(amount),
            "currency": str(details["currency"]).upper(),
            "redirect_url": details.get("redirect_url"),
            "payment_options": "card",
            "customer": {
                "name": details.get("client_name"),
                "email": details.get("client_email"),
                "phonenumber": details.get("msisdn"),
            },
            "customizations": customizations,
        }
