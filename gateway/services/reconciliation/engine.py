"""Reconciliation engine: converges ledger records with upstream truth.

Two independent entry points can move a PENDING transaction to a final
status:

  * the poll path (``check_transaction_status``), triggered by the
    caller, which asks the provider for the current state
  * the webhook path (``handle_webhook``), triggered by the provider
    pushing an outcome

Both paths write through ``Ledger.update_one`` with
``expected_status=PENDING``. Whichever lands first wins; the loser
re-reads the record and reports what is stored. A final status is never
replaced by another final status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from fastapi.concurrency import run_in_threadpool

from gateway.core.constants import (
    CompletedBy,
    ErrorMessage,
    LogLevel,
    StatusCode,
    TransactionStatus,
    is_terminal,
)
from gateway.core.errors import (
    RequestValidationError,
    StillPending,
    TokenAcquisitionFailed,
    TransactionNotFound,
    UpstreamUnreachable,
    WebhookRejected,
)
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, create_response
from gateway.models.transaction import Transaction
from gateway.schemas.request import GatewayRequest
from gateway.services.ledger import Ledger
from gateway.services.providers.base import (
    Capability,
    ProviderAdapter,
    UpstreamStatus,
    WebhookEvent,
    supports,
    unsupported,
)

logger = get_logger(__name__)

SUCCESSFUL = "SUCCESSFUL"

# Envelope code for a record that is already final.
CACHED_CODES: dict[str, int] = {
    TransactionStatus.COMPLETED.value: StatusCode.OK,
    TransactionStatus.LOGGED.value: StatusCode.OK,
    TransactionStatus.FAILED.value: StatusCode.UNPROCESSABLE_ENTITY,
    TransactionStatus.CANCELLED.value: StatusCode.INTERNAL_SERVER_ERROR,
}


@dataclass
class PollOutcome:
    """What a status-query answer means for the ledger and the caller.

    ``status`` is None when the record must not be written.
    """

    code: int
    status: Optional[str]
    message: str = ""
    financial_transaction_id: Optional[str] = None


def classify(upstream: UpstreamStatus) -> PollOutcome:
    """Map a provider status answer onto a ledger status and envelope code.

    * ``SUCCESSFUL`` with a financial transaction id: COMPLETED / 200
    * contains "cancelled": CANCELLED / 500
    * contains "pending" or "progress": stays PENDING / 504
    * no status at all: no write, verification failure
    * anything else: the provider's status is stored verbatim and the
      provider's HTTP status is returned (422 if it was a 2xx)
    """
    payload = upstream.payload
    raw_status = payload.get("status")
    financial_id = payload.get("financialTransactionId")

    if raw_status is not None and str(raw_status).upper() == SUCCESSFUL and financial_id:
        return PollOutcome(
            code=StatusCode.OK,
            status=TransactionStatus.COMPLETED.value,
            financial_transaction_id=str(financial_id),
        )

    passthrough_code = (
        upstream.http_status
        if upstream.http_status >= 300
        else StatusCode.UNPROCESSABLE_ENTITY
    )
    if raw_status is None or not str(raw_status).strip():
        return PollOutcome(
            code=passthrough_code,
            status=None,
            message=ErrorMessage.VERIFICATION_FAILED,
        )

    lowered = str(raw_status).lower()
    if "cancelled" in lowered:
        return PollOutcome(
            code=StatusCode.INTERNAL_SERVER_ERROR,
            status=TransactionStatus.CANCELLED.value,
            message="Transaction cancelled.",
        )
    if "pending" in lowered or "progress" in lowered:
        return PollOutcome(
            code=StatusCode.GATEWAY_TIMEOUT,
            status=None,
            message=ErrorMessage.STILL_PENDING,
        )

    reason = payload.get("reason")
    if isinstance(reason, dict):
        reason = reason.get("message") or reason.get("code")
    return PollOutcome(
        code=passthrough_code,
        status=str(raw_status),
        message=str(reason) if reason else "",
    )


def cached_response(txn: Transaction) -> GatewayResponse:
    """Envelope for a record whose stored status is final."""
    code = CACHED_CODES.get(txn.status, StatusCode.UNPROCESSABLE_ENTITY)
    data = txn.summary()
    if txn.financial_transaction_id:
        data["financial_transaction_id"] = txn.financial_transaction_id
    return create_response(code, data, txn.message or "")


def _merge_metadata(txn: Transaction, key: str, payload: Any) -> dict[str, Any]:
    return {**(txn.metadata_json or {}), key: payload}


class ReconciliationEngine:
    """Drives transactions from PENDING to a final status."""

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger

    # ── Poll path ────────────────────────────────────────────────────

    async def check_transaction_status(
        self,
        request: GatewayRequest,
        adapter: ProviderAdapter,
    ) -> GatewayResponse:
        """Report the state of the caller's transaction, asking upstream if needed.

        A record that is already final is answered from the ledger with no
        upstream call. Otherwise the adapter's status query is classified
        with ``classify`` and the result written if it is final.
        """
        ids = request.correlation_ids()
        if not request.py_ref:
            return RequestValidationError(ErrorMessage.MISSING_API_REF).to_response(ids)

        txn = await run_in_threadpool(self.ledger.find_one, py_ref=request.py_ref)
        if txn is None:
            logger.info("Status check for unknown py_ref=%s", request.py_ref)
            return TransactionNotFound().to_response(ids)

        if is_terminal(txn.status):
            logger.debug(
                "Status check answered from ledger: gateway_ref=%s status=%s",
                txn.gateway_ref,
                txn.status,
            )
            return cached_response(txn)

        if txn.provider != adapter.code:
            logger.warning(
                "Status check through the wrong provider: gateway_ref=%s stored=%s header=%s",
                txn.gateway_ref,
                txn.provider,
                adapter.code,
            )
            return RequestValidationError(ErrorMessage.PROVIDER_MISMATCH).to_response(
                txn.summary()
            )

        if not supports(adapter, Capability.CHECK_TRANSACTION_STATUS):
            return unsupported(adapter, Capability.CHECK_TRANSACTION_STATUS, txn.summary())

        try:
            upstream = await adapter.query_transaction_status(request, txn)
        except TokenAcquisitionFailed as exc:
            return exc.to_response()
        except UpstreamUnreachable as exc:
            logger.error(
                "Status query failed: gateway_ref=%s error=%s",
                txn.gateway_ref,
                exc.message,
            )
            return create_response(
                StatusCode.INTERNAL_SERVER_ERROR,
                txn.summary(),
                ErrorMessage.VERIFICATION_FAILED,
            )

        outcome = classify(upstream)
        if outcome.code == StatusCode.GATEWAY_TIMEOUT and outcome.status is None:
            return StillPending(outcome.message).to_response(
                {**txn.summary(), "upstream": upstream.payload}
            )
        if outcome.status is None:
            return create_response(
                outcome.code,
                {**txn.summary(), "upstream": upstream.payload},
                outcome.message,
            )

        patch: dict[str, Any] = {
            "status": outcome.status,
            "completed_by": CompletedBy.TRANS_CHECK.value,
            "completed_at": datetime.utcnow(),
            "metadata_json": _merge_metadata(txn, "status_check", upstream.payload),
        }
        if outcome.financial_transaction_id:
            patch["financial_transaction_id"] = outcome.financial_transaction_id
        if outcome.message:
            patch["message"] = outcome.message

        updated = await run_in_threadpool(
            self.ledger.update_one,
            {"gateway_ref": txn.gateway_ref},
            patch,
            expected_status=TransactionStatus.PENDING.value,
        )
        txn = await run_in_threadpool(self.ledger.find_one, gateway_ref=txn.gateway_ref)
        if not updated:
            logger.info(
                "Status check lost the race: gateway_ref=%s stored=%s",
                txn.gateway_ref,
                txn.status,
            )
            return cached_response(txn)

        logger.info(
            "Status check settled transaction: gateway_ref=%s status=%s code=%d",
            txn.gateway_ref,
            txn.status,
            outcome.code,
        )
        data = txn.summary()
        if outcome.financial_transaction_id:
            data["financial_transaction_id"] = outcome.financial_transaction_id
        return create_response(outcome.code, data, outcome.message)

    # ── Webhook path ─────────────────────────────────────────────────

    def handle_webhook(
        self,
        request: GatewayRequest,
        adapter: ProviderAdapter,
        payload: dict[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> GatewayResponse:
        """Apply a provider push and acknowledge it.

        The answer is 200 "OK" whether or not a matching record exists, so
        providers do not retry pushes the gateway cannot place. The only
        refusal is a failed shared-secret check (401).
        """
        if not adapter.verify_webhook(headers or {}):
            error = WebhookRejected(ErrorMessage.UNAUTHORIZED_WEBHOOK)
            response = error.to_response()
            logger.warning(
                "Webhook rejected: provider=%s gateway_ref=%s",
                adapter.code,
                request.gateway_ref,
            )
            self.ledger.log_request(request, LogLevel.WARNING, error.message, response)
            return response

        if not supports(adapter, Capability.HANDLE_WEBHOOK):
            logger.warning("Webhook for provider without webhook support: %s", adapter.code)
            return self._acknowledge()

        event = adapter.parse_webhook(payload)
        if event is None:
            logger.warning(
                "Webhook without a transaction reference: provider=%s",
                adapter.code,
            )
            self.ledger.log_message(
                request, LogLevel.WARNING, "Webhook payload without reference", adapter.code
            )
            return self._acknowledge()

        txn = self._find_event_record(adapter, event)
        if txn is None:
            logger.warning(
                "Webhook for unknown transaction: provider=%s gateway_ref=%s provider_ref=%s",
                adapter.code,
                event.gateway_ref,
                event.provider_ref,
            )
            self.ledger.log_message(
                request,
                LogLevel.WARNING,
                f"Webhook transaction not found: {event.gateway_ref or event.provider_ref}",
                adapter.code,
            )
            return self._acknowledge()

        status = (
            TransactionStatus.COMPLETED if event.successful else TransactionStatus.FAILED
        )
        metadata = _merge_metadata(txn, "webhook", event.payload)
        patch: dict[str, Any] = {
            "status": status.value,
            "completed_by": CompletedBy.WEBHOOK.value,
            "completed_at": datetime.utcnow(),
            "metadata_json": metadata,
        }
        if event.financial_transaction_id:
            patch["financial_transaction_id"] = event.financial_transaction_id

        updated = self.ledger.update_one(
            {"gateway_ref": txn.gateway_ref},
            patch,
            expected_status=TransactionStatus.PENDING.value,
        )
        if updated:
            logger.info(
                "Webhook settled transaction: gateway_ref=%s status=%s",
                txn.gateway_ref,
                status.value,
            )
        else:
            # Keep the push for audit even though the status is already final.
            self.ledger.update_one({"gateway_ref": txn.gateway_ref}, {"metadata_json": metadata})
            logger.info(
                "Webhook for settled transaction: gateway_ref=%s stored=%s pushed=%s",
                txn.gateway_ref,
                txn.status,
                status.value,
            )
        return self._acknowledge()

    def _find_event_record(
        self,
        adapter: ProviderAdapter,
        event: WebhookEvent,
    ) -> Optional[Transaction]:
        txn = None
        if event.gateway_ref:
            txn = self.ledger.find_one(gateway_ref=event.gateway_ref)
        if txn is None and event.provider_ref:
            txn = self.ledger.find_one(provider_ref=event.provider_ref, provider=adapter.code)
        return txn

    @staticmethod
    def _acknowledge() -> GatewayResponse:
        return create_response(StatusCode.OK, None, "OK")
