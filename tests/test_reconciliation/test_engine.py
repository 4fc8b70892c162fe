"""Tests for the reconciliation engine: status classification, the poll
path and the webhook path.

Upstream status answers are stubbed with ``AsyncMock`` on the adapter so
these tests exercise the engine alone; the adapter's own HTTP calls are
covered in ``tests/test_providers``.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from gateway.core.constants import CompletedBy, StatusCode, TransactionStatus, TransactionType
from gateway.core.errors import TokenAcquisitionFailed, UpstreamUnreachable
from gateway.core.responses import create_response
from gateway.models.transaction import Transaction
from gateway.services.providers.base import UpstreamStatus
from gateway.services.reconciliation.engine import ReconciliationEngine, cached_response, classify


def _pending(ledger, py_ref: str = "abc-1", **overrides) -> Transaction:
    record = {
        "gateway_ref": f"payie-{py_ref}",
        "py_ref": py_ref,
        "provider": "mtn-momo",
        "type": TransactionType.COLLECTION.value,
        "status": TransactionStatus.PENDING.value,
        "amount": Decimal("1000"),
        "currency": "UGX",
        "msisdn": "256770000000",
        "provider_ref": f"ref-{py_ref}",
    }
    record.update(overrides)
    return ledger.insert_one(record)


@pytest.fixture
def engine(ledger) -> ReconciliationEngine:
    return ReconciliationEngine(ledger)


@pytest.fixture
def momo(gateway_context, ledger):
    return gateway_context.adapter_for("mtn-momo", ledger)


@pytest.fixture
def card(gateway_context, ledger):
    return gateway_context.adapter_for("card", ledger)


# ── classify ─────────────────────────────────────────────────────────


class TestClassify:
    """Pure mapping from an upstream status answer to an outcome."""

    def test_successful_with_financial_id_completes(self) -> None:
        outcome = classify(
            UpstreamStatus(200, {"status": "SUCCESSFUL", "financialTransactionId": "987"})
        )
        assert outcome.code == StatusCode.OK
        assert outcome.status == TransactionStatus.COMPLETED.value
        assert outcome.financial_transaction_id == "987"

    def test_successful_without_financial_id_passes_through(self) -> None:
        outcome = classify(UpstreamStatus(200, {"status": "SUCCESSFUL"}))
        assert outcome.status == "SUCCESSFUL"
        assert outcome.code == StatusCode.UNPROCESSABLE_ENTITY

    @pytest.mark.parametrize("raw", ["CANCELLED", "Request cancelled by user"])
    def test_cancelled_maps_to_500(self, raw: str) -> None:
        outcome = classify(UpstreamStatus(200, {"status": raw}))
        assert outcome.status == TransactionStatus.CANCELLED.value
        assert outcome.code == StatusCode.INTERNAL_SERVER_ERROR

    @pytest.mark.parametrize("raw", ["PENDING", "Payment in progress"])
    def test_pending_or_progress_is_not_written(self, raw: str) -> None:
        outcome = classify(UpstreamStatus(200, {"status": raw}))
        assert outcome.status is None
        assert outcome.code == StatusCode.GATEWAY_TIMEOUT

    def test_unknown_status_passes_through_verbatim(self) -> None:
        outcome = classify(
            UpstreamStatus(200, {"status": "FAILED", "reason": "PAYER_NOT_FOUND"})
        )
        assert outcome.status == "FAILED"
        assert outcome.code == StatusCode.UNPROCESSABLE_ENTITY
        assert outcome.message == "PAYER_NOT_FOUND"

    def test_upstream_error_status_code_is_kept(self) -> None:
        outcome = classify(UpstreamStatus(503, {"status": "SERVICE_UNAVAILABLE"}))
        assert outcome.status == "SERVICE_UNAVAILABLE"
        assert outcome.code == 503

    def test_missing_status_is_a_verification_failure(self) -> None:
        outcome = classify(UpstreamStatus(404, {"code": "RESOURCE_NOT_FOUND"}))
        assert outcome.status is None
        assert outcome.code == 404


class TestCachedResponse:
    @pytest.mark.parametrize(
        "status, code",
        [
            (TransactionStatus.COMPLETED.value, 200),
            (TransactionStatus.FAILED.value, 422),
            (TransactionStatus.CANCELLED.value, 500),
            (TransactionStatus.LOGGED.value, 200),
            ("REJECTED", 422),
        ],
    )
    def test_codes_per_status(self, ledger, status: str, code: int) -> None:
        txn = _pending(ledger, status=status)
        response = cached_response(txn)
        assert response.code == code
        assert response.data["status"] == status


# ── Poll path ────────────────────────────────────────────────────────


class TestCheckTransactionStatus:
    @pytest.mark.asyncio
    async def test_unknown_reference_is_400_without_upstream_call(
        self, engine, momo, make_request, upstream
    ) -> None:
        response = await engine.check_transaction_status(make_request(py_ref="nope"), momo)

        assert response.code == StatusCode.BAD_REQUEST
        assert response.success is False
        assert "Transaction not found" in response.message
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_missing_reference_is_400(self, engine, momo, make_request) -> None:
        response = await engine.check_transaction_status(make_request(), momo)
        assert response.code == StatusCode.BAD_REQUEST

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [
            TransactionStatus.COMPLETED.value,
            TransactionStatus.FAILED.value,
            TransactionStatus.CANCELLED.value,
        ],
    )
    async def test_terminal_record_answers_from_ledger(
        self, engine, momo, ledger, make_request, upstream, status
    ) -> None:
        _pending(ledger, status=status, completed_by=CompletedBy.REQUEST.value)
        momo.query_transaction_status = AsyncMock()

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        momo.query_transaction_status.assert_not_called()
        assert upstream.calls == []
        assert response.data["status"] == status
        txn = ledger.find_one(py_ref="abc-1")
        assert txn.status == status
        assert txn.completed_by == CompletedBy.REQUEST.value

    @pytest.mark.asyncio
    async def test_successful_poll_completes_record(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger, metadata_json={"checkout": {"kept": True}})
        momo.query_transaction_status = AsyncMock(
            return_value=UpstreamStatus(
                200, {"status": "SUCCESSFUL", "financialTransactionId": "fin-42"}
            )
        )

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.OK
        assert response.data["status"] == TransactionStatus.COMPLETED.value
        assert response.data["financial_transaction_id"] == "fin-42"
        txn = ledger.find_one(py_ref="abc-1")
        assert txn.status == TransactionStatus.COMPLETED.value
        assert txn.completed_by == CompletedBy.TRANS_CHECK.value
        assert txn.financial_transaction_id == "fin-42"
        assert txn.metadata_json["checkout"] == {"kept": True}
        assert txn.metadata_json["status_check"]["financialTransactionId"] == "fin-42"

    @pytest.mark.asyncio
    async def test_cancelled_poll_persists_cancelled(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger)
        momo.query_transaction_status = AsyncMock(
            return_value=UpstreamStatus(200, {"status": "CANCELLED"})
        )

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.INTERNAL_SERVER_ERROR
        assert ledger.find_one(py_ref="abc-1").status == TransactionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_pending_poll_leaves_record_pending(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger)
        momo.query_transaction_status = AsyncMock(
            return_value=UpstreamStatus(200, {"status": "PENDING"})
        )

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.GATEWAY_TIMEOUT
        txn = ledger.find_one(py_ref="abc-1")
        assert txn.status == TransactionStatus.PENDING.value
        assert txn.completed_by is None

    @pytest.mark.asyncio
    async def test_unrecognised_status_is_stored_verbatim(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger)
        momo.query_transaction_status = AsyncMock(
            return_value=UpstreamStatus(200, {"status": "FAILED", "reason": "LOW_BALANCE"})
        )

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.UNPROCESSABLE_ENTITY
        txn = ledger.find_one(py_ref="abc-1")
        assert txn.status == "FAILED"
        assert txn.message == "LOW_BALANCE"
        assert txn.completed_by == CompletedBy.TRANS_CHECK.value

    @pytest.mark.asyncio
    async def test_unreachable_upstream_leaves_ledger_unchanged(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger)
        momo.query_transaction_status = AsyncMock(side_effect=UpstreamUnreachable("boom"))

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.INTERNAL_SERVER_ERROR
        assert "Transaction verification failed" in response.message
        assert ledger.find_one(py_ref="abc-1").status == TransactionStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_token_failure_is_returned_unchanged(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger)
        token_result = create_response(422, {"error": "bad"}, "Access Token Details not found")
        momo.query_transaction_status = AsyncMock(side_effect=TokenAcquisitionFailed(token_result))

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response == token_result

    @pytest.mark.asyncio
    async def test_adapter_without_status_query_is_400(
        self, engine, card, ledger, make_request
    ) -> None:
        _pending(ledger, provider="card", type=TransactionType.PURCHASE.value)

        response = await engine.check_transaction_status(
            make_request(provider="card", py_ref="abc-1"), card
        )

        assert response.code == StatusCode.BAD_REQUEST
        assert "does not support check_transaction_status" in response.message

    @pytest.mark.asyncio
    async def test_adapter_of_another_provider_is_refused(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(ledger, provider="card", type=TransactionType.PURCHASE.value)
        momo.query_transaction_status = AsyncMock()

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.BAD_REQUEST
        assert "different service provider" in response.message
        momo.query_transaction_status.assert_not_called()
        assert ledger.find_one(py_ref="abc-1").status == TransactionStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_final_record_is_answered_whatever_the_header(
        self, engine, momo, ledger, make_request
    ) -> None:
        _pending(
            ledger,
            provider="card",
            type=TransactionType.PURCHASE.value,
            status=TransactionStatus.COMPLETED.value,
        )

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.OK
        assert response.data["status"] == TransactionStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_poll_losing_to_webhook_reports_stored_state(
        self, engine, momo, ledger, make_request
    ) -> None:
        """A webhook settles the record while the status query is in flight."""
        txn = _pending(ledger)

        async def webhook_wins(request, record):
            ledger.update_one(
                {"gateway_ref": txn.gateway_ref},
                {
                    "status": TransactionStatus.FAILED.value,
                    "completed_by": CompletedBy.WEBHOOK.value,
                },
                expected_status=TransactionStatus.PENDING.value,
            )
            return UpstreamStatus(200, {"status": "SUCCESSFUL", "financialTransactionId": "1"})

        momo.query_transaction_status = AsyncMock(side_effect=webhook_wins)

        response = await engine.check_transaction_status(make_request(py_ref="abc-1"), momo)

        assert response.code == StatusCode.UNPROCESSABLE_ENTITY
        assert response.data["status"] == TransactionStatus.FAILED.value
        stored = ledger.find_one(py_ref="abc-1")
        assert stored.status == TransactionStatus.FAILED.value
        assert stored.completed_by == CompletedBy.WEBHOOK.value


# ── Webhook path ─────────────────────────────────────────────────────


class TestHandleWebhook:
    def test_successful_push_completes_record(
        self, engine, momo, ledger, make_request
    ) -> None:
        txn = _pending(ledger)
        payload = {
            "externalId": txn.gateway_ref,
            "status": "SUCCESSFUL",
            "financialTransactionId": "fin-7",
        }

        response = engine.handle_webhook(make_request(), momo, payload)

        assert response.code == StatusCode.OK
        assert response.message.endswith("OK")
        stored = ledger.find_one(py_ref="abc-1")
        assert stored.status == TransactionStatus.COMPLETED.value
        assert stored.completed_by == CompletedBy.WEBHOOK.value
        assert stored.financial_transaction_id == "fin-7"
        assert stored.metadata_json["webhook"] == payload

    def test_unsuccessful_push_fails_record(self, engine, momo, ledger, make_request) -> None:
        txn = _pending(ledger)

        engine.handle_webhook(
            make_request(), momo, {"externalId": txn.gateway_ref, "status": "FAILED"}
        )

        stored = ledger.find_one(py_ref="abc-1")
        assert stored.status == TransactionStatus.FAILED.value
        assert stored.completed_by == CompletedBy.WEBHOOK.value

    def test_unknown_reference_is_still_acknowledged(
        self, engine, momo, ledger, make_request
    ) -> None:
        response = engine.handle_webhook(
            make_request(), momo, {"externalId": "payie-unknown", "status": "SUCCESSFUL"}
        )
        assert response.code == StatusCode.OK
        assert ledger.count() == 0

    def test_payload_without_reference_is_acknowledged(
        self, engine, momo, make_request
    ) -> None:
        response = engine.handle_webhook(make_request(), momo, {"status": "SUCCESSFUL"})
        assert response.code == StatusCode.OK

    def test_card_push_matches_on_order_id(self, engine, card, ledger, make_request) -> None:
        _pending(
            ledger,
            provider="card",
            type=TransactionType.PURCHASE.value,
            provider_ref="1234567890123456",
        )
        payload = {
            "event": "charge.completed",
            "data": {"tx_ref": "1234567890123456", "status": "successful", "flw_ref": "FLW-1"},
        }

        engine.handle_webhook(make_request(provider="card"), card, payload)

        stored = ledger.find_one(py_ref="abc-1")
        assert stored.status == TransactionStatus.COMPLETED.value
        assert stored.financial_transaction_id == "FLW-1"

    def test_push_never_overwrites_a_final_status(
        self, engine, momo, ledger, make_request
    ) -> None:
        txn = _pending(
            ledger,
            status=TransactionStatus.COMPLETED.value,
            completed_by=CompletedBy.REQUEST.value,
        )
        payload = {"externalId": txn.gateway_ref, "status": "FAILED"}

        response = engine.handle_webhook(make_request(), momo, payload)

        assert response.code == StatusCode.OK
        stored = ledger.find_one(py_ref="abc-1")
        assert stored.status == TransactionStatus.COMPLETED.value
        assert stored.completed_by == CompletedBy.REQUEST.value
        assert stored.metadata_json["webhook"] == payload

    def test_secret_mismatch_is_rejected(
        self, engine, momo, ledger, make_request, db_session
    ) -> None:
        from gateway.models.logs import RequestLog

        txn = _pending(ledger)
        momo.config = momo.config.model_copy(update={"webhook_secret": "s3cret"})

        response = engine.handle_webhook(
            make_request(),
            momo,
            {"externalId": txn.gateway_ref, "status": "SUCCESSFUL"},
            headers={"verif-hash": "wrong"},
        )

        assert response.code == StatusCode.UNAUTHORIZED
        assert ledger.find_one(py_ref="abc-1").status == TransactionStatus.PENDING.value
        assert db_session.query(RequestLog).count() == 1

    def test_matching_secret_is_accepted(self, engine, momo, ledger, make_request) -> None:
        txn = _pending(ledger)
        momo.config = momo.config.model_copy(update={"webhook_secret": "s3cret"})

        response = engine.handle_webhook(
            make_request(),
            momo,
            {"externalId": txn.gateway_ref, "status": "SUCCESSFUL"},
            headers={"verif-hash": "s3cret"},
        )

        assert response.code == StatusCode.OK
        assert ledger.find_one(py_ref="abc-1").status == TransactionStatus.COMPLETED.value
