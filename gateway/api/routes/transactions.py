"""Transaction status and lookup endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from gateway.api.dependencies import authenticate_request, get_admission_gate, get_ledger
from gateway.core.constants import StatusCode
from gateway.core.errors import RequestValidationError, TransactionNotFound
from gateway.core.logging import get_logger
from gateway.core.responses import create_response, render
from gateway.schemas.request import GatewayRequest
from gateway.schemas.transaction import TransactionResponse
from gateway.services.admission import AdmissionGate
from gateway.services.ledger import Ledger
from gateway.services.reconciliation.engine import ReconciliationEngine

logger = get_logger(__name__)

router = APIRouter()


@router.get("/transaction/status")
async def transaction_status(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    gate: AdmissionGate = Depends(get_admission_gate),
    ledger: Ledger = Depends(get_ledger),
) -> JSONResponse:
    """Current status of the transaction identified by ``py_ref``.

    Final records are answered from the ledger; PENDING ones are checked
    with the provider selected by the provider header, which must be the
    provider the transaction was created with.
    """
    adapter = await run_in_threadpool(gate.resolve, gateway_request)
    engine = ReconciliationEngine(ledger)
    return render(await engine.check_transaction_status(gateway_request, adapter))


@router.get("/transaction")
def get_transaction(
    id: Optional[str] = Query(None, description="Gateway reference of the transaction"),
    gateway_request: GatewayRequest = Depends(authenticate_request),
    ledger: Ledger = Depends(get_ledger),
) -> JSONResponse:
    """Fetch a single ledger record by its gateway reference."""
    if not id:
        return render(
            RequestValidationError("missing id.").to_response({"gateway_ref": gateway_request.gateway_ref})
        )

    txn = ledger.find_one(gateway_ref=id)
    if txn is None:
        logger.info("Transaction lookup miss: id=%s", id)
        return render(TransactionNotFound().to_response({"id": id}))

    data = TransactionResponse.model_validate(txn).model_dump(mode="json", by_alias=True)
    return render(create_response(StatusCode.OK, data))
