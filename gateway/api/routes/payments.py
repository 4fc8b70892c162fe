"""Transaction-creating and account endpoints.

``collect``, ``transfer`` and ``validate-account`` go through the full
admission gate. ``balance`` only needs a configured provider.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from gateway.api.dependencies import authenticate_request, get_admission_gate, get_ledger
from gateway.core.constants import TransactionStatus, TransactionType
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, render
from gateway.schemas.request import GatewayRequest
from gateway.services.admission import AdmissionGate
from gateway.services.ledger import Ledger
from gateway.services.providers.base import Capability, invoke, supports, unsupported

logger = get_logger(__name__)

router = APIRouter()


def store_response(ledger: Ledger, request: GatewayRequest, response: GatewayResponse) -> None:
    """Attach the envelope sent to the caller to the request's ledger record."""
    ledger.update_one(
        {"gateway_ref": request.gateway_ref},
        {"response_body": response.model_dump(mode="json")},
    )


@router.post("/validate-account")
async def validate_account(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    gate: AdmissionGate = Depends(get_admission_gate),
    ledger: Ledger = Depends(get_ledger),
) -> JSONResponse:
    """Look up the account holder behind ``msisdn``.

    The lookup is recorded as a VALIDATION transaction with status LOGGED
    so the caller's ``py_ref`` is consumed like any other request.
    """
    adapter = await run_in_threadpool(gate.admit, gateway_request)
    if not supports(adapter, Capability.VALIDATE_ACCOUNT):
        return render(
            unsupported(adapter, Capability.VALIDATE_ACCOUNT, gateway_request.correlation_ids())
        )

    await run_in_threadpool(
        ledger.insert_one,
        {
            "gateway_ref": gateway_request.gateway_ref,
            "py_ref": gateway_request.py_ref,
            "provider": adapter.code,
            "type": TransactionType.VALIDATION.value,
            "status": TransactionStatus.LOGGED.value,
            "msisdn": gateway_request.details.get("msisdn"),
            "request_body": gateway_request.body,
        },
    )
    response = await invoke(adapter, Capability.VALIDATE_ACCOUNT, gateway_request)
    await run_in_threadpool(store_response, ledger, gateway_request, response)
    return render(response)


@router.post("/collect")
async def collect(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    gate: AdmissionGate = Depends(get_admission_gate),
    ledger: Ledger = Depends(get_ledger),
) -> JSONResponse:
    """Pull funds from the payer through the selected provider."""
    adapter = await run_in_threadpool(gate.admit, gateway_request)
    response = await invoke(adapter, Capability.COLLECT, gateway_request)
    await run_in_threadpool(store_response, ledger, gateway_request, response)
    logger.info(
        "Collect finished: gateway_ref=%s provider=%s code=%d",
        gateway_request.gateway_ref,
        adapter.code,
        response.code,
    )
    return render(response)


@router.post("/transfer")
async def transfer(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    gate: AdmissionGate = Depends(get_admission_gate),
    ledger: Ledger = Depends(get_ledger),
) -> JSONResponse:
    """Push funds to the payee through the selected provider."""
    adapter = await run_in_threadpool(gate.admit, gateway_request)
    response = await invoke(adapter, Capability.TRANSFER, gateway_request)
    await run_in_threadpool(store_response, ledger, gateway_request, response)
    logger.info(
        "Transfer finished: gateway_ref=%s provider=%s code=%d",
        gateway_request.gateway_ref,
        adapter.code,
        response.code,
    )
    return render(response)


@router.get("/balance")
async def check_balance(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> JSONResponse:
    """Account balance for ``type=collection`` (default) or ``type=payout``."""
    adapter = await run_in_threadpool(gate.resolve, gateway_request)
    return render(await invoke(adapter, Capability.CHECK_BALANCE, gateway_request))
