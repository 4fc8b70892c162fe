"""Idempotency and admission gate.

Single choke point in front of every transaction-creating route. Checks
run in a fixed order and the first failure wins:

  1. the caller's reference (``py_ref``) is present
  2. no ledger record already uses that reference
  3. the provider-selector header is present
  4. the selected provider is configured

A rejection is written to the request log before it is raised, and the
raised ``GatewayError`` carries the correlation ids as its data.
"""

from __future__ import annotations

from typing import NoReturn

from gateway.core.constants import ErrorMessage, LogLevel
from gateway.core.context import GatewayContext
from gateway.core.errors import (
    DuplicateReference,
    GatewayError,
    RequestValidationError,
    UnknownProvider,
)
from gateway.core.logging import get_logger
from gateway.schemas.request import GatewayRequest
from gateway.services.ledger import Ledger
from gateway.services.providers.base import ProviderAdapter

logger = get_logger(__name__)


class AdmissionGate:
    def __init__(self, context: GatewayContext, ledger: Ledger) -> None:
        self.context = context
        self.ledger = ledger

    def admit(self, request: GatewayRequest) -> ProviderAdapter:
        """Run all four checks and return the adapter for the request.

        Raises:
            RequestValidationError: ``py_ref`` missing.
            DuplicateReference: ``py_ref`` already in the ledger.
            UnknownProvider: Header missing or provider not configured.
        """
        ids = request.correlation_ids()
        if not request.py_ref:
            self._reject(request, RequestValidationError(ErrorMessage.MISSING_API_REF, ids))
        if self.ledger.reference_exists(request.py_ref):
            self._reject(request, DuplicateReference(request.py_ref, ids))
        return self.resolve(request)

    def resolve(self, request: GatewayRequest, require_reference: bool = False) -> ProviderAdapter:
        """Provider checks only, for routes that create no transaction."""
        ids = request.correlation_ids()
        if require_reference and not request.py_ref:
            self._reject(request, RequestValidationError(ErrorMessage.MISSING_API_REF, ids))
        if not request.provider_code:
            self._reject(request, UnknownProvider(ErrorMessage.MISSING_PROVIDER_HEADER, ids))
        if request.provider_code not in self.context.registry:
            self._reject(request, UnknownProvider(ErrorMessage.UNKNOWN_SERVICE_PROVIDER, ids))
        return self.context.adapter_for(request.provider_code, self.ledger)

    def _reject(self, request: GatewayRequest, error: GatewayError) -> NoReturn:
        response = error.to_response()
        logger.warning(
            "Request rejected: gateway_ref=%s py_ref=%s provider=%s reason=%s",
            request.gateway_ref,
            request.py_ref,
            request.provider_code,
            error.message,
        )
        self.ledger.log_request(request, LogLevel.INFO, error.message, response)
        raise error
