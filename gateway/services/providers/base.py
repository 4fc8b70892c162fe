"""Capability contract shared by every provider adapter.

An adapter implements whichever capabilities its network supports and
nothing else. Each capability is its own protocol, so "can this adapter
collect?" is a protocol check on the adapter class, and asking an adapter for a
capability it lacks produces a normal 400 envelope instead of an error.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, runtime_checkable

import httpx
from fastapi.concurrency import run_in_threadpool

from gateway.core.constants import LogLevel, StatusCode
from gateway.core.errors import RequestValidationError
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, create_response
from gateway.models.transaction import Transaction
from gateway.schemas.provider import ProviderConfig
from gateway.schemas.request import GatewayRequest
from gateway.services.ledger import Ledger

if TYPE_CHECKING:
    from gateway.core.context import GatewayContext

logger = get_logger(__name__)


class Capability(str, Enum):
    VALIDATE_ACCOUNT = "validate_account"
    COLLECT = "collect"
    TRANSFER = "transfer"
    CHECK_BALANCE = "check_balance"
    CHECK_TRANSACTION_STATUS = "check_transaction_status"
    HANDLE_WEBHOOK = "handle_webhook"
    SEND_SMS = "send_sms"


@dataclass
class UpstreamStatus:
    """Raw answer of a provider's status-query endpoint."""

    http_status: int
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    """A provider push reduced to what reconciliation needs.

    Exactly one of ``gateway_ref`` / ``provider_ref`` identifies the
    transaction, depending on which reference the provider echoes back.
    """

    successful: bool
    payload: dict[str, Any]
    gateway_ref: Optional[str] = None
    provider_ref: Optional[str] = None
    financial_transaction_id: Optional[str] = None


@runtime_checkable
class AccountValidator(Protocol):
    async def validate_account(self, request: GatewayRequest) -> GatewayResponse: ...


@runtime_checkable
class Collector(Protocol):
    async def collect(self, request: GatewayRequest) -> GatewayResponse: ...


@runtime_checkable
class Payer(Protocol):
    async def transfer(self, request: GatewayRequest) -> GatewayResponse: ...


@runtime_checkable
class BalanceChecker(Protocol):
    async def check_balance(self, request: GatewayRequest) -> GatewayResponse: ...


@runtime_checkable
class StatusQuerier(Protocol):
    async def query_transaction_status(
        self, request: GatewayRequest, txn: Transaction
    ) -> UpstreamStatus: ...


@runtime_checkable
class WebhookParser(Protocol):
    def parse_webhook(self, payload: dict[str, Any]) -> Optional[WebhookEvent]: ...


@runtime_checkable
class SmsSender(Protocol):
    async def send_sms(self, request: GatewayRequest) -> GatewayResponse: ...


CAPABILITY_PROTOCOLS: dict[Capability, type] = {
    Capability.VALIDATE_ACCOUNT: AccountValidator,
    Capability.COLLECT: Collector,
    Capability.TRANSFER: Payer,
    Capability.CHECK_BALANCE: BalanceChecker,
    Capability.CHECK_TRANSACTION_STATUS: StatusQuerier,
    Capability.HANDLE_WEBHOOK: WebhookParser,
    Capability.SEND_SMS: SmsSender,
}

# Capabilities driven directly by a request; the other two go through the
# reconciliation engine.
REQUEST_CAPABILITIES = (
    Capability.VALIDATE_ACCOUNT,
    Capability.COLLECT,
    Capability.TRANSFER,
    Capability.CHECK_BALANCE,
    Capability.SEND_SMS,
)


def supports(adapter: Any, capability: Capability) -> bool:
    """True if *adapter* (an instance or an adapter class) implements *capability*."""
    adapter_cls = adapter if isinstance(adapter, type) else type(adapter)
    return issubclass(adapter_cls, CAPABILITY_PROTOCOLS[capability])


def capabilities_of(adapter: Any) -> frozenset[Capability]:
    return frozenset(c for c in Capability if supports(adapter, c))


def unsupported(adapter: "ProviderAdapter", capability: Capability, data: Any = None) -> GatewayResponse:
    return create_response(
        StatusCode.BAD_REQUEST,
        data,
        f"{adapter.name} does not support {capability.value}.",
    )


async def invoke(
    adapter: "ProviderAdapter",
    capability: Capability,
    request: GatewayRequest,
) -> GatewayResponse:
    """Run a request capability, or answer 400 if the adapter lacks it."""
    if capability not in REQUEST_CAPABILITIES:
        raise ValueError(f"{capability.value} is not invoked per request")
    if not supports(adapter, capability):
        return unsupported(adapter, capability, request.correlation_ids())
    return await getattr(adapter, capability.value)(request)


class ProviderAdapter:
    """Plumbing shared by concrete adapters: config, HTTP, tokens, ledger.

    Adapters are built per request by the registry, so ``ledger`` is bound
    to that request's database session.
    """

    def __init__(
        self,
        config: ProviderConfig,
        context: "GatewayContext",
        ledger: Ledger,
    ) -> None:
        self.config = config
        self.context = context
        self.ledger = ledger
        self.http: httpx.AsyncClient = context.http
        self.tokens = context.tokens

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def code(self) -> str:
        return self.config.code

    def verify_webhook(self, headers: Mapping[str, str]) -> bool:
        """Check the shared-secret header when the provider has one configured."""
        secret = self.config.webhook_secret
        if not secret:
            return True
        supplied = headers.get(self.config.webhook_signature_header) or ""
        return hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8"))

    async def log_failure(self, request: GatewayRequest, message: str) -> None:
        logger.error(
            "%s call failed: gateway_ref=%s error=%s",
            self.code,
            request.gateway_ref,
            message,
        )
        await run_in_threadpool(
            self.ledger.log_message, request, LogLevel.DEBUG, message, provider=self.code
        )

    @staticmethod
    def require(details: Mapping[str, Any], *names: str) -> None:
        """Raise ``RequestValidationError`` naming the first missing field."""
        for name in names:
            value = details.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise RequestValidationError(f"missing {name}.")

    @staticmethod
    def parse_amount(value: Any) -> Decimal:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise RequestValidationError("invalid amount.")
        if not amount.is_finite() or amount <= 0:
            raise RequestValidationError("invalid amount.")
        return amount

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code!r})>"
