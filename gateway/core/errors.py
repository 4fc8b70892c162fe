"""Error taxonomy for the gateway core.

Adapters and the reconciliation engine catch these locally and turn them
into envelopes with ``to_response()``. Only the HTTP dependencies
(authentication, body parsing, admission) let them escape, where the
exception handler in ``gateway.main`` renders them the same way.
"""

from __future__ import annotations

from typing import Any, Optional

from gateway.core.constants import ErrorMessage, StatusCode
from gateway.core.responses import GatewayResponse, create_response


class ConfigurationError(Exception):
    """Provider or application configuration is unusable at startup."""


class GatewayError(Exception):
    """Base class for failures that map onto a response envelope."""

    code: int = StatusCode.INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "", data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_response(self, data: Any = None) -> GatewayResponse:
        """Render as an envelope; *data* overrides the stored payload."""
        payload = data if data is not None else self.data
        return create_response(self.code, payload, self.message)


class RequestValidationError(GatewayError):
    code = StatusCode.BAD_REQUEST


class DuplicateReference(GatewayError):
    code = StatusCode.BAD_REQUEST

    def __init__(self, py_ref: str, data: Any = None) -> None:
        super().__init__(ErrorMessage.NON_UNIQUE_TRANSACTION, data)
        self.py_ref = py_ref


class UnknownProvider(GatewayError):
    code = StatusCode.BAD_REQUEST


class Unauthorized(GatewayError):
    # 400 rather than 401 is the convention callers already rely on.
    code = StatusCode.BAD_REQUEST


class WebhookRejected(GatewayError):
    code = StatusCode.UNAUTHORIZED


class TransactionNotFound(GatewayError):
    code = StatusCode.BAD_REQUEST

    def __init__(self, data: Any = None) -> None:
        super().__init__(ErrorMessage.TRANSACTION_NOT_FOUND, data)


class UpstreamRejected(GatewayError):
    code = StatusCode.UNPROCESSABLE_ENTITY


class UpstreamUnreachable(GatewayError):
    code = StatusCode.INTERNAL_SERVER_ERROR


class StillPending(GatewayError):
    """Upstream has not settled the transaction yet."""

    code = StatusCode.GATEWAY_TIMEOUT


class TokenAcquisitionFailed(GatewayError):
    """Carries the token manager's envelope so callers can return it as is."""

    def __init__(self, response: GatewayResponse) -> None:
        super().__init__(response.message, response.data)
        self.code = response.code
        self.response = response

    def to_response(self, data: Optional[Any] = None) -> GatewayResponse:
        return self.response
