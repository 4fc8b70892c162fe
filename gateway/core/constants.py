"""Status codes, transaction enums and canned messages shared by the gateway."""

from __future__ import annotations

from enum import Enum, IntEnum


class StatusCode(IntEnum):
    """HTTP status codes used in response envelopes."""

    OK = 200
    CREATED = 201
    ACCEPTED = 202
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504


class TransactionType(str, Enum):
    COLLECTION = "COLLECTION"
    PAYOUT = "PAYOUT"
    PURCHASE = "PURCHASE"
    VALIDATION = "VALIDATION"


class TransactionStatus(str, Enum):
    """Ledger statuses. PENDING is the only non-terminal one."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    LOGGED = "LOGGED"


class CompletedBy(str, Enum):
    """Which path moved a transaction out of PENDING."""

    REQUEST = "REQUEST"
    WEBHOOK = "WEBHOOK"
    TRANS_CHECK = "TRANS_CHECK"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorMessage:
    NON_UNIQUE_TRANSACTION = "Transaction already exists. Please provide a unique py_ref."
    MISSING_API_REF = "Missing api reference (py_ref)."
    MISSING_PROVIDER_HEADER = "Missing provider header."
    UNKNOWN_SERVICE_PROVIDER = "Unknown service provider."
    UNAUTHORIZED_ACCESS = "Unauthorized API access."
    UNAUTHORIZED_WEBHOOK = "Webhook signature mismatch."
    RESPONSE_TIMEOUT = "Timeout, response took so long."
    ROUTE_NOT_FOUND = "Route not found."
    UNSUPPORTED_CONTENT_TYPE = "Unrecognized Request Content Type"
    TRANSACTION_NOT_FOUND = "Transaction not found."
    TOKEN_DETAILS_NOT_FOUND = "Access Token Details not found"
    TOKEN_CREATION_FAILED = "Access Token creation failed"
    VERIFICATION_FAILED = "Transaction verification failed"
    STILL_PENDING = "Transaction is still in progress."
    PROVIDER_MISMATCH = "Transaction belongs to a different service provider."


def is_terminal(status: str | None) -> bool:
    """Every status other than PENDING is final."""
    return status is not None and status != TransactionStatus.PENDING.value
