"""SQLAlchemy models for the payment gateway ledger."""

from gateway.models.logs import MessageLog, RequestLog
from gateway.models.transaction import Transaction

__all__ = [
    "Transaction",
    "RequestLog",
    "MessageLog",
]
