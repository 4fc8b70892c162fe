"""Transaction ledger and audit log access.

The core only ever needs four things from storage: insert a record, find
one, update one by key and count matches. ``Ledger`` offers exactly those
over the SQLAlchemy session, plus the two insert-only audit logs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gateway.core.constants import LogLevel
from gateway.core.errors import DuplicateReference, RequestValidationError
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse
from gateway.models.logs import MessageLog, RequestLog
from gateway.models.transaction import Transaction
from gateway.schemas.request import GatewayRequest

logger = get_logger(__name__)


def check_widths(record: dict[str, Any]) -> None:
    """Reject string values longer than their ``String(n)`` column."""
    columns = Transaction.__mapper__.columns
    for name, value in record.items():
        if value is None or name not in columns:
            continue
        length = getattr(columns[name].type, "length", None)
        if length and isinstance(value, str) and len(value) > length:
            raise RequestValidationError(f"{name} longer than {length} characters.")


class Ledger:
    """Document-store style access to the ``transactions`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Transactions ─────────────────────────────────────────────────

    def insert_one(self, record: dict[str, Any]) -> Transaction:
        """Persist a new transaction.

        Raises:
            RequestValidationError: A value does not fit its column.
            DuplicateReference: If another record already holds the same
                ``py_ref``. This backs up the admission gate's count check
                for two requests that pass it at the same time.
        """
        check_widths(record)
        txn = Transaction(**record)
        self.db.add(txn)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                "Duplicate py_ref rejected on insert: py_ref=%s gateway_ref=%s",
                record.get("py_ref"),
                record.get("gateway_ref"),
            )
            raise DuplicateReference(record.get("py_ref", ""))
        except DataError as exc:
            self.db.rollback()
            logger.warning(
                "Insert rejected by the database: gateway_ref=%s error=%s",
                record.get("gateway_ref"),
                exc.orig,
            )
            raise RequestValidationError("invalid field value.")
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(txn)
        return txn

    def find_one(self, **criteria: Any) -> Optional[Transaction]:
        return self.db.query(Transaction).filter_by(**criteria).first()

    def count(self, **criteria: Any) -> int:
        return self.db.query(Transaction).filter_by(**criteria).count()

    def reference_exists(self, py_ref: str) -> bool:
        return self.count(py_ref=py_ref) > 0

    def update_one(
        self,
        criteria: dict[str, Any],
        patch: dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> int:
        """Apply *patch* to the record matching *criteria*.

        When *expected_status* is given the write only lands if the record
        still has that status, so two paths racing to finish the same
        transaction cannot overwrite each other.

        Returns:
            Number of rows changed (0 or 1).
        """
        query = self.db.query(Transaction).filter_by(**criteria)
        if expected_status is not None:
            query = query.filter(Transaction.status == expected_status)

        values = {**patch, "updated_at": datetime.utcnow()}
        updated = query.update(values, synchronize_session="fetch")
        self.db.commit()
        return updated

    # ── Audit logs ───────────────────────────────────────────────────

    def log_request(
        self,
        request: GatewayRequest,
        level: LogLevel,
        message: str,
        response: Optional[GatewayResponse] = None,
    ) -> None:
        """Record a rejected request together with the envelope sent back."""
        entry = RequestLog(
            gateway_ref=request.gateway_ref,
            provider=request.provider_code,
            url=request.url,
            ip_address=request.ip_address,
            level=level.value,
            message=message,
            request_body=request.body,
            response_body=response.model_dump(mode="json") if response else None,
        )
        self._insert_audit(entry)

    def log_message(
        self,
        request: Optional[GatewayRequest],
        level: LogLevel,
        message: str,
        provider: Optional[str] = None,
    ) -> None:
        """Record an adapter or engine failure note."""
        entry = MessageLog(
            gateway_ref=request.gateway_ref if request else None,
            provider=provider or (request.provider_code if request else None),
            url=request.url if request else None,
            level=level.value,
            message=message,
        )
        self._insert_audit(entry)

    def _insert_audit(self, entry: RequestLog | MessageLog) -> None:
        # An audit write must never turn a handled failure into a crash.
        self.db.add(entry)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to write %s", type(entry).__name__)
