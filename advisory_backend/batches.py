"""Full-table replacement of the overdue-payment feed.

Every accepted upload becomes one batch: the previous table contents are
deleted and the new rows inserted under a fresh batch id, together with an
upload-history entry, in a single transaction. Replacements of the same table
are serialized through a per-resource lock held for the whole swap.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .dates import to_calendar_date
from .exceptions import ConcurrentBatchError, EmptyInputError, PersistenceFailure, ValidationError
from .logging_utils import get_logger
from .models import OverduePaymentRecord, OverduePaymentUpload
from .settings import OVERDUE_STATUS_COLUMN
from .spreadsheet import ParsedSheet, cell_text, parse_amount, pick
from .timezone_utils import now_kst

logger = get_logger(__name__)

OVERDUE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "account_name": ("계좌명", "account_name"),
    "contract_date": ("계약일", "contract_date"),
    "mp_name": ("대표MP명", "mp_name"),
    "account_number": ("계좌번호", "account_number"),
    "withdrawal_account": ("수수료출금계좌", "withdrawal_account"),
    "previous_day_balance": ("전일잔고", "previous_day_balance"),
    "advisory_fee_total": ("자문수수료계", "advisory_fee_total"),
    "paid_amount": ("납입액", "paid_amount"),
    "unpaid_amount": ("미납금액", "unpaid_amount"),
    "manager": ("유치자", "manager"),
    "contact_number": ("연락처", "contact_number"),
}
AMOUNT_FIELDS = ("previous_day_balance", "advisory_fee_total", "paid_amount", "unpaid_amount")
TEXT_FIELDS = ("account_name", "mp_name", "account_number", "withdrawal_account", "manager", "contact_number")

_resource_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def resource_lock(resource: str) -> threading.Lock:
    with _registry_lock:
        lock = _resource_locks.get(resource)
        if lock is None:
            lock = threading.Lock()
            _resource_locks[resource] = lock
        return lock


@dataclass(frozen=True)
class BatchResult:
    batch_id: str
    record_count: int
    file_name: str


def map_overdue_rows(sheet: ParsedSheet, batch_id: str, *, status_column: str) -> List[OverduePaymentRecord]:
    """Map parsed rows to records; the status is read by column letter, not header."""
    stamped_at = now_kst()
    records: List[OverduePaymentRecord] = []
    incomplete: List[int] = []
    for row_number, named, raw in zip(sheet.row_numbers, sheet.rows, sheet.raw_rows):
        values = {key: pick(named, aliases) for key, aliases in OVERDUE_COLUMNS.items()}
        fields = {key: cell_text(values[key]) for key in TEXT_FIELDS}
        if not fields["account_name"] or not fields["account_number"]:
            incomplete.append(row_number)
            continue
        fields.update({key: parse_amount(values[key]) for key in AMOUNT_FIELDS})
        records.append(
            OverduePaymentRecord(
                **fields,
                contract_date=to_calendar_date(values["contract_date"]),
                overdue_status=cell_text(raw.get(status_column)),
                batch_id=batch_id,
                updated_at=stamped_at,
            )
        )
    if incomplete:
        raise ValidationError(
            "Rows without an account name or account number cannot be loaded",
            context={"rows": incomplete},
        )
    return records


class BatchReplacementEngine:
    resource = "overdue_payment"

    def __init__(self, engine: Engine, *, status_column: str = OVERDUE_STATUS_COLUMN) -> None:
        self.engine = engine
        self.status_column = status_column

    def replace(self, sheet: ParsedSheet, *, file_name: str, uploaded_by: Optional[int] = None) -> BatchResult:
        """Swap the whole overdue table for the rows in ``sheet``.

        Raises:
            EmptyInputError: ``sheet`` has no rows; the table is untouched.
            ValidationError: a row lacks its account identity; the table is untouched.
            ConcurrentBatchError: another replacement is running.
            PersistenceFailure: the swap failed; ``store_emptied`` reports whether
                the table was left empty.
        """
        if not len(sheet):
            raise EmptyInputError("The spreadsheet has no data rows")
        batch_id = str(uuid.uuid4())
        records = map_overdue_rows(sheet, batch_id, status_column=self.status_column)

        lock = resource_lock(self.resource)
        if not lock.acquire(blocking=False):
            raise ConcurrentBatchError(
                "Another overdue-payment upload is in progress; retry once it finishes",
                context={"resource": self.resource},
            )
        try:
            self._swap(records, batch_id=batch_id, file_name=file_name, uploaded_by=uploaded_by)
        finally:
            lock.release()
        logger.info("Overdue batch %s replaced the table with %d rows from %s", batch_id, len(records), file_name)
        return BatchResult(batch_id=batch_id, record_count=len(records), file_name=file_name)

    def _swap(self, records: List[OverduePaymentRecord], *, batch_id: str, file_name: str, uploaded_by: Optional[int]) -> None:
        try:
            with Session(self.engine) as session:
                with session.begin():
                    session.connection().execute(delete(OverduePaymentRecord.__table__))
                    session.add_all(records)
                    session.add(
                        OverduePaymentUpload(
                            id=batch_id,
                            file_name=file_name,
                            record_count=len(records),
                            uploaded_by=uploaded_by,
                        )
                    )
        except SQLAlchemyError as exc:
            emptied = self.table_is_empty()
            logger.error(
                "Overdue batch %s failed (table emptied: %s); a manual re-upload is required: %s",
                batch_id,
                emptied,
                exc,
            )
            raise PersistenceFailure(
                "Overdue-payment replacement failed; re-upload the file",
                store_emptied=emptied,
                context={"batch_id": batch_id, "file_name": file_name, "error_type": type(exc).__name__},
            ) from exc

    def table_is_empty(self) -> bool:
        try:
            with Session(self.engine) as session:
                count = session.exec(select(func.count()).select_from(OverduePaymentRecord)).one()
        except SQLAlchemyError:
            # an unreadable table is reported as emptied
            return True
        return count == 0
