"""Find-or-create reconciliation of customer roster rows.

Each valid row resolves a user by e-mail and an account by account number,
creating whichever is missing, then appends one balance record stamped with
the upload's record date. Balances are never updated in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .dates import to_calendar_date
from .logging_utils import get_logger
from .roles import RoleAssignments, normalize_email
from .spreadsheet import ParsedSheet, cell_text, parse_amount, pick
from .stores import AccountRef, BalanceRef, EntityStore, UserRef

logger = get_logger(__name__)

CUSTOMER_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "name": ("이름", "고객명", "name"),
    "email": ("이메일", "email", "e-mail"),
    "account_number": ("계좌번호", "account_number", "account number"),
    "portfolio_name": ("포트폴리오명", "portfolio_name", "portfolio"),
    "end_of_period_balance": ("말일잔고", "end_of_period_balance", "balance"),
    "phone": ("전화번호", "연락처", "phone"),
    "contract_date": ("계약일", "contract_date"),
}
REQUIRED_FIELDS = ("name", "email", "account_number", "portfolio_name", "end_of_period_balance")


@dataclass(frozen=True)
class CustomerRow:
    row_number: int
    name: str
    email: str
    account_number: str
    portfolio_name: str
    balance: Decimal
    phone: Optional[str] = None
    contract_date: Optional[date] = None


@dataclass(frozen=True)
class SkippedRow:
    row_number: int
    reason: str


@dataclass(frozen=True)
class ProcessedRecord:
    user: UserRef
    account: AccountRef
    balance: BalanceRef


def prepare_customer_rows(sheet: ParsedSheet) -> Tuple[List[CustomerRow], List[SkippedRow]]:
    """Validate roster rows before any write; invalid rows are skipped, not fatal."""
    rows: List[CustomerRow] = []
    skipped: List[SkippedRow] = []
    for row_number, named in zip(sheet.row_numbers, sheet.rows):
        values = {key: pick(named, aliases) for key, aliases in CUSTOMER_COLUMNS.items()}
        missing = [key for key in REQUIRED_FIELDS if values[key] is None]
        if missing:
            reason = "missing " + ", ".join(missing)
            logger.info("Row %d skipped: %s", row_number, reason)
            skipped.append(SkippedRow(row_number=row_number, reason=reason))
            continue
        balance = parse_amount(values["end_of_period_balance"])
        if balance is None:
            logger.info("Row %d skipped: unreadable balance %r", row_number, values["end_of_period_balance"])
            skipped.append(SkippedRow(row_number=row_number, reason="invalid end_of_period_balance"))
            continue
        rows.append(
            CustomerRow(
                row_number=row_number,
                name=cell_text(values["name"]),
                email=normalize_email(cell_text(values["email"])),
                account_number=cell_text(values["account_number"]),
                portfolio_name=cell_text(values["portfolio_name"]),
                balance=balance,
                phone=cell_text(values["phone"]),
                contract_date=to_calendar_date(values["contract_date"]),
            )
        )
    return rows, skipped


class EntityReconciler:
    def __init__(self, roles: RoleAssignments) -> None:
        self.roles = roles

    def resolve_user(self, store: EntityStore, row: CustomerRow) -> UserRef:
        user = store.find_user_by_email(row.email)
        if user:
            return user
        role = self.roles.role_for(row.email)
        logger.info("Creating %s user for %s", role.value, row.email)
        return store.create_user(email=row.email, name=row.name, phone=row.phone, role=role)

    def resolve_account(self, store: EntityStore, row: CustomerRow, user: UserRef) -> AccountRef:
        account = store.find_account(row.account_number)
        if account:
            if account.user_id != user.id:
                # accounts are never re-assigned to another owner
                logger.warning(
                    "Account %s belongs to user %s, row %d names %s",
                    row.account_number,
                    account.user_id,
                    row.row_number,
                    row.email,
                )
            return account
        portfolio_type_id = store.find_portfolio_type_id(row.portfolio_name)
        if portfolio_type_id is None:
            logger.warning("Portfolio type %r not found; account %s keeps no type id", row.portfolio_name, row.account_number)
        return store.create_account(
            user_id=user.id,
            account_number=row.account_number,
            portfolio_type=row.portfolio_name,
            portfolio_type_id=portfolio_type_id,
            contract_date=row.contract_date,
        )

    def reconcile(self, store: EntityStore, row: CustomerRow, record_date: date) -> ProcessedRecord:
        user = self.resolve_user(store, row)
        account = self.resolve_account(store, row, user)
        balance = store.add_balance_record(account_id=account.id, balance=row.balance, record_date=record_date)
        return ProcessedRecord(user=user, account=account, balance=balance)
