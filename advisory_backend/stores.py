"""The two clients that reach the relational store.

``OrmEntityStore`` works inside a SQLModel session and never commits on its own;
the caller owns the transaction. ``DirectEntityStore`` issues Core statements on
a plain connection and commits after every write, so each write stands alone.
Both return the same lightweight references so callers do not care which one
they were handed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, insert, select as sa_select
from sqlalchemy.engine import Connection
from sqlmodel import Session, select

from .models import Account, BalanceRecord, PortfolioReport, PortfolioType, User, UserRole
from .roles import normalize_email
from .timezone_utils import now_kst


@dataclass(frozen=True)
class UserRef:
    id: int
    name: str
    email: str


@dataclass(frozen=True)
class AccountRef:
    id: int
    account_number: str
    portfolio_type: str
    user_id: int


@dataclass(frozen=True)
class BalanceRef:
    id: int
    balance: Decimal
    record_date: date


@dataclass(frozen=True)
class ReportRef:
    id: int
    portfolio_type: str
    report_url: str
    report_date: date


class EntityStore:
    """Create-or-find primitives shared by both persistence paths."""

    def find_user_by_email(self, email: str) -> Optional[UserRef]:
        raise NotImplementedError

    def create_user(self, *, email: str, name: str, phone: Optional[str], role: UserRole) -> UserRef:
        raise NotImplementedError

    def find_account(self, account_number: str) -> Optional[AccountRef]:
        raise NotImplementedError

    def create_account(
        self,
        *,
        user_id: int,
        account_number: str,
        portfolio_type: str,
        portfolio_type_id: Optional[int],
        contract_date: Optional[date],
    ) -> AccountRef:
        raise NotImplementedError

    def find_portfolio_type_id(self, name: str) -> Optional[int]:
        raise NotImplementedError

    def add_balance_record(self, *, account_id: int, balance: Decimal, record_date: date) -> BalanceRef:
        raise NotImplementedError

    def add_portfolio_report(self, *, portfolio_type: str, report_url: str, report_date: date) -> ReportRef:
        raise NotImplementedError


class OrmEntityStore(EntityStore):
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_user_by_email(self, email: str) -> Optional[UserRef]:
        user = self.session.exec(select(User).where(func.lower(User.email) == normalize_email(email))).first()
        if not user:
            return None
        return UserRef(id=user.id, name=user.name, email=user.email)

    def create_user(self, *, email: str, name: str, phone: Optional[str], role: UserRole) -> UserRef:
        user = User(email=normalize_email(email), name=name, phone=phone, role=role)
        self.session.add(user)
        self.session.flush()
        return UserRef(id=user.id, name=user.name, email=user.email)

    def find_account(self, account_number: str) -> Optional[AccountRef]:
        account = self.session.exec(select(Account).where(Account.account_number == account_number)).first()
        if not account:
            return None
        return AccountRef(
            id=account.id,
            account_number=account.account_number,
            portfolio_type=account.portfolio_type,
            user_id=account.user_id,
        )

    def create_account(
        self,
        *,
        user_id: int,
        account_number: str,
        portfolio_type: str,
        portfolio_type_id: Optional[int],
        contract_date: Optional[date],
    ) -> AccountRef:
        account = Account(
            user_id=user_id,
            account_number=account_number,
            portfolio_type=portfolio_type,
            portfolio_type_id=portfolio_type_id,
            contract_date=contract_date,
        )
        self.session.add(account)
        self.session.flush()
        return AccountRef(
            id=account.id,
            account_number=account.account_number,
            portfolio_type=account.portfolio_type,
            user_id=account.user_id,
        )

    def find_portfolio_type_id(self, name: str) -> Optional[int]:
        return self.session.exec(select(PortfolioType.id).where(PortfolioType.name == name)).first()

    def add_balance_record(self, *, account_id: int, balance: Decimal, record_date: date) -> BalanceRef:
        record = BalanceRecord(account_id=account_id, balance=balance, record_date=record_date)
        self.session.add(record)
        self.session.flush()
        return BalanceRef(id=record.id, balance=record.balance, record_date=record.record_date)

    def add_portfolio_report(self, *, portfolio_type: str, report_url: str, report_date: date) -> ReportRef:
        report = PortfolioReport(portfolio_type=portfolio_type, report_url=report_url, report_date=report_date)
        self.session.add(report)
        self.session.flush()
        return ReportRef(
            id=report.id,
            portfolio_type=report.portfolio_type,
            report_url=report.report_url,
            report_date=report.report_date,
        )


class DirectEntityStore(EntityStore):
    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    def _insert(self, table, values: dict) -> int:
        result = self.connection.execute(insert(table).values(**values))
        self.connection.commit()
        return result.inserted_primary_key[0]

    def find_user_by_email(self, email: str) -> Optional[UserRef]:
        table = User.__table__
        row = self.connection.execute(
            sa_select(table.c.id, table.c.name, table.c.email).where(
                func.lower(table.c.email) == normalize_email(email)
            )
        ).first()
        self.connection.commit()
        if row is None:
            return None
        return UserRef(id=row.id, name=row.name, email=row.email)

    def create_user(self, *, email: str, name: str, phone: Optional[str], role: UserRole) -> UserRef:
        now = now_kst()
        normalized = normalize_email(email)
        user_id = self._insert(
            User.__table__,
            {
                "email": normalized,
                "name": name,
                "phone": phone,
                "role": role,
                "created_at": now,
                "updated_at": now,
            },
        )
        return UserRef(id=user_id, name=name, email=normalized)

    def find_account(self, account_number: str) -> Optional[AccountRef]:
        table = Account.__table__
        row = self.connection.execute(
            sa_select(table.c.id, table.c.account_number, table.c.portfolio_type, table.c.user_id).where(
                table.c.account_number == account_number
            )
        ).first()
        self.connection.commit()
        if row is None:
            return None
        return AccountRef(
            id=row.id,
            account_number=row.account_number,
            portfolio_type=row.portfolio_type,
            user_id=row.user_id,
        )

    def create_account(
        self,
        *,
        user_id: int,
        account_number: str,
        portfolio_type: str,
        portfolio_type_id: Optional[int],
        contract_date: Optional[date],
    ) -> AccountRef:
        now = now_kst()
        account_id = self._insert(
            Account.__table__,
            {
                "user_id": user_id,
                "account_number": account_number,
                "portfolio_type": portfolio_type,
                "portfolio_type_id": portfolio_type_id,
                "contract_date": contract_date,
                "created_at": now,
                "updated_at": now,
            },
        )
        return AccountRef(id=account_id, account_number=account_number, portfolio_type=portfolio_type, user_id=user_id)

    def find_portfolio_type_id(self, name: str) -> Optional[int]:
        table = PortfolioType.__table__
        value = self.connection.execute(sa_select(table.c.id).where(table.c.name == name)).scalar()
        self.connection.commit()
        return value

    def add_balance_record(self, *, account_id: int, balance: Decimal, record_date: date) -> BalanceRef:
        record_id = self._insert(
            BalanceRecord.__table__,
            {
                "account_id": account_id,
                "balance": balance,
                "record_date": record_date,
                "created_at": now_kst(),
            },
        )
        return BalanceRef(id=record_id, balance=balance, record_date=record_date)

    def add_portfolio_report(self, *, portfolio_type: str, report_url: str, report_date: date) -> ReportRef:
        report_id = self._insert(
            PortfolioReport.__table__,
            {
                "portfolio_type": portfolio_type,
                "report_url": report_url,
                "report_date": report_date,
                "created_at": now_kst(),
            },
        )
        return ReportRef(id=report_id, portfolio_type=portfolio_type, report_url=report_url, report_date=report_date)
