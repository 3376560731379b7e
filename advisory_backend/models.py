from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Numeric
from sqlmodel import Field, Relationship, SQLModel

from .timezone_utils import now_kst


class UserRole(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    USER = "user"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # stored lower-cased; uniqueness is case-insensitive
    email: str = Field(index=True, unique=True)
    name: str
    phone: Optional[str] = None
    role: UserRole = Field(default=UserRole.CUSTOMER)
    password_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=now_kst)
    updated_at: datetime = Field(default_factory=now_kst)

    accounts: list["Account"] = Relationship(back_populates="user")


class PortfolioType(SQLModel, table=True):
    __tablename__ = "portfolio_type"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    category: Optional[str] = None
    risk_level: Optional[int] = None
    created_at: datetime = Field(default_factory=now_kst)


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    account_number: str = Field(index=True, unique=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    portfolio_type: str
    portfolio_type_id: Optional[int] = Field(default=None, foreign_key="portfolio_type.id")
    contract_date: Optional[date] = None
    created_at: datetime = Field(default_factory=now_kst)
    updated_at: datetime = Field(default_factory=now_kst)

    user: Optional[User] = Relationship(back_populates="accounts")
    balance_records: list["BalanceRecord"] = Relationship(back_populates="account")


class BalanceRecord(SQLModel, table=True):
    __tablename__ = "balance_record"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    balance: Decimal = Field(sa_column=Column(Numeric(18, 2), nullable=False))
    record_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=now_kst)

    account: Optional[Account] = Relationship(back_populates="balance_records")


class OverduePaymentRecord(SQLModel, table=True):
    __tablename__ = "overdue_payment"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_name: str
    account_number: str = Field(index=True)
    contract_date: Optional[date] = None
    mp_name: Optional[str] = None
    withdrawal_account: Optional[str] = None
    previous_day_balance: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(18, 2)))
    advisory_fee_total: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(18, 2)))
    paid_amount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(18, 2)))
    unpaid_amount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(18, 2)))
    manager: Optional[str] = None
    contact_number: Optional[str] = None
    overdue_status: Optional[str] = None
    batch_id: str = Field(index=True)
    updated_at: datetime = Field(default_factory=now_kst, index=True)


class OverduePaymentUpload(SQLModel, table=True):
    __tablename__ = "overdue_payment_upload"

    # same value as the batch_id stamped on the replaced rows
    id: str = Field(primary_key=True)
    file_name: str
    record_count: int
    uploaded_by: Optional[int] = Field(default=None, foreign_key="user.id")
    uploaded_at: datetime = Field(default_factory=now_kst, index=True)


class PortfolioReport(SQLModel, table=True):
    __tablename__ = "portfolio_report"

    id: Optional[int] = Field(default=None, primary_key=True)
    portfolio_type: str = Field(index=True)
    report_url: str
    report_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=now_kst)
