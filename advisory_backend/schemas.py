from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .models import UserRole
from .persistence import PersistencePath


class ApiEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    error: Optional[str] = None


class ErrorResponse(ApiEnvelope):
    success: bool = False
    detail: Optional[Dict[str, Any]] = None


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("email is required")
        return normalized


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRead(BaseModel):
    id: int
    email: str
    name: str
    phone: Optional[str] = None
    role: UserRole
    model_config = ConfigDict(from_attributes=True)


class CurrentUserResponse(ApiEnvelope):
    data: UserRead


class UserSummary(BaseModel):
    id: int
    name: str
    email: str
    model_config = ConfigDict(from_attributes=True)


class AccountSummary(BaseModel):
    id: int
    account_number: str
    portfolio_type: str
    model_config = ConfigDict(from_attributes=True)


class BalanceSummary(BaseModel):
    id: int
    balance: Decimal
    record_date: date
    model_config = ConfigDict(from_attributes=True)


class ProcessedTriple(BaseModel):
    user: UserSummary
    account: AccountSummary
    balance: BalanceSummary


class SkippedRowRead(BaseModel):
    row_number: int
    reason: str


class FailedRowRead(BaseModel):
    row_number: int
    error: str


class CustomerUploadData(BaseModel):
    path: PersistencePath
    file_name: str
    record_date: date
    processed_count: int
    skipped_count: int
    failed_count: int
    processed: List[ProcessedTriple]
    skipped: List[SkippedRowRead]
    failed: List[FailedRowRead]
    fallback_reason: Optional[str] = None


class CustomerUploadResponse(ApiEnvelope):
    data: CustomerUploadData


class OverdueUploadData(BaseModel):
    batch_id: str
    record_count: int
    file_name: str


class OverdueUploadResponse(ApiEnvelope):
    data: OverdueUploadData


class OverduePaymentRead(BaseModel):
    id: int
    account_name: str
    account_number: str
    contract_date: Optional[date] = None
    mp_name: Optional[str] = None
    withdrawal_account: Optional[str] = None
    previous_day_balance: Optional[Decimal] = None
    advisory_fee_total: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None
    unpaid_amount: Optional[Decimal] = None
    manager: Optional[str] = None
    contact_number: Optional[str] = None
    overdue_status: Optional[str] = None
    batch_id: str
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    current_page: int
    total_pages: int
    total_count: int


class OverduePaymentPage(ApiEnvelope):
    data: List[OverduePaymentRead]
    meta: PageMeta


class LatestBatchData(BaseModel):
    batch_id: Optional[str] = None


class LatestBatchResponse(ApiEnvelope):
    data: LatestBatchData


class OverdueDeleteRequest(BaseModel):
    payment_ids: List[int] = []


class DeletedCount(BaseModel):
    deleted_count: int


class OverdueDeleteResponse(ApiEnvelope):
    data: DeletedCount


class OverdueUploadRead(BaseModel):
    id: str
    file_name: str
    record_count: int
    uploaded_by: Optional[int] = None
    uploaded_at: datetime
    model_config = ConfigDict(from_attributes=True)


class OverdueUploadHistoryResponse(ApiEnvelope):
    data: List[OverdueUploadRead]


class CustomerOverdueData(BaseModel):
    has_overdue: bool
    overdue_payments: List[OverduePaymentRead]


class CustomerOverdueResponse(ApiEnvelope):
    data: CustomerOverdueData


class AccountBalanceRead(BaseModel):
    id: int
    account_number: str
    portfolio_type: str
    portfolio_type_id: Optional[int] = None
    contract_date: Optional[date] = None
    current_balance: Optional[Decimal] = None
    current_balance_date: Optional[date] = None


class UserAccountsResponse(ApiEnvelope):
    data: List[AccountBalanceRead]


class BalanceHistoryData(BaseModel):
    account: AccountBalanceRead
    records: List[BalanceSummary]


class BalanceHistoryResponse(ApiEnvelope):
    data: BalanceHistoryData


class PortfolioReportData(BaseModel):
    path: PersistencePath
    id: int
    portfolio_type: str
    report_url: str
    report_date: date


class PortfolioReportResponse(ApiEnvelope):
    data: PortfolioReportData


class PortfolioTypeRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    risk_level: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class PortfolioTypesResponse(ApiEnvelope):
    data: List[PortfolioTypeRead]
