from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException, status
from sqlalchemy import delete, func, or_
from sqlmodel import Session, select

from .ingestion import CustomerUploadResult, PortfolioReportResult
from .models import Account, BalanceRecord, OverduePaymentRecord, OverduePaymentUpload, PortfolioType
from .schemas import (
    AccountBalanceRead,
    AccountSummary,
    BalanceSummary,
    CustomerUploadData,
    FailedRowRead,
    OverduePaymentRead,
    OverdueUploadRead,
    PageMeta,
    PortfolioReportData,
    ProcessedTriple,
    SkippedRowRead,
    UserSummary,
)
from .timezone_utils import ensure_kst_datetime


def get_latest_batch_id(session: Session) -> Optional[str]:
    statement = (
        select(OverduePaymentRecord.batch_id)
        .order_by(OverduePaymentRecord.updated_at.desc(), OverduePaymentRecord.id.desc())
        .limit(1)
    )
    return session.exec(statement).first()


def list_overdue_payments(
    session: Session,
    *,
    batch_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[OverduePaymentRecord], PageMeta]:
    safe_limit = max(1, min(limit, 200))
    safe_page = max(1, page)
    filters = []
    if batch_id:
        filters.append(OverduePaymentRecord.batch_id == batch_id)
    term = (search or "").strip().lower()
    if term:
        pattern = f"%{term}%"
        filters.append(
            or_(
                func.lower(OverduePaymentRecord.account_name).like(pattern),
                func.lower(OverduePaymentRecord.account_number).like(pattern),
                func.lower(OverduePaymentRecord.overdue_status).like(pattern),
                func.lower(OverduePaymentRecord.mp_name).like(pattern),
            )
        )
    total = session.exec(select(func.count()).select_from(OverduePaymentRecord).where(*filters)).one()
    records = session.exec(
        select(OverduePaymentRecord)
        .where(*filters)
        .order_by(OverduePaymentRecord.id.asc())
        .offset((safe_page - 1) * safe_limit)
        .limit(safe_limit)
    ).all()
    meta = PageMeta(current_page=safe_page, total_pages=math.ceil(total / safe_limit), total_count=total)
    return list(records), meta


def delete_overdue_payments(session: Session, payment_ids: Sequence[int]) -> int:
    if not payment_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No overdue payment ids were given")
    result = session.exec(delete(OverduePaymentRecord).where(OverduePaymentRecord.id.in_(payment_ids)))
    session.commit()
    return result.rowcount or 0


def list_overdue_uploads(session: Session, limit: int = 50) -> List[OverduePaymentUpload]:
    statement = select(OverduePaymentUpload).order_by(OverduePaymentUpload.uploaded_at.desc()).limit(max(1, limit))
    return list(session.exec(statement).all())


def list_overdue_for_user(session: Session, user_id: int) -> List[OverduePaymentRecord]:
    account_numbers = session.exec(select(Account.account_number).where(Account.user_id == user_id)).all()
    if not account_numbers:
        return []
    statement = (
        select(OverduePaymentRecord)
        .where(OverduePaymentRecord.account_number.in_(account_numbers))
        .order_by(OverduePaymentRecord.id.asc())
    )
    return list(session.exec(statement).all())


def latest_balances(session: Session, account_ids: Sequence[int]) -> Dict[int, BalanceRecord]:
    """Current balance per account: the record with the most recent record_date."""
    if not account_ids:
        return {}
    records = session.exec(
        select(BalanceRecord)
        .where(BalanceRecord.account_id.in_(account_ids))
        .order_by(BalanceRecord.record_date.asc(), BalanceRecord.id.asc())
    ).all()
    current: Dict[int, BalanceRecord] = {}
    for record in records:
        current[record.account_id] = record
    return current


def to_account_balance_read(account: Account, current: Optional[BalanceRecord]) -> AccountBalanceRead:
    return AccountBalanceRead(
        id=account.id,
        account_number=account.account_number,
        portfolio_type=account.portfolio_type,
        portfolio_type_id=account.portfolio_type_id,
        contract_date=account.contract_date,
        current_balance=current.balance if current else None,
        current_balance_date=current.record_date if current else None,
    )


def list_user_accounts(session: Session, user_id: int) -> List[AccountBalanceRead]:
    accounts = session.exec(select(Account).where(Account.user_id == user_id).order_by(Account.id.asc())).all()
    current = latest_balances(session, [account.id for account in accounts])
    return [to_account_balance_read(account, current.get(account.id)) for account in accounts]


def get_user_account(session: Session, user_id: int, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if not account or account.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account


def get_balance_history(session: Session, account: Account) -> List[BalanceRecord]:
    statement = (
        select(BalanceRecord)
        .where(BalanceRecord.account_id == account.id)
        .order_by(BalanceRecord.record_date.asc(), BalanceRecord.id.asc())
    )
    return list(session.exec(statement).all())


def list_portfolio_types(session: Session) -> List[PortfolioType]:
    return list(session.exec(select(PortfolioType).order_by(PortfolioType.name.asc())).all())


def to_customer_upload_data(result: CustomerUploadResult) -> CustomerUploadData:
    processed = [
        ProcessedTriple(
            user=UserSummary.model_validate(item.user, from_attributes=True),
            account=AccountSummary.model_validate(item.account, from_attributes=True),
            balance=BalanceSummary.model_validate(item.balance, from_attributes=True),
        )
        for item in result.processed
    ]
    return CustomerUploadData(
        path=result.path,
        file_name=result.file_name,
        record_date=result.record_date,
        processed_count=len(processed),
        skipped_count=len(result.skipped),
        failed_count=len(result.failed),
        processed=processed,
        skipped=[SkippedRowRead(row_number=item.row_number, reason=item.reason) for item in result.skipped],
        failed=[FailedRowRead(row_number=item.row_number, error=item.message) for item in result.failed],
        fallback_reason=result.fallback_reason,
    )


def to_portfolio_report_data(result: PortfolioReportResult) -> PortfolioReportData:
    report = result.report
    return PortfolioReportData(
        path=result.path,
        id=report.id,
        portfolio_type=report.portfolio_type,
        report_url=report.report_url,
        report_date=report.report_date,
    )


def to_overdue_read(record: OverduePaymentRecord) -> OverduePaymentRead:
    read = OverduePaymentRead.model_validate(record, from_attributes=True)
    read.updated_at = ensure_kst_datetime(record.updated_at) or read.updated_at
    return read


def to_upload_read(upload: OverduePaymentUpload) -> OverdueUploadRead:
    read = OverdueUploadRead.model_validate(upload, from_attributes=True)
    read.uploaded_at = ensure_kst_datetime(upload.uploaded_at) or read.uploaded_at
    return read
