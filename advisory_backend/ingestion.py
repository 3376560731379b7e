"""Upload workflows: validate first, then hand writes to the persistence layer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional

from .batches import BatchReplacementEngine, BatchResult
from .dates import extract_date_from_filename
from .exceptions import PartialRowError, UnsupportedFileTypeError, ValidationError
from .logging_utils import get_logger
from .persistence import PersistenceCoordinator, PersistencePath
from .reconciler import EntityReconciler, ProcessedRecord, SkippedRow, prepare_customer_rows
from .settings import MAX_UPLOAD_BYTES
from .spreadsheet import ensure_spreadsheet_name, parse_spreadsheet
from .storage import ObjectStorage
from .stores import ReportRef

logger = get_logger(__name__)

REPORT_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}
WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class CustomerUploadResult:
    path: PersistencePath
    record_date: date
    file_name: str
    processed: List[ProcessedRecord] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)
    failed: List[PartialRowError] = field(default_factory=list)
    fallback_reason: Optional[str] = None


@dataclass
class PortfolioReportResult:
    path: PersistencePath
    report: ReportRef


def ensure_within_upload_limit(data: bytes) -> None:
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(
            "The file is too large",
            context={"size": len(data), "limit": MAX_UPLOAD_BYTES},
        )


def ingest_customer_workbook(
    data: bytes,
    file_name: str,
    *,
    coordinator: PersistenceCoordinator,
    reconciler: EntityReconciler,
) -> CustomerUploadResult:
    ensure_spreadsheet_name(file_name)
    # the date must be known before a single row is looked at
    record_date = extract_date_from_filename(file_name)
    ensure_within_upload_limit(data)
    sheet = parse_spreadsheet(data)
    rows, skipped = prepare_customer_rows(sheet)
    if not rows:
        raise ValidationError(
            "No row carries all of name, email, account number, portfolio and balance",
            context={"skipped_rows": [item.row_number for item in skipped]},
        )
    outcome = coordinator.persist(
        rows,
        lambda store, row: reconciler.reconcile(store, row, record_date),
        label=f"customer upload {file_name}",
    )
    logger.info(
        "Customer upload %s: %d processed, %d skipped, %d failed via %s path",
        file_name,
        len(outcome.results),
        len(skipped),
        len(outcome.failures),
        outcome.path.value,
    )
    return CustomerUploadResult(
        path=outcome.path,
        record_date=record_date,
        file_name=file_name,
        processed=outcome.results,
        skipped=skipped,
        failed=outcome.failures,
        fallback_reason=outcome.fallback_reason,
    )


def ingest_overdue_workbook(
    data: bytes,
    file_name: str,
    *,
    engine: BatchReplacementEngine,
    uploaded_by: Optional[int] = None,
) -> BatchResult:
    ensure_spreadsheet_name(file_name)
    ensure_within_upload_limit(data)
    sheet = parse_spreadsheet(data)
    return engine.replace(sheet, file_name=file_name, uploaded_by=uploaded_by)


def report_storage_key(portfolio_type: str, report_date: date, extension: str) -> str:
    return f"{WHITESPACE_RE.sub('-', portfolio_type.strip())}_{report_date.isoformat()}{extension}"


def ingest_portfolio_report(
    data: bytes,
    file_name: str,
    portfolio_type: str,
    *,
    content_type: Optional[str],
    storage: ObjectStorage,
    coordinator: PersistenceCoordinator,
) -> PortfolioReportResult:
    portfolio_type = (portfolio_type or "").strip()
    if not portfolio_type:
        raise ValidationError("portfolioType is required")
    report_date = extract_date_from_filename(file_name)
    extension = Path(file_name or "").suffix.lower()
    if extension not in REPORT_IMAGE_EXTENSIONS:
        raise UnsupportedFileTypeError(
            "Only JPG, JPEG or PNG files can be uploaded",
            context={"file_name": file_name},
        )
    ensure_within_upload_limit(data)
    report_url = storage.put(report_storage_key(portfolio_type, report_date, extension), data, content_type)
    outcome = coordinator.persist(
        [portfolio_type],
        lambda store, name: store.add_portfolio_report(portfolio_type=name, report_url=report_url, report_date=report_date),
        label=f"portfolio report {file_name}",
    )
    return PortfolioReportResult(path=outcome.path, report=outcome.results[0])
