from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Generator, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import auth, crud
from .batches import BatchReplacementEngine
from .database import direct_engine, engine, init_db
from .exceptions import IngestionError, PersistenceFailure, ValidationError
from .ingestion import ingest_customer_workbook, ingest_overdue_workbook, ingest_portfolio_report
from .logging_utils import get_logger
from .models import User, UserRole
from .persistence import DirectStage, PersistenceCoordinator, TransactionalStage
from .reconciler import EntityReconciler
from .roles import RoleAssignments, load_role_assignments
from .schemas import (
    BalanceHistoryData,
    BalanceHistoryResponse,
    BalanceSummary,
    CurrentUserResponse,
    CustomerOverdueData,
    CustomerOverdueResponse,
    CustomerUploadResponse,
    DeletedCount,
    ErrorResponse,
    LatestBatchData,
    LatestBatchResponse,
    LoginRequest,
    OverdueDeleteRequest,
    OverdueDeleteResponse,
    OverduePaymentPage,
    OverdueUploadData,
    OverdueUploadHistoryResponse,
    OverdueUploadResponse,
    PortfolioReportResponse,
    PortfolioTypeRead,
    PortfolioTypesResponse,
    TokenResponse,
    UserAccountsResponse,
    UserRead,
)
from .settings import UPLOAD_DIR, UPLOAD_URL_PREFIX
from .storage import LocalObjectStorage, ObjectStorage

logger = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    with Session(engine) as session:
        auth.ensure_default_admin(session)
    yield


app = FastAPI(title="Advisory Operations Console", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def get_coordinator() -> PersistenceCoordinator:
    return PersistenceCoordinator(TransactionalStage(engine), DirectStage(direct_engine))


def get_batch_engine() -> BatchReplacementEngine:
    return BatchReplacementEngine(engine)


def get_storage() -> ObjectStorage:
    return LocalObjectStorage()


@lru_cache(maxsize=1)
def get_role_assignments() -> RoleAssignments:
    return load_role_assignments()


@dataclass
class Principal:
    session: Session
    user: User

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


def require_principal(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> Principal:
    user = auth.resolve_principal(session, token)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired credentials")
    return Principal(session=session, user=user)


def require_role(*roles: UserRole) -> Callable[..., Principal]:
    allowed = frozenset(roles)

    def dependency(request: Request, principal: Principal = Depends(require_principal)) -> Principal:
        if principal.user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        # error details are only shown on routes gated to admins
        request.state.expose_error_detail = principal.is_admin
        return principal

    return dependency


require_admin = require_role(UserRole.ADMIN)


def _envelope(status_code: int, payload: ErrorResponse, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    message = None
    if isinstance(exc, PersistenceFailure) and exc.store_emptied:
        message = "The overdue-payment table is empty after a failed replacement; re-upload the file."
    payload = ErrorResponse(
        error=exc.message,
        message=message,
        detail=exc.as_detail() if getattr(request.state, "expose_error_detail", False) else None,
    )
    return _envelope(exc.status_code, payload)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, ErrorResponse(error=str(exc.detail)), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    detail = None
    if getattr(request.state, "expose_error_detail", False):
        detail = {"type": "RequestValidationError", "errors": jsonable_encoder(exc.errors())}
    payload = ErrorResponse(error="The request parameters or body are invalid", detail=detail)
    return _envelope(422, payload)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc)
    payload = ErrorResponse(
        error="Internal server error",
        message="The request could not be completed; try again later.",
    )
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, payload)


def _read_upload(file: Optional[UploadFile]) -> bytes:
    if file is None or not file.filename:
        raise ValidationError("No file was uploaded")
    file.file.seek(0)
    return file.file.read()


@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, session: Session = Depends(get_session)):
    user = auth.authenticate_user(session, email=payload.email, password=payload.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return TokenResponse(**auth.issue_access_token(user))


@app.get("/api/user/current", response_model=CurrentUserResponse)
def current_user(principal: Principal = Depends(require_principal)):
    return CurrentUserResponse(data=UserRead.model_validate(principal.user, from_attributes=True))


@app.post("/api/admin/monthly-report/upload", response_model=CustomerUploadResponse)
def upload_customer_data(
    file: Optional[UploadFile] = File(default=None),
    principal: Principal = Depends(require_admin),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
    roles: RoleAssignments = Depends(get_role_assignments),
):
    data = _read_upload(file)
    logger.info("Customer data upload %s by user %s", file.filename, principal.user.id)
    result = ingest_customer_workbook(
        data,
        file.filename,
        coordinator=coordinator,
        reconciler=EntityReconciler(roles),
    )
    payload = crud.to_customer_upload_data(result)
    return CustomerUploadResponse(
        message=f"{payload.processed_count} rows processed via the {payload.path.value} path",
        data=payload,
    )


@app.post("/api/overdue-payments/upload", response_model=OverdueUploadResponse)
def upload_overdue_payments(
    file: Optional[UploadFile] = File(default=None),
    principal: Principal = Depends(require_admin),
    batch_engine: BatchReplacementEngine = Depends(get_batch_engine),
):
    data = _read_upload(file)
    logger.info("Overdue payment upload %s by user %s", file.filename, principal.user.id)
    result = ingest_overdue_workbook(data, file.filename, engine=batch_engine, uploaded_by=principal.user.id)
    return OverdueUploadResponse(
        message=f"{result.record_count} overdue records loaded as batch {result.batch_id}",
        data=OverdueUploadData(batch_id=result.batch_id, record_count=result.record_count, file_name=result.file_name),
    )


@app.get("/api/overdue-payments/batch/latest", response_model=LatestBatchResponse)
def latest_overdue_batch(principal: Principal = Depends(require_principal)):
    return LatestBatchResponse(data=LatestBatchData(batch_id=crud.get_latest_batch_id(principal.session)))


@app.get("/api/overdue-payments", response_model=OverduePaymentPage)
def list_overdue_payments(
    batch_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    principal: Principal = Depends(require_admin),
):
    records, meta = crud.list_overdue_payments(
        principal.session,
        batch_id=batch_id,
        search=search,
        page=page,
        limit=limit,
    )
    return OverduePaymentPage(data=[crud.to_overdue_read(record) for record in records], meta=meta)


@app.post("/api/overdue-payments/delete", response_model=OverdueDeleteResponse)
def delete_overdue_payments(payload: OverdueDeleteRequest, principal: Principal = Depends(require_admin)):
    deleted = crud.delete_overdue_payments(principal.session, payload.payment_ids)
    return OverdueDeleteResponse(
        message=f"{deleted} overdue records deleted",
        data=DeletedCount(deleted_count=deleted),
    )


@app.get("/api/overdue-payment-uploads", response_model=OverdueUploadHistoryResponse)
def overdue_upload_history(limit: int = 50, principal: Principal = Depends(require_admin)):
    uploads = crud.list_overdue_uploads(principal.session, limit=limit)
    return OverdueUploadHistoryResponse(
        data=[crud.to_upload_read(item) for item in uploads]
    )


@app.get("/api/overdue-payments/user", response_model=CustomerOverdueResponse)
def my_overdue_payments(principal: Principal = Depends(require_principal)):
    records = crud.list_overdue_for_user(principal.session, principal.user.id)
    return CustomerOverdueResponse(
        data=CustomerOverdueData(
            has_overdue=bool(records),
            overdue_payments=[crud.to_overdue_read(record) for record in records],
        )
    )


@app.get("/api/user/accounts", response_model=UserAccountsResponse)
def my_accounts(principal: Principal = Depends(require_principal)):
    return UserAccountsResponse(data=crud.list_user_accounts(principal.session, principal.user.id))


@app.get("/api/user/balance", response_model=BalanceHistoryResponse)
def my_balance_history(account_id: int, principal: Principal = Depends(require_principal)):
    account = crud.get_user_account(principal.session, principal.user.id, account_id)
    history = crud.get_balance_history(principal.session, account)
    current = history[-1] if history else None
    return BalanceHistoryResponse(
        data=BalanceHistoryData(
            account=crud.to_account_balance_read(account, current),
            records=[BalanceSummary.model_validate(record, from_attributes=True) for record in history],
        )
    )


@app.post("/api/admin/portfolio-report/upload", response_model=PortfolioReportResponse)
def upload_portfolio_report(
    file: Optional[UploadFile] = File(default=None),
    portfolio_type: str = Form(default="", alias="portfolioType"),
    principal: Principal = Depends(require_admin),
    storage: ObjectStorage = Depends(get_storage),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
):
    data = _read_upload(file)
    logger.info("Portfolio report upload %s (%s) by user %s", file.filename, portfolio_type, principal.user.id)
    result = ingest_portfolio_report(
        data,
        file.filename,
        portfolio_type,
        content_type=file.content_type,
        storage=storage,
        coordinator=coordinator,
    )
    return PortfolioReportResponse(
        message=f"Portfolio report saved via the {result.path.value} path",
        data=crud.to_portfolio_report_data(result),
    )


@app.get("/api/admin/portfolio-types", response_model=PortfolioTypesResponse)
def portfolio_types(principal: Principal = Depends(require_admin)):
    return PortfolioTypesResponse(
        data=[PortfolioTypeRead.model_validate(item, from_attributes=True) for item in crud.list_portfolio_types(principal.session)]
    )
