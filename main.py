"""Main FastAPI application for BudgetWise."""
import logging
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from prometheus_fastapi_instrumentator import Instrumentator

import config
from auth import AUTH_SETTINGS, AuthResult, AuthService
from crypto import DataCipher
from database import DatabaseService, create_db_engine
from errors import PersistenceError
from models import Budget, Category, Transaction
from schemas import (
    AuthResponse,
    BudgetCreate,
    BudgetStatus,
    BudgetUpdate,
    CategoryCreate,
    PinPayload,
    SecuritySettings,
    SessionTimeoutChange,
    SettingWrite,
    TransactionCreate,
    TransactionFilters,
    TransactionType,
    TransactionUpdate,
)
from secure_storage import FileSecureStorage
from utils import to_iso, utc_now

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

app = FastAPI(title="BudgetWise", version=APP_VERSION)
Instrumentator().instrument(app).expose(app)


def build_services() -> tuple[DatabaseService, AuthService]:
    """Create the service objects shared by every request."""
    db = DatabaseService(create_db_engine(config.DATABASE_URL), strict_init=config.DB_STRICT_INIT)
    storage = FileSecureStorage(config.SECURE_STORAGE_PATH)
    cipher = DataCipher(storage, allow_plaintext_fallback=config.ENCRYPTION_PLAINTEXT_FALLBACK)
    auth = AuthService(
        db,
        storage,
        cipher=cipher,
        fail_open=config.AUTH_FAIL_OPEN,
        check_interval=config.SESSION_CHECK_INTERVAL_SECONDS,
    )
    return db, auth


@app.on_event("startup")
def on_startup() -> None:
    """
    Run once when the app starts:
    - Build the services unless they were provided (tests do)
    - Apply schema migrations and seed defaults
    - Load the auth state and start the session monitor
    """
    if getattr(app.state, "db", None) is None or getattr(app.state, "auth", None) is None:
        app.state.db, app.state.auth = build_services()

    app.state.db.initialize()
    if app.state.db.init_error is not None:
        logger.warning("Starting without a working database")
    app.state.auth.initialize()
    logger.info("BudgetWise ready")


@app.on_event("shutdown")
def on_shutdown() -> None:
    auth = getattr(app.state, "auth", None)
    if auth is not None:
        auth.shutdown()


def get_db_service(request: Request) -> DatabaseService:
    return request.app.state.db


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def require_session(auth: AuthService = Depends(get_auth_service)) -> AuthService:
    """Reject requests without an open session and refresh its activity time."""
    if not auth.is_user_authenticated():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    auth.update_last_activity()
    return auth


def auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        success=result.success,
        error=result.error.value if result.error else None,
        requires_pin=result.requires_pin,
    )


@app.get("/")
def root():
    return {"message": "BudgetWise API is running. See /health for status."}


@app.get("/health")
def health(db: DatabaseService = Depends(get_db_service)):
    return {
        "status": "ok" if db.init_error is None else "degraded",
        "timestamp": to_iso(utc_now()),
        "app": "budgetwise",
        "version": APP_VERSION,
    }


# AUTH ENDPOINTS

@app.get("/auth/status", response_model=SecuritySettings)
def auth_status(auth: AuthService = Depends(get_auth_service)):
    return auth.get_security_settings()


@app.post("/auth/login", response_model=AuthResponse)
def login(auth: AuthService = Depends(get_auth_service)):
    """Open a session when no PIN is configured, otherwise ask for the PIN."""
    return auth_response(auth.authenticate())


@app.post("/auth/pin/verify", response_model=AuthResponse)
def verify_pin(payload: PinPayload, auth: AuthService = Depends(get_auth_service)):
    result = auth.authenticate_with_pin(payload.pin)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error.value)
    return auth_response(result)


@app.post("/auth/pin", response_model=AuthResponse)
def setup_pin(payload: PinPayload, auth: AuthService = Depends(require_session)):
    """Enable (or change) the PIN gate; requires an open session."""
    result = auth.setup_pin(payload.pin)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error.value)
    return auth_response(result)


@app.post("/auth/session-timeout")
def change_session_timeout(payload: SessionTimeoutChange, auth: AuthService = Depends(require_session)):
    auth.set_session_timeout(payload.minutes)
    return {"session_timeout": payload.minutes}


@app.post("/auth/logout", status_code=204)
def logout(auth: AuthService = Depends(get_auth_service)):
    auth.logout()
    return None


@app.post("/auth/reset", response_model=AuthResponse)
def reset_security(auth: AuthService = Depends(require_session)):
    result = auth.reset_security()
    if not result.success:
        raise HTTPException(status_code=500, detail=result.error.value)
    return auth_response(result)


# TRANSACTION ENDPOINTS

@app.post("/api/transactions", response_model=Transaction, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    try:
        return db.add_transaction(payload)
    except PersistenceError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# Newest first; every filter given narrows the list.
@app.get("/api/transactions", response_model=list[Transaction])
def list_transactions(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    type: Optional[TransactionType] = None,
    category: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    try:
        filters = TransactionFilters(
            type=type, category=category, start_date=start_date, end_date=end_date
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return db.get_transactions(limit=limit, offset=offset, filters=filters)


@app.get("/api/transactions/{transaction_id}", response_model=Transaction)
def read_transaction(
    transaction_id: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    txn = db.get_transaction(transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


@app.patch("/api/transactions/{transaction_id}", response_model=Transaction)
def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    txn = db.update_transaction(transaction_id, payload)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    if not db.delete_transaction(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return None


# STATS

def _parse_range(start_date: str, end_date: str):
    try:
        filters = TransactionFilters(start_date=start_date, end_date=end_date)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return filters.start_date, filters.end_date


@app.get("/api/stats/summary")
def get_summary(
    start_date: str,
    end_date: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
) -> Dict[str, float]:
    start, end = _parse_range(start_date, end_date)
    return db.get_transaction_summary(start, end)


@app.get("/api/stats/categories")
def get_category_breakdown(
    start_date: str,
    end_date: str,
    type: TransactionType = "expense",
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    start, end = _parse_range(start_date, end_date)
    return db.get_category_breakdown(type, start, end)


@app.get("/api/stats/trends")
def get_monthly_trends(
    months: int = Query(default=6, ge=1, le=120),
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    return db.get_monthly_trends(months)


# CATEGORY ENDPOINTS

@app.get("/api/categories", response_model=list[Category])
def list_categories(
    type: Optional[str] = None,
    include_inactive: bool = False,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    return db.get_categories(type, include_inactive=include_inactive)


@app.post("/api/categories", response_model=Category, status_code=201)
def create_category(
    payload: CategoryCreate,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    try:
        return db.add_category(payload)
    except (PersistenceError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    if not db.delete_category(category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return None


# BUDGET ENDPOINTS

@app.get("/api/budgets", response_model=list[Budget])
def list_budgets(
    active_only: bool = True,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    return db.get_budgets(active_only=active_only)


@app.post("/api/budgets", response_model=Budget, status_code=201)
def create_budget(
    payload: BudgetCreate,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    try:
        return db.add_budget(payload)
    except (PersistenceError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/budgets/{budget_id}/status", response_model=BudgetStatus)
def budget_status(
    budget_id: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    budget = db.refresh_budget_spent(budget_id)
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return db.get_budget_status(budget)


@app.patch("/api/budgets/{budget_id}", response_model=Budget)
def update_budget(
    budget_id: str,
    payload: BudgetUpdate,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    try:
        budget = db.update_budget(budget_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    if not db.delete_budget(budget_id):
        raise HTTPException(status_code=404, detail="Budget not found")
    return None


# SETTINGS

@app.get("/api/settings")
def list_settings(
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
) -> Dict[str, str]:
    return db.get_all_settings()


@app.get("/api/settings/{key}")
def read_setting(
    key: str,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    value = db.get_setting(key)
    if value is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return {"key": key, "value": value}


@app.put("/api/settings/{key}")
def write_setting(
    key: str,
    payload: SettingWrite,
    db: DatabaseService = Depends(get_db_service),
    _: AuthService = Depends(require_session),
):
    if key in AUTH_SETTINGS:
        raise HTTPException(
            status_code=400,
            detail=f"'{key}' is managed by /auth/pin, /auth/reset and /auth/session-timeout",
        )
    if not db.set_setting(key, payload.value):
        raise HTTPException(status_code=500, detail="Setting could not be saved")
    return {"key": key, "value": db.get_setting(key)}


# Wipe everything (settings screen "reset app"): data first, then secrets.
@app.delete("/api/data", status_code=204)
def clear_all_data(
    db: DatabaseService = Depends(get_db_service),
    auth: AuthService = Depends(require_session),
):
    if not db.clear_all_data():
        raise HTTPException(status_code=500, detail="Data could not be cleared")
    auth.reset_security()
    return None
