"""Data access layer: schema setup, CRUD and report aggregations over SQLite."""
import datetime as dt
import logging
import threading
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from sqlalchemy import delete, func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, create_engine, select

from config import DATABASE_URL
from errors import DatabaseInitError, PersistenceError
from migrations import run_migrations
from models import TRANSACTION_TYPES, Budget, Category, Setting, Transaction
from schemas import (
    BudgetCreate,
    BudgetStatus,
    BudgetUpdate,
    CategoryCreate,
    TransactionCreate,
    TransactionFilters,
    TransactionUpdate,
)
from utils import (
    classify_budget,
    months_ago,
    new_id,
    normalize_timestamp,
    period_window,
    round_money,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"name": "Salary", "type": "income", "color": "#10b981", "icon": "briefcase"},
    {"name": "Food & Dining", "type": "expense", "color": "#ef4444", "icon": "restaurant"},
    {"name": "Transportation", "type": "expense", "color": "#f97316", "icon": "car"},
    {"name": "Shopping", "type": "expense", "color": "#eab308", "icon": "bag"},
    {"name": "Entertainment", "type": "expense", "color": "#8b5cf6", "icon": "film"},
]

DEFAULT_SETTINGS = {
    "currency": "USD",
    "theme": "system",
    "notifications": "true",
    "firstLaunch": "true",
}

TransactionInput = Union[TransactionCreate, Transaction, Mapping[str, Any]]
FiltersInput = Union[TransactionFilters, Mapping[str, Any], None]


def create_db_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    """Create the SQLAlchemy engine for the app database."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, echo=False, **kwargs)


def setting_text(value: Any) -> str:
    """Settings are stored as text; booleans keep the lowercase spelling."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def seed_default_categories(session: Session) -> int:
    """Insert the default categories that are missing, matched by (name, type)."""
    added = 0
    now = utc_now()
    for default in DEFAULT_CATEGORIES:
        existing = session.exec(
            select(Category).where(
                Category.name == default["name"],
                Category.type == default["type"],
            )
        ).first()
        if existing:
            continue
        session.add(Category(id=new_id("cat"), created_at=now, updated_at=now, **default))
        added += 1
    session.commit()
    if added:
        logger.info(f"Added {added} default categories")
    return added


def seed_default_settings(session: Session) -> None:
    """Insert the default settings whose key is not present yet."""
    table = Setting.__table__
    now = utc_now()
    for key, value in DEFAULT_SETTINGS.items():
        stmt = (
            sqlite_insert(table)
            .values(key=key, value=value, updatedAt=now)
            .on_conflict_do_nothing(index_elements=["key"])
        )
        session.execute(stmt)
    session.commit()


class DatabaseService:
    """Owns the schema and exposes typed CRUD/report operations.

    Every public method initializes the store on first use.  Reads and
    updates never raise for store failures: they log and return an empty
    result.  Inserts raise ``PersistenceError`` so callers can react.
    """

    def __init__(self, engine: Engine, strict_init: bool = False):
        self.engine = engine
        self.strict_init = strict_init
        self.is_initialized = False
        self.init_error: Optional[Exception] = None
        self._init_lock = threading.Lock()
        self._settings_lock = threading.Lock()

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # Setup

    def initialize(self) -> None:
        """Run migrations and seed defaults once.

        A failure is logged and kept on ``init_error``; the service is still
        marked ready so the app stays usable without persistence.  With
        ``strict_init`` the failure is raised as ``DatabaseInitError`` and the
        next call tries again.
        """
        if self.is_initialized:
            return
        with self._init_lock:
            if self.is_initialized:
                return
            try:
                run_migrations(self.engine)
                with self._session() as session:
                    seed_default_categories(session)
                    seed_default_settings(session)
                self.init_error = None
                logger.info("Database initialized successfully")
            except SQLAlchemyError as exc:
                self.init_error = exc
                logger.error(f"Database initialization failed: {exc}")
                if self.strict_init:
                    raise DatabaseInitError(f"Database initialization failed: {exc}") from exc
            self.is_initialized = True

    # Transactions

    def _build_transaction(self, data: TransactionInput) -> Transaction:
        if isinstance(data, Transaction):
            data = data.model_dump()
        payload = data if isinstance(data, TransactionCreate) else TransactionCreate.model_validate(data)

        now = utc_now()
        values = payload.model_dump()
        values["id"] = payload.id or new_id("txn")
        values["created_at"] = payload.created_at or now
        values["updated_at"] = payload.updated_at or now
        return Transaction.model_validate(values)

    def add_transaction(self, data: TransactionInput) -> Transaction:
        """Validate, normalize and insert a transaction; return the stored record."""
        self.initialize()
        txn = self._build_transaction(data)
        try:
            with self._session() as session:
                session.add(txn)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error(f"Error adding transaction {txn.id}: {exc}")
            raise PersistenceError(f"Could not add transaction {txn.id}: {exc}") from exc
        logger.debug(f"Added transaction {txn.id}")
        return txn

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        self.initialize()
        try:
            with self._session() as session:
                return session.get(Transaction, transaction_id)
        except SQLAlchemyError as exc:
            logger.error(f"Error getting transaction {transaction_id}: {exc}")
            return None

    @staticmethod
    def _filtered(stmt, filters: TransactionFilters):
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.start_date:
            stmt = stmt.where(Transaction.date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Transaction.date <= filters.end_date)
        return stmt

    def get_transactions(
        self,
        limit: Optional[int] = 100,
        offset: int = 0,
        filters: FiltersInput = None,
    ) -> list[Transaction]:
        """List transactions newest first, ties broken by id.

        ``filters`` may carry ``type``, ``category``, ``start_date`` and
        ``end_date``; every key present narrows the result.
        """
        self.initialize()
        if not isinstance(filters, TransactionFilters):
            filters = TransactionFilters.model_validate(filters or {})

        stmt = self._filtered(select(Transaction), filters)
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            with self._session() as session:
                return list(session.exec(stmt).all())
        except SQLAlchemyError as exc:
            logger.error(f"Error getting transactions: {exc}")
            return []

    def get_transactions_by_date_range(self, start_date: Any, end_date: Any) -> list[Transaction]:
        return self.get_transactions(
            limit=None,
            filters={"start_date": start_date, "end_date": end_date},
        )

    def update_transaction(
        self,
        transaction_id: str,
        changes: Union[TransactionUpdate, Mapping[str, Any]],
    ) -> Optional[Transaction]:
        """Apply a partial update and refresh ``updated_at``. Returns None if missing."""
        self.initialize()
        if not isinstance(changes, TransactionUpdate):
            changes = TransactionUpdate.model_validate(changes)
        data = changes.model_dump(exclude_unset=True)

        try:
            with self._session() as session:
                txn = session.get(Transaction, transaction_id)
                if txn is None:
                    logger.warning(f"Transaction {transaction_id} not found for update")
                    return None
                for field, value in data.items():
                    setattr(txn, field, value)
                txn.updated_at = utc_now()
                session.add(txn)
                session.commit()
                return txn
        except SQLAlchemyError as exc:
            logger.error(f"Error updating transaction {transaction_id}: {exc}")
            return None

    def delete_transaction(self, transaction_id: str) -> bool:
        self.initialize()
        try:
            with self._session() as session:
                txn = session.get(Transaction, transaction_id)
                if txn is None:
                    return False
                session.delete(txn)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            logger.error(f"Error deleting transaction {transaction_id}: {exc}")
            return False

    # Analytics

    def get_transaction_summary(self, start_date: Any, end_date: Any) -> dict[str, float]:
        """Total amount per transaction type inside the inclusive date range."""
        self.initialize()
        start = normalize_timestamp(start_date)
        end = normalize_timestamp(end_date, end_of_day=True)
        summary = {tx_type: 0.0 for tx_type in TRANSACTION_TYPES}

        stmt = (
            select(Transaction.type, func.sum(Transaction.amount))
            .where(Transaction.date >= start, Transaction.date <= end)
            .group_by(Transaction.type)
        )
        try:
            with self._session() as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"Error getting transaction summary: {exc}")
            return summary

        for tx_type, total in rows:
            if tx_type in summary:
                summary[tx_type] = round_money(total)
            else:
                logger.warning(f"Ignoring unknown transaction type {tx_type!r} in summary")
        return summary

    def get_category_breakdown(self, tx_type: str, start_date: Any, end_date: Any) -> list[dict]:
        """Total and count per category for one type, largest total first.

        Equal totals are ordered by category name so the result is stable.
        """
        self.initialize()
        start = normalize_timestamp(start_date)
        end = normalize_timestamp(end_date, end_of_day=True)

        total = func.sum(Transaction.amount).label("total")
        stmt = (
            select(Transaction.category, total, func.count().label("count"))
            .where(
                Transaction.type == tx_type,
                Transaction.date >= start,
                Transaction.date <= end,
            )
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category)
        )
        try:
            with self._session() as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"Error getting category breakdown: {exc}")
            return []

        return [
            {"category": category, "total": round_money(amount), "count": count}
            for category, amount, count in rows
        ]

    def get_monthly_trends(self, months: int = 6, now: Optional[dt.datetime] = None) -> list[dict]:
        """Totals per (YYYY-MM, type) over the trailing ``months``, newest month first."""
        self.initialize()
        since = months_ago(months, now)

        month = func.strftime("%Y-%m", Transaction.date).label("month")
        total = func.sum(Transaction.amount).label("total")
        stmt = (
            select(month, Transaction.type, total)
            .where(Transaction.date >= since)
            .group_by(month, Transaction.type)
            .order_by(month.desc(), Transaction.type)
        )
        try:
            with self._session() as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"Error getting monthly trends: {exc}")
            return []

        return [
            {"month": row_month, "type": tx_type, "total": round_money(amount)}
            for row_month, tx_type, amount in rows
        ]

    # Categories

    def get_categories(self, tx_type: Optional[str] = None, include_inactive: bool = False) -> list[Category]:
        self.initialize()
        stmt = select(Category)
        if tx_type:
            stmt = stmt.where(Category.type == tx_type)
        if not include_inactive:
            stmt = stmt.where(Category.is_active == True)  # noqa: E712
        stmt = stmt.order_by(Category.type, Category.name)
        try:
            with self._session() as session:
                return list(session.exec(stmt).all())
        except SQLAlchemyError as exc:
            logger.error(f"Error getting categories: {exc}")
            return []

    def add_category(self, data: Union[CategoryCreate, Mapping[str, Any]]) -> Category:
        """Create a category. A parent must exist, share the type and be top-level."""
        self.initialize()
        payload = data if isinstance(data, CategoryCreate) else CategoryCreate.model_validate(data)
        now = utc_now()
        values = payload.model_dump()
        values["id"] = payload.id or new_id("cat")
        category = Category.model_validate({**values, "created_at": now, "updated_at": now})

        try:
            with self._session() as session:
                if category.parent_id:
                    parent = session.get(Category, category.parent_id)
                    if parent is None:
                        raise ValueError("Parent category not found")
                    if parent.parent_id:
                        raise ValueError("Categories can only be nested one level deep")
                    if parent.type != category.type:
                        raise ValueError("Parent category has a different type")
                session.add(category)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error(f"Error adding category {category.name}: {exc}")
            raise PersistenceError(f"Could not add category {category.name}: {exc}") from exc
        return category

    def delete_category(self, category_id: str) -> bool:
        """Delete a category; its sub-categories become top-level."""
        self.initialize()
        try:
            with self._session() as session:
                category = session.get(Category, category_id)
                if category is None:
                    return False
                children = session.exec(select(Category).where(Category.parent_id == category_id)).all()
                for child in children:
                    child.parent_id = None
                    child.updated_at = utc_now()
                    session.add(child)
                session.delete(category)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            logger.error(f"Error deleting category {category_id}: {exc}")
            return False

    # Budgets

    @staticmethod
    def _spent_for(session: Session, budget: Budget) -> Decimal:
        stmt = select(func.sum(Transaction.amount)).where(
            Transaction.type == "expense",
            Transaction.date >= budget.start_date,
            Transaction.date <= budget.end_date,
        )
        if budget.category:
            stmt = stmt.where(Transaction.category == budget.category)
        total = session.exec(stmt).one()
        return Decimal(str(round_money(total)))

    def add_budget(self, data: Union[BudgetCreate, Mapping[str, Any]]) -> Budget:
        """Create a budget; missing dates default to the current period window."""
        self.initialize()
        payload = data if isinstance(data, BudgetCreate) else BudgetCreate.model_validate(data)
        window_start, window_end = period_window(payload.period, payload.start_date)

        now = utc_now()
        values = payload.model_dump()
        values["id"] = payload.id or new_id("bud")
        values["start_date"] = payload.start_date or window_start
        values["end_date"] = payload.end_date or window_end
        if values["end_date"] < values["start_date"]:
            raise ValueError("Budget end date precedes its start date")
        budget = Budget.model_validate({**values, "created_at": now, "updated_at": now})

        try:
            with self._session() as session:
                budget.spent = self._spent_for(session, budget)
                session.add(budget)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error(f"Error adding budget {budget.name}: {exc}")
            raise PersistenceError(f"Could not add budget {budget.name}: {exc}") from exc
        return budget

    def get_budgets(self, active_only: bool = True) -> list[Budget]:
        """List budgets with ``spent`` reconciled against their transactions."""
        self.initialize()
        stmt = select(Budget)
        if active_only:
            stmt = stmt.where(Budget.is_active == True)  # noqa: E712
        stmt = stmt.order_by(Budget.created_at, Budget.id)
        try:
            with self._session() as session:
                budgets = list(session.exec(stmt).all())
                for budget in budgets:
                    spent = self._spent_for(session, budget)
                    if spent != budget.spent:
                        budget.spent = spent
                        session.add(budget)
                session.commit()
                return budgets
        except SQLAlchemyError as exc:
            logger.error(f"Error getting budgets: {exc}")
            return []

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        return self.refresh_budget_spent(budget_id)

    def refresh_budget_spent(self, budget_id: str) -> Optional[Budget]:
        """Recompute and store the cached ``spent`` of one budget."""
        self.initialize()
        try:
            with self._session() as session:
                budget = session.get(Budget, budget_id)
                if budget is None:
                    return None
                budget.spent = self._spent_for(session, budget)
                session.add(budget)
                session.commit()
                return budget
        except SQLAlchemyError as exc:
            logger.error(f"Error refreshing budget {budget_id}: {exc}")
            return None

    def update_budget(
        self,
        budget_id: str,
        changes: Union[BudgetUpdate, Mapping[str, Any]],
    ) -> Optional[Budget]:
        """Apply a partial update. A new period without dates moves to that period's window."""
        self.initialize()
        if not isinstance(changes, BudgetUpdate):
            changes = BudgetUpdate.model_validate(changes)
        data = changes.model_dump(exclude_unset=True)

        try:
            with self._session() as session:
                budget = session.get(Budget, budget_id)
                if budget is None:
                    logger.warning(f"Budget {budget_id} not found for update")
                    return None
                for field, value in data.items():
                    setattr(budget, field, value)
                if "period" in data and "start_date" not in data and "end_date" not in data:
                    budget.start_date, budget.end_date = period_window(budget.period, budget.start_date)
                if budget.end_date < budget.start_date:
                    raise ValueError("Budget end date precedes its start date")
                budget.spent = self._spent_for(session, budget)
                budget.updated_at = utc_now()
                session.add(budget)
                session.commit()
                return budget
        except SQLAlchemyError as exc:
            logger.error(f"Error updating budget {budget_id}: {exc}")
            return None

    def delete_budget(self, budget_id: str) -> bool:
        self.initialize()
        try:
            with self._session() as session:
                budget = session.get(Budget, budget_id)
                if budget is None:
                    return False
                session.delete(budget)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            logger.error(f"Error deleting budget {budget_id}: {exc}")
            return False

    @staticmethod
    def get_budget_status(budget: Budget) -> BudgetStatus:
        amount = Decimal(str(budget.amount))
        spent = Decimal(str(budget.spent or 0))
        percentage = float(spent / amount * 100) if amount > 0 else 0.0
        return BudgetStatus(
            id=budget.id,
            name=budget.name,
            amount=round_money(amount),
            spent=round_money(spent),
            remaining=round_money(amount - spent),
            percentage=round(percentage, 2),
            flags=classify_budget(spent, amount, budget.warning_threshold),
        )

    # Settings

    def get_setting(self, key: str) -> Optional[str]:
        self.initialize()
        try:
            with self._session() as session:
                setting = session.get(Setting, key)
                return setting.value if setting else None
        except SQLAlchemyError as exc:
            logger.error(f"Error getting setting {key}: {exc}")
            return None

    def get_all_settings(self) -> dict[str, str]:
        self.initialize()
        try:
            with self._session() as session:
                return {s.key: s.value for s in session.exec(select(Setting)).all()}
        except SQLAlchemyError as exc:
            logger.error(f"Error getting settings: {exc}")
            return {}

    def set_setting(self, key: str, value: Any) -> bool:
        """Insert or replace a setting and refresh its ``updated_at``."""
        self.initialize()
        table = Setting.__table__
        stmt = sqlite_insert(table).values(key=key, value=setting_text(value), updatedAt=utc_now())
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updatedAt": stmt.excluded.updatedAt},
        )
        try:
            with self._settings_lock, self.engine.begin() as conn:
                conn.execute(stmt)
            return True
        except SQLAlchemyError as exc:
            logger.error(f"Error setting value for {key}: {exc}")
            return False

    def delete_setting(self, key: str) -> bool:
        self.initialize()
        try:
            with self._settings_lock, self.engine.begin() as conn:
                result = conn.execute(delete(Setting.__table__).where(Setting.__table__.c.key == key))
            return result.rowcount > 0
        except SQLAlchemyError as exc:
            logger.error(f"Error deleting setting {key}: {exc}")
            return False

    # Reset

    def clear_all_data(self) -> bool:
        """Remove every row from all tables, then seed the defaults again."""
        self.initialize()
        try:
            with self._settings_lock, self._session() as session:
                for model in (Transaction, Budget, Category, Setting):
                    session.execute(delete(model))
                session.commit()
                seed_default_categories(session)
                seed_default_settings(session)
            logger.info("All data cleared")
            return True
        except SQLAlchemyError as exc:
            logger.error(f"Error clearing data: {exc}")
            return False
