import datetime as dt
import json
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Column, Integer, Text
from sqlalchemy.types import REAL, TypeDecorator
from sqlmodel import Field, SQLModel

from utils import parse_iso, stored_money, to_iso

TRANSACTION_TYPES = ("income", "expense", "transfer")
CATEGORY_TYPES = ("income", "expense")
BUDGET_PERIODS = ("weekly", "monthly", "yearly")

DEFAULT_COLOR = "#6366f1"


# Column types matching the on-disk format: every timestamp is ISO text,
# booleans are 0/1 integers and structured values are JSON text.
class IsoTimestamp(TypeDecorator):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_iso(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_iso(value)


class Money(TypeDecorator):
    impl = REAL
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return float(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return stored_money(value)


class IntBool(TypeDecorator):
    impl = Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return 1 if value else 0

    def process_result_value(self, value, dialect):
        return bool(value)


class JsonText(TypeDecorator):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(value)


class JsonList(JsonText):
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return json.dumps(list(value or []))

    def process_result_value(self, value, dialect):
        return json.loads(value or "[]")


# Each class = one table. Python attributes are snake_case, the columns keep
# the camelCase names of the existing data files.
class Transaction(SQLModel, table=True):
    """A single money movement.

    ``amount`` is always a non-negative magnitude; whether it adds or removes
    money is decided by ``type`` ('income', 'expense' or 'transfer').
    """
    __tablename__ = "transactions"

    id: str = Field(sa_column=Column("id", Text, primary_key=True))
    amount: Decimal = Field(sa_column=Column("amount", Money, nullable=False))
    type: str = Field(sa_column=Column("type", Text, nullable=False))
    category: Optional[str] = Field(default=None, sa_column=Column("category", Text))
    subcategory: Optional[str] = Field(default=None, sa_column=Column("subcategory", Text))
    description: Optional[str] = Field(default=None, sa_column=Column("description", Text))
    date: dt.datetime = Field(sa_column=Column("date", IsoTimestamp, nullable=False))
    account: str = Field(default="main", sa_column=Column("account", Text))
    currency: str = Field(default="USD", sa_column=Column("currency", Text))
    tags: list[str] = Field(default_factory=list, sa_column=Column("tags", JsonList))
    location: Optional[str] = Field(default=None, sa_column=Column("location", Text))
    receipt: Optional[str] = Field(default=None, sa_column=Column("receipt", Text))
    recurring: bool = Field(default=False, sa_column=Column("recurring", IntBool))
    recurring_pattern: Optional[dict[str, Any]] = Field(
        default=None, sa_column=Column("recurringPattern", JsonText)
    )
    created_at: dt.datetime = Field(sa_column=Column("createdAt", IsoTimestamp, nullable=False))
    updated_at: dt.datetime = Field(sa_column=Column("updatedAt", IsoTimestamp, nullable=False))


class Budget(SQLModel, table=True):
    """Spending ceiling for one category over a period.

    ``spent`` is a cache: it is recomputed from the expense transactions of
    the category inside [start_date, end_date] whenever budgets are read.
    """
    __tablename__ = "budgets"

    id: str = Field(sa_column=Column("id", Text, primary_key=True))
    name: str = Field(sa_column=Column("name", Text, nullable=False))
    category: Optional[str] = Field(default=None, sa_column=Column("category", Text))
    amount: Decimal = Field(sa_column=Column("amount", Money, nullable=False))
    spent: Decimal = Field(default=Decimal("0"), sa_column=Column("spent", Money))
    period: str = Field(default="monthly", sa_column=Column("period", Text))
    start_date: dt.datetime = Field(sa_column=Column("startDate", IsoTimestamp, nullable=False))
    end_date: dt.datetime = Field(sa_column=Column("endDate", IsoTimestamp, nullable=False))
    currency: str = Field(default="USD", sa_column=Column("currency", Text))
    color: str = Field(default=DEFAULT_COLOR, sa_column=Column("color", Text))
    icon: str = Field(default="wallet", sa_column=Column("icon", Text))
    notifications: bool = Field(default=True, sa_column=Column("notifications", IntBool))
    warning_threshold: float = Field(default=80, sa_column=Column("warningThreshold", REAL))
    is_active: bool = Field(default=True, sa_column=Column("isActive", IntBool))
    created_at: dt.datetime = Field(sa_column=Column("createdAt", IsoTimestamp, nullable=False))
    updated_at: dt.datetime = Field(sa_column=Column("updatedAt", IsoTimestamp, nullable=False))


class Category(SQLModel, table=True):
    """Income or expense category; ``parent_id`` allows one level of nesting."""
    __tablename__ = "categories"

    id: str = Field(sa_column=Column("id", Text, primary_key=True))
    name: str = Field(sa_column=Column("name", Text, nullable=False))
    type: str = Field(sa_column=Column("type", Text, nullable=False))
    color: str = Field(default=DEFAULT_COLOR, sa_column=Column("color", Text))
    icon: str = Field(default="folder", sa_column=Column("icon", Text))
    parent_id: Optional[str] = Field(default=None, sa_column=Column("parentId", Text))
    is_active: bool = Field(default=True, sa_column=Column("isActive", IntBool))
    created_at: dt.datetime = Field(sa_column=Column("createdAt", IsoTimestamp, nullable=False))
    updated_at: dt.datetime = Field(sa_column=Column("updatedAt", IsoTimestamp, nullable=False))


class Setting(SQLModel, table=True):
    """Generic key/value app configuration (currency, theme, authMethod...)."""
    __tablename__ = "settings"

    key: str = Field(sa_column=Column("key", Text, primary_key=True))
    value: str = Field(sa_column=Column("value", Text, nullable=False))
    updated_at: dt.datetime = Field(sa_column=Column("updatedAt", IsoTimestamp, nullable=False))
