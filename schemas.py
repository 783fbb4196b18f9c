"""Pydantic/SQLModel schemas for payloads and validation."""
import datetime as dt
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, conint, constr, field_validator
from sqlmodel import Field, SQLModel

from utils import normalize_timestamp, stored_money, utc_now

NAME_MAX_LEN = 80
TEXT_MAX_LEN = 300

TransactionType = Literal["income", "expense", "transfer"]
CategoryType = Literal["income", "expense"]
BudgetPeriod = Literal["weekly", "monthly", "yearly"]


def _strip(v):
    return v.strip() if isinstance(v, str) else v


def _not_null(v, info):
    if v is None:
        raise ValueError(f"{info.field_name} cannot be null")
    return v


class TextFieldsMixin:
    """Shared validators for free-text fields and currency codes."""
    @field_validator(
        "name", "category", "subcategory", "description", "location", "receipt", "account",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def strip_text(cls, v):
        return _strip(v)

    @field_validator("currency", mode="before", check_fields=False)
    @classmethod
    def upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class TransactionCreate(TextFieldsMixin, SQLModel):
    """Payload for recording a transaction; missing id/timestamps are generated on insert."""
    id: Optional[str] = None
    amount: Decimal = Field(ge=0)
    type: TransactionType
    category: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    subcategory: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    description: Optional[str] = Field(default=None, max_length=TEXT_MAX_LEN)
    date: dt.datetime = Field(default_factory=utc_now)
    account: str = "main"
    currency: str = Field(default="USD", min_length=3, max_length=3)
    tags: list[str] = Field(default_factory=list)
    location: Optional[str] = None
    receipt: Optional[str] = None
    recurring: bool = False
    recurring_pattern: Optional[dict[str, Any]] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @field_validator("date", "created_at", "updated_at", mode="before")
    @classmethod
    def normalize_dates(cls, v):
        if v is None:
            return None
        return normalize_timestamp(v)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        if v is None:
            return []
        return [t.strip() if isinstance(t, str) else t for t in v]

    @field_validator("amount")
    @classmethod
    def amount_as_stored(cls, v):
        return stored_money(v)


class TransactionUpdate(TextFieldsMixin, SQLModel):
    """Partial update payload for transactions."""
    amount: Optional[Decimal] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    subcategory: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    description: Optional[str] = Field(default=None, max_length=TEXT_MAX_LEN)
    date: Optional[dt.datetime] = None
    account: Optional[str] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    tags: Optional[list[str]] = None
    location: Optional[str] = None
    receipt: Optional[str] = None
    recurring: Optional[bool] = None
    recurring_pattern: Optional[dict[str, Any]] = None

    # Omit a field to leave it unchanged; only the nullable columns accept null.
    @field_validator("amount", "type", "account", "currency", "tags", "recurring", mode="before")
    @classmethod
    def reject_null(cls, v, info):
        return _not_null(v, info)

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v, info):
        return normalize_timestamp(_not_null(v, info))

    @field_validator("amount")
    @classmethod
    def amount_as_stored(cls, v):
        return stored_money(v)


class TransactionFilters(BaseModel):
    """Recognized filters for listing transactions. Absent keys are ignored."""
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None

    @field_validator("start_date", mode="before")
    @classmethod
    def normalize_start(cls, v):
        if v is None:
            return None
        return normalize_timestamp(v)

    @field_validator("end_date", mode="before")
    @classmethod
    def normalize_end(cls, v):
        # a bare date covers the whole day
        if v is None:
            return None
        return normalize_timestamp(v, end_of_day=True)


class CategoryCreate(SQLModel):
    """Payload for creating a category."""
    id: Optional[str] = None
    name: constr(strip_whitespace=True, min_length=1, max_length=NAME_MAX_LEN)
    type: CategoryType
    color: str = "#6366f1"
    icon: str = "folder"
    parent_id: Optional[str] = None
    is_active: bool = True


class BudgetCreate(TextFieldsMixin, SQLModel):
    """Payload for creating a budget; dates default to the current period window."""
    id: Optional[str] = None
    name: str = Field(min_length=1, max_length=NAME_MAX_LEN)
    category: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    amount: Decimal = Field(gt=0)
    period: BudgetPeriod = "monthly"
    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)
    color: str = "#6366f1"
    icon: str = "wallet"
    notifications: bool = True
    warning_threshold: float = Field(default=80, ge=0, le=100)
    is_active: bool = True

    @field_validator("start_date", mode="before")
    @classmethod
    def normalize_start(cls, v):
        if v is None:
            return None
        return normalize_timestamp(v)

    @field_validator("end_date", mode="before")
    @classmethod
    def normalize_end(cls, v):
        if v is None:
            return None
        return normalize_timestamp(v, end_of_day=True)

    @field_validator("amount")
    @classmethod
    def amount_as_stored(cls, v):
        return stored_money(v)


class BudgetUpdate(TextFieldsMixin, SQLModel):
    """Partial update payload for budgets."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LEN)
    category: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    notifications: Optional[bool] = None
    warning_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    is_active: Optional[bool] = None

    # ``category`` is the only field that may be cleared with null.
    @field_validator(
        "name", "amount", "period", "color", "icon", "notifications", "warning_threshold", "is_active",
        mode="before",
    )
    @classmethod
    def reject_null(cls, v, info):
        return _not_null(v, info)

    @field_validator("start_date", mode="before")
    @classmethod
    def normalize_start(cls, v, info):
        return normalize_timestamp(_not_null(v, info))

    @field_validator("end_date", mode="before")
    @classmethod
    def normalize_end(cls, v, info):
        return normalize_timestamp(_not_null(v, info), end_of_day=True)

    @field_validator("amount")
    @classmethod
    def amount_as_stored(cls, v):
        return stored_money(v)


class BudgetStatus(BaseModel):
    """Budget progress for display."""
    id: str
    name: str
    amount: float
    spent: float
    remaining: float
    percentage: float
    flags: list[str]


class SettingWrite(BaseModel):
    """Payload to store a setting value."""
    value: Any


# Auth schemas

class PinPayload(BaseModel):
    """Payload carrying a numeric PIN."""
    pin: constr(pattern=r"^\d{4,8}$")


class SessionTimeoutChange(BaseModel):
    """Payload to change the inactivity timeout."""
    minutes: conint(gt=0, le=24 * 60)


class AuthResponse(BaseModel):
    """Outcome of an authentication attempt."""
    success: bool
    error: Optional[str] = None
    requires_pin: bool = False


class SecuritySettings(BaseModel):
    """Current security configuration."""
    auth_method: str
    biometric_available: bool
    session_timeout: int
    has_pin: bool
    is_authenticated: bool
