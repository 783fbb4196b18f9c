import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from schemas import (
    BudgetCreate,
    BudgetUpdate,
    PinPayload,
    TransactionCreate,
    TransactionFilters,
    TransactionUpdate,
)

UTC = dt.timezone.utc


def test_transaction_create_trims_text_and_tags():
    payload = TransactionCreate(
        amount=Decimal("5"),
        type="expense",
        category="  Transportation  ",
        description="  Airport taxi  ",
        date="2025-01-01T10:00:00Z",  # string on purpose, validator will handle
        currency=" eur ",
        tags=[" travel ", "work"],
    )
    assert payload.category == "Transportation"
    assert payload.description == "Airport taxi"
    assert payload.currency == "EUR"
    assert payload.tags == ["travel", "work"]
    assert payload.date == dt.datetime(2025, 1, 1, 10, 0, tzinfo=UTC)


def test_transaction_create_defaults():
    payload = TransactionCreate(amount=Decimal("1"), type="income")
    assert payload.account == "main"
    assert payload.currency == "USD"
    assert payload.tags == []
    assert payload.recurring is False
    assert payload.recurring_pattern is None
    assert payload.date.tzinfo is not None


def test_transaction_create_rejects_negative_amount():
    with pytest.raises(ValidationError):
        TransactionCreate(amount=Decimal("-1"), type="expense")


def test_transaction_create_allows_zero_amount():
    assert TransactionCreate(amount=0, type="transfer").amount == 0


def test_transaction_create_rejects_unknown_type():
    with pytest.raises(ValidationError):
        TransactionCreate(amount=Decimal("1"), type="refund")


def test_transaction_update_rejects_invalid_date_format():
    with pytest.raises(ValidationError) as exc_info:
        TransactionUpdate(date="03/02/2025")
    assert "Invalid date format" in str(exc_info.value)


def test_transaction_update_only_sets_given_fields():
    obj = TransactionUpdate(description="lunch")
    assert obj.model_dump(exclude_unset=True) == {"description": "lunch"}


def test_filters_end_date_covers_whole_day():
    filters = TransactionFilters(start_date="2025-01-01", end_date="2025-01-31")
    assert filters.start_date == dt.datetime(2025, 1, 1, tzinfo=UTC)
    assert filters.end_date == dt.datetime(2025, 1, 31, 23, 59, 59, 999000, tzinfo=UTC)


def test_filters_ignore_unknown_keys():
    filters = TransactionFilters.model_validate({"type": "income", "colour": "red"})
    assert filters.type == "income"
    assert filters.category is None


def test_budget_create_requires_positive_amount():
    with pytest.raises(ValidationError):
        BudgetCreate(name="Food", amount=Decimal("0"))


def test_budget_create_rejects_threshold_above_100():
    with pytest.raises(ValidationError):
        BudgetCreate(name="Food", amount=Decimal("10"), warning_threshold=120)


@pytest.mark.parametrize("pin", ["123", "abcd", "123456789", ""])
def test_pin_payload_rejects_bad_pins(pin):
    with pytest.raises(ValidationError):
        PinPayload(pin=pin)


def test_pin_payload_accepts_digits():
    assert PinPayload(pin="0042").pin == "0042"


@pytest.mark.parametrize("field", ["amount", "type", "date", "account", "currency", "tags", "recurring"])
def test_transaction_update_rejects_null_required_fields(field):
    with pytest.raises(ValidationError) as exc_info:
        TransactionUpdate(**{field: None})
    assert "cannot be null" in str(exc_info.value)


def test_transaction_update_allows_clearing_optional_fields():
    obj = TransactionUpdate(category=None, recurring_pattern=None)
    assert obj.model_dump(exclude_unset=True) == {"category": None, "recurring_pattern": None}


@pytest.mark.parametrize("field", ["name", "amount", "period", "start_date", "end_date", "is_active"])
def test_budget_update_rejects_null_required_fields(field):
    with pytest.raises(ValidationError):
        BudgetUpdate(**{field: None})


def test_budget_update_allows_clearing_category():
    assert BudgetUpdate(category=None).model_dump(exclude_unset=True) == {"category": None}


def test_amount_is_kept_at_stored_precision():
    payload = TransactionCreate(amount=Decimal("12345678.123456789"), type="expense")
    assert payload.amount == Decimal("12345678.12345679")
    assert BudgetCreate(name="Big", amount=Decimal("0.1000000000000000055")).amount == Decimal("0.1")
