import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from errors import PersistenceError

UTC = dt.timezone.utc


def spend(db, amount, date, category="Food & Dining", type_="expense"):
    db.add_transaction({"amount": Decimal(str(amount)), "type": type_, "date": date, "category": category})


def food_budget(db, **extra):
    data = {
        "name": "Groceries",
        "category": "Food & Dining",
        "amount": "200",
        "start_date": "2025-01-01",
        "end_date": "2025-01-31",
        **extra,
    }
    return db.add_budget(data)


def test_add_budget_defaults(db):
    budget = food_budget(db)

    assert budget.id.startswith("bud_")
    assert budget.period == "monthly"
    assert budget.color == "#6366f1"
    assert budget.icon == "wallet"
    assert budget.notifications is True
    assert budget.warning_threshold == 80
    assert budget.is_active is True
    assert budget.end_date == dt.datetime(2025, 1, 31, 23, 59, 59, 999000, tzinfo=UTC)


def test_add_budget_without_dates_uses_period_window(db):
    budget = db.add_budget({"name": "Year", "amount": 1000, "period": "yearly", "start_date": "2025-05-05"})
    assert budget.start_date == dt.datetime(2025, 5, 5, tzinfo=UTC)
    assert budget.end_date == dt.datetime(2025, 12, 31, 23, 59, 59, 999000, tzinfo=UTC)


def test_add_budget_rejects_inverted_range(db):
    with pytest.raises(ValueError):
        food_budget(db, start_date="2025-02-01", end_date="2025-01-01")


def test_duplicate_budget_id_raises(db):
    food_budget(db, id="bud_1")
    with pytest.raises(PersistenceError):
        food_budget(db, id="bud_1")


def test_spent_counts_only_category_expenses_in_window(db):
    spend(db, 50, "2025-01-05")
    spend(db, 25.5, "2025-01-31T20:00:00Z")
    spend(db, 70, "2025-02-01")                       # outside window
    spend(db, 30, "2025-01-10", category="Shopping")  # other category
    spend(db, 90, "2025-01-10", type_="income")       # not an expense

    budget = food_budget(db)

    assert budget.spent == Decimal("75.5")


def test_get_budgets_reconciles_spent(db):
    budget = food_budget(db)
    assert budget.spent == 0

    spend(db, 120, "2025-01-15")
    [reloaded] = db.get_budgets()

    assert reloaded.id == budget.id
    assert reloaded.spent == Decimal("120")


def test_budget_without_category_tracks_all_expenses(db):
    spend(db, 10, "2025-01-05")
    spend(db, 15, "2025-01-06", category="Shopping")
    budget = db.add_budget({"name": "Everything", "amount": 100, "start_date": "2025-01-01", "end_date": "2025-01-31"})
    assert budget.spent == Decimal("25")


def test_inactive_budgets_hidden_by_default(db):
    food_budget(db, is_active=False)
    assert db.get_budgets() == []
    assert len(db.get_budgets(active_only=False)) == 1


def test_budget_status_flags(db):
    spend(db, 170, "2025-01-05")
    budget = food_budget(db)

    status = db.get_budget_status(budget)

    assert status.spent == 170.0
    assert status.remaining == 30.0
    assert status.percentage == 85.0
    assert status.flags == ["warning"]


def test_budget_status_over_budget(db):
    spend(db, 250, "2025-01-05")
    status = db.get_budget_status(food_budget(db))
    assert status.remaining == -50.0
    assert set(status.flags) == {"warning", "over_budget"}


def test_update_budget_changes_period_window(db):
    budget = food_budget(db)
    updated = db.update_budget(budget.id, {"period": "weekly"})

    # 2025-01-01 is a Wednesday
    assert updated.start_date.date() == dt.date(2024, 12, 30)
    assert updated.end_date.date() == dt.date(2025, 1, 5)
    assert updated.updated_at >= budget.updated_at


def test_update_budget_amount_and_missing(db):
    budget = food_budget(db)
    assert db.update_budget(budget.id, {"amount": "300"}).amount == Decimal("300")
    assert db.update_budget("bud_missing", {"amount": "1"}) is None


def test_refresh_and_delete_budget(db):
    budget = food_budget(db)
    spend(db, 10, "2025-01-02")
    assert db.refresh_budget_spent(budget.id).spent == Decimal("10")
    assert db.delete_budget(budget.id) is True
    assert db.refresh_budget_spent(budget.id) is None
    assert db.delete_budget(budget.id) is False


def test_update_budget_rejects_null_dates(db):
    budget = food_budget(db)
    with pytest.raises(ValidationError):
        db.update_budget(budget.id, {"start_date": None})
    assert db.get_budget(budget.id).start_date == budget.start_date


def test_update_budget_can_clear_category(db):
    spend(db, 10, "2025-01-05", category="Shopping")
    budget = food_budget(db)
    updated = db.update_budget(budget.id, {"category": None})
    assert updated.category is None
    assert updated.spent == Decimal("10")
