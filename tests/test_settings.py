from sqlalchemy import text

from database import DEFAULT_CATEGORIES, DEFAULT_SETTINGS


def count_rows(engine, sql):
    with engine.connect() as conn:
        return conn.execute(text(sql)).scalar()


def test_default_settings_are_seeded(db):
    assert db.get_all_settings() == DEFAULT_SETTINGS
    assert db.get_setting("currency") == "USD"
    assert db.get_setting("firstLaunch") == "true"


def test_missing_setting_returns_none(db):
    assert db.get_setting("doesNotExist") is None


def test_set_setting_replaces_value(db):
    assert db.set_setting("theme", "dark") is True
    assert db.get_setting("theme") == "dark"


def test_set_setting_twice_keeps_one_row(db, engine):
    db.set_setting("currency", "EUR")
    db.set_setting("currency", "EUR")
    assert count_rows(engine, "SELECT COUNT(*) FROM settings WHERE key = 'currency'") == 1
    assert db.get_setting("currency") == "EUR"


def test_set_setting_refreshes_updated_at(db, engine):
    with engine.begin() as conn:
        conn.execute(text("UPDATE settings SET updatedAt = '2000-01-01T00:00:00.000Z' WHERE key = 'theme'"))
    db.set_setting("theme", "light")
    updated = count_rows(engine, "SELECT updatedAt FROM settings WHERE key = 'theme'")
    assert updated > "2000-01-01T00:00:00.000Z"


def test_boolean_and_numeric_values_stored_as_text(db):
    db.set_setting("notifications", False)
    db.set_setting("sessionTimeout", 10)
    assert db.get_setting("notifications") == "false"
    assert db.get_setting("sessionTimeout") == "10"


def test_delete_setting(db):
    db.set_setting("temp", "1")
    assert db.delete_setting("temp") is True
    assert db.get_setting("temp") is None
    assert db.delete_setting("temp") is False


def test_initialize_twice_never_duplicates_seed(db, engine):
    db.is_initialized = False
    db.initialize()
    db.is_initialized = False
    db.initialize()

    assert count_rows(engine, "SELECT COUNT(*) FROM categories") == len(DEFAULT_CATEGORIES)
    assert count_rows(engine, "SELECT COUNT(*) FROM settings") == len(DEFAULT_SETTINGS)


def test_seed_does_not_overwrite_user_settings(db):
    db.set_setting("currency", "GBP")
    db.is_initialized = False
    db.initialize()
    assert db.get_setting("currency") == "GBP"


def test_clear_all_data_reseeds_defaults(db, engine):
    db.add_transaction({"amount": 5, "type": "expense", "date": "2025-01-01"})
    db.add_budget({"name": "Food", "category": "Food & Dining", "amount": 100})
    db.set_setting("currency", "EUR")

    assert db.clear_all_data() is True

    assert db.get_transactions() == []
    assert db.get_budgets(active_only=False) == []
    assert db.get_setting("currency") == "USD"
    assert count_rows(engine, "SELECT COUNT(*) FROM categories") == len(DEFAULT_CATEGORIES)
