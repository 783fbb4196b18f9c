"""Versioned schema migrations.

The applied version is kept in SQLite's ``PRAGMA user_version``.  Each entry
of ``MIGRATIONS`` moves the schema from ``version - 1`` to ``version`` and runs
inside its own transaction, so a failed step leaves the previous version in
place.  Run ``run_migrations(engine)`` once at startup before any query.
"""
import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

# Column types and defaults must stay byte-compatible with existing data files.
CREATE_TRANSACTIONS = """
CREATE TABLE IF NOT EXISTS transactions (
  id TEXT PRIMARY KEY,
  amount REAL NOT NULL,
  type TEXT NOT NULL,
  category TEXT,
  subcategory TEXT,
  description TEXT,
  date TEXT NOT NULL,
  account TEXT DEFAULT 'main',
  currency TEXT DEFAULT 'USD',
  tags TEXT,
  location TEXT,
  receipt TEXT,
  recurring INTEGER DEFAULT 0,
  recurringPattern TEXT,
  createdAt TEXT NOT NULL,
  updatedAt TEXT NOT NULL
)
"""

CREATE_BUDGETS = """
CREATE TABLE IF NOT EXISTS budgets (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  category TEXT,
  amount REAL NOT NULL,
  spent REAL DEFAULT 0,
  period TEXT DEFAULT 'monthly',
  startDate TEXT NOT NULL,
  endDate TEXT NOT NULL,
  currency TEXT DEFAULT 'USD',
  color TEXT DEFAULT '#6366f1',
  icon TEXT DEFAULT 'wallet',
  notifications INTEGER DEFAULT 1,
  warningThreshold REAL DEFAULT 80,
  isActive INTEGER DEFAULT 1,
  createdAt TEXT NOT NULL,
  updatedAt TEXT NOT NULL
)
"""

CREATE_CATEGORIES = """
CREATE TABLE IF NOT EXISTS categories (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  type TEXT NOT NULL,
  color TEXT DEFAULT '#6366f1',
  icon TEXT DEFAULT 'folder',
  parentId TEXT,
  isActive INTEGER DEFAULT 1,
  createdAt TEXT NOT NULL,
  updatedAt TEXT NOT NULL
)
"""

CREATE_SETTINGS = """
CREATE TABLE IF NOT EXISTS settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updatedAt TEXT NOT NULL
)
"""


def _v1_base_schema(conn: Connection) -> None:
    for ddl in (CREATE_TRANSACTIONS, CREATE_BUDGETS, CREATE_CATEGORIES, CREATE_SETTINGS):
        conn.execute(text(ddl))


def _v2_indexes(conn: Connection) -> None:
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions (date)"))
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS idx_transactions_type_date ON transactions (type, date)")
    )


MIGRATIONS = {
    1: _v1_base_schema,
    2: _v2_indexes,
}

SCHEMA_VERSION = max(MIGRATIONS)


def get_schema_version(conn: Connection) -> int:
    return conn.execute(text("PRAGMA user_version")).scalar() or 0


def run_migrations(engine: Engine) -> int:
    """Apply every pending migration and return the resulting schema version."""
    with engine.connect() as conn:
        current = get_schema_version(conn)

    if current > SCHEMA_VERSION:
        logger.warning(f"Database schema version {current} is newer than this build ({SCHEMA_VERSION})")
        return current

    for version in range(current + 1, SCHEMA_VERSION + 1):
        with engine.begin() as conn:
            MIGRATIONS[version](conn)
            # PRAGMA does not accept bound parameters
            conn.execute(text(f"PRAGMA user_version = {int(version)}"))
        logger.info(f"Applied schema migration {version}")

    return SCHEMA_VERSION
