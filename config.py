"""Runtime configuration read from environment variables."""
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./budgetwise.db")

# JSON file holding the PIN hash and the encryption key
SECURE_STORAGE_PATH = os.getenv("SECURE_STORAGE_PATH", "./.budgetwise-secure.json")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Grant access when authentication itself breaks.
AUTH_FAIL_OPEN = _env_flag("AUTH_FAIL_OPEN")

# Return plain JSON instead of raising when encryption fails.
ENCRYPTION_PLAINTEXT_FALLBACK = _env_flag("ENCRYPTION_PLAINTEXT_FALLBACK")

# Raise DatabaseInitError instead of starting with a broken store.
DB_STRICT_INIT = _env_flag("DB_STRICT_INIT")

SESSION_CHECK_INTERVAL_SECONDS = float(os.getenv("SESSION_CHECK_INTERVAL_SECONDS", "30"))
DEFAULT_SESSION_TIMEOUT_MINUTES = int(os.getenv("DEFAULT_SESSION_TIMEOUT_MINUTES", "5"))
