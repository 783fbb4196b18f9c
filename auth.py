import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from passlib.context import CryptContext

from config import DEFAULT_SESSION_TIMEOUT_MINUTES, SESSION_CHECK_INTERVAL_SECONDS
from crypto import DataCipher
from database import DatabaseService
from errors import BudgetWiseError, SecureStorageError
from secure_storage import SecureStorage

logger = logging.getLogger(__name__)

PIN_KEY = "userPIN"
AUTH_METHOD_SETTING = "authMethod"
SESSION_TIMEOUT_SETTING = "sessionTimeout"

# Settings owned by AuthService; writing them directly desyncs its state.
AUTH_SETTINGS = (AUTH_METHOD_SETTING, SESSION_TIMEOUT_SETTING)

AUTH_METHODS = ("none", "pin", "biometric")

#  Use Argon2id (modern, memory-hard). hex_sha256 only verifies PINs stored
#  by older releases; they are rehashed to argon2 on the next successful login.
pwd_context = CryptContext(
    schemes=["argon2", "hex_sha256"],
    deprecated="auto",
    # Argon2id settings
    argon2__type="ID",
    argon2__memory_cost=65536,  # 64 MB
    argon2__time_cost=3,
    argon2__parallelism=1,
)


def get_pin_hash(pin: str) -> str:
    if not pin:
        raise ValueError("PIN must not be empty")
    # Optional: enforce a max length to avoid pathological huge input
    if len(pin) > 64:
        raise ValueError("PIN too long")
    return pwd_context.hash(pin)


def verify_pin(plain_pin: str, hashed_pin: str) -> tuple[bool, Optional[str]]:
    """Check a PIN in constant time; the second item is a replacement hash if the stored one is outdated."""
    return pwd_context.verify_and_update(plain_pin, hashed_pin)


class AuthFailure(str, Enum):
    NO_PIN = "No PIN set up"
    INCORRECT_PIN = "Incorrect PIN"
    BIOMETRIC_UNAVAILABLE = "Biometric authentication is not available"
    UNAVAILABLE = "Authentication unavailable"
    SETUP_FAILED = "PIN setup failed"


@dataclass
class AuthResult:
    success: bool
    error: Optional[AuthFailure] = None
    requires_pin: bool = False
    detail: Optional[str] = None


class SessionMonitor:
    """Calls ``check`` every ``interval`` seconds on a daemon thread until stopped."""

    def __init__(
        self,
        check: Callable[[], None],
        interval: float = SESSION_CHECK_INTERVAL_SECONDS,
        name: str = "session-monitor",
    ):
        self.check = check
        self.interval = interval
        self.name = name
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        # Guards the (thread, stop event) pair; never held while joining.
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            previous = self._detach()
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop,), name=self.name, daemon=True
            )
            self._thread.start()
        self._join(previous)

    def stop(self) -> None:
        with self._lock:
            previous = self._detach()
        self._join(previous)

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            try:
                self.check()
            except Exception:
                logger.exception("Session check failed")

    def _detach(self) -> Optional[threading.Thread]:
        thread, self._thread = self._thread, None
        if thread is not None:
            self._stop.set()
        return thread

    def _join(self, thread: Optional[threading.Thread]) -> None:
        # logout() from inside a check stops the monitor from its own thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)


class AuthService:
    """PIN gate, session liveness and payload encryption for the app.

    State is ``auth_method`` (none / pin / biometric, the last one reserved)
    plus ``is_authenticated``.  Both are guarded by a lock because the
    session monitor runs on its own thread.

    ``fail_open`` switches to granting access when the
    authentication flow itself breaks; by default such errors deny access.
    """

    def __init__(
        self,
        db: DatabaseService,
        storage: SecureStorage,
        cipher: Optional[DataCipher] = None,
        fail_open: bool = False,
        check_interval: float = SESSION_CHECK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.storage = storage
        self.cipher = cipher or DataCipher(storage)
        self.fail_open = fail_open
        self.clock = clock
        self.is_authenticated = False
        self.auth_method = "none"
        self.session_timeout = DEFAULT_SESSION_TIMEOUT_MINUTES * 60
        self.last_activity = clock()
        self.monitor = SessionMonitor(self.check_session, check_interval)
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Load the persisted auth method and timeout, then start the session monitor."""
        saved_method = self.db.get_setting(AUTH_METHOD_SETTING)
        with self._lock:
            if saved_method in AUTH_METHODS:
                self.auth_method = saved_method
            else:
                if saved_method:
                    logger.warning(f"Unknown auth method {saved_method!r}, using 'none'")
                self.auth_method = "none"
            self.session_timeout = self.get_session_timeout() * 60
        self.monitor.start()

    def shutdown(self) -> None:
        self.monitor.stop()

    def is_biometric_available(self) -> bool:
        return False

    # PIN

    def has_pin(self) -> bool:
        try:
            return self.storage.get_item(PIN_KEY) is not None
        except SecureStorageError as exc:
            logger.error(f"Error reading PIN: {exc}")
            return False

    def setup_pin(self, pin: str) -> AuthResult:
        try:
            hashed = get_pin_hash(pin)
            self.storage.set_item(PIN_KEY, hashed)
            if not self.db.set_setting(AUTH_METHOD_SETTING, "pin"):
                logger.warning("PIN stored but the auth method could not be persisted")
        except (ValueError, SecureStorageError) as exc:
            logger.error(f"Error setting up PIN: {exc}")
            return AuthResult(success=False, error=AuthFailure.SETUP_FAILED, detail=str(exc))

        with self._lock:
            self.auth_method = "pin"
        logger.info("PIN authentication enabled")
        return AuthResult(success=True)

    def authenticate_with_pin(self, pin: str) -> AuthResult:
        try:
            stored = self.storage.get_item(PIN_KEY)
        except SecureStorageError as exc:
            logger.error(f"PIN authentication error: {exc}")
            return AuthResult(success=False, error=AuthFailure.UNAVAILABLE, detail=str(exc))

        if not stored:
            return AuthResult(success=False, error=AuthFailure.NO_PIN)

        try:
            valid, new_hash = verify_pin(pin, stored)
        except (TypeError, ValueError) as exc:
            logger.error(f"PIN authentication error: {exc}")
            return AuthResult(success=False, error=AuthFailure.UNAVAILABLE, detail=str(exc))

        if not valid:
            return AuthResult(success=False, error=AuthFailure.INCORRECT_PIN)

        if new_hash:
            try:
                self.storage.set_item(PIN_KEY, new_hash)
                logger.info("Upgraded stored PIN hash")
            except SecureStorageError as exc:
                logger.warning(f"Could not upgrade stored PIN hash: {exc}")

        return self._grant()

    # Session

    def _grant(self) -> AuthResult:
        with self._lock:
            self.is_authenticated = True
            self.update_last_activity()
        # logout() halts the monitor; a new session needs it again
        if not self.monitor.running:
            self.monitor.start()
        return AuthResult(success=True)

    def authenticate(self) -> AuthResult:
        """Open a session when no gate is configured, or report that a PIN is needed."""
        try:
            with self._lock:
                method = self.auth_method
            if method == "none":
                return self._grant()
            if method == "pin":
                # the PIN screen is useless if the stored hash cannot be read
                self.storage.get_item(PIN_KEY)
                return AuthResult(success=False, requires_pin=True)
            if self.fail_open:
                return self._grant()
            return AuthResult(success=False, error=AuthFailure.BIOMETRIC_UNAVAILABLE)
        except BudgetWiseError as exc:
            logger.error(f"Authentication error: {exc}")
            if self.fail_open:
                return self._grant()
            return AuthResult(success=False, error=AuthFailure.UNAVAILABLE, detail=str(exc))

    def logout(self) -> None:
        with self._lock:
            self.is_authenticated = False
        self.monitor.stop()

    def update_last_activity(self) -> None:
        with self._lock:
            self.last_activity = self.clock()

    def check_session(self) -> bool:
        """Log out an idle session. Returns True when the session was expired."""
        with self._lock:
            expired = (
                self.is_authenticated
                and self.clock() - self.last_activity > self.session_timeout
            )
            if expired:
                self.is_authenticated = False
        if expired:
            logger.info("Session timed out")
            self.monitor.stop()
        return expired

    def is_user_authenticated(self) -> bool:
        with self._lock:
            return self.is_authenticated

    def get_auth_method(self) -> str:
        with self._lock:
            return self.auth_method

    def set_session_timeout(self, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError("Session timeout must be positive")
        with self._lock:
            self.session_timeout = minutes * 60
        self.db.set_setting(SESSION_TIMEOUT_SETTING, str(minutes))

    def get_session_timeout(self) -> int:
        """Timeout in minutes as persisted in settings."""
        saved = self.db.get_setting(SESSION_TIMEOUT_SETTING)
        try:
            return int(saved) if saved else DEFAULT_SESSION_TIMEOUT_MINUTES
        except ValueError:
            logger.warning(f"Invalid session timeout setting {saved!r}")
            return DEFAULT_SESSION_TIMEOUT_MINUTES

    # Encryption

    def generate_encryption_key(self) -> str:
        return self.cipher.generate_encryption_key()

    def encrypt_data(self, value: Any) -> str:
        return self.cipher.encrypt_data(value)

    def decrypt_data(self, blob: Any) -> Any:
        return self.cipher.decrypt_data(blob)

    # Security settings

    def get_security_settings(self) -> dict[str, Any]:
        return {
            "auth_method": self.get_auth_method(),
            "biometric_available": self.is_biometric_available(),
            "session_timeout": self.get_session_timeout(),
            "has_pin": self.has_pin(),
            "is_authenticated": self.is_user_authenticated(),
        }

    def reset_security(self) -> AuthResult:
        """Forget the PIN and encryption key and return to the ungated state."""
        try:
            self.storage.remove_item(PIN_KEY)
            self.cipher.forget_key()
        except SecureStorageError as exc:
            logger.error(f"Error resetting security: {exc}")
            return AuthResult(success=False, error=AuthFailure.UNAVAILABLE, detail=str(exc))

        self.db.set_setting(AUTH_METHOD_SETTING, "none")
        timeout = self.get_session_timeout()
        with self._lock:
            self.auth_method = "none"
            self.is_authenticated = False
            self.session_timeout = timeout * 60
        logger.info("Security settings reset")
        return AuthResult(success=True)
