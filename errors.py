"""Exceptions raised by the storage and security layers."""


class BudgetWiseError(Exception):
    """Base class for all BudgetWise errors."""


class PersistenceError(BudgetWiseError):
    """A write to the database failed (constraint violation, broken store...)."""


class DatabaseInitError(PersistenceError):
    """Migrations or default seeding could not be completed."""


class SecureStorageError(BudgetWiseError):
    """The secure key/value store could not be read or written."""


class EncryptionError(BudgetWiseError):
    """A payload could not be encrypted or decrypted."""
