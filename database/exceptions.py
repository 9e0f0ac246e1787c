"""Database exceptions shared by the schema manager and the store adapters."""
from typing import Optional


class DatabaseError(Exception):
    """Raised when a database operation fails."""
    pass


class UniqueViolation(DatabaseError):
    """Raised when an insert violates a unique constraint.

    Attributes:
        constraint: Name of the violated constraint or column, when known
    """

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class DatabaseSchemaError(DatabaseError):
    """Raised when schema initialization or migration fails."""
    pass
