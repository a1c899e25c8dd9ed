"""Repository error taxonomy.

Validation errors are raised before any store access. Store failures are
SQLAlchemy exceptions and propagate unchanged.
"""

import asyncio
import typing as t

from sqlalchemy.exc import SQLAlchemyError

# Store failures are surfaced unchanged; the alias exists for callers.
StoreError = SQLAlchemyError


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.operation = operation
        super().__init__(message)


class InvalidArgumentError(RepositoryError, ValueError):
    """A required input was missing or out of range. Raised before any I/O."""


class InvalidOperationError(RepositoryError):
    """Structural violation: unmapped entity type, invalid key, strict lookup miss."""


class EntityNotFoundError(InvalidOperationError):
    """Raised when a strict lookup finds nothing."""

    def __init__(self, entity_type: str, criteria: t.Any) -> None:
        super().__init__(
            f"{entity_type} matching {criteria} not found",
            entity_type=entity_type,
            operation="get",
        )
        self.criteria = criteria


class OperationCancelledError(asyncio.CancelledError):
    """The operation observed its cancellation signal.

    Subclasses ``asyncio.CancelledError`` so that ``except Exception`` in
    best-effort variants never swallows it.
    """

    def __init__(
        self,
        entity_type: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.operation = operation
        super().__init__(f"{operation or 'operation'} on {entity_type or 'store'} was cancelled")


__all__ = [
    "EntityNotFoundError",
    "InvalidArgumentError",
    "InvalidOperationError",
    "OperationCancelledError",
    "RepositoryError",
    "StoreError",
]
