"""Repository layer.

- Specification-driven query composition
- Unit-of-work repository with insert, update, soft-delete and bulk paths
- Raw query/command gateway
"""

from ._base import RepositoryBase, TryResult, check_cancelled, run_cancellable
from .errors import (
    EntityNotFoundError,
    InvalidArgumentError,
    InvalidOperationError,
    OperationCancelledError,
    RepositoryError,
    StoreError,
)
from .query_builder import ComposedQuery, DeletedFilter, QueryComposer
from .raw import RawGateway
from .repository import Repository
from .specifications import (
    OrderBy,
    PaginatedResult,
    PaginationSpecification,
    Projection,
    Specification,
)
from .unit_of_work import UnitOfWork, UnitOfWorkError, UnitOfWorkState

__all__ = [
    "ComposedQuery",
    "DeletedFilter",
    "EntityNotFoundError",
    "InvalidArgumentError",
    "InvalidOperationError",
    "OperationCancelledError",
    "OrderBy",
    "PaginatedResult",
    "PaginationSpecification",
    "Projection",
    "QueryComposer",
    "RawGateway",
    "Repository",
    "RepositoryBase",
    "RepositoryError",
    "Specification",
    "StoreError",
    "TryResult",
    "UnitOfWork",
    "UnitOfWorkError",
    "UnitOfWorkState",
    "check_cancelled",
    "run_cancellable",
]
