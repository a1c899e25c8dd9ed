"""specrepo: async, specification-driven data access on SQLAlchemy.

Example:
    from specrepo import Entity, Specification, Store

    class Product(Entity, table=True):
        name: str
        status: str = "Pending"

    async with Store() as store:
        await store.create_all()
        async with store.unit_of_work() as uow:
            products = uow.repository(Product)
            await products.insert(Product(name="P1"))
            pending = await products.get_list(
                Specification[Product]().where(Product.status == "Pending"),
            )
"""

from .config import (
    LoggerSettings,
    RepositorySettings,
    Settings,
    StoreSettings,
    get_logger_settings,
    get_repository_settings,
    get_store_settings,
)
from .logger import configure_logging, get_logger
from .models import EMPTY_ID, AuditAction, AuditLogEntry, Entity
from .repository import (
    DeletedFilter,
    EntityNotFoundError,
    InvalidArgumentError,
    InvalidOperationError,
    OperationCancelledError,
    OrderBy,
    PaginatedResult,
    PaginationSpecification,
    Projection,
    RawGateway,
    Repository,
    RepositoryError,
    Specification,
    StoreError,
    TryResult,
    UnitOfWork,
)
from .store import Store

__all__ = [
    "EMPTY_ID",
    "AuditAction",
    "AuditLogEntry",
    "DeletedFilter",
    "Entity",
    "EntityNotFoundError",
    "InvalidArgumentError",
    "InvalidOperationError",
    "LoggerSettings",
    "OperationCancelledError",
    "OrderBy",
    "PaginatedResult",
    "PaginationSpecification",
    "Projection",
    "RawGateway",
    "Repository",
    "RepositoryError",
    "RepositorySettings",
    "Settings",
    "Store",
    "StoreError",
    "StoreSettings",
    "TryResult",
    "UnitOfWork",
    "configure_logging",
    "get_logger",
    "get_logger_settings",
    "get_repository_settings",
    "get_store_settings",
]
