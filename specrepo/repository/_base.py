"""Repository Base Classes and Interface.

Provides the foundation shared by every repository mixin:
- Entity type registration checks
- Cancellation handling for store calls
- Two-outcome results for best-effort operations
- Invariant helpers (key validation, timestamps, soft-delete flags)
"""

import asyncio
import typing as t
import uuid
from collections.abc import Awaitable, Iterable
from contextlib import suppress
from dataclasses import dataclass

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper, make_transient_to_detached
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.sql import ColumnElement

from specrepo.config import RepositorySettings
from specrepo.logger import get_logger
from specrepo.models import (
    SYSTEM_COLUMNS,
    AuditAction,
    AuditLogEntry,
    Entity,
    EntityT,
    utc_now,
)

from .errors import (
    InvalidArgumentError,
    InvalidOperationError,
    OperationCancelledError,
)
from .query_builder import ComposedQuery, DeletedFilter, QueryComposer

if t.TYPE_CHECKING:
    from .unit_of_work import UnitOfWork

T = t.TypeVar("T")
R = t.TypeVar("R")


@dataclass(frozen=True, slots=True)
class TryResult(t.Generic[T]):
    """Outcome of a best-effort operation."""

    success: bool
    value: T | None = None
    error: Exception | None = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, value: T | None = None) -> "TryResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def failed(cls, error: Exception | None = None, value: T | None = None) -> "TryResult[T]":
        return cls(success=False, value=value, error=error)


def check_cancelled(
    cancel: asyncio.Event | None,
    entity_type: str | None = None,
    operation: str | None = None,
) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(entity_type, operation)


async def run_cancellable(
    awaitable: Awaitable[R],
    cancel: asyncio.Event | None,
    entity_type: str | None = None,
    operation: str | None = None,
) -> R:
    """Await a store call, abandoning it as soon as ``cancel`` is set.

    Raises:
        OperationCancelledError: If the signal is set before or during the call
    """
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError(entity_type, operation)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter},
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    with suppress(BaseException):
        await task
    raise OperationCancelledError(entity_type, operation)


def apply_insert_defaults(entity: Entity) -> None:
    """Assign a fresh id and creation time when unset."""
    if not entity.has_valid_id:
        entity.id = uuid.uuid4()
    if entity.created_at_utc is None:
        entity.created_at_utc = utc_now()
    if entity.is_deleted and entity.deleted_at_utc is None:
        entity.deleted_at_utc = entity.created_at_utc


def ensure_mapped(entity_type: t.Any) -> Mapper[t.Any]:
    """Return the mapper of an entity type, or raise if it is not a table model."""
    if not isinstance(entity_type, type) or not issubclass(entity_type, Entity):
        msg = f"{entity_type!r} does not extend Entity"
        raise InvalidOperationError(msg, operation="register")
    try:
        mapper = sa_inspect(entity_type)
    except NoInspectionAvailable:
        mapper = None
    if not isinstance(mapper, Mapper):
        msg = f"{entity_type.__name__} is not registered with the store model (missing table=True?)"
        raise InvalidOperationError(
            msg,
            entity_type=entity_type.__name__,
            operation="register",
        )
    return mapper


class RepositoryBase(t.Generic[EntityT]):
    """Base class for the repository mixins.

    Holds the unit of work, the query composer, and the invariant helpers
    every mutation path shares. One instance serves one entity type inside
    one unit of work.
    """

    def __init__(
        self,
        entity_type: type[EntityT],
        unit_of_work: "UnitOfWork",
        settings: RepositorySettings | None = None,
    ) -> None:
        self.mapper = ensure_mapped(entity_type)
        self.entity_type = entity_type
        self.entity_name = entity_type.__name__
        self.uow = unit_of_work
        self.settings = settings or unit_of_work.settings
        self.composer = QueryComposer(entity_type, self.settings)
        self.logger = get_logger("repository", entity=self.entity_name)
        self._metrics: dict[str, int] = {}

    @property
    def column_keys(self) -> list[str]:
        return [attr.key for attr in self.mapper.column_attrs]

    def _user_columns(self) -> list[str]:
        return [key for key in self.column_keys if key not in SYSTEM_COLUMNS]

    def _increment_metric(self, operation: str, success: bool = True) -> None:
        metric_key = f"{operation}_{'success' if success else 'error'}"
        self._metrics[metric_key] = self._metrics.get(metric_key, 0) + 1

    def get_metrics(self) -> dict[str, t.Any]:
        return {
            "entity_type": self.entity_name,
            "operations": self._metrics.copy(),
        }

    def _log(self, operation: str, **context: t.Any) -> None:
        if self.settings.log_operations:
            self.logger.bind(operation=operation, **context).debug(
                f"{self.entity_name}.{operation}",
            )

    # -- cancellation ---------------------------------------------------

    def _check_cancelled(self, cancel: asyncio.Event | None, operation: str) -> None:
        check_cancelled(cancel, self.entity_name, operation)

    async def _run(
        self,
        awaitable: Awaitable[R],
        cancel: asyncio.Event | None,
        operation: str,
    ) -> R:
        return await run_cancellable(awaitable, cancel, self.entity_name, operation)

    # -- argument validation --------------------------------------------

    def _invalid_argument(self, message: str, operation: str) -> InvalidArgumentError:
        return InvalidArgumentError(
            f"{message} ({self.entity_name}.{operation})",
            entity_type=self.entity_name,
            operation=operation,
        )

    def _require_entity(self, entity: EntityT | None, operation: str) -> EntityT:
        if entity is None:
            msg = f"The entity of type {self.entity_name} cannot be None"
            raise self._invalid_argument(msg, operation)
        if not isinstance(entity, self.entity_type):
            msg = f"Expected {self.entity_name}, got {type(entity).__name__}"
            raise self._invalid_argument(msg, operation)
        return entity

    def _require_entities(
        self,
        entities: Iterable[EntityT | None] | None,
        operation: str,
    ) -> list[EntityT]:
        if entities is None:
            msg = f"The collection of entities of type {self.entity_name} cannot be None"
            raise self._invalid_argument(msg, operation)
        materialized = list(entities)
        for index, entity in enumerate(materialized):
            if entity is None:
                msg = f"Element {index} of the {self.entity_name} collection is None"
                raise self._invalid_argument(msg, operation)
            self._require_entity(entity, operation)
        return t.cast("list[EntityT]", materialized)

    def _require_predicate(
        self,
        predicate: ColumnElement[bool] | None,
        operation: str,
    ) -> ColumnElement[bool]:
        if predicate is None:
            raise self._invalid_argument("predicate cannot be None", operation)
        return predicate

    def _coerce_id(self, entity_id: t.Any, operation: str) -> uuid.UUID:
        if entity_id is None:
            raise self._invalid_argument("id cannot be None", operation)
        if isinstance(entity_id, uuid.UUID):
            return entity_id
        try:
            return uuid.UUID(str(entity_id))
        except ValueError as e:
            msg = f"{entity_id!r} cannot be used as a {self.entity_name} id"
            raise self._invalid_argument(msg, operation) from e

    def _require_valid_key(self, entity: EntityT, operation: str) -> None:
        if not entity.has_valid_id:
            msg = f"Cannot {operation} a {self.entity_name} with an empty id"
            raise InvalidOperationError(
                msg,
                entity_type=self.entity_name,
                operation=operation,
            )

    def _require_attachable(self, entities: Iterable[EntityT], operation: str) -> None:
        """Check every key before any entity of a collection is attached or changed."""
        for entity in entities:
            tracked = None
            if entity.id is not None:
                tracked = self.uow.find_tracked(self.entity_type, entity.id)
            if tracked is None:
                self._require_valid_key(entity, operation)

    # -- invariants -------------------------------------------------------

    _prepare_for_insert = staticmethod(apply_insert_defaults)

    @staticmethod
    def _touch(entity: Entity) -> None:
        entity.last_modified_at_utc = utc_now()

    @staticmethod
    def _mark_deleted(entity: Entity) -> bool:
        if entity.is_deleted:
            return False
        entity.is_deleted = True
        entity.deleted_at_utc = utc_now()
        return True

    @staticmethod
    def _mark_restored(entity: Entity) -> bool:
        if not entity.is_deleted:
            return False
        entity.is_deleted = False
        entity.deleted_at_utc = None
        return True

    async def _try(
        self,
        operation: str,
        awaitable: Awaitable[R],
    ) -> TryResult[R]:
        try:
            value = await awaitable
        except Exception as e:
            self._increment_metric(operation, success=False)
            self.logger.bind(operation=operation).warning(
                f"{self.entity_name}.{operation} failed: {e}",
            )
            return TryResult.failed(e)
        return TryResult.ok(value)

    # -- unit of work helpers -----------------------------------------------

    async def _save(self, cancel: asyncio.Event | None, operation: str) -> int:
        count = await self.uow.save_changes(cancel, self.entity_name, operation)
        self._increment_metric(operation)
        self._log(operation, affected=count)
        return count

    async def _execute_bulk(
        self,
        statement: t.Any,
        cancel: asyncio.Event | None,
        operation: str,
    ) -> int:
        """Run a set-based statement and commit it unless a transaction is open."""
        try:
            result = await self._run(self.uow.execute(statement), cancel, operation)
            if not self.uow.in_transaction:
                await self._run(self.uow.commit(), cancel, operation)
        except BaseException:
            if not self.uow.in_transaction:
                await self.uow.rollback()
            raise
        count = result.rowcount or 0
        self._increment_metric(operation)
        self._log(operation, affected=count)
        return count

    def _attach(self, entity: EntityT, operation: str) -> EntityT:
        """Return the tracked instance for ``entity``, attaching it if needed.

        An instance with the same identity already in the unit of work takes
        precedence. Otherwise the key must be valid and the entity is attached
        as a persistent instance without reading it from the store.
        """
        tracked = None
        if entity.id is not None:
            tracked = self.uow.find_tracked(self.entity_type, entity.id)
        if tracked is not None:
            return tracked

        self._require_valid_key(entity, operation)
        state = sa_inspect(entity)
        if state.transient:
            make_transient_to_detached(entity)
        if not self.uow.is_tracked(entity):
            self.uow.add(entity)
        return entity

    def _copy_columns(
        self,
        source: EntityT,
        target: EntityT,
        keys: Iterable[str] | None = None,
    ) -> None:
        if source is target:
            return
        source_values = sa_inspect(source).dict
        for key in keys if keys is not None else self.column_keys:
            if key == "id" or key not in source_values:
                continue
            if key == "created_at_utc" and source_values[key] is None:
                continue
            setattr(target, key, source_values[key])

    def _flag_columns(self, entity: EntityT, keys: Iterable[str]) -> None:
        state = sa_inspect(entity)
        for key in keys:
            if key == "id" or key not in state.dict:
                continue
            if key == "created_at_utc" and state.dict[key] is None:
                continue
            flag_modified(entity, key)

    def _new_audit_entry(
        self,
        action: AuditAction,
        entity: EntityT,
        user_name: str | None,
        details: str,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            action=action,
            entity_name=self.entity_name,
            entity_id=str(entity.id),
            user_name=user_name or self.settings.audit_user,
            details=details,
        )
        self._prepare_for_insert(entry)
        return entry

    # -- read helpers ---------------------------------------------------------

    async def _fetch(
        self,
        composed: ComposedQuery,
        cancel: asyncio.Event | None,
        operation: str,
    ) -> list[t.Any]:
        if composed.projection is not None:
            result = await self._run(
                self.uow.execute(composed.statement),
                cancel,
                operation,
            )
            return [composed.projection.materialize(row) for row in result.mappings().all()]

        preexisting = self.uow.tracked_keys() if composed.as_no_tracking else None
        result = await self._run(self.uow.scalars(composed.statement), cancel, operation)
        items = list(result.unique().all())
        if preexisting is not None:
            items = self.uow.detach(items, preexisting)
        return items

    async def _first(
        self,
        composed: ComposedQuery,
        cancel: asyncio.Event | None,
        operation: str,
    ) -> t.Any | None:
        composed.statement = composed.statement.limit(1)
        items = await self._fetch(composed, cancel, operation)
        return items[0] if items else None

    async def _exists_where(
        self,
        conditions: Iterable[ColumnElement[bool]],
        cancel: asyncio.Event | None,
        operation: str,
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
    ) -> bool:
        stmt = self.composer.exists(conditions, deleted)
        return bool(await self._run(self.uow.scalar(stmt), cancel, operation))

    async def _count_where(
        self,
        conditions: Iterable[ColumnElement[bool]],
        cancel: asyncio.Event | None,
        operation: str,
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
    ) -> int:
        stmt = self.composer.count(conditions, deleted)
        return int(await self._run(self.uow.scalar(stmt), cancel, operation) or 0)

    def _id_equals(self, entity_id: uuid.UUID) -> ColumnElement[bool]:
        return t.cast("t.Any", self.entity_type.id) == entity_id
