"""Unit of Work Pattern Implementation.

Owns one ``AsyncSession`` for the lifetime of a logical operation:
- Tracking set (the session identity map) shared by all repositories
- Transaction scopes, with savepoints when nested
- Change counting and commit/rollback lifecycle
- Detaching results for no-tracking reads

A unit of work is not safe for concurrent use. Create one per request.
"""

import asyncio
import typing as t
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import object_session

from specrepo.cleanup import CleanupMixin
from specrepo.config import RepositorySettings, get_repository_settings
from specrepo.logger import get_logger
from specrepo.models import Entity, EntityT

from ._base import apply_insert_defaults, run_cancellable
from .errors import InvalidOperationError

if t.TYPE_CHECKING:
    from .raw import RawGateway
    from .repository import Repository


class UnitOfWorkState(Enum):
    """Unit of Work state enumeration."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class UnitOfWorkMetrics:
    """Metrics for Unit of Work operations."""

    transaction_id: str
    start_time: datetime
    end_time: datetime | None = None
    state: UnitOfWorkState = UnitOfWorkState.INACTIVE
    operations_count: int = 0
    commits: int = 0
    rollbacks: int = 0
    repositories_used: set[str] = field(default_factory=set)
    error_message: str | None = None

    @property
    def duration(self) -> float | None:
        """Get unit of work duration in seconds."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


class UnitOfWorkError(InvalidOperationError):
    """Exception for Unit of Work lifecycle violations."""

    def __init__(
        self,
        message: str,
        transaction_id: str | None = None,
        state: UnitOfWorkState | None = None,
    ) -> None:
        super().__init__(message, operation="unit_of_work")
        self.transaction_id = transaction_id
        self.state = state


class UnitOfWork(CleanupMixin):
    """Scope of tracked state and pending changes for one logical operation.

    Mutating repository operations call ``save_changes``: pending changes are
    flushed, then committed unless an explicit ``transaction()`` scope is
    open, in which case the scope decides.

    Example:
        async with store.unit_of_work() as uow:
            products = uow.repository(Product)
            await products.insert(Product(name="P1"))
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: RepositorySettings | None = None,
    ) -> None:
        super().__init__()
        self.session = session
        self.settings = settings or get_repository_settings()
        self._state = UnitOfWorkState.INACTIVE
        self._transaction_depth = 0
        self._repositories: dict[type[Entity], Repository[t.Any]] = {}
        self._metrics = UnitOfWorkMetrics(
            transaction_id=str(uuid.uuid4()),
            start_time=datetime.now(UTC),
        )
        self.logger = get_logger("unit_of_work", transaction_id=self.transaction_id)
        event.listen(self.session.sync_session, "before_flush", self._before_flush)

    @staticmethod
    def _before_flush(session: t.Any, flush_context: t.Any, instances: t.Any) -> None:
        # entities added straight to the session get the same defaults as insert()
        for obj in session.new:
            if isinstance(obj, Entity):
                apply_insert_defaults(obj)

    @property
    def state(self) -> UnitOfWorkState:
        return self._state

    @property
    def transaction_id(self) -> str:
        return self._metrics.transaction_id

    @property
    def in_transaction(self) -> bool:
        """True inside an explicit ``transaction()`` scope."""
        return self._transaction_depth > 0

    @property
    def metrics(self) -> UnitOfWorkMetrics:
        return self._metrics

    def _set_state(self, state: UnitOfWorkState) -> None:
        self._state = state
        self._metrics.state = state

    def _ensure_open(self) -> None:
        if self._state is UnitOfWorkState.CLOSED:
            msg = "Unit of work has been closed"
            raise UnitOfWorkError(msg, self.transaction_id, self._state)
        self._metrics.operations_count += 1
        if self._state is UnitOfWorkState.INACTIVE:
            self._set_state(UnitOfWorkState.ACTIVE)

    # -- repositories -----------------------------------------------------

    def repository(
        self,
        entity_type: type[EntityT],
    ) -> "Repository[EntityT]":
        """Return the repository for an entity type, creating it on first use."""
        from .repository import Repository

        repo = self._repositories.get(entity_type)
        if repo is None:
            repo = Repository(entity_type, self)
            self._repositories[entity_type] = repo
            self._metrics.repositories_used.add(entity_type.__name__)
        return t.cast("Repository[EntityT]", repo)

    def raw(self) -> "RawGateway":
        from .raw import RawGateway

        return RawGateway(self)

    # -- store access -----------------------------------------------------

    async def execute(self, statement: t.Any, params: t.Any = None) -> t.Any:
        self._ensure_open()
        return await self.session.execute(statement, params)

    async def scalars(self, statement: t.Any, params: t.Any = None) -> t.Any:
        self._ensure_open()
        return await self.session.scalars(statement, params)

    async def scalar(self, statement: t.Any, params: t.Any = None) -> t.Any:
        self._ensure_open()
        return await self.session.scalar(statement, params)

    def add(self, entity: Entity) -> None:
        self._ensure_open()
        self.session.add(entity)

    def add_all(self, entities: Iterable[Entity]) -> None:
        self._ensure_open()
        self.session.add_all(entities)

    # -- tracking ---------------------------------------------------------

    def find_tracked(
        self,
        entity_type: type[EntityT],
        entity_id: uuid.UUID,
    ) -> EntityT | None:
        """Return the instance with this identity if the session tracks it."""
        key = self.session.sync_session.identity_key(entity_type, entity_id)
        return t.cast("EntityT | None", self.session.identity_map.get(key))

    def is_tracked(self, entity: Entity) -> bool:
        return entity in self.session

    def tracked_keys(self) -> set[t.Any]:
        return set(self.session.identity_map.keys())

    def pending_change_count(self) -> int:
        modified = [
            obj
            for obj in self.session.dirty
            if self.session.is_modified(obj, include_collections=False)
        ]
        return len(self.session.new) + len(modified) + len(self.session.deleted)

    def detach(self, items: Iterable[EntityT], preexisting: set[t.Any]) -> list[EntityT]:
        """Detach freshly loaded results from the tracking set.

        Objects that were tracked before the read are left in place and a
        transient copy of their column values is returned instead.
        """
        detached: list[EntityT] = []
        visited: set[int] = set()
        for item in items:
            state = sa_inspect(item)
            if state.identity_key in preexisting:
                detached.append(self._column_copy(item))
                continue
            self._expunge_graph(item, preexisting, visited)
            detached.append(item)
        return detached

    @staticmethod
    def _column_copy(item: EntityT) -> EntityT:
        state = sa_inspect(item)
        values = {
            attr.key: state.dict[attr.key]
            for attr in state.mapper.column_attrs
            if attr.key in state.dict
        }
        return type(item)(**values)

    def _expunge_graph(self, obj: t.Any, preexisting: set[t.Any], visited: set[int]) -> None:
        if id(obj) in visited:
            return
        visited.add(id(obj))
        state = sa_inspect(obj)
        for rel in state.mapper.relationships:
            if rel.key not in state.dict:
                continue
            loaded = state.dict[rel.key]
            related = loaded if isinstance(loaded, list | set | tuple) else [loaded]
            for child in related:
                if child is None:
                    continue
                if sa_inspect(child).identity_key in preexisting:
                    continue
                self._expunge_graph(child, preexisting, visited)
        if object_session(obj) is self.session.sync_session:
            self.session.expunge(obj)

    def clear(self) -> None:
        """Detach every tracked instance."""
        self.session.expunge_all()

    # -- lifecycle --------------------------------------------------------

    async def save_changes(
        self,
        cancel: asyncio.Event | None = None,
        entity_type: str | None = None,
        operation: str = "save_changes",
    ) -> int:
        """Flush pending changes and commit unless inside ``transaction()``.

        Returns:
            Number of new, modified and deleted instances that were flushed

        Raises:
            OperationCancelledError: If ``cancel`` fires; the work is rolled back
        """
        self._ensure_open()
        count = self.pending_change_count()
        try:
            await run_cancellable(self.session.flush(), cancel, entity_type, operation)
            if not self.in_transaction:
                await run_cancellable(self.commit(), cancel, entity_type, operation)
        except BaseException as e:
            if not self.in_transaction:
                self._metrics.error_message = str(e)
                await self.rollback()
            raise
        return count

    async def commit(self) -> None:
        self._ensure_open()
        self._set_state(UnitOfWorkState.COMMITTING)
        try:
            await self.session.commit()
        except Exception as e:
            self._set_state(UnitOfWorkState.FAILED)
            self._metrics.error_message = str(e)
            raise
        self._metrics.commits += 1
        self._set_state(UnitOfWorkState.COMMITTED)

    async def rollback(self) -> None:
        if self._state is UnitOfWorkState.CLOSED:
            return
        self._set_state(UnitOfWorkState.ROLLING_BACK)
        await self.session.rollback()
        self._metrics.rollbacks += 1
        self._set_state(UnitOfWorkState.ROLLED_BACK)
        self.logger.debug("Unit of work rolled back")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[t.Self]:
        """All-or-nothing scope.

        The outermost scope commits on success and rolls back on any error.
        Nested scopes run inside a SAVEPOINT. The triggering error is
        re-raised in both cases.
        """
        self._ensure_open()
        if self.in_transaction:
            self._transaction_depth += 1
            try:
                async with self.session.begin_nested():
                    yield self
            finally:
                self._transaction_depth -= 1
            return

        self._transaction_depth = 1
        try:
            yield self
            self._transaction_depth = 0
            await self.commit()
        except BaseException as e:
            self._transaction_depth = 0
            self._metrics.error_message = str(e)
            await self.rollback()
            raise
        finally:
            self._transaction_depth = 0

    async def _cleanup_resources(self) -> None:
        if self._state is UnitOfWorkState.CLOSED:
            return
        # close() ends any open transaction without expiring loaded instances
        await self.session.close()
        self._metrics.end_time = datetime.now(UTC)
        self._set_state(UnitOfWorkState.CLOSED)

    def get_metrics(self) -> dict[str, t.Any]:
        return {
            "transaction_id": self.transaction_id,
            "state": self._state.value,
            "operations_count": self._metrics.operations_count,
            "commits": self._metrics.commits,
            "rollbacks": self._metrics.rollbacks,
            "repositories_used": sorted(self._metrics.repositories_used),
            "duration": self._metrics.duration,
        }

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        if exc_type is not None:
            await self.rollback()
        await self.cleanup()
