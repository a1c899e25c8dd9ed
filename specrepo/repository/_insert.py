import asyncio
import typing as t
import uuid
from collections.abc import Iterable

from sqlalchemy.sql import ColumnElement

from specrepo.models import AuditAction, EntityT

from ._base import RepositoryBase, TryResult


class InsertMixin(RepositoryBase[EntityT]):
    """Insert paths.

    Every path assigns a fresh id and ``created_at_utc`` when unset and
    never marks an active entity deleted.
    """

    async def insert(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> uuid.UUID:
        """Insert one entity and return its id."""
        entity = self._require_entity(entity, "insert")
        self._check_cancelled(cancel, "insert")
        self._prepare_for_insert(entity)
        self.uow.add(entity)
        await self._save(cancel, "insert")
        return entity.id

    async def insert_range(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> list[uuid.UUID]:
        """Insert all entities in one flush and return their ids in order."""
        items = self._require_entities(entities, "insert_range")
        self._check_cancelled(cancel, "insert_range")
        for entity in items:
            self._prepare_for_insert(entity)
        self.uow.add_all(items)
        await self._save(cancel, "insert_range")
        return [entity.id for entity in items]

    async def insert_and_return(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> EntityT:
        """Insert one entity and return it reloaded from the store."""
        await self.insert(entity, cancel)
        await self._run(self.uow.session.refresh(entity), cancel, "insert_and_return")
        return entity

    async def insert_many(
        self,
        entities: Iterable[EntityT],
        batch_size: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Insert entities in fixed-size batches.

        Each batch is flushed and committed on its own. A failure in one batch
        leaves earlier batches in place; use ``insert_with_transaction`` for an
        all-or-nothing insert.

        Args:
            entities: Entities to insert
            batch_size: Rows per batch, ``RepositorySettings.batch_size`` if None
            cancel: Cancellation signal checked before every batch

        Returns:
            Number of entities inserted
        """
        items = self._require_entities(entities, "insert_many")
        size = batch_size if batch_size is not None else self.settings.batch_size
        if size <= 0:
            msg = f"batch_size must be greater than 0, got {size}"
            raise self._invalid_argument(msg, "insert_many")

        inserted = 0
        for start in range(0, len(items), size):
            batch = items[start : start + size]
            self._check_cancelled(cancel, "insert_many")
            for entity in batch:
                self._prepare_for_insert(entity)
            self.uow.add_all(batch)
            await self._save(cancel, "insert_many")
            inserted += len(batch)
        return inserted

    async def insert_with_transaction(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> list[uuid.UUID]:
        """Insert all entities atomically; any failure rolls back the whole set."""
        items = self._require_entities(entities, "insert_with_transaction")
        self._check_cancelled(cancel, "insert_with_transaction")
        async with self.uow.transaction():
            for entity in items:
                self._prepare_for_insert(entity)
            self.uow.add_all(items)
            await self._save(cancel, "insert_with_transaction")
        return [entity.id for entity in items]

    async def insert_if_not_exists(
        self,
        predicate: ColumnElement[bool],
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Insert ``entity`` only when no active row matches ``predicate``."""
        predicate = self._require_predicate(predicate, "insert_if_not_exists")
        entity = self._require_entity(entity, "insert_if_not_exists")
        self._check_cancelled(cancel, "insert_if_not_exists")
        if await self._exists_where([predicate], cancel, "insert_if_not_exists"):
            return False
        await self.insert(entity, cancel)
        return True

    async def insert_with_audit(
        self,
        entity: EntityT,
        user_name: str | None = None,
        details: str = "",
        cancel: asyncio.Event | None = None,
    ) -> uuid.UUID:
        """Insert an entity and its INSERT audit entry in the same flush."""
        entity = self._require_entity(entity, "insert_with_audit")
        self._check_cancelled(cancel, "insert_with_audit")
        self._prepare_for_insert(entity)
        self.uow.add(entity)
        if self.settings.audit_enabled:
            self.uow.add(
                self._new_audit_entry(AuditAction.INSERT, entity, user_name, details),
            )
        await self._save(cancel, "insert_with_audit")
        return entity.id

    async def try_insert(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> TryResult[uuid.UUID]:
        return await self._try("insert", self.insert(entity, cancel))

    async def upsert(
        self,
        predicate: ColumnElement[bool],
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Insert ``entity`` or copy its values onto the first active match.

        Not atomic: a concurrent writer may insert between the lookup and the
        insert.

        Returns:
            True when inserted, False when an existing row was updated
        """
        predicate = self._require_predicate(predicate, "upsert")
        entity = self._require_entity(entity, "upsert")
        self._check_cancelled(cancel, "upsert")
        existing = await self._first(
            self.composer.compose(conditions=[predicate]),
            cancel,
            "upsert",
        )
        if existing is None:
            await self.insert(entity, cancel)
            return True

        existing = t.cast("EntityT", existing)
        self._copy_columns(entity, existing, self._user_columns())
        self._touch(existing)
        await self._save(cancel, "upsert")
        return False
