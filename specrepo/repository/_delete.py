import asyncio
import typing as t
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, false, true, update
from sqlalchemy.sql import ColumnElement

from specrepo.models import AuditAction, EntityT, utc_now

from ._base import RepositoryBase, TryResult
from .query_builder import DeletedFilter


class DeleteMixin(RepositoryBase[EntityT]):
    """Soft delete, restore and physical removal.

    Soft delete sets ``is_deleted`` and ``deleted_at_utc``; the row stays in
    the store and disappears from default queries. Restore clears both.
    """

    async def delete(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Soft-delete one entity. Returns the affected row count."""
        entity = self._require_entity(entity, "delete")
        self._check_cancelled(cancel, "delete")
        self._mark_deleted(self._attach(entity, "delete"))
        return await self._save(cancel, "delete")

    async def delete_range(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> int:
        items = self._require_entities(entities, "delete_range")
        self._require_attachable(items, "delete_range")
        self._check_cancelled(cancel, "delete_range")
        for entity in items:
            self._mark_deleted(self._attach(entity, "delete_range"))
        return await self._save(cancel, "delete_range")

    async def try_delete(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> TryResult[int]:
        return await self._try("delete", self.delete(entity, cancel))

    async def delete_if_exists(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        entity = self._require_entity(entity, "delete_if_exists")
        self._check_cancelled(cancel, "delete_if_exists")
        if not entity.has_valid_id:
            return False
        if not await self._exists_where(
            [self._id_equals(entity.id)],
            cancel,
            "delete_if_exists",
        ):
            return False
        return await self.delete(entity, cancel) > 0

    async def delete_by_id(
        self,
        entity_id: t.Any,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        return await self.delete_and_return(entity_id, cancel) is not None

    async def delete_and_return(
        self,
        entity_id: t.Any,
        cancel: asyncio.Event | None = None,
    ) -> EntityT | None:
        """Soft-delete the active entity with this id and return it."""
        key = self._coerce_id(entity_id, "delete_and_return")
        self._check_cancelled(cancel, "delete_and_return")
        entity = await self._first(
            self.composer.compose(conditions=[self._id_equals(key)]),
            cancel,
            "delete_and_return",
        )
        if entity is None:
            return None
        self._mark_deleted(entity)
        await self._save(cancel, "delete_and_return")
        return t.cast("EntityT", entity)

    async def delete_range_by_condition(
        self,
        predicate: ColumnElement[bool],
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Load active rows matching ``predicate`` and soft-delete them.

        Returns:
            Number of rows soft-deleted
        """
        predicate = self._require_predicate(predicate, "delete_range_by_condition")
        self._check_cancelled(cancel, "delete_range_by_condition")
        matches = await self._fetch(
            self.composer.compose(conditions=[predicate]),
            cancel,
            "delete_range_by_condition",
        )
        if not matches:
            return 0
        for entity in matches:
            self._mark_deleted(entity)
        await self._save(cancel, "delete_range_by_condition")
        return len(matches)

    async def delete_with_transaction(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Soft-delete all entities atomically; any failure rolls back all of them."""
        items = self._require_entities(entities, "delete_with_transaction")
        self._require_attachable(items, "delete_with_transaction")
        self._check_cancelled(cancel, "delete_with_transaction")
        async with self.uow.transaction():
            for entity in items:
                self._mark_deleted(self._attach(entity, "delete_with_transaction"))
            return await self._save(cancel, "delete_with_transaction")

    async def delete_with_audit(
        self,
        entity: EntityT,
        user_name: str | None = None,
        details: str = "",
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Soft-delete an entity and write its DELETE audit entry in the same flush.

        Returns:
            1 when the entity was deleted, 0 when it already was
        """
        entity = self._require_entity(entity, "delete_with_audit")
        self._check_cancelled(cancel, "delete_with_audit")
        target = self._attach(entity, "delete_with_audit")
        if not self._mark_deleted(target):
            return 0
        if self.settings.audit_enabled:
            self.uow.add(
                self._new_audit_entry(AuditAction.DELETE, target, user_name, details),
            )
        await self._save(cancel, "delete_with_audit")
        return 1

    async def delete_from_query(
        self,
        predicate: ColumnElement[bool],
        hard: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Set-based delete of rows matching ``predicate``, without loading them.

        The soft form marks matching active rows deleted in one UPDATE. With
        ``hard=True`` matching rows are physically removed, deleted or not.
        Tracked instances are not synchronized and no audit entry is written.
        """
        predicate = self._require_predicate(predicate, "delete_from_query")
        self._check_cancelled(cancel, "delete_from_query")
        if hard:
            stmt = delete(self.entity_type).where(predicate)
        else:
            now = utc_now()
            stmt = (
                update(self.entity_type)
                .where(predicate, t.cast("t.Any", self.entity_type.is_deleted) == false())
                .values(is_deleted=True, deleted_at_utc=now, last_modified_at_utc=now)
            )
        return await self._execute_bulk(
            stmt.execution_options(synchronize_session=False),
            cancel,
            "delete_from_query",
        )

    async def hard_delete(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Physically remove one entity."""
        entity = self._require_entity(entity, "hard_delete")
        self._check_cancelled(cancel, "hard_delete")
        await self.uow.session.delete(self._attach(entity, "hard_delete"))
        return await self._save(cancel, "hard_delete")

    async def hard_delete_range(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> int:
        items = self._require_entities(entities, "hard_delete_range")
        self._require_attachable(items, "hard_delete_range")
        self._check_cancelled(cancel, "hard_delete_range")
        for entity in items:
            await self.uow.session.delete(self._attach(entity, "hard_delete_range"))
        return await self._save(cancel, "hard_delete_range")

    async def purge_soft_deleted(
        self,
        threshold: datetime,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Physically remove rows soft-deleted before ``threshold``."""
        if threshold is None:
            raise self._invalid_argument("threshold cannot be None", "purge_soft_deleted")
        self._check_cancelled(cancel, "purge_soft_deleted")
        model = t.cast("t.Any", self.entity_type)
        stmt = (
            delete(self.entity_type)
            .where(model.is_deleted == true(), model.deleted_at_utc < threshold)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_bulk(stmt, cancel, "purge_soft_deleted")

    # -- restore ------------------------------------------------------------

    async def restore(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Undo a soft delete. Restoring an active entity is a no-op returning 0."""
        entity = self._require_entity(entity, "restore")
        self._check_cancelled(cancel, "restore")
        if not self._mark_restored(self._attach(entity, "restore")):
            return 0
        return await self._save(cancel, "restore")

    async def restore_range(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> int:
        items = self._require_entities(entities, "restore_range")
        self._require_attachable(items, "restore_range")
        self._check_cancelled(cancel, "restore_range")
        restored = [
            entity
            for entity in items
            if self._mark_restored(self._attach(entity, "restore_range"))
        ]
        if not restored:
            return 0
        return await self._save(cancel, "restore_range")

    async def restore_by_id(
        self,
        entity_id: t.Any,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Restore the soft-deleted entity with this id, if there is one."""
        key = self._coerce_id(entity_id, "restore_by_id")
        self._check_cancelled(cancel, "restore_by_id")
        entity = await self._first(
            self.composer.compose(
                conditions=[self._id_equals(key)],
                deleted=DeletedFilter.DELETED_ONLY,
            ),
            cancel,
            "restore_by_id",
        )
        if entity is None:
            return False
        self._mark_restored(entity)
        await self._save(cancel, "restore_by_id")
        return True

    async def try_restore(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> TryResult[int]:
        return await self._try("restore", self.restore(entity, cancel))
