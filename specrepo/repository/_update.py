import asyncio
import typing as t
from collections.abc import Iterable, Mapping

from sqlalchemy import false, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import QueryableAttribute
from sqlalchemy.sql import ColumnElement

from specrepo.models import EntityT, utc_now

from ._base import RepositoryBase, TryResult

# changed only through delete and restore
_SOFT_DELETE_COLUMNS = frozenset({"is_deleted", "deleted_at_utc"})


class UpdateMixin(RepositoryBase[EntityT]):
    """Update paths. Every successful path refreshes ``last_modified_at_utc``."""

    def _prepare_for_update(self, entity: EntityT, operation: str) -> EntityT:
        target = self._attach(entity, operation)
        keys = [key for key in self.column_keys if key not in _SOFT_DELETE_COLUMNS]
        self._copy_columns(entity, target, keys)
        self._touch(target)
        self._flag_columns(target, keys)
        return target

    def mark_modified(self, entity: EntityT) -> EntityT:
        """Mark the whole entity modified without flushing.

        Returns:
            The tracked instance carrying the entity's values
        """
        entity = self._require_entity(entity, "mark_modified")
        return self._prepare_for_update(entity, "mark_modified")

    async def update(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> int:
        entity = self._require_entity(entity, "update")
        self._check_cancelled(cancel, "update")
        self._prepare_for_update(entity, "update")
        return await self._save(cancel, "update")

    async def update_range(
        self,
        entities: Iterable[EntityT],
        cancel: asyncio.Event | None = None,
    ) -> int:
        items = self._require_entities(entities, "update_range")
        self._require_attachable(items, "update_range")
        self._check_cancelled(cancel, "update_range")
        for entity in items:
            self._prepare_for_update(entity, "update_range")
        return await self._save(cancel, "update_range")

    async def update_only(
        self,
        entity: EntityT,
        properties: Iterable[str | QueryableAttribute[t.Any]],
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Persist only the named columns plus the modification timestamp.

        ``id`` is never written even when named. Unsaved changes to any other
        column of the tracked instance are discarded and reloaded from the
        store.

        Raises:
            InvalidArgumentError: If ``properties`` is empty or names an unknown column
            InvalidOperationError: If the entity is untracked and has an empty id
        """
        entity = self._require_entity(entity, "update_only")
        names = self._column_names(properties, "update_only")
        self._check_cancelled(cancel, "update_only")

        target = self._attach(entity, "update_only")
        self._copy_columns(entity, target, names)

        state = sa_inspect(target)
        stale = [
            key
            for key in self.column_keys
            if key not in names
            and key != "last_modified_at_utc"
            and key in state.dict
            and state.attrs[key].history.has_changes()
        ]
        if stale:
            with self.uow.session.no_autoflush:
                await self._run(
                    self.uow.session.refresh(target, attribute_names=stale),
                    cancel,
                    "update_only",
                )

        self._touch(target)
        self._flag_columns(target, [*names, "last_modified_at_utc"])
        return await self._save(cancel, "update_only")

    async def update_if_exists(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Update the entity only when an active row with its id exists."""
        entity = self._require_entity(entity, "update_if_exists")
        self._check_cancelled(cancel, "update_if_exists")
        if not entity.has_valid_id:
            return False
        if not await self._exists_where(
            [self._id_equals(entity.id)],
            cancel,
            "update_if_exists",
        ):
            return False
        await self.update(entity, cancel)
        return True

    async def try_update(
        self,
        entity: EntityT,
        cancel: asyncio.Event | None = None,
    ) -> TryResult[int]:
        return await self._try("update", self.update(entity, cancel))

    async def update_from_query(
        self,
        predicate: ColumnElement[bool],
        values: Mapping[str | QueryableAttribute[t.Any], t.Any],
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Set-based update of every active row matching ``predicate``.

        One UPDATE statement carries both the caller's assignments and
        ``last_modified_at_utc``. Tracked instances are not synchronized and
        no audit entry is written.

        Args:
            predicate: Row filter
            values: Column name (or attribute) to new value
            cancel: Cancellation signal

        Returns:
            Number of rows matched
        """
        predicate = self._require_predicate(predicate, "update_from_query")
        if not values:
            raise self._invalid_argument("values cannot be empty", "update_from_query")
        assignments = dict(
            zip(
                self._column_names(values.keys(), "update_from_query", allow_id=False),
                values.values(),
                strict=True,
            ),
        )
        assignments["last_modified_at_utc"] = utc_now()
        self._check_cancelled(cancel, "update_from_query")

        stmt = (
            update(self.entity_type)
            .where(predicate, t.cast("t.Any", self.entity_type.is_deleted) == false())
            .values(**assignments)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_bulk(stmt, cancel, "update_from_query")

    def _column_names(
        self,
        properties: Iterable[str | QueryableAttribute[t.Any]] | None,
        operation: str,
        allow_id: bool = True,
    ) -> list[str]:
        if properties is None:
            raise self._invalid_argument("property names cannot be None", operation)
        props = list(properties)
        if not props:
            raise self._invalid_argument("property names cannot be empty", operation)
        names: list[str] = []
        known = set(self.column_keys)
        for prop in props:
            name = prop.key if isinstance(prop, QueryableAttribute) else prop
            if name not in known:
                msg = f"{self.entity_name} has no column named {name!r}"
                raise self._invalid_argument(msg, operation)
            if name == "id":
                if not allow_id:
                    raise self._invalid_argument("id cannot be assigned", operation)
                continue
            names.append(name)
        return names
