import asyncio
import typing as t
from datetime import datetime

from sqlalchemy.sql import ColumnElement

from specrepo.models import EntityT

from ._base import RepositoryBase
from .query_builder import DeletedFilter


class CountMixin(RepositoryBase[EntityT]):
    """Existence checks and counters.

    All of them exclude soft-deleted rows except ``count_deleted`` and
    ``count(deleted_only=True)``, which count only those.
    """

    async def exists(self, cancel: asyncio.Event | None = None) -> bool:
        self._check_cancelled(cancel, "exists")
        return await self._exists_where([], cancel, "exists")

    async def exists_by_id(
        self,
        entity_id: t.Any,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        key = self._coerce_id(entity_id, "exists_by_id")
        self._check_cancelled(cancel, "exists_by_id")
        return await self._exists_where([self._id_equals(key)], cancel, "exists_by_id")

    async def exists_by(
        self,
        predicate: ColumnElement[bool],
        cancel: asyncio.Event | None = None,
    ) -> bool:
        predicate = self._require_predicate(predicate, "exists_by")
        self._check_cancelled(cancel, "exists_by")
        return await self._exists_where([predicate], cancel, "exists_by")

    async def count(
        self,
        *predicates: ColumnElement[bool] | None,
        deleted_only: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Count rows matching all predicates. ``None`` predicates are ignored."""
        self._check_cancelled(cancel, "count")
        conditions = [p for p in predicates if p is not None]
        deleted = DeletedFilter.DELETED_ONLY if deleted_only else DeletedFilter.ACTIVE
        return await self._count_where(conditions, cancel, "count", deleted)

    async def long_count(
        self,
        *predicates: ColumnElement[bool] | None,
        cancel: asyncio.Event | None = None,
    ) -> int:
        return await self.count(*predicates, cancel=cancel)

    async def count_deleted(
        self,
        *predicates: ColumnElement[bool] | None,
        cancel: asyncio.Event | None = None,
    ) -> int:
        return await self.count(*predicates, deleted_only=True, cancel=cancel)

    async def count_by_status(
        self,
        selector: t.Any,
        *predicates: ColumnElement[bool] | None,
        cancel: asyncio.Event | None = None,
    ) -> dict[t.Any, int]:
        """Count active rows grouped by ``selector``.

        Args:
            selector: Column (or expression) to group by, e.g. ``Product.status``
            predicates: Extra filters, ANDed
            cancel: Cancellation signal

        Returns:
            Mapping of selector value to row count
        """
        if selector is None:
            raise self._invalid_argument("selector cannot be None", "count_by_status")
        self._check_cancelled(cancel, "count_by_status")
        conditions = [p for p in predicates if p is not None]
        result = await self._run(
            self.uow.execute(self.composer.group_count(selector, conditions)),
            cancel,
            "count_by_status",
        )
        return {value: count for value, count in result.all()}

    async def count_by_date_range(
        self,
        start: datetime,
        end: datetime,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Count active rows created between ``start`` and ``end``, inclusive.

        A ``start`` after ``end`` yields 0 without querying the store.
        """
        if start is None or end is None:
            raise self._invalid_argument(
                "start and end cannot be None",
                "count_by_date_range",
            )
        self._check_cancelled(cancel, "count_by_date_range")
        if start > end:
            return 0
        created = t.cast("t.Any", self.entity_type.created_at_utc)
        return await self._count_where(
            [created >= start, created <= end],
            cancel,
            "count_by_date_range",
        )
