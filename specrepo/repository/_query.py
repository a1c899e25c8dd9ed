import asyncio
import typing as t
from collections.abc import Iterable

from sqlalchemy.sql import ColumnElement

from specrepo.models import EntityT

from ._base import RepositoryBase, TryResult
from .errors import EntityNotFoundError
from .query_builder import ComposedQuery, DeletedFilter
from .specifications import (
    OrderBy,
    PaginatedResult,
    PaginationSpecification,
    Projection,
    Specification,
)


class QueryMixin(RepositoryBase[EntityT]):
    """Reads. Every read goes through the query composer."""

    def _compose(
        self,
        spec_or_predicate: t.Any,
        operation: str,
        *,
        required: bool = True,
        predicates: Iterable[ColumnElement[bool] | None] = (),
        includes: Iterable[t.Any] = (),
        order_by: OrderBy | t.Any | None = None,
        as_no_tracking: bool = False,
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
        projection: Projection[t.Any] | None = None,
    ) -> ComposedQuery:
        if spec_or_predicate is None and required:
            msg = "specification or predicate cannot be None"
            raise self._invalid_argument(msg, operation)
        spec = spec_or_predicate if isinstance(spec_or_predicate, Specification) else None
        conditions = []
        if spec is None and spec_or_predicate is not None:
            conditions.append(spec_or_predicate)
        for predicate in predicates:
            conditions.append(self._require_predicate(predicate, operation))
        if order_by is not None and not isinstance(order_by, OrderBy):
            order_by = OrderBy(order_by)
        return self.composer.compose(
            spec,
            conditions=conditions,
            includes=includes,
            order_by=order_by,
            as_no_tracking=as_no_tracking,
            deleted=deleted,
            projection=projection,
        )

    def _require_projection(
        self,
        projection: Projection[t.Any] | None,
        operation: str,
    ) -> Projection[t.Any]:
        if projection is None:
            raise self._invalid_argument("projection cannot be None", operation)
        return projection

    # -- by id ------------------------------------------------------------

    async def get_by_id(
        self,
        entity_id: t.Any,
        *,
        includes: Iterable[t.Any] = (),
        as_no_tracking: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> EntityT | None:
        key = self._coerce_id(entity_id, "get_by_id")
        self._check_cancelled(cancel, "get_by_id")
        composed = self._compose(
            self._id_equals(key),
            "get_by_id",
            includes=includes,
            as_no_tracking=as_no_tracking,
        )
        return await self._first(composed, cancel, "get_by_id")

    async def get_by_ids(
        self,
        entity_ids: Iterable[t.Any],
        *,
        includes: Iterable[t.Any] = (),
        as_no_tracking: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> list[EntityT]:
        if entity_ids is None:
            raise self._invalid_argument("ids cannot be None", "get_by_ids")
        keys = [self._coerce_id(entity_id, "get_by_ids") for entity_id in entity_ids]
        self._check_cancelled(cancel, "get_by_ids")
        if not keys:
            return []
        composed = self._compose(
            t.cast("t.Any", self.entity_type.id).in_(keys),
            "get_by_ids",
            includes=includes,
            as_no_tracking=as_no_tracking,
        )
        return await self._fetch(composed, cancel, "get_by_ids")

    async def get_projected_by_id(
        self,
        entity_id: t.Any,
        projection: Projection[t.Any],
        cancel: asyncio.Event | None = None,
    ) -> t.Any | None:
        key = self._coerce_id(entity_id, "get_projected_by_id")
        projection = self._require_projection(projection, "get_projected_by_id")
        self._check_cancelled(cancel, "get_projected_by_id")
        composed = self._compose(
            self._id_equals(key),
            "get_projected_by_id",
            projection=projection,
        )
        return await self._first(composed, cancel, "get_projected_by_id")

    async def try_get_by_id(
        self,
        entity_id: t.Any,
        cancel: asyncio.Event | None = None,
    ) -> TryResult[EntityT]:
        """Look up by id without raising. ``success`` is False when nothing matched."""
        result = await self._try("get_by_id", self.get_by_id(entity_id, cancel=cancel))
        if result.success and result.value is None:
            return TryResult.failed()
        return result

    # -- single ------------------------------------------------------------

    async def get(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool],
        *,
        includes: Iterable[t.Any] = (),
        as_no_tracking: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> EntityT | None:
        """Return the first active entity matching a specification or predicate."""
        composed = self._compose(
            spec_or_predicate,
            "get",
            includes=includes,
            as_no_tracking=as_no_tracking,
        )
        self._check_cancelled(cancel, "get")
        return await self._first(composed, cancel, "get")

    async def get_projected(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool],
        projection: Projection[t.Any],
        cancel: asyncio.Event | None = None,
    ) -> t.Any | None:
        projection = self._require_projection(projection, "get_projected")
        composed = self._compose(spec_or_predicate, "get_projected", projection=projection)
        self._check_cancelled(cancel, "get_projected")
        return await self._first(composed, cancel, "get_projected")

    async def try_get(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool],
        cancel: asyncio.Event | None = None,
    ) -> TryResult[EntityT]:
        result = await self._try("get", self.get(spec_or_predicate, cancel=cancel))
        if result.success and result.value is None:
            return TryResult.failed()
        return result

    async def get_first_or_raise(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool],
        cancel: asyncio.Event | None = None,
    ) -> EntityT:
        """Like ``get`` but raises ``EntityNotFoundError`` when nothing matches."""
        entity = await self.get(spec_or_predicate, cancel=cancel)
        if entity is None:
            criteria = (
                spec_or_predicate.to_dict()
                if isinstance(spec_or_predicate, Specification)
                else str(spec_or_predicate)
            )
            raise EntityNotFoundError(self.entity_name, criteria)
        return entity

    async def exists_and_fetch(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool],
        cancel: asyncio.Event | None = None,
    ) -> tuple[bool, EntityT | None]:
        entity = await self.get(spec_or_predicate, cancel=cancel)
        return entity is not None, entity

    # -- lists ---------------------------------------------------------------

    async def get_list(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool] | None = None,
        *predicates: ColumnElement[bool],
        includes: Iterable[t.Any] = (),
        order_by: OrderBy | t.Any | None = None,
        as_no_tracking: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> list[EntityT]:
        """Return all active entities matching the specification and predicates.

        Args:
            spec_or_predicate: Specification or predicate, None for all rows
            predicates: Extra predicates ANDed after the first argument
            includes: Eager-load directives
            order_by: ``OrderBy`` or a column, used when the specification has none
            as_no_tracking: Detach results from the unit of work
            cancel: Cancellation signal
        """
        composed = self._compose(
            spec_or_predicate,
            "get_list",
            required=False,
            predicates=predicates,
            includes=includes,
            order_by=order_by,
            as_no_tracking=as_no_tracking,
        )
        self._check_cancelled(cancel, "get_list")
        return await self._fetch(composed, cancel, "get_list")

    async def get_projected_list(
        self,
        spec_or_predicate: Specification[EntityT] | ColumnElement[bool] | None,
        projection: Projection[t.Any],
        *,
        order_by: OrderBy | t.Any | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[t.Any]:
        projection = self._require_projection(projection, "get_projected_list")
        composed = self._compose(
            spec_or_predicate,
            "get_projected_list",
            required=False,
            order_by=order_by,
            projection=projection,
        )
        self._check_cancelled(cancel, "get_projected_list")
        return await self._fetch(composed, cancel, "get_projected_list")

    async def get_paginated(
        self,
        pagination_spec: PaginationSpecification[EntityT],
        projection: Projection[t.Any] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> PaginatedResult[t.Any]:
        """Fetch one page.

        ``total_count`` comes from the filtered query before paging; the
        specification's ``total_count`` and ``total_pages`` are filled in.
        """
        if not isinstance(pagination_spec, PaginationSpecification):
            msg = "a PaginationSpecification is required"
            raise self._invalid_argument(msg, "get_paginated")
        composed = self._compose(pagination_spec, "get_paginated", projection=projection)
        self._check_cancelled(cancel, "get_paginated")

        total = await self._run(
            self.uow.scalar(composed.count_statement),
            cancel,
            "get_paginated",
        )
        self.composer.fill_totals(pagination_spec, int(total or 0))
        items = await self._fetch(composed, cancel, "get_paginated")
        return PaginatedResult(
            items=items,
            page_index=pagination_spec.page_index,
            page_size=pagination_spec.page_size,
            total_count=pagination_spec.total_count,
        )

    async def get_deleted_list(
        self,
        *predicates: ColumnElement[bool],
        as_no_tracking: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> list[EntityT]:
        """Return soft-deleted entities only."""
        composed = self._compose(
            None,
            "get_deleted_list",
            required=False,
            predicates=predicates,
            as_no_tracking=as_no_tracking,
            deleted=DeletedFilter.DELETED_ONLY,
        )
        self._check_cancelled(cancel, "get_deleted_list")
        return await self._fetch(composed, cancel, "get_deleted_list")

    async def get_distinct_by(
        self,
        column: t.Any,
        predicate: ColumnElement[bool] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[t.Any]:
        """Return the distinct values of ``column`` over active rows, sorted."""
        if column is None:
            raise self._invalid_argument("column cannot be None", "get_distinct_by")
        self._check_cancelled(cancel, "get_distinct_by")
        conditions = [predicate] if predicate is not None else []
        stmt = self.composer.filtered(conditions, columns=[column]).distinct().order_by(column)
        result = await self._run(self.uow.execute(stmt), cancel, "get_distinct_by")
        return list(result.scalars().all())
