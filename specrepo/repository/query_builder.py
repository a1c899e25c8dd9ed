"""Query Composer Implementation.

Turns a Specification (or loose predicates) into an executable SQLAlchemy
``Select``. The shaping steps always run in the same order:

1. base ``select(entity)``
2. soft-delete filter
3. caller conditions, ANDed in order
4. eager-load directives
5. tracking mode
6. ordering (``id`` is the tiebreaker, or the whole order, when paginating)
7. pagination
8. projection
"""

import math
import typing as t
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import Select, false, func, select, true
from sqlalchemy.orm import QueryableAttribute, selectinload
from sqlalchemy.sql import ColumnElement

from specrepo.config import RepositorySettings
from specrepo.models import Entity

from .errors import InvalidArgumentError
from .specifications import OrderBy, PaginationSpecification, Projection, Specification


class DeletedFilter(Enum):
    """Which rows the soft-delete step lets through."""

    ACTIVE = "active"
    DELETED_ONLY = "deleted_only"
    ALL = "all"


@dataclass
class ComposedQuery:
    """Executable query plus the metadata needed to materialize it."""

    statement: Select[t.Any]
    as_no_tracking: bool = False
    projection: Projection[t.Any] | None = None
    count_statement: Select[t.Any] | None = None
    pagination: PaginationSpecification[t.Any] | None = None

    @property
    def is_paginated(self) -> bool:
        return self.pagination is not None


class QueryComposer:
    """Builds queries for one entity type."""

    def __init__(
        self,
        entity_type: type[Entity],
        settings: RepositorySettings,
    ) -> None:
        self.entity_type = entity_type
        self.settings = settings

    @property
    def id_column(self) -> t.Any:
        return self.entity_type.id

    def soft_delete_clause(self, deleted: DeletedFilter) -> ColumnElement[bool] | None:
        column = t.cast("t.Any", self.entity_type.is_deleted)
        if deleted is DeletedFilter.ACTIVE:
            return column == false()
        if deleted is DeletedFilter.DELETED_ONLY:
            return column == true()
        return None

    def filtered(
        self,
        conditions: Iterable[ColumnElement[bool]] = (),
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
        columns: Iterable[t.Any] | None = None,
    ) -> Select[t.Any]:
        """Steps 1-3: base select, soft-delete filter, caller conditions."""
        stmt = select(*columns) if columns is not None else select(self.entity_type)
        if columns is not None:
            stmt = stmt.select_from(self.entity_type)
        clause = self.soft_delete_clause(deleted)
        if clause is not None:
            stmt = stmt.where(clause)
        for condition in conditions:
            if condition is None:
                msg = f"{self.entity_type.__name__} predicate cannot be None"
                raise InvalidArgumentError(
                    msg,
                    entity_type=self.entity_type.__name__,
                    operation="compose",
                )
            stmt = stmt.where(condition)
        return stmt

    @staticmethod
    def load_options(includes: Iterable[t.Any]) -> list[t.Any]:
        options = []
        for include in includes:
            if isinstance(include, QueryableAttribute):
                options.append(selectinload(include))
            else:
                options.append(include)
        return options

    def clamp_page_size(self, page_size: int) -> int:
        return min(page_size, self.settings.max_page_size)

    def compose(
        self,
        spec: Specification[t.Any] | None = None,
        *,
        conditions: Iterable[ColumnElement[bool]] = (),
        includes: Iterable[t.Any] = (),
        order_by: OrderBy | None = None,
        as_no_tracking: bool | None = None,
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
        projection: Projection[t.Any] | None = None,
    ) -> ComposedQuery:
        """Compose a query from a specification and/or loose arguments.

        Loose arguments are merged after the specification's own: conditions
        and includes are appended, ``order_by`` and ``as_no_tracking`` only
        apply when the specification leaves them unset.

        Args:
            spec: Optional specification; a PaginationSpecification paginates
            conditions: Extra predicates ANDed after the specification's
            includes: Extra eager-load directives
            order_by: Ordering used when the specification has none
            as_no_tracking: Detach results from the unit of work
            deleted: Soft-delete filter mode
            projection: Columns to select instead of the entity

        Returns:
            ComposedQuery ready for execution

        Raises:
            InvalidArgumentError: On a None condition or invalid page bounds
        """
        all_conditions = [*(spec.conditions if spec else ()), *conditions]
        all_includes = [*(spec.includes if spec else ()), *includes]
        ordering = (spec.order_by if spec else None) or order_by
        detached = bool(as_no_tracking) or bool(spec and spec.as_no_tracking)
        pagination = spec if isinstance(spec, PaginationSpecification) else None

        if pagination is not None:
            pagination.validate()
            pagination.page_size = self.clamp_page_size(pagination.page_size)

        stmt = self.filtered(all_conditions, deleted)
        count_statement = None
        if pagination is not None:
            count_statement = select(func.count()).select_from(stmt.subquery())

        if projection is None and all_includes:
            stmt = stmt.options(*self.load_options(all_includes))

        if ordering is not None:
            stmt = stmt.order_by(ordering.clause())
            if pagination is not None and ordering.key is not self.id_column:
                stmt = stmt.order_by(self.id_column.asc())
        elif pagination is not None:
            stmt = stmt.order_by(self.id_column.asc())

        if pagination is not None:
            stmt = stmt.offset(pagination.skip).limit(pagination.page_size)

        if projection is not None:
            stmt = stmt.with_only_columns(*projection.columns)
            detached = True

        return ComposedQuery(
            statement=stmt,
            as_no_tracking=detached,
            projection=projection,
            count_statement=count_statement,
            pagination=pagination,
        )

    def count(
        self,
        conditions: Iterable[ColumnElement[bool]] = (),
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
    ) -> Select[t.Any]:
        return self.filtered(conditions, deleted, columns=[func.count(self.id_column)])

    def exists(
        self,
        conditions: Iterable[ColumnElement[bool]] = (),
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
    ) -> Select[t.Any]:
        inner = self.filtered(conditions, deleted, columns=[self.id_column])
        return select(inner.exists())

    def group_count(
        self,
        selector: t.Any,
        conditions: Iterable[ColumnElement[bool]] = (),
        deleted: DeletedFilter = DeletedFilter.ACTIVE,
    ) -> Select[t.Any]:
        return self.filtered(
            conditions,
            deleted,
            columns=[selector, func.count(self.id_column)],
        ).group_by(selector)

    @staticmethod
    def fill_totals(pagination: PaginationSpecification[t.Any], total_count: int) -> None:
        pagination.total_count = total_count
        pagination.total_pages = math.ceil(total_count / pagination.page_size)
