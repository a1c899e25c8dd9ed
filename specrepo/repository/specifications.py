"""Query Specification Pattern Implementation.

Provides declarative, request-scoped query descriptions:
- Specification: filter conditions, eager-load directives, ordering, tracking mode
- PaginationSpecification: a specification with page index and size
- PaginatedResult: immutable page of results
- Projection: column subset materialized into a different shape
"""

import math
import typing as t
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.sql import ColumnElement

from specrepo.models import EntityT

from .errors import InvalidArgumentError

T = t.TypeVar("T")
R = t.TypeVar("R")


@dataclass(frozen=True, slots=True)
class OrderBy:
    """Ordering directive: key expression plus direction."""

    key: t.Any
    descending: bool = False

    def clause(self) -> t.Any:
        return self.key.desc() if self.descending else self.key.asc()


@dataclass
class Specification(t.Generic[EntityT]):
    """Declarative query request over an entity type.

    Conditions are ANDed in the order given. Includes are relationship
    attributes or ready loader options. Built per request and consumed once.

    Example:
        spec = (
            Specification[Product]()
            .where(Product.status == "Active")
            .include(Product.category)
            .order(Product.name)
        )
    """

    conditions: list[ColumnElement[bool]] = field(default_factory=list)
    includes: list[t.Any] = field(default_factory=list)
    order_by: OrderBy | None = None
    as_no_tracking: bool = False

    def __post_init__(self) -> None:
        for condition in self.conditions:
            _require_condition(condition)

    def where(self, *conditions: ColumnElement[bool]) -> t.Self:
        for condition in conditions:
            self.conditions.append(_require_condition(condition))
        return self

    def include(self, *paths: t.Any) -> t.Self:
        for path in paths:
            if path is None:
                msg = "include path cannot be None"
                raise InvalidArgumentError(msg, operation="include")
            self.includes.append(path)
        return self

    def order(self, key: t.Any, descending: bool = False) -> t.Self:
        if key is None:
            msg = "order key cannot be None"
            raise InvalidArgumentError(msg, operation="order")
        self.order_by = OrderBy(key, descending)
        return self

    def no_tracking(self, enabled: bool = True) -> t.Self:
        self.as_no_tracking = enabled
        return self

    def __and__(self, other: "Specification[EntityT]") -> "Specification[EntityT]":
        """Merge two specifications. The left ordering wins when both have one."""
        if not isinstance(other, Specification):
            return NotImplemented
        return Specification(
            conditions=[*self.conditions, *other.conditions],
            includes=[*self.includes, *other.includes],
            order_by=self.order_by or other.order_by,
            as_no_tracking=self.as_no_tracking or other.as_no_tracking,
        )

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "conditions": [str(c) for c in self.conditions],
            "includes": [str(i) for i in self.includes],
            "order_by": str(self.order_by.key) if self.order_by else None,
            "descending": self.order_by.descending if self.order_by else False,
            "as_no_tracking": self.as_no_tracking,
        }


@dataclass
class PaginationSpecification(Specification[EntityT]):
    """Specification with 1-based page index and page size.

    ``total_count`` and ``total_pages`` are filled in by the query composer
    when the page is fetched.
    """

    page_index: int = 1
    page_size: int = 50
    total_count: int = field(default=0, init=False)
    total_pages: int = field(default=0, init=False)

    def page(self, page_index: int, page_size: int | None = None) -> t.Self:
        self.page_index = page_index
        if page_size is not None:
            self.page_size = page_size
        return self

    def validate(self) -> None:
        if self.page_size <= 0:
            msg = f"page_size must be greater than 0, got {self.page_size}"
            raise InvalidArgumentError(msg, operation="paginate")
        if self.page_index < 1:
            msg = f"page_index must be at least 1, got {self.page_index}"
            raise InvalidArgumentError(msg, operation="paginate")

    @property
    def skip(self) -> int:
        return (self.page_index - 1) * self.page_size


@dataclass(frozen=True)
class PaginatedResult(t.Generic[T]):
    """One page of results."""

    items: Sequence[T]
    page_index: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_previous(self) -> bool:
        return self.page_index > 1

    @property
    def has_next(self) -> bool:
        return self.page_index < self.total_pages

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> t.Iterator[T]:
        return iter(self.items)


@dataclass(frozen=True)
class Projection(t.Generic[R]):
    """Column subset selected instead of the entity.

    Rows are returned as ``RowMapping`` objects, or passed as keyword
    arguments to ``into`` when it is given.
    """

    columns: Sequence[t.Any]
    into: Callable[..., R] | None = None

    def __post_init__(self) -> None:
        if not self.columns:
            msg = "projection requires at least one column"
            raise InvalidArgumentError(msg, operation="project")
        if any(column is None for column in self.columns):
            msg = "projection columns cannot be None"
            raise InvalidArgumentError(msg, operation="project")

    def materialize(self, mapping: t.Mapping[str, t.Any]) -> t.Any:
        if self.into is None:
            return mapping
        return self.into(**mapping)


def _require_condition(condition: t.Any) -> ColumnElement[bool]:
    if condition is None:
        msg = "specification condition cannot be None"
        raise InvalidArgumentError(msg, operation="where")
    return condition
