"""Raw textual query and command gateway.

Statements are sent as written: no soft-delete filter or other predicate
is added. Values are always bound as parameters, never spliced into the
text. Named parameters use ``:name`` placeholders; a positional sequence
binds ``?`` placeholders in order.
"""

import asyncio
import typing as t
from collections.abc import Callable, Mapping, Sequence

from sqlalchemy import TextClause, select, text

from specrepo.logger import get_logger
from specrepo.models import EntityT

from ._base import check_cancelled, ensure_mapped, run_cancellable
from .errors import InvalidArgumentError

if t.TYPE_CHECKING:
    from .unit_of_work import UnitOfWork

Params: t.TypeAlias = Mapping[str, t.Any] | Sequence[t.Any] | None
R = t.TypeVar("R")


def convert_positional(sql: str, count: int) -> tuple[str, list[str]]:
    """Rewrite ``?`` placeholders outside quoted literals as ``:p0, :p1 ...``.

    Raises:
        InvalidArgumentError: If the placeholder count differs from ``count``
    """
    out: list[str] = []
    names: list[str] = []
    quote: str | None = None
    for char in sql:
        if quote is not None:
            if char == quote:
                quote = None
            out.append(char)
        elif char in ("'", '"'):
            quote = char
            out.append(char)
        elif char == "?":
            name = f"p{len(names)}"
            names.append(name)
            out.append(f":{name}")
        else:
            out.append(char)
    if len(names) != count:
        msg = f"statement has {len(names)} placeholders but {count} parameters were given"
        raise InvalidArgumentError(msg, operation="bind")
    return "".join(out), names


def bind(sql: str, params: Params = None) -> tuple[TextClause, dict[str, t.Any]]:
    if sql is None or not sql.strip():
        msg = "sql cannot be empty"
        raise InvalidArgumentError(msg, operation="bind")
    if params is None:
        return text(sql), {}
    if isinstance(params, Mapping):
        return text(sql), dict(params)
    if isinstance(params, str | bytes) or not isinstance(params, Sequence):
        msg = f"params must be a mapping or a sequence, got {type(params).__name__}"
        raise InvalidArgumentError(msg, operation="bind")
    converted, names = convert_positional(sql, len(params))
    return text(converted), dict(zip(names, params, strict=True))


class RawGateway:
    """Parameterized passthrough to the store of a unit of work.

    Commands commit on success unless the unit of work has an explicit
    transaction open.
    """

    def __init__(self, unit_of_work: "UnitOfWork") -> None:
        self.uow = unit_of_work
        self.logger = get_logger("raw_gateway")

    async def _run(
        self,
        awaitable: t.Awaitable[R],
        cancel: asyncio.Event | None,
        operation: str,
    ) -> R:
        return await run_cancellable(awaitable, cancel, operation=operation)

    async def execute(
        self,
        sql: str,
        params: Params = None,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Execute a command and return the affected row count."""
        stmt, bound = bind(sql, params)
        check_cancelled(cancel, operation="execute")
        try:
            result = await self._run(self.uow.execute(stmt, bound), cancel, "execute")
            if not self.uow.in_transaction:
                await self._run(self.uow.commit(), cancel, "execute")
        except BaseException:
            if not self.uow.in_transaction:
                await self.uow.rollback()
            raise
        count = result.rowcount or 0
        self.logger.debug(f"Raw command affected {count} rows")
        return count

    async def execute_in_transaction(
        self,
        sql: str,
        params: Params = None,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Execute a command inside its own all-or-nothing scope."""
        bind(sql, params)
        async with self.uow.transaction():
            return await self.execute(sql, params, cancel)

    async def fetch_all(
        self,
        sql: str,
        params: Params = None,
        into: Callable[..., R] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[t.Any]:
        """Run a query and return its rows as mappings, or as ``into(**row)``."""
        stmt, bound = bind(sql, params)
        result = await self._run(self.uow.execute(stmt, bound), cancel, "fetch_all")
        rows = result.mappings().all()
        if into is None:
            return list(rows)
        return [into(**row) for row in rows]

    async def fetch_one(
        self,
        sql: str,
        params: Params = None,
        into: Callable[..., R] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> t.Any | None:
        stmt, bound = bind(sql, params)
        result = await self._run(self.uow.execute(stmt, bound), cancel, "fetch_one")
        row = result.mappings().first()
        if row is None or into is None:
            return row
        return into(**row)

    async def fetch_entities(
        self,
        entity_type: type[EntityT],
        sql: str,
        params: Params = None,
        cancel: asyncio.Event | None = None,
    ) -> list[EntityT]:
        """Run a query whose columns map onto ``entity_type`` and return instances.

        Results are tracked by the unit of work like any other load.
        """
        ensure_mapped(entity_type)
        stmt, bound = bind(sql, params)
        query = select(entity_type).from_statement(stmt)
        result = await self._run(self.uow.scalars(query, bound), cancel, "fetch_entities")
        return list(result.all())

    async def scalar(
        self,
        sql: str,
        params: Params = None,
        cancel: asyncio.Event | None = None,
    ) -> t.Any:
        stmt, bound = bind(sql, params)
        return await self._run(self.uow.scalar(stmt, bound), cancel, "scalar")

    async def exists(
        self,
        sql: str,
        params: Params = None,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """True when the query returns at least one row."""
        return await self.fetch_one(sql, params, cancel=cancel) is not None
