"""Relational store: one async engine shared by many units of work."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from .cleanup import CleanupMixin
from .config import (
    RepositorySettings,
    StoreSettings,
    get_repository_settings,
    get_store_settings,
)
from .logger import get_logger
from .repository.unit_of_work import UnitOfWork


class Store(CleanupMixin):
    """Relational store: one async engine plus a session factory.

    Safe to share between concurrent units of work. The engine is created
    lazily on first use and disposed on ``cleanup()``.
    """

    def __init__(self, settings: StoreSettings | None = None) -> None:
        super().__init__()
        self.settings = settings or get_store_settings()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self.logger = get_logger("store")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self.logger.debug(f"Creating engine for {self.settings.database_url}")
            self._engine = create_async_engine(
                self.settings.database_url,
                **self.settings.build_engine_kwargs(),
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    def session(self) -> AsyncSession:
        return self.session_factory()

    @asynccontextmanager
    async def get_conn(self) -> AsyncIterator[AsyncConnection]:
        async with self.engine.begin() as conn:
            yield conn

    async def create_all(self, metadata: MetaData | None = None) -> None:
        """Create every table registered on ``metadata`` (SQLModel's by default)."""
        async with self.get_conn() as conn:
            await conn.run_sync((metadata or SQLModel.metadata).create_all)

    async def drop_all(self, metadata: MetaData | None = None) -> None:
        async with self.get_conn() as conn:
            await conn.run_sync((metadata or SQLModel.metadata).drop_all)

    def unit_of_work(self, settings: RepositorySettings | None = None) -> UnitOfWork:
        """Open a unit of work on a fresh session."""
        return UnitOfWork(
            self.session(),
            settings or get_repository_settings(),
        )

    async def _cleanup_resources(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self.logger.debug("Disposed store engine")
            self._engine = None
            self._session_factory = None
