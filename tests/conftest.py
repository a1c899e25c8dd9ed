"""Shared fixtures: a file-backed SQLite store per test."""

import typing as t
from pathlib import Path

import pytest
import pytest_asyncio
import sample_models

from specrepo import RepositorySettings, Store, StoreSettings, UnitOfWork


@pytest.fixture
def repo_settings() -> RepositorySettings:
    return RepositorySettings(
        default_page_size=10,
        max_page_size=100,
        batch_size=500,
        audit_enabled=True,
        audit_user="tester",
    )


@pytest.fixture
def store_settings(tmp_path: Path) -> StoreSettings:
    return StoreSettings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'specrepo.db'}")


@pytest_asyncio.fixture
async def store(store_settings: StoreSettings) -> t.AsyncIterator[Store]:
    store = Store(store_settings)
    await store.create_all(sample_models.Product.metadata)
    yield store
    await store.cleanup()


@pytest_asyncio.fixture
async def uow(store: Store, repo_settings: RepositorySettings) -> t.AsyncIterator[UnitOfWork]:
    async with store.unit_of_work(repo_settings) as unit:
        yield unit


@pytest.fixture
def fresh(store: Store, repo_settings: RepositorySettings) -> t.Callable[[], UnitOfWork]:
    """Open a second unit of work to observe what was committed."""

    def _open() -> UnitOfWork:
        return store.unit_of_work(repo_settings)

    return _open
