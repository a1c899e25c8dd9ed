"""Tests for the unit of work: tracking, transactions and lifecycle."""

import pytest
from sample_models import Draft, Product, make_products

from specrepo import InvalidOperationError, RawGateway, Repository
from specrepo.repository import UnitOfWork, UnitOfWorkError, UnitOfWorkState


class TestRepositories:
    @pytest.mark.asyncio
    async def test_repository_is_cached_per_entity_type(self, uow) -> None:
        repo = uow.repository(Product)

        assert isinstance(repo, Repository)
        assert uow.repository(Product) is repo
        assert repo.entity_name == "Product"
        assert uow.get_metrics()["repositories_used"] == ["Product"]

    @pytest.mark.asyncio
    async def test_unmapped_entity_type(self, uow) -> None:
        with pytest.raises(InvalidOperationError) as exc_info:
            uow.repository(Draft)

        assert exc_info.value.entity_type == "Draft"

    @pytest.mark.asyncio
    async def test_not_an_entity(self, uow) -> None:
        with pytest.raises(InvalidOperationError):
            uow.repository(dict)

    @pytest.mark.asyncio
    async def test_repositories_share_tracking(self, uow) -> None:
        product = Product(name="P1")
        await uow.repository(Product).insert(product)

        assert uow.find_tracked(Product, product.id) is product
        assert await uow.repository(Product).get_by_id(product.id) is product

    @pytest.mark.asyncio
    async def test_raw_gateway(self, uow) -> None:
        gateway = uow.raw()

        assert isinstance(gateway, RawGateway)
        assert gateway.uow is uow


class TestTracking:
    @pytest.mark.asyncio
    async def test_pending_change_count(self, uow) -> None:
        product = Product(name="P1")
        uow.add(product)

        assert uow.pending_change_count() == 1
        assert uow.is_tracked(product)

    @pytest.mark.asyncio
    async def test_save_changes_counts_affected_instances(self, uow) -> None:
        uow.add_all(make_products("P1", "P2"))

        assert await uow.save_changes() == 2
        assert uow.metrics.commits == 1

    @pytest.mark.asyncio
    async def test_added_entities_get_insert_defaults(self, uow, fresh) -> None:
        product = Product(name="P1")
        uow.add(product)

        await uow.save_changes()

        assert product.has_valid_id
        assert product.created_at_utc is not None
        async with fresh() as check:
            stored = await check.repository(Product).get_by_id(product.id)
            assert stored is not None
            assert stored.created_at_utc is not None

    @pytest.mark.asyncio
    async def test_clear(self, uow) -> None:
        product = Product(name="P1")
        await uow.repository(Product).insert(product)

        uow.clear()

        assert uow.find_tracked(Product, product.id) is None
        assert not uow.is_tracked(product)
        assert uow.tracked_keys() == set()

    @pytest.mark.asyncio
    async def test_detach_leaves_preexisting_instances(self, uow) -> None:
        product = Product(name="P1")
        await uow.repository(Product).insert(product)

        detached = uow.detach([product], uow.tracked_keys())

        assert detached[0] is not product
        assert detached[0].id == product.id
        assert uow.is_tracked(product)


class TestTransactions:
    @pytest.mark.asyncio
    async def test_commit_on_success(self, uow, fresh) -> None:
        repo = uow.repository(Product)

        async with uow.transaction():
            assert uow.in_transaction
            await repo.insert(Product(name="P1"))
            await repo.insert(Product(name="P2"))

        assert not uow.in_transaction
        assert uow.state is UnitOfWorkState.COMMITTED
        async with fresh() as check:
            assert await check.repository(Product).count() == 2

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, uow, fresh) -> None:
        repo = uow.repository(Product)

        with pytest.raises(RuntimeError, match="boom"):
            async with uow.transaction():
                await repo.insert(Product(name="P1"))
                raise RuntimeError("boom")

        assert uow.state is UnitOfWorkState.ROLLED_BACK
        assert uow.metrics.rollbacks == 1
        assert uow.metrics.error_message == "boom"
        async with fresh() as check:
            assert await check.repository(Product).count() == 0

    @pytest.mark.asyncio
    async def test_bulk_update_inside_transaction_rolls_back(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        await repo.insert_range(make_products("P1", "P2"))

        with pytest.raises(RuntimeError):
            async with uow.transaction():
                assert await repo.update_from_query(
                    Product.status == "Pending",
                    {"status": "Processed"},
                ) == 2
                raise RuntimeError("abort")

        async with fresh() as check:
            assert await check.repository(Product).count(Product.status == "Pending") == 2

    @pytest.mark.asyncio
    async def test_mixed_operations_commit_together(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        existing = Product(name="P1")
        await repo.insert(existing)

        async with uow.transaction():
            await repo.insert(Product(name="P2"))
            await repo.delete(existing)

        async with fresh() as check:
            products = check.repository(Product)
            assert await products.count() == 1
            assert await products.count_deleted() == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_closed_unit_of_work_rejects_work(self, store, repo_settings) -> None:
        uow = store.unit_of_work(repo_settings)
        await uow.cleanup()

        assert uow.state is UnitOfWorkState.CLOSED
        assert uow.cleaned_up
        with pytest.raises(UnitOfWorkError):
            uow.add(Product(name="P1"))
        with pytest.raises(UnitOfWorkError):
            await uow.repository(Product).count()

    @pytest.mark.asyncio
    async def test_exit_with_error_discards_pending_work(self, store, repo_settings, fresh) -> None:
        with pytest.raises(RuntimeError):
            async with store.unit_of_work(repo_settings) as uow:
                uow.add(Product(name="P1"))
                await uow.session.flush()
                raise RuntimeError("abort")

        assert uow.state is UnitOfWorkState.CLOSED
        async with fresh() as check:
            assert await check.repository(Product).count() == 0

    @pytest.mark.asyncio
    async def test_loaded_entities_stay_readable_after_close(
        self,
        store,
        repo_settings,
        fresh,
    ) -> None:
        async with fresh() as setup:
            await setup.repository(Product).insert(Product(name="P1", price=2.5))

        async with store.unit_of_work(repo_settings) as uow:
            loaded = (await uow.repository(Product).get_list())[0]

        assert uow.state is UnitOfWorkState.CLOSED
        assert loaded.name == "P1"
        assert loaded.price == 2.5

    @pytest.mark.asyncio
    async def test_default_settings(self, store) -> None:
        async with UnitOfWork(store.session()) as uow:
            assert uow.settings.batch_size == 500

    @pytest.mark.asyncio
    async def test_metrics(self, uow) -> None:
        await uow.repository(Product).insert(Product(name="P1"))

        metrics = uow.get_metrics()

        assert metrics["state"] == "committed"
        assert metrics["commits"] == 1
        assert metrics["rollbacks"] == 0
        assert metrics["operations_count"] > 0
        assert metrics["transaction_id"] == uow.transaction_id
        assert metrics["duration"] is None
