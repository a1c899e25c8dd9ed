"""Tests for soft delete, restore and physical removal."""

import uuid
from datetime import UTC, datetime

import pytest
from sample_models import Product, make_products

from specrepo import (
    AuditAction,
    AuditLogEntry,
    InvalidArgumentError,
    InvalidOperationError,
)


class TestSoftDelete:
    @pytest.mark.asyncio
    async def test_delete_then_restore(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.delete(product) == 1
        assert product.is_deleted is True
        assert product.deleted_at_utc is not None
        assert await repo.get_by_id(product.id) is None
        assert await repo.count() == 0
        assert await repo.count_deleted() == 1

        assert await repo.restore(product) == 1
        assert product.is_deleted is False
        assert product.deleted_at_utc is None

        async with fresh() as check:
            stored = await check.repository(Product).get_by_id(product.id)
            assert stored is not None
            assert stored.is_deleted is False
            assert stored.deleted_at_utc is None
            assert stored.last_modified_at_utc is None

    @pytest.mark.asyncio
    async def test_delete_twice_is_a_no_op(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)
        await repo.delete(product)
        deleted_at = product.deleted_at_utc

        assert await repo.delete(product) == 0
        assert product.deleted_at_utc == deleted_at

    @pytest.mark.asyncio
    async def test_restore_active_entity_is_a_no_op(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.restore(product) == 0

    @pytest.mark.asyncio
    async def test_delete_untracked_entity(self, uow, fresh) -> None:
        product = Product(name="P1")
        await uow.repository(Product).insert(product)

        async with fresh() as other:
            copy = Product(name="P1")
            copy.id = product.id
            assert await other.repository(Product).delete(copy) == 1

        async with fresh() as check:
            assert await check.repository(Product).count_deleted() == 1

    @pytest.mark.asyncio
    async def test_delete_with_empty_id(self, uow) -> None:
        with pytest.raises(InvalidOperationError):
            await uow.repository(Product).delete(Product(name="P1"))

    @pytest.mark.asyncio
    async def test_delete_range(self, uow) -> None:
        repo = uow.repository(Product)
        products = make_products("P1", "P2", "P3")
        await repo.insert_range(products)

        assert await repo.delete_range(products[:2]) == 2
        assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_delete_range_checks_every_key_first(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert_range([product, Product(name="P2")])

        with pytest.raises(InvalidOperationError):
            await repo.delete_range([product, Product(name="no-id")])
        await repo.insert(Product(name="P3"))

        assert not product.is_deleted
        async with fresh() as check:
            products = check.repository(Product)
            assert await products.count_deleted() == 0
            assert await products.count() == 3

    @pytest.mark.asyncio
    async def test_delete_if_exists(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.delete_if_exists(product)
        assert not await repo.delete_if_exists(product)
        assert not await repo.delete_if_exists(Product(name="P2"))

    @pytest.mark.asyncio
    async def test_try_delete(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert (await repo.try_delete(product)).value == 1

        result = await repo.try_delete(Product(name="P2"))
        assert not result.success
        assert isinstance(result.error, InvalidOperationError)


class TestDeleteById:
    @pytest.mark.asyncio
    async def test_delete_by_id(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.delete_by_id(product.id)
        assert not await repo.delete_by_id(product.id)
        assert not await repo.delete_by_id(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_delete_by_string_id(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.delete_by_id(str(product.id))

    @pytest.mark.asyncio
    async def test_delete_by_malformed_id(self, uow) -> None:
        with pytest.raises(InvalidArgumentError):
            await uow.repository(Product).delete_by_id("not-a-uuid")

    @pytest.mark.asyncio
    async def test_delete_and_return(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        deleted = await repo.delete_and_return(product.id)

        assert deleted is product
        assert deleted.is_deleted is True
        assert await repo.delete_and_return(product.id) is None


class TestConditionalDelete:
    @pytest.mark.asyncio
    async def test_delete_range_by_condition(self, uow) -> None:
        repo = uow.repository(Product)
        await repo.insert_range(make_products("P1", "P2"))
        await repo.insert(Product(name="P3", status="Active"))

        assert await repo.delete_range_by_condition(Product.status == "Pending") == 2
        assert await repo.delete_range_by_condition(Product.status == "Pending") == 0
        assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_delete_with_transaction(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        products = make_products("P1", "P2")
        await repo.insert_range(products)

        assert await repo.delete_with_transaction(products) == 2
        async with fresh() as check:
            assert await check.repository(Product).count_deleted() == 2

    @pytest.mark.asyncio
    async def test_delete_with_transaction_rejects_none(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        with pytest.raises(InvalidArgumentError):
            await repo.delete_with_transaction([product, None])

        async with fresh() as check:
            assert await check.repository(Product).count() == 1

    @pytest.mark.asyncio
    async def test_delete_with_audit(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.delete_with_audit(product, details="cleanup") == 1
        assert await repo.delete_with_audit(product) == 0

        entries = await uow.repository(AuditLogEntry).get_list(
            AuditLogEntry.action == AuditAction.DELETE,
        )
        assert len(entries) == 1
        assert entries[0].entity_id == str(product.id)
        assert entries[0].user_name == "tester"
        assert entries[0].details == "cleanup"


class TestSetBasedDelete:
    @pytest.mark.asyncio
    async def test_soft_delete_from_query(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        await repo.insert_range(make_products("P1", "P2"))
        await repo.insert(Product(name="P3", status="Active"))

        assert await repo.delete_from_query(Product.status == "Pending") == 2

        async with fresh() as check:
            products = check.repository(Product)
            assert await products.count() == 1
            deleted = await products.get_deleted_list()
            assert len(deleted) == 2
            assert all(p.deleted_at_utc is not None for p in deleted)
            assert all(p.last_modified_at_utc is not None for p in deleted)

    @pytest.mark.asyncio
    async def test_soft_delete_from_query_skips_deleted_rows(self, uow) -> None:
        repo = uow.repository(Product)
        await repo.insert(Product(name="P1", is_deleted=True))

        assert await repo.delete_from_query(Product.name == "P1") == 0

    @pytest.mark.asyncio
    async def test_hard_delete_from_query(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        await repo.insert(Product(name="P1"))
        await repo.insert(Product(name="P1", is_deleted=True))
        await repo.insert(Product(name="P2"))

        assert await repo.delete_from_query(Product.name == "P1", hard=True) == 2

        async with fresh() as check:
            products = check.repository(Product)
            assert await products.count() == 1
            assert await products.count_deleted() == 0

    @pytest.mark.asyncio
    async def test_delete_from_query_requires_predicate(self, uow) -> None:
        with pytest.raises(InvalidArgumentError):
            await uow.repository(Product).delete_from_query(None)


class TestHardDelete:
    @pytest.mark.asyncio
    async def test_hard_delete(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1")
        await repo.insert(product)

        assert await repo.hard_delete(product) == 1

        async with fresh() as check:
            products = check.repository(Product)
            assert await products.count() == 0
            assert await products.count_deleted() == 0

    @pytest.mark.asyncio
    async def test_hard_delete_range(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        products = make_products("P1", "P2", "P3")
        await repo.insert_range(products)

        assert await repo.hard_delete_range(products[1:]) == 2

        async with fresh() as check:
            remaining = await check.repository(Product).get_list()
            assert [p.name for p in remaining] == ["P1"]

    @pytest.mark.asyncio
    async def test_purge_soft_deleted(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        await repo.insert(
            Product(
                name="old",
                is_deleted=True,
                created_at_utc=datetime(2024, 1, 1, tzinfo=UTC),
            ),
        )
        await repo.insert(Product(name="recent", is_deleted=True))
        await repo.insert(Product(name="active"))

        assert await repo.purge_soft_deleted(datetime(2025, 1, 1, tzinfo=UTC)) == 1

        async with fresh() as check:
            products = check.repository(Product)
            assert [p.name for p in await products.get_deleted_list()] == ["recent"]
            assert await products.count() == 1

    @pytest.mark.asyncio
    async def test_purge_requires_threshold(self, uow) -> None:
        with pytest.raises(InvalidArgumentError):
            await uow.repository(Product).purge_soft_deleted(None)


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_by_id(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        deleted = Product(name="P1", is_deleted=True)
        active = Product(name="P2")
        await repo.insert(deleted)
        await repo.insert(active)

        assert await repo.restore_by_id(deleted.id)
        assert not await repo.restore_by_id(active.id)
        assert not await repo.restore_by_id(uuid.uuid4())

        async with fresh() as check:
            assert await check.repository(Product).count() == 2

    @pytest.mark.asyncio
    async def test_restore_range(self, uow) -> None:
        repo = uow.repository(Product)
        products = make_products("P1", "P2", "P3")
        await repo.insert_range(products)
        await repo.delete_range(products[:2])

        assert await repo.restore_range(products) == 2
        assert await repo.restore_range(products) == 0
        assert await repo.count_deleted() == 0

    @pytest.mark.asyncio
    async def test_restore_range_checks_every_key_first(self, uow, fresh) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1", is_deleted=True)
        await repo.insert(product)

        with pytest.raises(InvalidOperationError):
            await repo.restore_range([product, Product(name="no-id")])
        await repo.insert(Product(name="P2"))

        assert product.is_deleted
        async with fresh() as check:
            assert await check.repository(Product).count_deleted() == 1

    @pytest.mark.asyncio
    async def test_try_restore(self, uow) -> None:
        repo = uow.repository(Product)
        product = Product(name="P1", is_deleted=True)
        await repo.insert(product)

        assert (await repo.try_restore(product)).value == 1

        result = await repo.try_restore(None)
        assert not result
        assert isinstance(result.error, InvalidArgumentError)
