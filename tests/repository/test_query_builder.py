"""Tests for the query composer's statement shaping."""

import pytest
from sample_models import Product

from specrepo import (
    DeletedFilter,
    InvalidArgumentError,
    OrderBy,
    PaginationSpecification,
    Projection,
    RepositorySettings,
    Specification,
)
from specrepo.repository import QueryComposer


def sql(statement) -> str:
    return " ".join(str(statement).split())


@pytest.fixture
def composer() -> QueryComposer:
    return QueryComposer(Product, RepositorySettings(default_page_size=10, max_page_size=100))


@pytest.mark.unit
class TestSoftDeleteFilter:
    def test_active_by_default(self, composer) -> None:
        statement = composer.compose().statement

        assert "WHERE product.is_deleted = false" in sql(statement)

    def test_deleted_only(self, composer) -> None:
        statement = composer.compose(deleted=DeletedFilter.DELETED_ONLY).statement

        assert "WHERE product.is_deleted = true" in sql(statement)

    def test_all_rows(self, composer) -> None:
        assert composer.soft_delete_clause(DeletedFilter.ALL) is None
        assert "WHERE" not in sql(composer.compose(deleted=DeletedFilter.ALL).statement)

    def test_filter_precedes_caller_conditions(self, composer) -> None:
        spec = Specification[Product]().where(Product.status == "Active", Product.price > 1)

        text = sql(composer.compose(spec).statement)

        assert (
            "WHERE product.is_deleted = false AND product.status = :status_1 "
            "AND product.price > :price_1"
        ) in text

    def test_none_condition(self, composer) -> None:
        with pytest.raises(InvalidArgumentError):
            composer.filtered([None])


@pytest.mark.unit
class TestCompose:
    def test_loose_conditions_follow_specification(self, composer) -> None:
        spec = Specification[Product]().where(Product.status == "Active")

        text = sql(composer.compose(spec, conditions=[Product.name == "P1"]).statement)

        assert text.index("product.status") < text.index("product.name = :name_1")

    def test_specification_ordering_wins(self, composer) -> None:
        spec = Specification[Product]().order(Product.name)

        text = sql(composer.compose(spec, order_by=OrderBy(Product.price)).statement)

        assert text.endswith("ORDER BY product.name ASC")

    def test_tracking_mode(self, composer) -> None:
        assert not composer.compose().as_no_tracking
        assert composer.compose(as_no_tracking=True).as_no_tracking
        assert composer.compose(Specification[Product]().no_tracking()).as_no_tracking

    def test_unpaginated_has_no_count(self, composer) -> None:
        composed = composer.compose()

        assert not composed.is_paginated
        assert composed.count_statement is None
        assert "LIMIT" not in sql(composed.statement)


@pytest.mark.unit
class TestPagination:
    def test_id_is_the_default_order(self, composer) -> None:
        composed = composer.compose(PaginationSpecification[Product](page_index=2, page_size=5))

        text = sql(composed.statement)

        assert composed.is_paginated
        assert "ORDER BY product.id ASC LIMIT" in text
        assert "OFFSET" in text

    def test_id_breaks_ties(self, composer) -> None:
        spec = PaginationSpecification[Product](page_size=5).order(Product.price, descending=True)

        text = sql(composer.compose(spec).statement)

        assert "ORDER BY product.price DESC, product.id ASC" in text

    def test_id_ordering_is_not_repeated(self, composer) -> None:
        spec = PaginationSpecification[Product](page_size=5).order(Product.id)

        text = sql(composer.compose(spec).statement)

        assert "ORDER BY product.id ASC LIMIT" in text

    def test_count_ignores_paging(self, composer) -> None:
        spec = PaginationSpecification[Product](page_size=5).where(Product.price > 1)

        count_text = sql(composer.compose(spec).count_statement)

        assert count_text.startswith("SELECT count(*) AS count_1 FROM (SELECT")
        assert "product.price > :price_1" in count_text
        assert "LIMIT" not in count_text
        assert "ORDER BY" not in count_text

    def test_page_size_is_clamped(self, composer) -> None:
        spec = PaginationSpecification[Product](page_size=500)

        composer.compose(spec)

        assert spec.page_size == 100
        assert composer.clamp_page_size(20) == 20

    def test_invalid_bounds(self, composer) -> None:
        with pytest.raises(InvalidArgumentError):
            composer.compose(PaginationSpecification[Product](page_index=0))

    def test_fill_totals(self) -> None:
        spec = PaginationSpecification[Product](page_size=3)

        QueryComposer.fill_totals(spec, 7)

        assert spec.total_count == 7
        assert spec.total_pages == 3


@pytest.mark.unit
class TestProjectionStep:
    def test_selects_only_projected_columns(self, composer) -> None:
        composed = composer.compose(projection=Projection([Product.name, Product.price]))

        text = sql(composed.statement)

        assert text.startswith("SELECT product.name, product.price FROM product")
        assert composed.as_no_tracking

    def test_projection_ignores_includes(self, composer) -> None:
        spec = Specification[Product]().include(Product.category)

        composed = composer.compose(spec, projection=Projection([Product.name]))

        assert sql(composed.statement).startswith("SELECT product.name FROM product")
        assert "category" not in sql(composed.statement)


@pytest.mark.unit
class TestAggregates:
    def test_count(self, composer) -> None:
        text = sql(composer.count([Product.status == "Active"]))

        assert text.startswith("SELECT count(product.id) AS count_1 FROM product")
        assert "product.is_deleted = false" in text

    def test_exists(self, composer) -> None:
        assert "EXISTS (SELECT product.id FROM product" in sql(composer.exists())

    def test_group_count(self, composer) -> None:
        text = sql(composer.group_count(Product.status))

        assert text.startswith("SELECT product.status, count(product.id) AS count_1")
        assert text.endswith("GROUP BY product.status")
