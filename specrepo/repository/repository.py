from specrepo.models import EntityT

from ._count import CountMixin
from ._delete import DeleteMixin
from ._insert import InsertMixin
from ._query import QueryMixin
from ._update import UpdateMixin


class Repository(
    InsertMixin[EntityT],
    UpdateMixin[EntityT],
    DeleteMixin[EntityT],
    CountMixin[EntityT],
    QueryMixin[EntityT],
):
    """Unit-of-work repository for one entity type.

    Obtained from ``UnitOfWork.repository(EntityType)``; all repositories of
    a unit of work share its session, so a read observes earlier writes made
    through any of them.

    Example:
        async with store.unit_of_work() as uow:
            products = uow.repository(Product)
            product_id = await products.insert(Product(name="P1", status="Pending"))
            await products.update_from_query(
                Product.status == "Pending",
                {"status": "Processed"},
            )
    """
