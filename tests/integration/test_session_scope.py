"""
session_scope() commits on success and rolls back on error.

Needs real commits on a separate connection, so PostgreSQL only.
"""

import pytest
from sqlalchemy import func, select

from stock_kernel.db.engine import session_scope
from stock_kernel.models.catalog import Product, ProductCategory

pytestmark = [pytest.mark.postgres]


def _count(session, name) -> int:
    return session.execute(
        select(func.count()).select_from(Product).where(Product.name == name)
    ).scalar_one()


def test_commits_on_success(pg_session_factory):
    with session_scope() as session:
        session.add(Product(name="Scoped", category=ProductCategory.RAW))

    assert _count(pg_session_factory(), "Scoped") == 1


def test_rolls_back_on_error(pg_session_factory):
    with pytest.raises(RuntimeError):
        with session_scope() as session:
            session.add(Product(name="Doomed", category=ProductCategory.RAW))
            session.flush()
            raise RuntimeError("abort")

    assert _count(pg_session_factory(), "Doomed") == 0
