from __future__ import annotations

import pytest

from app import crud
from app.api.errors import OutOfStock, ValidationError
from app.crud.inventory import _aggregate
from app.models import Product


def _reload(db, product: Product) -> Product:
    db.expire_all()
    return db.get(Product, product.id)


def test_reserve_decrements_stock_and_increments_sold(db, make_product):
    product = make_product(stock=5, sold=2)

    remaining = crud.reserve(session=db, product_id=product.id, quantity=3)
    db.commit()

    assert remaining == 2
    p = _reload(db, product)
    assert p.stock == 2
    assert p.sold == 5


def test_reserve_exact_stock_reaches_zero(db, make_product):
    product = make_product(stock=4)
    assert crud.reserve(session=db, product_id=product.id, quantity=4) == 0
    db.commit()
    assert _reload(db, product).stock == 0


def test_reserve_insufficient_stock_changes_nothing(db, make_product):
    product = make_product(name="Granite Slab", stock=2, sold=1)

    with pytest.raises(OutOfStock) as exc_info:
        crud.reserve(session=db, product_id=product.id, quantity=3)
    db.rollback()

    err = exc_info.value
    assert err.product_id == product.id
    assert err.available == 2
    assert err.requested == 3
    assert err.status_code == 409
    assert 'Insufficient stock for product "Granite Slab"' in err.message
    assert "Available: 2, Requested: 3" in err.message

    p = _reload(db, product)
    assert p.stock == 2
    assert p.sold == 1


def test_reserve_unknown_product_is_out_of_stock(db):
    with pytest.raises(OutOfStock) as exc_info:
        crud.reserve(session=db, product_id=123456789, quantity=1)
    assert exc_info.value.product_id == 123456789
    assert exc_info.value.available is None


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_is_validation_error(db, make_product, quantity):
    product = make_product(stock=5)
    with pytest.raises(ValidationError):
        crud.reserve(session=db, product_id=product.id, quantity=quantity)
    with pytest.raises(ValidationError):
        crud.restore(session=db, product_id=product.id, quantity=quantity)


def test_restore_increments_stock_and_floors_sold(db, make_product):
    product = make_product(stock=1, sold=2)

    crud.restore(session=db, product_id=product.id, quantity=3)
    db.commit()

    p = _reload(db, product)
    assert p.stock == 4
    assert p.sold == 0


def test_restore_missing_product_does_not_raise(db, caplog):
    crud.restore(session=db, product_id=42, quantity=1)
    db.commit()
    assert "no longer exists" in caplog.text


def test_aggregate_merges_and_sorts_by_product_id():
    assert _aggregate([(30, 1), (10, 2), (30, 4)]) == [(10, 2), (30, 5)]


def test_reserve_many_is_all_or_nothing_after_rollback(db, make_product):
    a = make_product(name="A", stock=5)
    b = make_product(name="B", stock=1)

    with pytest.raises(OutOfStock) as exc_info:
        crud.reserve_many(session=db, lines=[(a.id, 2), (b.id, 2)])
    db.rollback()

    assert exc_info.value.product_id == b.id
    assert _reload(db, a).stock == 5
    assert _reload(db, b).stock == 1


def test_restore_many_restores_each_line(db, make_product):
    a = make_product(name="A", stock=0, sold=3)
    b = make_product(name="B", stock=0, sold=1)

    crud.restore_many(session=db, lines=[(a.id, 2), (b.id, 1), (a.id, 1)])
    db.commit()

    pa, pb = _reload(db, a), _reload(db, b)
    assert (pa.stock, pa.sold) == (3, 0)
    assert (pb.stock, pb.sold) == (1, 0)
