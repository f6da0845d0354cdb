from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from app import crud
from app.api.errors import (
    DuplicateOrderNumber,
    InvalidPaymentMethod,
    InvalidPromoCode,
    OutOfStock,
    PriceMismatch,
    ProductNotFound,
    ValidationError,
)
from app.core.config import settings
from app.enums import ActorKind, DiscountType, OrderStatus
from app.models import Notification, Order, Product, PromoCode, utc_now
from app.services import notification_service, order_service
from app.services.order_service import CartLine, DeclaredTotals, place_order


def _stock(db, product: Product) -> tuple[int, int]:
    db.expire_all()
    p = db.get(Product, product.id)
    return p.stock, p.sold


def _promo(db, code: str, discount_type: DiscountType, value: str, **kwargs) -> PromoCode:
    promo = PromoCode(code=code, discount_type=discount_type, discount_value=Decimal(value), **kwargs)
    db.add(promo)
    db.commit()
    db.refresh(promo)
    return promo


def _order_count(db) -> int:
    return len(db.exec(select(Order)).all())


def test_cod_order_is_pending_and_reserves_stock(db, user, make_product):
    product = make_product(price="100.00", stock=10)

    order = place_order(
        session=db,
        user_id=user.id,
        items=[CartLine(product_id=product.id, quantity=3)],
        payment_method="cod",
        shipping_address={"full_name": "Juan", "address_line": "1 Main", "city": "Manila"},
        notes="leave at gate",
    )

    assert order.status == OrderStatus.pending
    assert order.order_number.startswith("ORD-")
    assert order.subtotal == Decimal("300.00")
    assert order.tax == Decimal("36.00")
    assert order.discount == Decimal("0.00")
    assert order.total == Decimal("336.00")
    assert order.items == [
        {"product_id": product.id, "name": "Ceramic Tile", "unit_price": "100.00", "quantity": 3}
    ]
    assert order.shipping_address["city"] == "Manila"
    assert _stock(db, product) == (7, 3)

    history = crud.get_status_history(session=db, order_id=order.id)
    assert [(h.from_status, h.to_status, h.actor) for h in history] == [
        (None, OrderStatus.pending, ActorKind.user)
    ]

    notes = db.exec(select(Notification).where(Notification.user_id == user.id)).all()
    assert [n.title for n in notes] == ["Order Placed Successfully"]
    assert order.order_number in notes[0].message


@pytest.mark.parametrize("method", ["cash", "gcash", "maya"])
def test_non_cod_orders_are_completed_immediately(db, user, make_product, method):
    product = make_product(stock=2)
    order = place_order(
        session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method=method
    )
    assert order.status == OrderStatus.completed


def test_online_orders_wait_for_webhook_when_configured(db, user, make_product, monkeypatch):
    monkeypatch.setattr(settings, "ORDER_SETTLE_ON_WEBHOOK", True)
    product = make_product(stock=2)

    gcash = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="gcash")
    cash = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cash")

    assert gcash.status == OrderStatus.pending
    assert cash.status == OrderStatus.completed


def test_totals_are_rounded_to_cents(db, user, make_product):
    product = make_product(price="19.99", stock=10)
    order = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 3)], payment_method="cod")

    assert order.subtotal == Decimal("59.97")
    assert order.tax == Decimal("7.20")
    assert order.total == Decimal("67.17")
    assert order.total == order.subtotal + order.tax - order.discount


def test_discount_price_is_used_and_snapshotted(db, user, make_product):
    product = make_product(price="100.00", discount_price="80.00", stock=5)
    order = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 2)], payment_method="cod")

    db.expire_all()
    p = db.get(Product, product.id)
    p.price = Decimal("500.00")
    p.discount_price = None
    db.add(p)
    db.commit()

    stored = crud.get_order(session=db, order_id=order.id)
    assert stored.items[0]["unit_price"] == "80.00"
    assert stored.subtotal == Decimal("160.00")


def test_invalid_payment_method_touches_nothing(db, user, make_product):
    product = make_product(stock=5)
    with pytest.raises(InvalidPaymentMethod) as exc_info:
        place_order(session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="bitcoin")

    assert exc_info.value.status_code == 400
    assert _stock(db, product) == (5, 0)
    assert _order_count(db) == 0


def test_empty_cart_and_bad_quantity_are_rejected(db, user, make_product):
    product = make_product(stock=5)
    with pytest.raises(ValidationError):
        place_order(session=db, user_id=user.id, items=[], payment_method="cod")
    with pytest.raises(ValidationError):
        place_order(session=db, user_id=user.id, items=[CartLine(product.id, 0)], payment_method="cod")
    assert _stock(db, product) == (5, 0)


def test_unknown_product_is_rejected(db, user, make_product):
    product = make_product(stock=5)
    with pytest.raises(ProductNotFound):
        place_order(
            session=db,
            user_id=user.id,
            items=[CartLine(product.id, 1), CartLine(999, 1)],
            payment_method="cod",
        )
    assert _stock(db, product) == (5, 0)
    assert _order_count(db) == 0


def test_out_of_stock_rolls_back_every_line(db, user, make_product):
    plenty = make_product(name="Plenty", stock=10)
    scarce = make_product(name="Scarce", stock=1)

    with pytest.raises(OutOfStock) as exc_info:
        place_order(
            session=db,
            user_id=user.id,
            items=[CartLine(plenty.id, 4), CartLine(scarce.id, 2)],
            payment_method="cod",
        )

    assert exc_info.value.product_id == scarce.id
    assert _stock(db, plenty) == (10, 0)
    assert _stock(db, scarce) == (1, 0)
    assert _order_count(db) == 0


def test_duplicate_lines_are_reserved_together(db, user, make_product):
    product = make_product(stock=3)
    with pytest.raises(OutOfStock):
        place_order(
            session=db,
            user_id=user.id,
            items=[CartLine(product.id, 2), CartLine(product.id, 2)],
            payment_method="cod",
        )
    assert _stock(db, product) == (3, 0)

    order = place_order(
        session=db,
        user_id=user.id,
        items=[CartLine(product.id, 1), CartLine(product.id, 2)],
        payment_method="cod",
    )
    assert len(order.items) == 2
    assert _stock(db, product) == (0, 3)


def test_percentage_promo_is_redeemed(db, user, make_product):
    product = make_product(price="100.00", stock=10)
    promo = _promo(db, "WELCOME10", DiscountType.percentage, "10")

    order = place_order(
        session=db,
        user_id=user.id,
        items=[CartLine(product.id, 3)],
        payment_method="cod",
        promo_code="welcome10",
    )

    assert order.discount == Decimal("30.00")
    assert order.total == Decimal("306.00")
    assert order.promo_code == "WELCOME10"
    db.refresh(promo)
    assert promo.used_count == 1


def test_fixed_promo_is_capped_at_subtotal(db, user, make_product):
    product = make_product(price="20.00", stock=10)
    _promo(db, "SAVE50", DiscountType.fixed, "50")

    order = place_order(
        session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cod", promo_code="SAVE50"
    )

    assert order.discount == Decimal("20.00")
    assert order.total == Decimal("2.40")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"is_active": False},
        {"ends_at": utc_now() - timedelta(days=1)},
        {"starts_at": utc_now() + timedelta(days=1)},
        {"usage_limit": 1, "used_count": 1},
    ],
)
def test_unusable_promo_rejects_order(db, user, make_product, kwargs):
    product = make_product(stock=5)
    _promo(db, "OLD", DiscountType.percentage, "10", **kwargs)

    with pytest.raises(InvalidPromoCode):
        place_order(
            session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cod", promo_code="OLD"
        )
    assert _stock(db, product) == (5, 0)


def test_unknown_promo_rejects_order(db, user, make_product):
    product = make_product(stock=5)
    with pytest.raises(InvalidPromoCode):
        place_order(
            session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cod", promo_code="NOPE"
        )


def test_declared_totals_must_match(db, user, make_product):
    product = make_product(price="100.00", stock=5)
    promo = _promo(db, "WELCOME10", DiscountType.percentage, "10")

    with pytest.raises(PriceMismatch) as exc_info:
        place_order(
            session=db,
            user_id=user.id,
            items=[CartLine(product.id, 1)],
            payment_method="cod",
            promo_code="WELCOME10",
            declared=DeclaredTotals(total=Decimal("1.00")),
        )
    assert "total" in exc_info.value.message
    assert _stock(db, product) == (5, 0)
    db.refresh(promo)
    assert promo.used_count == 0

    order = place_order(
        session=db,
        user_id=user.id,
        items=[CartLine(product.id, 1)],
        payment_method="cod",
        promo_code="WELCOME10",
        declared=DeclaredTotals(
            subtotal=Decimal("100.00"), tax=Decimal("12.00"), discount=Decimal("10.00"), total=Decimal("102.00")
        ),
    )
    assert order.total == Decimal("102.00")


def test_order_number_conflict_is_retried(db, user, make_product, monkeypatch):
    product = make_product(stock=10)
    numbers = iter(["ORD-1-AAAA", "ORD-1-AAAA", "ORD-2-BBBB"])
    monkeypatch.setattr(order_service, "generate_order_number", lambda: next(numbers))

    first = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cod")
    second = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 2)], payment_method="cod")

    assert first.order_number == "ORD-1-AAAA"
    assert second.order_number == "ORD-2-BBBB"
    assert _stock(db, product) == (7, 3)


def test_order_number_conflict_gives_up_after_max_attempts(db, user, make_product, monkeypatch):
    product = make_product(stock=10)
    monkeypatch.setattr(order_service, "generate_order_number", lambda: "ORD-SAME")

    place_order(session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cod")
    with pytest.raises(DuplicateOrderNumber):
        place_order(session=db, user_id=user.id, items=[CartLine(product.id, 1)], payment_method="cod")

    assert _stock(db, product) == (9, 1)
    assert _order_count(db) == 1


def test_generated_order_numbers_are_distinct():
    numbers = {order_service.generate_order_number() for _ in range(200)}
    assert len(numbers) == 200
    assert all(n.startswith("ORD-") for n in numbers)


def test_notification_failure_keeps_the_order(db, user, make_product, monkeypatch):
    product = make_product(stock=5)

    class Boom:
        def __init__(self, *args, **kwargs):
            raise RuntimeError("notification store down")

    monkeypatch.setattr(notification_service, "Notification", Boom)

    order = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 2)], payment_method="cod")

    assert crud.get_order(session=db, order_id=order.id) is not None
    assert _stock(db, product) == (3, 2)


def test_notify_swallows_commit_errors(db, user, monkeypatch, caplog):
    def broken_commit():
        raise RuntimeError("db gone")

    monkeypatch.setattr(db, "commit", broken_commit)
    result = notification_service.notify(session=db, user_id=user.id, title="t", message="m")

    assert result is None
    assert "Failed to create notification" in caplog.text
