from __future__ import annotations

import itertools

import pytest
from sqlmodel import select

from app import crud
from app.api.errors import IllegalTransition, OrderNotFound
from app.enums import ActorKind, OrderStatus
from app.models import Notification, Order, Product
from app.services.order_service import CartLine, place_order
from app.services.order_state import ALLOWED_TRANSITIONS, can_transition, transition


def _product(db, product: Product) -> Product:
    db.expire_all()
    return db.get(Product, product.id)


def _force_status(db, order: Order, status: OrderStatus) -> Order:
    order.status = status
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


@pytest.fixture
def cod_order(db, user, make_product):
    product = make_product(stock=10)
    order = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 3)], payment_method="cod")
    return order, product


EXPECTED_EDGES = {
    (OrderStatus.pending, OrderStatus.confirmed, ActorKind.admin),
    (OrderStatus.pending, OrderStatus.confirmed, ActorKind.system),
    (OrderStatus.pending, OrderStatus.cancelled, ActorKind.user),
    (OrderStatus.pending, OrderStatus.cancelled, ActorKind.admin),
    (OrderStatus.confirmed, OrderStatus.shipped, ActorKind.admin),
    (OrderStatus.confirmed, OrderStatus.cancelled, ActorKind.admin),
    (OrderStatus.shipped, OrderStatus.delivered, ActorKind.admin),
}


@pytest.mark.parametrize(
    "current,target,actor", list(itertools.product(OrderStatus, OrderStatus, ActorKind))
)
def test_transition_table(current, target, actor):
    assert can_transition(current, target, actor) is ((current, target, actor) in EXPECTED_EDGES)


def test_terminal_statuses_have_no_outgoing_edges():
    sources = {current for current, _ in ALLOWED_TRANSITIONS}
    assert not sources & {OrderStatus.delivered, OrderStatus.cancelled, OrderStatus.completed}


def test_user_cancel_restores_stock_and_sold(db, user, cod_order):
    order, product = cod_order
    assert (_product(db, product).stock, _product(db, product).sold) == (7, 3)

    cancelled = transition(
        session=db,
        order_id=order.id,
        target=OrderStatus.cancelled,
        actor=ActorKind.user,
        actor_user_id=user.id,
        note="changed my mind",
    )

    assert cancelled.status == OrderStatus.cancelled
    p = _product(db, product)
    assert (p.stock, p.sold) == (10, 0)

    history = crud.get_status_history(session=db, order_id=order.id)
    assert [(h.from_status, h.to_status) for h in history] == [
        (None, OrderStatus.pending),
        (OrderStatus.pending, OrderStatus.cancelled),
    ]
    assert history[-1].actor == ActorKind.user
    assert history[-1].note == "changed my mind"

    titles = db.exec(select(Notification.title).where(Notification.user_id == user.id)).all()
    assert "Order Status Update - Cancelled" in titles


def test_second_cancel_is_rejected_without_double_restore(db, user, cod_order):
    order, product = cod_order
    transition(session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.user, actor_user_id=user.id)

    with pytest.raises(IllegalTransition) as exc_info:
        transition(
            session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.admin, actor_user_id=None
        )

    assert exc_info.value.status_code == 409
    assert _product(db, product).stock == 10
    assert len(crud.get_status_history(session=db, order_id=order.id)) == 2


def test_user_cannot_touch_someone_elses_order(db, make_user, cod_order):
    order, product = cod_order
    stranger = make_user()

    with pytest.raises(OrderNotFound):
        transition(
            session=db,
            order_id=order.id,
            target=OrderStatus.cancelled,
            actor=ActorKind.user,
            actor_user_id=stranger.id,
        )
    assert _product(db, product).stock == 7


def test_unknown_order_is_not_found(db):
    with pytest.raises(OrderNotFound):
        transition(session=db, order_id=1, target=OrderStatus.confirmed, actor=ActorKind.admin)


def test_user_cannot_confirm(db, user, cod_order):
    order, _ = cod_order
    with pytest.raises(IllegalTransition):
        transition(
            session=db, order_id=order.id, target=OrderStatus.confirmed, actor=ActorKind.user, actor_user_id=user.id
        )
    db.expire_all()
    assert crud.get_order(session=db, order_id=order.id).status == OrderStatus.pending


def test_admin_walks_order_to_delivered(db, user, admin, cod_order):
    order, product = cod_order
    for target in (OrderStatus.confirmed, OrderStatus.shipped, OrderStatus.delivered):
        order = transition(
            session=db, order_id=order.id, target=target, actor=ActorKind.admin, actor_user_id=admin.id
        )
        assert order.status == target

    with pytest.raises(IllegalTransition):
        transition(session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.admin)

    p = _product(db, product)
    assert (p.stock, p.sold) == (7, 3)
    history = crud.get_status_history(session=db, order_id=order.id)
    assert [h.to_status for h in history] == [
        OrderStatus.pending,
        OrderStatus.confirmed,
        OrderStatus.shipped,
        OrderStatus.delivered,
    ]


def test_admin_cancel_of_confirmed_order_restores_stock(db, admin, cod_order):
    order, product = cod_order
    transition(session=db, order_id=order.id, target=OrderStatus.confirmed, actor=ActorKind.admin, actor_user_id=admin.id)
    transition(session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.admin, actor_user_id=admin.id)

    p = _product(db, product)
    assert (p.stock, p.sold) == (10, 0)


def test_shipped_order_cannot_be_cancelled(db, admin, cod_order):
    order, product = cod_order
    _force_status(db, order, OrderStatus.shipped)

    with pytest.raises(IllegalTransition):
        transition(session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.admin)
    assert _product(db, product).stock == 7


def test_completed_order_is_terminal(db, user, make_product):
    product = make_product(stock=5)
    order = place_order(session=db, user_id=user.id, items=[CartLine(product.id, 2)], payment_method="cash")

    with pytest.raises(IllegalTransition):
        transition(
            session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.user, actor_user_id=user.id
        )
    assert _product(db, product).stock == 3


def test_cancel_restores_every_line_of_a_multi_item_order(db, user, make_product):
    a = make_product(name="A", stock=5)
    b = make_product(name="B", stock=5)
    order = place_order(
        session=db,
        user_id=user.id,
        items=[CartLine(b.id, 2), CartLine(a.id, 1), CartLine(b.id, 1)],
        payment_method="cod",
    )
    assert _product(db, b).stock == 2

    transition(session=db, order_id=order.id, target=OrderStatus.cancelled, actor=ActorKind.user, actor_user_id=user.id)

    assert (_product(db, a).stock, _product(db, a).sold) == (5, 0)
    assert (_product(db, b).stock, _product(db, b).sold) == (5, 0)
