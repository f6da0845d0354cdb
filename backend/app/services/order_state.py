"""
订单状态机

只有这里可以修改已存在订单的状态。每次变更：
1. 加行锁读取订单（与同一订单的并发变更串行化）
2. 校验状态边和发起方
3. 进入 cancelled 时在同一事务内归还快照中的全部库存
4. 写入状态历史并提交

终态（delivered / cancelled / completed）没有出边，因此同一订单的库存最多归还一次。
"""
import logging

from sqlmodel import Session

from app import crud
from app.api.errors import IllegalTransition, OrderNotFound
from app.enums import ActorKind, OrderStatus
from app.models import Order
from app.services.notification_service import notify

logger = logging.getLogger(__name__)


# 状态边 -> 允许发起该变更的角色
ALLOWED_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[ActorKind]] = {
    (OrderStatus.pending, OrderStatus.confirmed): frozenset({ActorKind.admin, ActorKind.system}),
    (OrderStatus.pending, OrderStatus.cancelled): frozenset({ActorKind.user, ActorKind.admin}),
    (OrderStatus.confirmed, OrderStatus.shipped): frozenset({ActorKind.admin}),
    (OrderStatus.confirmed, OrderStatus.cancelled): frozenset({ActorKind.admin}),
    (OrderStatus.shipped, OrderStatus.delivered): frozenset({ActorKind.admin}),
}

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.pending: "Your order is being processed",
    OrderStatus.confirmed: "Your order has been confirmed and is being prepared",
    OrderStatus.shipped: "Your order has been shipped and is on its way",
    OrderStatus.delivered: "Your order has been delivered successfully",
    OrderStatus.cancelled: "Your order has been cancelled",
    OrderStatus.completed: "Your order has been completed successfully",
}


def can_transition(current: OrderStatus, target: OrderStatus, actor: ActorKind) -> bool:
    """判断 actor 是否可以把订单从 current 改为 target"""
    actors = ALLOWED_TRANSITIONS.get((OrderStatus(current), OrderStatus(target)))
    return actors is not None and ActorKind(actor) in actors


def _snapshot_lines(order: Order) -> list[tuple[int, int]]:
    return [(int(item["product_id"]), int(item["quantity"])) for item in order.items]


def transition(
    *,
    session: Session,
    order_id: int,
    target: OrderStatus,
    actor: ActorKind,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> Order:
    """
    变更订单状态

    Args:
        actor: 发起方；user 只能操作自己的订单
        actor_user_id: 发起变更的用户 ID（user/admin）

    Raises:
        OrderNotFound: 订单不存在，或 user 操作了不属于自己的订单
        IllegalTransition: 状态边不存在或发起方无权执行，不产生任何变更
    """
    target = OrderStatus(target)
    actor = ActorKind(actor)

    try:
        crud.apply_tx_timeout(session=session)
        order = crud.get_order_for_update(session=session, order_id=order_id)
        if order is None or (actor == ActorKind.user and order.user_id != actor_user_id):
            raise OrderNotFound()

        current = OrderStatus(order.status)
        if not can_transition(current, target, actor):
            raise IllegalTransition(current.value, target.value)

        if target == OrderStatus.cancelled:
            crud.restore_many(session=session, lines=_snapshot_lines(order))

        crud.set_status(session=session, order=order, status=target)
        crud.add_status_history(
            session=session,
            order_id=order.id,
            from_status=current,
            to_status=target,
            actor=actor,
            actor_id=actor_user_id,
            note=note,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(order)
    logger.info(
        "Order %s: %s -> %s by %s(%s)",
        order.order_number,
        current.value,
        target.value,
        actor.value,
        actor_user_id,
    )

    notify(
        session=session,
        user_id=order.user_id,
        title=f"Order Status Update - {target.value.capitalize()}",
        message=f"Order #{order.order_number}: {STATUS_MESSAGES[target]}",
    )
    return order
