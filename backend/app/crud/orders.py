"""订单 CRUD 操作"""
from typing import Any

from sqlalchemy import text
from sqlmodel import Session, func, select

from app.core.config import settings
from app.enums import ActorKind, OrderStatus
from app.models import Order, OrderStatusHistory, utc_now


def apply_tx_timeout(*, session: Session) -> None:
    """为当前事务设置语句/锁超时（仅 PostgreSQL），超时后事务回滚，不会留下部分变更"""
    if session.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(settings.ORDER_TX_TIMEOUT_MS)
    session.exec(text(f"SET LOCAL statement_timeout = {timeout_ms}"))  # type: ignore[call-overload]
    session.exec(text(f"SET LOCAL lock_timeout = {timeout_ms}"))  # type: ignore[call-overload]


def create_order(*, session: Session, order: Order) -> Order:
    """写入订单（不提交），唯一约束冲突在 flush 时抛出 IntegrityError"""
    session.add(order)
    session.flush()
    return order


def get_order(*, session: Session, order_id: int) -> Order | None:
    return session.get(Order, order_id)


def get_order_for_update(*, session: Session, order_id: int) -> Order | None:
    """加行锁读取订单，锁持续到事务结束"""
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()


def get_order_by_number(
    *, session: Session, order_number: str, user_id: int | None = None
) -> Order | None:
    stmt = select(Order).where(Order.order_number == order_number)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    return session.exec(stmt).first()


def list_user_orders(
    *,
    session: Session,
    user_id: int,
    page: int = 1,
    page_size: int = 20,
    status: OrderStatus | None = None,
) -> tuple[list[Order], int]:
    """分页查询用户订单（按创建时间倒序），返回 (订单列表, 总数)"""
    conditions: list[Any] = [Order.user_id == user_id]
    if status is not None:
        conditions.append(Order.status == status)

    count = session.exec(select(func.count()).select_from(Order).where(*conditions)).one()
    rows = session.exec(
        select(Order)
        .where(*conditions)
        .order_by(Order.created_at.desc())  # type: ignore[attr-defined]
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(rows), count


def add_status_history(
    *,
    session: Session,
    order_id: int,
    from_status: OrderStatus | None,
    to_status: OrderStatus,
    actor: ActorKind,
    actor_id: int | None = None,
    note: str | None = None,
) -> OrderStatusHistory:
    row = OrderStatusHistory(
        order_id=order_id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        actor_id=actor_id,
        note=note,
    )
    session.add(row)
    return row


def set_status(*, session: Session, order: Order, status: OrderStatus) -> Order:
    """更新订单状态（不提交，由调用方在同一事务内提交）"""
    order.status = status
    order.updated_at = utc_now()
    session.add(order)
    return order


def get_status_history(*, session: Session, order_id: int) -> list[OrderStatusHistory]:
    rows = session.exec(
        select(OrderStatusHistory)
        .where(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)  # type: ignore[arg-type]
    ).all()
    return list(rows)
