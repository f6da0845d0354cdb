"""
订单路由模块

处理订单相关的 API 端点，包括：
- 下单（库存扣减与订单写入在同一事务内）
- 查询订单列表（分页）
- 查询单个订单详情
- 用户取消订单 / 管理员修改订单状态
"""
from __future__ import annotations

from fastapi import APIRouter, Query, status  # FastAPI 路由和查询参数

from app import crud
from app.api.deps import AdminUser, CurrentUser, SessionDep  # 依赖注入
from app.api.errors import OrderNotFound
from app.api.schemas import (
    ApiEnvelope,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderData,
    OrderItemData,
    OrdersData,
    OrderStatusUpdateRequest,
)
from app.enums import ActorKind, OrderStatus
from app.models import Order
from app.services.order_service import CartLine, DeclaredTotals, place_order
from app.services.order_state import transition

router = APIRouter(prefix="/orders", tags=["orders"])


def _to_order_data(order: Order) -> OrderData:
    """将订单模型转换为响应数据模型"""
    return OrderData(
        id=order.id,
        order_number=order.order_number,
        items=[OrderItemData(**item) for item in order.items],
        subtotal=order.subtotal,
        tax=order.tax,
        discount=order.discount,
        total=order.total,
        payment_method=order.payment_method,
        status=order.status,
        shipping_address=order.shipping_address,
        notes=order.notes,
        promo_code=order.promo_code,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


@router.post("", response_model=ApiEnvelope, status_code=status.HTTP_201_CREATED)
def create_order(session: SessionDep, current_user: CurrentUser, body: OrderCreateRequest) -> ApiEnvelope:
    """
    下单

    价格、税费、折扣全部由服务端按商品目录重新计算；
    请求中的金额字段只用于核对。

    请求路径: POST /api/v1/orders

    错误：
    - 400: 支付方式不合法、商品不存在、金额不一致、优惠码无效
    - 409: 库存不足（消息中包含商品、可用数量与请求数量）
    """
    order = place_order(
        session=session,
        user_id=current_user.id,
        items=[CartLine(product_id=i.product_id, quantity=i.quantity) for i in body.items],
        payment_method=body.payment_method,
        shipping_address=body.shipping_address.model_dump() if body.shipping_address else None,
        notes=body.notes,
        promo_code=body.promo_code,
        declared=DeclaredTotals(
            subtotal=body.subtotal, tax=body.tax, discount=body.discount, total=body.total
        ),
    )
    return ApiEnvelope(message="Order created successfully", data=_to_order_data(order))


@router.get("", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    page_size: int = Query(default=20, ge=1, le=100),  # 每页数量，1-100
    order_status: OrderStatus | None = Query(default=None, alias="status"),
) -> ApiEnvelope:
    """
    获取当前用户的订单列表（分页，按创建时间倒序）

    请求路径: GET /api/v1/orders?page=1&page_size=20&status=pending
    """
    rows, count = crud.list_user_orders(
        session=session,
        user_id=current_user.id,
        page=page,
        page_size=page_size,
        status=order_status,
    )
    return ApiEnvelope(data=OrdersData(data=[_to_order_data(o) for o in rows], count=count))


@router.get("/{order_number}", response_model=ApiEnvelope)
def get_order(session: SessionDep, current_user: CurrentUser, order_number: str) -> ApiEnvelope:
    """
    获取订单详情（只能查询自己的订单）

    请求路径: GET /api/v1/orders/{order_number}
    """
    order = crud.get_order_by_number(
        session=session, order_number=order_number, user_id=current_user.id
    )
    if not order:
        raise OrderNotFound()
    return ApiEnvelope(data=_to_order_data(order))


@router.post("/{order_id}/cancel", response_model=ApiEnvelope)
def cancel_order(
    session: SessionDep,
    current_user: CurrentUser,
    order_id: int,
    body: OrderCancelRequest | None = None,
) -> ApiEnvelope:
    """
    用户取消订单

    只能取消自己的 pending 订单，取消后库存归还。

    请求路径: POST /api/v1/orders/{order_id}/cancel
    """
    order = transition(
        session=session,
        order_id=order_id,
        target=OrderStatus.cancelled,
        actor=ActorKind.user,
        actor_user_id=current_user.id,
        note=body.reason if body else None,
    )
    return ApiEnvelope(message="Order cancelled successfully", data=_to_order_data(order))


@router.patch("/{order_id}/status", response_model=ApiEnvelope)
def update_order_status(
    session: SessionDep,
    admin: AdminUser,
    order_id: int,
    body: OrderStatusUpdateRequest,
) -> ApiEnvelope:
    """
    管理员修改订单状态

    请求路径: PATCH /api/v1/orders/{order_id}/status
    """
    order = transition(
        session=session,
        order_id=order_id,
        target=body.status,
        actor=ActorKind.admin,
        actor_user_id=admin.id,
        note=body.note,
    )
    return ApiEnvelope(message="Order status updated successfully", data=_to_order_data(order))
