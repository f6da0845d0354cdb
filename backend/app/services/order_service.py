"""
下单服务（订单事务管理）

把购物车转换为订单：校验 -> 扣减库存 -> 写入订单，作为一个事务整体提交或整体回滚。

事务内的加锁顺序固定为：优惠码行 -> 商品行（按商品 ID 升序），
与取消订单时的归还顺序一致，并发的多商品订单不会互相死锁。

订单号冲突时整个事务回滚（库存扣减随之撤销），重新生成订单号后重试，对调用方透明。
"""
from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
)

from app import crud
from app.api.errors import (
    DuplicateOrderNumber,
    InvalidPaymentMethod,
    PriceMismatch,
    ProductNotFound,
    ValidationError,
)
from app.core.config import settings
from app.enums import ONLINE_PAYMENT_METHODS, ActorKind, OrderStatus, PaymentMethod
from app.models import Order, Product
from app.services.notification_service import notify

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# 客户端金额与服务端计算结果允许的误差
AMOUNT_EPSILON = Decimal("0.01")


@dataclass(frozen=True)
class CartLine:
    """购物车中的一行"""
    product_id: int
    quantity: int


@dataclass(frozen=True)
class DeclaredTotals:
    """
    客户端提交的金额

    只用于核对，服务端始终以商品目录价格重新计算。
    """
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    discount: Decimal | None = None
    total: Decimal | None = None


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def generate_order_number() -> str:
    """生成订单号：ORD-{毫秒时间戳}-{10 位随机十六进制}"""
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(5).upper()}"


def parse_payment_method(value: Any) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise InvalidPaymentMethod(value) from None


def initial_status(method: PaymentMethod) -> OrderStatus:
    """
    订单初始状态

    COD 订单等待送达确认；其他支付方式视为已付款直接完成。
    开启 ORDER_SETTLE_ON_WEBHOOK 后，gcash/maya 订单等待支付回调确认。
    """
    if method == PaymentMethod.cod:
        return OrderStatus.pending
    if settings.ORDER_SETTLE_ON_WEBHOOK and method in ONLINE_PAYMENT_METHODS:
        return OrderStatus.pending
    return OrderStatus.completed


def _check_declared(declared: DeclaredTotals | None, computed: dict[str, Decimal]) -> None:
    if declared is None:
        return
    for field, expected in computed.items():
        value = getattr(declared, field)
        if value is not None and abs(Decimal(value) - expected) > AMOUNT_EPSILON:
            raise PriceMismatch(field, value, expected)


def _load_products(*, session: Session, product_ids: set[int]) -> dict[int, Product]:
    rows = session.exec(select(Product).where(Product.id.in_(product_ids))).all()  # type: ignore[attr-defined]
    products = {p.id: p for p in rows}
    for product_id in sorted(product_ids):
        if product_id not in products:
            raise ProductNotFound(product_id)
    return products


def _is_order_number_conflict(exc: IntegrityError) -> bool:
    return "order_number" in str(exc.orig)


@retry(
    stop=stop_after_attempt(settings.ORDER_NUMBER_MAX_ATTEMPTS),
    retry=retry_if_exception_type(DuplicateOrderNumber),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _place_order_once(
    *,
    session: Session,
    user_id: int,
    items: Sequence[CartLine],
    payment_method: PaymentMethod,
    shipping_address: dict[str, Any] | None,
    notes: str | None,
    promo_code: str | None,
    declared: DeclaredTotals | None,
) -> Order:
    order_number = generate_order_number()
    status = initial_status(payment_method)

    try:
        crud.apply_tx_timeout(session=session)
        products = _load_products(session=session, product_ids={line.product_id for line in items})

        snapshot: list[dict[str, Any]] = []
        subtotal = Decimal("0.00")
        for line in items:
            product = products[line.product_id]
            unit_price = _money(product.unit_price)
            subtotal += unit_price * line.quantity
            snapshot.append(
                {
                    "product_id": product.id,
                    "name": product.name,
                    "unit_price": str(unit_price),
                    "quantity": line.quantity,
                }
            )
        subtotal = _money(subtotal)
        tax = _money(subtotal * Decimal(settings.ORDER_TAX_RATE))

        discount = Decimal("0.00")
        promo_applied: str | None = None
        if promo_code:
            promo, discount = crud.redeem_promo(session=session, code=promo_code, subtotal=subtotal)
            promo_applied = promo.code

        total = _money(subtotal + tax - discount)
        _check_declared(
            declared, {"subtotal": subtotal, "tax": tax, "discount": discount, "total": total}
        )

        crud.reserve_many(
            session=session, lines=[(line.product_id, line.quantity) for line in items]
        )

        order = Order(
            order_number=order_number,
            user_id=user_id,
            items=snapshot,
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            total=total,
            payment_method=payment_method,
            status=status,
            shipping_address=shipping_address,
            notes=notes,
            promo_code=promo_applied,
        )
        try:
            crud.create_order(session=session, order=order)
        except IntegrityError as exc:
            if _is_order_number_conflict(exc):
                raise DuplicateOrderNumber(order_number) from exc
            raise

        crud.add_status_history(
            session=session,
            order_id=order.id,
            from_status=None,
            to_status=status,
            actor=ActorKind.user,
            actor_id=user_id,
            note="Order placed",
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(order)
    return order


def place_order(
    *,
    session: Session,
    user_id: int,
    items: Sequence[CartLine],
    payment_method: PaymentMethod | str,
    shipping_address: dict[str, Any] | None = None,
    notes: str | None = None,
    promo_code: str | None = None,
    declared: DeclaredTotals | None = None,
) -> Order:
    """
    下单

    Raises:
        InvalidPaymentMethod: 支付方式不合法（不触碰库存）
        ValidationError / ProductNotFound / PriceMismatch / InvalidPromoCode: 输入不合法
        OutOfStock: 任一商品库存不足，整单回滚
    """
    method = parse_payment_method(payment_method)
    if not items:
        raise ValidationError("Items are required and must be a non-empty array")
    for line in items:
        if line.quantity <= 0:
            raise ValidationError(f"Quantity for product {line.product_id} must be positive")

    order = _place_order_once(
        session=session,
        user_id=user_id,
        items=items,
        payment_method=method,
        shipping_address=shipping_address,
        notes=notes,
        promo_code=promo_code,
        declared=declared,
    )
    logger.info(
        "Order %s placed: user=%s method=%s status=%s total=%s",
        order.order_number,
        user_id,
        method.value,
        order.status,
        order.total,
    )

    notify(
        session=session,
        user_id=user_id,
        title="Order Placed Successfully",
        message=f"Your order #{order.order_number} has been placed and is being processed.",
    )
    return order
