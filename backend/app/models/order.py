"""
订单模型模块

定义订单及订单状态历史的数据库模型。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, ForeignKey, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import ActorKind, OrderStatus, PaymentMethod

from .base import id_column, money_column, timestamp_column, utc_now


class Order(SQLModel, table=True):
    """
    订单模型

    订单由下单事务创建，之后只能由状态机修改状态，从不物理删除（取消是一种状态）。
    订单号唯一，数据库唯一约束是防重的最终保证。

    字段说明：
    - order_number: 订单号（如 ORD-1718000000000-3F9A1C2B7D）
    - items: 下单时的商品快照 [{product_id, name, unit_price, quantity}]，不随商品目录变化
    - subtotal / tax / discount / total: 金额，total = subtotal + tax - discount
    - payment_method: 支付方式（cash/cod/gcash/maya）
    - status: 订单状态
    - shipping_address: 收货地址快照（可选）
    - promo_code: 使用的优惠码
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    order_number: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False)
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )

    items: list[dict[str, Any]] = Field(sa_column=Column(JSON, nullable=False))

    subtotal: Decimal = Field(sa_column=money_column())
    tax: Decimal = Field(sa_column=money_column())
    discount: Decimal = Field(
        default=Decimal("0.00"), sa_column=money_column()
    )
    total: Decimal = Field(sa_column=money_column())

    payment_method: PaymentMethod = Field(sa_column=Column(String(16), nullable=False))
    status: OrderStatus = Field(sa_column=Column(String(16), index=True, nullable=False))

    shipping_address: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    notes: str | None = Field(default=None, max_length=1000)
    promo_code: str | None = Field(default=None, max_length=64)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )


class OrderStatusHistory(SQLModel, table=True):
    """
    订单状态历史

    创建订单时记录一条（from_status 为空），之后每次成功的状态变更记录一条，
    与状态更新在同一事务内写入。
    """
    __tablename__ = "order_status_history"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    from_status: OrderStatus | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )
    to_status: OrderStatus = Field(sa_column=Column(String(16), nullable=False))
    actor: ActorKind = Field(sa_column=Column(String(16), nullable=False))
    actor_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    note: str | None = Field(default=None, max_length=255)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
