"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- BaseModel: Pydantic 的模型基类，用于数据验证
- Field: 字段验证器，定义字段的约束（长度、范围等）
- 这些模型不是数据库表，只用于 API 数据交换
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Any  # 任意类型

from pydantic import BaseModel, Field  # Pydantic 核心类

from app.enums import (
    OrderStatus,  # 订单状态枚举
    PaymentArtifactKind,  # 支付对象类型
    PaymentArtifactStatus,  # 支付对象状态
)

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 409301, "message": "Insufficient stock for product ...", "data": None}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


# ============================================================
# 订单
# ============================================================


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(ge=1, le=100000)  # 购买数量（1-100000）


class ShippingAddress(BaseModel):
    """收货地址快照"""
    full_name: str = Field(min_length=1, max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    address_line: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=128)
    province: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=16)


class OrderCreateRequest(BaseModel):
    """
    下单请求

    subtotal / tax / discount / total 可选，提供时服务端会与重新计算的结果核对，
    不一致直接拒绝。
    payment_method 在服务端校验，非法值返回 400（而不是 422）。
    """
    items: list[OrderItemRequest] = Field(min_length=1)
    payment_method: str = Field(max_length=16)
    shipping_address: ShippingAddress | None = None
    notes: str | None = Field(default=None, max_length=1000)
    promo_code: str | None = Field(default=None, max_length=64)

    subtotal: Decimal | None = None
    tax: Decimal | None = None
    discount: Decimal | None = None
    total: Decimal | None = None


class OrderItemData(BaseModel):
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int


class OrderData(BaseModel):
    """订单响应数据"""
    id: int
    order_number: str
    items: list[OrderItemData]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    payment_method: str
    status: OrderStatus
    shipping_address: dict[str, Any] | None = None
    notes: str | None = None
    promo_code: str | None = None
    created_at: datetime
    updated_at: datetime


class OrdersData(BaseModel):
    """订单列表响应数据"""
    data: list[OrderData]
    count: int  # 总数（用于分页）


class OrderCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class OrderStatusUpdateRequest(BaseModel):
    """管理员修改订单状态"""
    status: OrderStatus
    note: str | None = Field(default=None, max_length=255)


# ============================================================
# 支付
# ============================================================


class CustomerInfo(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255)
    phone: str | None = Field(default=None, max_length=32)


class CheckoutCreateRequest(BaseModel):
    order_id: int
    customer: CustomerInfo | None = None


class PaymentIntentCreateRequest(BaseModel):
    order_id: int


class PaymentArtifactData(BaseModel):
    artifact_id: str
    order_id: int
    kind: PaymentArtifactKind
    status: PaymentArtifactStatus
    amount: Decimal
    currency: str
    checkout_url: str | None = None
    client_key: str | None = None
    paid_at: datetime | None = None
    created_at: datetime


class WebhookAckData(BaseModel):
    accepted: bool
    event_id: str | None = None
    status: str | None = None
    duplicate: bool = False
