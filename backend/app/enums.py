"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，这样既可以用作字符串，又具有枚举的特性。
"""
from enum import Enum


class OrderStatus(str, Enum):
    """
    订单状态枚举

    - pending: 待处理（COD 订单等待发货/确认）
    - confirmed: 已确认
    - shipped: 已发货
    - delivered: 已送达（终态）
    - cancelled: 已取消（终态，库存已归还）
    - completed: 已完成（终态，非 COD 订单创建时直接进入）
    """
    pending = "pending"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    completed = "completed"


TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.delivered, OrderStatus.cancelled, OrderStatus.completed}
)


class PaymentMethod(str, Enum):
    """
    支付方式枚举

    - cash: 现金（门店 POS）
    - cod: 货到付款
    - gcash: GCash 电子钱包
    - maya: Maya 电子钱包
    """
    cash = "cash"
    cod = "cod"
    gcash = "gcash"
    maya = "maya"


ONLINE_PAYMENT_METHODS = frozenset({PaymentMethod.gcash, PaymentMethod.maya})


class ActorKind(str, Enum):
    """
    状态变更发起方

    - user: 订单所属用户
    - admin: 管理员
    - system: 系统（支付回调、对账任务）
    """
    user = "user"
    admin = "admin"
    system = "system"


class DiscountType(str, Enum):
    """优惠码折扣类型：百分比 / 固定金额"""
    percentage = "percentage"
    fixed = "fixed"


class PaymentArtifactKind(str, Enum):
    """网关支付对象类型"""
    checkout_session = "checkout_session"
    payment_intent = "payment_intent"


class PaymentArtifactStatus(str, Enum):
    """
    网关支付对象在本地的状态

    - awaiting_payment: 已创建，等待用户支付
    - paid: 已支付（终态）
    - failed: 支付失败
    """
    awaiting_payment = "awaiting_payment"
    paid = "paid"
    failed = "failed"


class WebhookEventStatus(str, Enum):
    """
    Webhook 事件处理状态

    - received: 已记录，处理中
    - processed: 已处理
    - ignored: 无需处理（未知类型、重复推进等）
    - failed: 处理失败，重新投递时会再次处理
    """
    received = "received"
    processed = "processed"
    ignored = "ignored"
    failed = "failed"
