"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: 用户模型
- product.py: 商品（库存）模型
- order.py: 订单与订单状态历史模型
- promo.py: 优惠码模型
- payment.py: 网关支付对象与 webhook 事件模型
- notification.py: 用户通知模型
"""
from sqlmodel import SQLModel

from .base import utc_now
from .notification import Notification
from .order import Order, OrderStatusHistory
from .payment import PaymentArtifact, PaymentWebhookEvent
from .product import Product
from .promo import PromoCode
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "User",
    "Product",
    "Order",
    "OrderStatusHistory",
    "PromoCode",
    "PaymentArtifact",
    "PaymentWebhookEvent",
    "Notification",
]
