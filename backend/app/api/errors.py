"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

订单引擎的错误分类：
- ValidationError: 输入不合法，在任何数据变更之前拒绝
- OutOfStock: 库存不足，调整数量后可重试
- DuplicateOrderNumber: 订单号冲突，内部自动重试，不会暴露给调用方
- IllegalTransition: 非法的状态变更
- ExternalGatewayError: 支付网关不可用或返回错误
- WebhookProcessingError: webhook 内部处理失败，只记录，不影响对网关的响应
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息（用户友好的提示）
    - status_code: HTTP 状态码（400, 404, 500 等）

    使用示例：
        raise AppError(code=404301, message="Order not found", status_code=404)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class ValidationError(AppError):
    """请求数据不合法（在任何库存/订单变更之前抛出）"""

    def __init__(self, message: str, *, code: int = 400301) -> None:
        super().__init__(code=code, message=message, status_code=400)


class InvalidPaymentMethod(ValidationError):
    def __init__(self, method: object) -> None:
        super().__init__(
            f"Valid payment method is required (cash, cod, gcash, or maya), got {method!r}",
            code=400302,
        )


class ProductNotFound(ValidationError):
    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product with ID {product_id} not found", code=400303)
        self.product_id = product_id


class PriceMismatch(ValidationError):
    """客户端提交的金额与服务端计算结果不一致"""

    def __init__(self, field: str, declared: object, expected: object) -> None:
        super().__init__(
            f"Declared {field} {declared} does not match computed {field} {expected}",
            code=400304,
        )


class InvalidPromoCode(ValidationError):
    def __init__(self, code: str) -> None:
        super().__init__(f'Promo code "{code}" is not valid or has expired', code=400305)


class OrderNotFound(AppError):
    def __init__(self) -> None:
        super().__init__(code=404301, message="Order not found", status_code=404)


class OutOfStock(AppError):
    """
    库存不足

    available 只是失败后读取到的参考值，不参与库存判断。
    """

    def __init__(
        self,
        *,
        product_id: int,
        name: str | None = None,
        available: int | None = None,
        requested: int | None = None,
    ) -> None:
        label = f'"{name}"' if name else str(product_id)
        message = f"Insufficient stock for product {label}."
        if available is not None and requested is not None:
            message += f" Available: {available}, Requested: {requested}"
        super().__init__(code=409301, message=message, status_code=409)
        self.product_id = product_id
        self.available = available
        self.requested = requested


class IllegalTransition(AppError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            code=409302,
            message=f"Cannot change order status from {current} to {target}",
            status_code=409,
        )
        self.current = current
        self.target = target


class DuplicateOrderNumber(AppError):
    """订单号唯一约束冲突（由下单服务重新生成订单号后重试）"""

    def __init__(self, order_number: str) -> None:
        super().__init__(
            code=500301, message=f"Duplicate order number {order_number}", status_code=500
        )
        self.order_number = order_number


class ExternalGatewayError(AppError):
    """
    支付网关错误

    对外只返回通用提示，网关的原始错误内容只写入日志。
    """

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            code=502401,
            message="Payment service unavailable, please retry",
            status_code=502,
        )
        self.detail = detail


class InvalidWebhookSignature(AppError):
    def __init__(self) -> None:
        super().__init__(code=401401, message="Invalid webhook signature", status_code=401)


class WebhookProcessingError(Exception):
    """webhook 事件内部处理失败（记录到事件表，不返回给网关）"""


class PaymentArtifactNotFound(AppError):
    def __init__(self) -> None:
        super().__init__(code=404401, message="Payment not found", status_code=404)
