"""
PayMongo 支付网关集成模块

封装 PayMongo 的 REST API（JSON:API 格式），包括：
- Checkout Session 创建 / 查询（GCash、Maya 推荐使用）
- Payment Intent 创建 / 查询
- Webhook 签名校验

认证方式：HTTP Basic，用户名为 secret key，密码为空。
金额在网关侧以分（centavo）为单位的整数表示。

支持模拟模式（mock），用于本地开发时不需要真实 API 调用。
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from app.api.errors import AppError, ExternalGatewayError
from app.core.config import settings

logger = logging.getLogger(__name__)

_CHECKOUT_SESSIONS_PATH = "/checkout_sessions"
_PAYMENT_INTENTS_PATH = "/payment_intents"

# 网关侧的支付方式名称
GATEWAY_METHOD_TYPES = {"gcash": "gcash", "maya": "paymaya"}


def to_centavos(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    """HMAC-SHA256(secret, "{timestamp}.{body}") 的十六进制摘要"""
    message = f"{timestamp}.".encode() + raw_body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _parse_signature_header(header: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key] = value
    return parts


@dataclass(frozen=True)
class CheckoutSessionResult:
    """
    Checkout Session 结果

    paid_amount 为已支付 payment 的金额合计（分），未支付时为 None。
    """
    id: str | None  # webhook 资源缺少 id 时为 None
    status: str  # active / expired
    checkout_url: str | None = None
    payment_intent_id: str | None = None
    paid: bool = False
    paid_amount: int | None = None
    metadata: dict[str, Any] | None = None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True)
class PaymentIntentResult:
    id: str
    status: str  # awaiting_payment_method / processing / succeeded ...
    amount: int
    client_key: str | None = None
    metadata: dict[str, Any] | None = None
    raw: dict[str, Any] | None = None

    @property
    def paid(self) -> bool:
        return self.status == "succeeded"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_checkout_session(data: dict[str, Any]) -> CheckoutSessionResult:
    """
    解析 checkout_session 资源

    webhook 中的资源来自外部请求，形状不对的字段按缺失处理。
    """
    attrs = _as_dict(data.get("attributes"))
    payments = attrs.get("payments")
    paid_amount = 0
    paid = False
    for payment in payments if isinstance(payments, list) else []:
        p_attrs = _as_dict(payment.get("attributes")) if isinstance(payment, dict) else {}
        if p_attrs.get("status") == "paid":
            paid = True
            paid_amount += int(p_attrs.get("amount") or 0)
    intent = _as_dict(attrs.get("payment_intent"))
    metadata = attrs.get("metadata")
    return CheckoutSessionResult(
        id=str(data["id"]) if data.get("id") else None,
        status=str(attrs.get("status") or "active"),
        checkout_url=attrs.get("checkout_url"),
        payment_intent_id=intent.get("id"),
        paid=paid,
        paid_amount=paid_amount if paid else None,
        metadata=metadata if isinstance(metadata, dict) else None,
        raw=data,
    )


def parse_payment_intent(data: dict[str, Any]) -> PaymentIntentResult:
    attrs = _as_dict(data.get("attributes"))
    return PaymentIntentResult(
        id=str(data.get("id")),
        status=str(attrs.get("status") or ""),
        amount=int(attrs.get("amount") or 0),
        client_key=attrs.get("client_key"),
        metadata=attrs.get("metadata"),
        raw=data,
    )


class PayMongoClient:
    """
    PayMongo API 客户端

    API 文档：
    - POST /checkout_sessions, GET /checkout_sessions/{id}
    - POST /payment_intents, GET /payment_intents/{id}
    - Webhook 签名头：Paymongo-Signature: t=<ts>,te=<test sig>,li=<live sig>
    """

    def __init__(self, *, transport: httpx.BaseTransport | None = None) -> None:
        """
        Args:
            transport: 自定义 httpx transport（测试时注入 MockTransport）
        """
        self._mock = settings.PAYMONGO_MOCK
        self._base_url = settings.PAYMONGO_BASE_URL.rstrip("/")
        self._secret_key = settings.PAYMONGO_SECRET_KEY
        self._timeout = settings.PAYMONGO_TIMEOUT_SECONDS
        self._transport = transport

    def _request(self, method: str, path: str, *, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        发送请求并返回响应中的 data 对象

        Raises:
            AppError: secret key 未配置（500401）
            ExternalGatewayError: 网络错误、非 2xx 响应或响应格式错误
        """
        if not self._secret_key:
            raise AppError(code=500401, message="PAYMONGO_SECRET_KEY not configured", status_code=500)

        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                auth=(self._secret_key, ""),
                transport=self._transport,
            ) as client:
                r = client.request(method, path, json=payload)
                r.raise_for_status()
                body = r.json()
        except httpx.HTTPStatusError as e:
            # 网关返回的错误内容只写日志
            logger.error(
                "PayMongo %s %s failed: status=%s body=%s",
                method,
                path,
                e.response.status_code,
                e.response.text,
            )
            raise ExternalGatewayError(detail=e.response.text) from e
        except httpx.HTTPError as e:
            logger.error("PayMongo %s %s transport error: %s", method, path, e)
            raise ExternalGatewayError(detail=str(e)) from e
        except ValueError as e:
            logger.error("PayMongo %s %s returned non-JSON body", method, path)
            raise ExternalGatewayError(detail="invalid json") from e

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict) or not data.get("id"):
            logger.error("PayMongo %s %s invalid response: %s", method, path, body)
            raise ExternalGatewayError(detail="invalid response")
        return data

    def create_checkout_session(
        self,
        *,
        line_items: list[dict[str, Any]],
        payment_method_types: list[str],
        description: str,
        reference_number: str,
        metadata: dict[str, Any],
        billing: dict[str, Any] | None = None,
    ) -> CheckoutSessionResult:
        """
        创建 Checkout Session

        Args:
            line_items: [{name, quantity, amount(Decimal, 元)}]
            payment_method_types: 网关支付方式（gcash / paymaya）
            reference_number: 订单号
            metadata: 关联信息（order_id / order_number），webhook 中原样返回
            billing: 预填的客户信息 {name, email, phone}
        """
        if self._mock:
            session_id = f"cs_mock_{secrets.token_hex(12)}"
            return CheckoutSessionResult(
                id=session_id,
                status="active",
                checkout_url=f"https://checkout.paymongo.com/{session_id}",
                metadata=metadata,
                raw={"mock": True},
            )

        attributes: dict[str, Any] = {
            "send_email_receipt": True,
            "show_description": True,
            "show_line_items": True,
            "line_items": [
                {
                    "name": item["name"],
                    "quantity": int(item["quantity"]),
                    "amount": to_centavos(item["amount"]),
                    "currency": settings.PAYMONGO_CURRENCY,
                }
                for item in line_items
            ],
            "payment_method_types": payment_method_types,
            "description": description,
            "reference_number": reference_number,
            "statement_descriptor": settings.PAYMENT_STATEMENT_DESCRIPTOR,
            "success_url": f"{settings.PAYMENT_SUCCESS_URL}?order_id={metadata.get('order_id', '')}",
            "cancel_url": f"{settings.PAYMENT_CANCEL_URL}?order_id={metadata.get('order_id', '')}",
            "metadata": metadata,
        }
        if billing and billing.get("name") and billing.get("email"):
            attributes["billing"] = {
                "name": billing["name"],
                "email": billing["email"],
                "phone": billing.get("phone") or "",
            }

        data = self._request("POST", _CHECKOUT_SESSIONS_PATH, payload={"data": {"attributes": attributes}})
        return parse_checkout_session(data)

    def get_checkout_session(self, session_id: str) -> CheckoutSessionResult:
        if self._mock:
            return CheckoutSessionResult(id=session_id, status="active", raw={"mock": True})
        data = self._request("GET", f"{_CHECKOUT_SESSIONS_PATH}/{session_id}")
        return parse_checkout_session(data)

    def create_payment_intent(
        self,
        *,
        amount: Decimal,
        payment_method_allowed: list[str],
        description: str,
        metadata: dict[str, Any],
    ) -> PaymentIntentResult:
        """创建 Payment Intent（自动扣款）"""
        centavos = to_centavos(amount)
        if self._mock:
            intent_id = f"pi_mock_{secrets.token_hex(12)}"
            return PaymentIntentResult(
                id=intent_id,
                status="awaiting_payment_method",
                amount=centavos,
                client_key=f"{intent_id}_client_{secrets.token_hex(8)}",
                metadata=metadata,
                raw={"mock": True},
            )

        attributes = {
            "amount": centavos,
            "payment_method_allowed": payment_method_allowed,
            "currency": settings.PAYMONGO_CURRENCY,
            "capture_type": "automatic",
            "description": description,
            "statement_descriptor": settings.PAYMENT_STATEMENT_DESCRIPTOR,
            "metadata": metadata,
        }
        data = self._request("POST", _PAYMENT_INTENTS_PATH, payload={"data": {"attributes": attributes}})
        return parse_payment_intent(data)

    def get_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        if self._mock:
            return PaymentIntentResult(
                id=intent_id, status="awaiting_payment_method", amount=0, raw={"mock": True}
            )
        data = self._request("GET", f"{_PAYMENT_INTENTS_PATH}/{intent_id}")
        return parse_payment_intent(data)

    def verify_webhook_signature(
        self, raw_body: bytes, header: str | None, *, now: float | None = None
    ) -> bool:
        """
        校验 Paymongo-Signature 头

        te（测试模式）或 li（正式模式）任一签名匹配即通过；
        时间戳与当前时间相差超过 PAYMONGO_WEBHOOK_TOLERANCE_SECONDS 视为重放。
        """
        secret = settings.PAYMONGO_WEBHOOK_SECRET
        if not secret:
            # 配置校验保证只有本地环境会走到这里
            logger.warning("PAYMONGO_WEBHOOK_SECRET not configured, skipping signature check")
            return settings.ENVIRONMENT == "local"

        if not header:
            return False
        parts = _parse_signature_header(header)
        timestamp = parts.get("t")
        if not timestamp or not timestamp.isdigit():
            return False

        now = time.time() if now is None else now
        if abs(now - int(timestamp)) > settings.PAYMONGO_WEBHOOK_TOLERANCE_SECONDS:
            return False

        expected = compute_signature(secret, timestamp, raw_body)
        candidates = [parts.get("te"), parts.get("li")]
        # 头部按 latin-1 解码，可能含非 ASCII 字符，按字节比较
        return any(
            sig and hmac.compare_digest(sig.encode("utf-8"), expected.encode()) for sig in candidates
        )


_client: PayMongoClient | None = None


def get_paymongo_client() -> PayMongoClient:
    """获取全局 PayMongo 客户端（FastAPI 依赖，测试中可覆盖）"""
    global _client
    if _client is None:
        _client = PayMongoClient()
    return _client
