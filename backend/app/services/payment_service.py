"""
支付对账服务

两部分职责：
1. 为订单创建网关支付对象（checkout session / payment intent），本地只记录 artifact_id -> order_id
2. 处理网关 webhook：校验签名 -> 按 event_id 去重 -> 分发事件 -> 驱动订单状态机

网关的 webhook 可能重复、乱序投递，这里只依赖两件事：
- event_id 唯一约束（processed / ignored 的事件再次到达直接确认）
- 只向前推进（支付对象已是 paid 时不再处理；订单不是 pending 时不做状态变更）

内部处理失败只记录到事件表并写日志，对网关仍然返回 200，避免网关对同一个坏事件无限重试。
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app import crud
from app.api.errors import (
    InvalidWebhookSignature,
    OrderNotFound,
    PaymentArtifactNotFound,
    ValidationError,
    WebhookProcessingError,
)
from app.core.config import settings
from app.enums import (
    ONLINE_PAYMENT_METHODS,
    ActorKind,
    OrderStatus,
    PaymentArtifactKind,
    PaymentArtifactStatus,
    PaymentMethod,
    WebhookEventStatus,
)
from app.integrations.paymongo import (
    GATEWAY_METHOD_TYPES,
    PayMongoClient,
    get_paymongo_client,
    parse_checkout_session,
    to_centavos,
)
from app.models import Order, PaymentArtifact, PaymentWebhookEvent, utc_now
from app.services.order_state import transition

logger = logging.getLogger(__name__)

CHECKOUT_PAID_EVENT = "checkout_session.payment.paid"
PAYMENT_PAID_EVENT = "payment.paid"
PAYMENT_FAILED_EVENT = "payment.failed"
PAID_EVENTS = frozenset({CHECKOUT_PAID_EVENT, PAYMENT_PAID_EVENT})

# 允许发起在线支付的订单状态（pending: 等待回调确认；completed: 创建即完成的在线订单）
PAYABLE_STATUSES = frozenset({OrderStatus.pending, OrderStatus.completed})


@dataclass(frozen=True)
class WebhookEvent:
    """从 webhook 请求体中解析出的事件"""
    event_id: str
    event_type: str
    artifact_id: str | None = None
    paid_amount: int | None = None  # 分
    metadata: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookAck:
    """
    webhook 处理结果

    accepted=False 表示请求体无法解析（没有可记录的 event_id），仍然返回 200。
    """
    accepted: bool
    event_id: str | None = None
    status: str | None = None
    duplicate: bool = False


# ============================================================================
# 支付对象创建
# ============================================================================


def _get_artifact(
    *, session: Session, artifact_id: str, for_update: bool = False
) -> PaymentArtifact | None:
    stmt = select(PaymentArtifact).where(PaymentArtifact.artifact_id == artifact_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.exec(stmt).first()


def _find_order_artifact(
    *,
    session: Session,
    order_id: int,
    status: PaymentArtifactStatus | None = None,
    kind: PaymentArtifactKind | None = None,
    for_update: bool = False,
) -> PaymentArtifact | None:
    stmt = select(PaymentArtifact).where(PaymentArtifact.order_id == order_id)
    if status is not None:
        stmt = stmt.where(PaymentArtifact.status == status)
    if kind is not None:
        stmt = stmt.where(PaymentArtifact.kind == kind)
    stmt = stmt.order_by(PaymentArtifact.created_at.desc())  # type: ignore[attr-defined]
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.exec(stmt).first()


def _payable_order(*, session: Session, order_id: int, user_id: int) -> Order:
    order = crud.get_order(session=session, order_id=order_id)
    if order is None or order.user_id != user_id:
        raise OrderNotFound()
    if PaymentMethod(order.payment_method) not in ONLINE_PAYMENT_METHODS:
        raise ValidationError("Online payment is only available for gcash or maya orders", code=400306)
    if OrderStatus(order.status) not in PAYABLE_STATUSES:
        raise ValidationError(f"Order is {order.status}, payment is not allowed", code=400307)
    if _find_order_artifact(session=session, order_id=order.id, status=PaymentArtifactStatus.paid):
        raise ValidationError("Order has already been paid", code=400308)
    if Decimal(order.total) < settings.PAYMONGO_MIN_AMOUNT:
        raise ValidationError(
            f"Minimum amount is {settings.PAYMONGO_MIN_AMOUNT} {settings.PAYMONGO_CURRENCY}",
            code=400309,
        )
    return order


def _line_items(order: Order) -> list[dict[str, Any]]:
    """
    网关展示用的商品行

    有折扣时网关无法表示负数行，改为一行订单合计。
    """
    if Decimal(order.discount) > 0:
        return [{"name": f"Order {order.order_number}", "quantity": 1, "amount": Decimal(order.total)}]
    items = [
        {"name": item["name"], "quantity": item["quantity"], "amount": Decimal(item["unit_price"])}
        for item in order.items
    ]
    if Decimal(order.tax) > 0:
        items.append({"name": "VAT", "quantity": 1, "amount": Decimal(order.tax)})
    return items


def _metadata(order: Order) -> dict[str, str]:
    # 网关要求 metadata 的值为字符串
    return {"order_id": str(order.id), "order_number": order.order_number}


def _save_artifact(*, session: Session, artifact: PaymentArtifact) -> PaymentArtifact:
    try:
        session.add(artifact)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(
            "Failed to record payment artifact %s for order %s", artifact.artifact_id, artifact.order_id
        )
        raise
    session.refresh(artifact)
    logger.info(
        "Payment artifact created: %s kind=%s order=%s amount=%s",
        artifact.artifact_id,
        artifact.kind,
        artifact.order_id,
        artifact.amount,
    )
    return artifact


def create_checkout(
    *,
    session: Session,
    order_id: int,
    user_id: int,
    customer: dict[str, Any] | None = None,
    client: PayMongoClient | None = None,
) -> PaymentArtifact:
    """
    为订单创建 Checkout Session

    已有未支付的 checkout session 时直接复用。
    网关失败时 ExternalGatewayError 向上抛出，订单保持原状态。
    """
    client = client or get_paymongo_client()
    order = _payable_order(session=session, order_id=order_id, user_id=user_id)

    existing = _find_order_artifact(
        session=session,
        order_id=order.id,
        status=PaymentArtifactStatus.awaiting_payment,
        kind=PaymentArtifactKind.checkout_session,
    )
    if existing is not None:
        return existing

    result = client.create_checkout_session(
        line_items=_line_items(order),
        payment_method_types=[GATEWAY_METHOD_TYPES[PaymentMethod(order.payment_method).value]],
        description=f"Tile Depot Order {order.order_number}",
        reference_number=order.order_number,
        metadata=_metadata(order),
        billing=customer,
    )
    artifact = PaymentArtifact(
        artifact_id=result.id,
        order_id=order.id,
        kind=PaymentArtifactKind.checkout_session,
        status=PaymentArtifactStatus.awaiting_payment,
        amount=Decimal(order.total),
        currency=settings.PAYMONGO_CURRENCY,
        checkout_url=result.checkout_url,
    )
    return _save_artifact(session=session, artifact=artifact)


def create_payment_intent(
    *,
    session: Session,
    order_id: int,
    user_id: int,
    client: PayMongoClient | None = None,
) -> PaymentArtifact:
    """为订单创建 Payment Intent（规则同 create_checkout）"""
    client = client or get_paymongo_client()
    order = _payable_order(session=session, order_id=order_id, user_id=user_id)

    existing = _find_order_artifact(
        session=session,
        order_id=order.id,
        status=PaymentArtifactStatus.awaiting_payment,
        kind=PaymentArtifactKind.payment_intent,
    )
    if existing is not None:
        return existing

    result = client.create_payment_intent(
        amount=Decimal(order.total),
        payment_method_allowed=[GATEWAY_METHOD_TYPES[PaymentMethod(order.payment_method).value]],
        description=f"Tile Depot Order {order.order_number}",
        metadata=_metadata(order),
    )
    artifact = PaymentArtifact(
        artifact_id=result.id,
        order_id=order.id,
        kind=PaymentArtifactKind.payment_intent,
        status=PaymentArtifactStatus.awaiting_payment,
        amount=Decimal(order.total),
        currency=settings.PAYMONGO_CURRENCY,
        client_key=result.client_key,
    )
    return _save_artifact(session=session, artifact=artifact)


def get_artifact_for_user(*, session: Session, artifact_id: str, user_id: int) -> PaymentArtifact:
    artifact = _get_artifact(session=session, artifact_id=artifact_id)
    if artifact is None:
        raise PaymentArtifactNotFound()
    order = crud.get_order(session=session, order_id=artifact.order_id)
    if order is None or order.user_id != user_id:
        raise PaymentArtifactNotFound()
    return artifact


# ============================================================================
# 支付结果落地（webhook 与主动查询共用）
# ============================================================================


def _resolve_artifact(
    *, session: Session, artifact_id: str | None, metadata: dict[str, Any]
) -> PaymentArtifact:
    artifact = None
    if artifact_id:
        artifact = _get_artifact(session=session, artifact_id=artifact_id, for_update=True)
    if artifact is None and metadata.get("order_id"):
        try:
            order_id = int(metadata["order_id"])
        except (TypeError, ValueError):
            raise WebhookProcessingError(f"Invalid order_id in metadata: {metadata['order_id']!r}") from None
        artifact = _find_order_artifact(session=session, order_id=order_id, for_update=True)
    if artifact is None:
        logger.warning("No payment artifact correlated to %s (metadata=%s)", artifact_id, metadata)
        raise WebhookProcessingError(f"No payment artifact correlated to {artifact_id}")
    return artifact


def _apply_paid(
    *, session: Session, artifact: PaymentArtifact, paid_amount: int | None
) -> tuple[WebhookEventStatus, int | None]:
    """
    标记支付对象已支付（不提交）

    Returns:
        (事件处理结果, 需要确认的订单 ID)；订单不是 pending 时不推进状态
    """
    if artifact.status == PaymentArtifactStatus.paid:
        logger.info("Payment artifact %s already paid, skipping", artifact.artifact_id)
        return WebhookEventStatus.ignored, None

    expected = to_centavos(Decimal(artifact.amount))
    if paid_amount is not None and paid_amount != expected:
        raise WebhookProcessingError(
            f"Paid amount {paid_amount} does not match expected {expected} for {artifact.artifact_id}"
        )

    now = utc_now()
    artifact.status = PaymentArtifactStatus.paid
    artifact.paid_at = now
    artifact.updated_at = now
    session.add(artifact)

    order = crud.get_order_for_update(session=session, order_id=artifact.order_id)
    if order is None:
        raise WebhookProcessingError(f"Order {artifact.order_id} not found")
    if order.status != OrderStatus.pending:
        if order.status == OrderStatus.cancelled:
            logger.warning(
                "Payment %s received for cancelled order %s", artifact.artifact_id, order.order_number
            )
        return WebhookEventStatus.processed, None
    return WebhookEventStatus.processed, order.id


def _apply_failed(*, session: Session, artifact: PaymentArtifact) -> WebhookEventStatus:
    if artifact.status == PaymentArtifactStatus.paid:
        return WebhookEventStatus.ignored
    artifact.status = PaymentArtifactStatus.failed
    artifact.updated_at = utc_now()
    session.add(artifact)
    logger.warning("Payment failed for artifact %s (order %s)", artifact.artifact_id, artifact.order_id)
    return WebhookEventStatus.processed


def _confirm_order(*, session: Session, order_id: int | None, note: str) -> None:
    """提交当前事务；有待确认的订单时由状态机在同一事务内推进并提交"""
    if order_id is None:
        session.commit()
        return
    transition(
        session=session,
        order_id=order_id,
        target=OrderStatus.confirmed,
        actor=ActorKind.system,
        note=note,
    )


def sync_artifact(
    *, session: Session, artifact: PaymentArtifact, client: PayMongoClient | None = None
) -> PaymentArtifact:
    """
    主动向网关查询支付对象状态

    已支付时走与 webhook 相同的落地逻辑；网关错误向上抛出。
    """
    if artifact.status != PaymentArtifactStatus.awaiting_payment:
        return artifact

    client = client or get_paymongo_client()
    if artifact.kind == PaymentArtifactKind.checkout_session:
        checkout = client.get_checkout_session(artifact.artifact_id)
        paid, paid_amount = checkout.paid, checkout.paid_amount
    else:
        intent = client.get_payment_intent(artifact.artifact_id)
        paid, paid_amount = intent.paid, intent.amount
    if not paid:
        return artifact

    try:
        locked = _get_artifact(session=session, artifact_id=artifact.artifact_id, for_update=True)
        if locked is None:
            raise PaymentArtifactNotFound()
        _, order_id = _apply_paid(session=session, artifact=locked, paid_amount=paid_amount)
        _confirm_order(
            session=session, order_id=order_id, note=f"Payment {locked.artifact_id} confirmed by gateway"
        )
    except Exception:
        session.rollback()
        raise

    session.refresh(locked)
    return locked


def reconcile_pending_artifacts(
    *,
    session: Session,
    older_than: timedelta,
    client: PayMongoClient | None = None,
    limit: int = 100,
) -> int:
    """
    对账：查询创建时间早于 older_than 且仍未支付的支付对象

    单个对象失败只记录日志，不影响其他对象。

    Returns:
        本次确认为已支付的数量
    """
    cutoff = utc_now() - older_than
    artifacts = session.exec(
        select(PaymentArtifact)
        .where(PaymentArtifact.status == PaymentArtifactStatus.awaiting_payment)
        .where(PaymentArtifact.created_at <= cutoff)
        .order_by(PaymentArtifact.created_at)  # type: ignore[arg-type]
        .limit(limit)
    ).all()

    paid = 0
    for artifact in artifacts:
        try:
            synced = sync_artifact(session=session, artifact=artifact, client=client)
        except Exception:
            logger.exception("Failed to reconcile payment artifact %s", artifact.artifact_id)
            continue
        if synced.status == PaymentArtifactStatus.paid:
            paid += 1
    return paid


# ============================================================================
# Webhook
# ============================================================================


def _require_object(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WebhookProcessingError(f"{what} is not an object")
    return value


def parse_event(payload: dict[str, Any]) -> WebhookEvent:
    """
    解析 PayMongo 事件

    {"data": {"id": "evt_...", "attributes": {"type": "...", "data": {<resource>}}}}

    Raises:
        WebhookProcessingError: 缺少事件 ID 或类型，或嵌套字段不是对象
    """
    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("id"):
        raise WebhookProcessingError("Payload has no event id")
    attrs = _require_object(data.get("attributes"), "data.attributes")
    event_type = attrs.get("type")
    if not event_type:
        raise WebhookProcessingError(f"Event {data['id']} has no type")

    resource = _require_object(attrs.get("data"), "data.attributes.data")
    r_attrs = _require_object(resource.get("attributes"), "resource attributes")
    artifact_id = resource.get("id")
    paid_amount = None
    metadata = _require_object(r_attrs.get("metadata"), "resource metadata")

    if event_type == CHECKOUT_PAID_EVENT:
        checkout = parse_checkout_session(resource)
        if not checkout.paid:
            raise WebhookProcessingError(f"Event {data['id']} carries no paid payment")
        artifact_id, paid_amount = checkout.id, checkout.paid_amount
    elif event_type in (PAYMENT_PAID_EVENT, PAYMENT_FAILED_EVENT):
        artifact_id = r_attrs.get("payment_intent_id")
        if event_type == PAYMENT_PAID_EVENT and r_attrs.get("amount") is not None:
            paid_amount = int(r_attrs["amount"])
    if artifact_id is not None and not isinstance(artifact_id, str):
        raise WebhookProcessingError(f"Event {data['id']} has an invalid resource id")

    return WebhookEvent(
        event_id=str(data["id"]),
        event_type=str(event_type),
        artifact_id=artifact_id,
        paid_amount=paid_amount,
        metadata=metadata,
        payload=payload,
    )


def _get_event(*, session: Session, event_id: str, for_update: bool = False) -> PaymentWebhookEvent | None:
    stmt = select(PaymentWebhookEvent).where(PaymentWebhookEvent.event_id == event_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.exec(stmt).first()


def _claim_event(*, session: Session, event: WebhookEvent) -> PaymentWebhookEvent | None:
    """
    在当前事务内占用事件记录

    Returns:
        事件记录；事件已处理过（或并发投递已占用）时返回 None
    """
    record = _get_event(session=session, event_id=event.event_id, for_update=True)
    if record is not None:
        if record.status != WebhookEventStatus.failed:
            return None
        record.attempts += 1
        record.status = WebhookEventStatus.received
        record.error = None
        session.add(record)
        return record

    record = PaymentWebhookEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        artifact_id=event.artifact_id,
        payload=event.payload,
        status=WebhookEventStatus.received,
    )
    session.add(record)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        return None
    return record


def _record_failure(*, session: Session, event: WebhookEvent, error: str) -> None:
    """在新事务中把事件记录为 failed；记录本身失败只写日志"""
    try:
        record = _get_event(session=session, event_id=event.event_id, for_update=True)
        if record is None:
            record = PaymentWebhookEvent(
                event_id=event.event_id,
                event_type=event.event_type,
                artifact_id=event.artifact_id,
                payload=event.payload,
                status=WebhookEventStatus.failed,
            )
        else:
            record.attempts += 1
        record.status = WebhookEventStatus.failed
        record.error = error
        record.processed_at = utc_now()
        session.add(record)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Failed to record webhook failure for event %s", event.event_id)


def _process_event(*, session: Session, event: WebhookEvent, record: PaymentWebhookEvent) -> WebhookEventStatus:
    order_id: int | None = None
    if event.event_type in PAID_EVENTS:
        artifact = _resolve_artifact(session=session, artifact_id=event.artifact_id, metadata=event.metadata)
        status, order_id = _apply_paid(session=session, artifact=artifact, paid_amount=event.paid_amount)
    elif event.event_type == PAYMENT_FAILED_EVENT:
        artifact = _resolve_artifact(session=session, artifact_id=event.artifact_id, metadata=event.metadata)
        status = _apply_failed(session=session, artifact=artifact)
    else:
        logger.info("Ignoring webhook event %s of type %s", event.event_id, event.event_type)
        status = WebhookEventStatus.ignored

    record.status = status
    record.processed_at = utc_now()
    session.add(record)
    # 事件记录、支付对象、订单状态在同一事务内提交
    _confirm_order(session=session, order_id=order_id, note=f"Payment confirmed by webhook {event.event_id}")
    return status


def handle_webhook(
    *,
    session: Session,
    raw_body: bytes,
    signature: str | None,
    client: PayMongoClient | None = None,
) -> WebhookAck:
    """
    处理 PayMongo webhook

    Raises:
        InvalidWebhookSignature: 签名校验失败（唯一会返回非 200 的情况）
    """
    client = client or get_paymongo_client()
    if not client.verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected webhook with invalid signature")
        raise InvalidWebhookSignature()

    try:
        payload = json.loads(raw_body)
        if not isinstance(payload, dict):
            raise WebhookProcessingError("Payload is not a JSON object")
        event = parse_event(payload)
    except (ValueError, TypeError, WebhookProcessingError) as exc:
        logger.error("Malformed webhook payload: %s", exc)
        return WebhookAck(accepted=False)

    try:
        record = _claim_event(session=session, event=event)
        if record is None:
            session.rollback()
            logger.info("Duplicate webhook event %s, skipping", event.event_id)
            return WebhookAck(accepted=True, event_id=event.event_id, status="duplicate", duplicate=True)
        status = _process_event(session=session, event=event, record=record)
    except Exception as exc:
        session.rollback()
        logger.exception("Failed to process webhook event %s (%s)", event.event_id, event.event_type)
        _record_failure(session=session, event=event, error=str(exc) or exc.__class__.__name__)
        return WebhookAck(accepted=True, event_id=event.event_id, status=WebhookEventStatus.failed.value)

    logger.info("Webhook event %s (%s) %s", event.event_id, event.event_type, status.value)
    return WebhookAck(accepted=True, event_id=event.event_id, status=status.value)
