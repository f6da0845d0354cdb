"""
支付模型模块

定义网关支付对象（checkout session / payment intent）与 webhook 事件记录。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, ForeignKey, String, Text
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import PaymentArtifactKind, PaymentArtifactStatus, WebhookEventStatus

from .base import id_column, money_column, timestamp_column, utc_now


class PaymentArtifact(SQLModel, table=True):
    """
    网关支付对象记录

    远端对象才是权威数据，这里只保存与订单的关联（artifact_id -> order_id），
    供 webhook 和对账任务查找。

    字段说明：
    - artifact_id: 网关返回的对象 ID（cs_... / pi_...）
    - order_id: 关联订单
    - kind: checkout_session / payment_intent
    - status: awaiting_payment / paid / failed
    - amount / currency: 创建时请求的金额
    - checkout_url: 客户端跳转地址（checkout session）
    - client_key: 客户端密钥（payment intent）
    """
    __tablename__ = "payment_artifacts"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    artifact_id: str = Field(
        sa_column=Column(String(128), unique=True, index=True, nullable=False)
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    kind: PaymentArtifactKind = Field(sa_column=Column(String(32), nullable=False))
    status: PaymentArtifactStatus = Field(
        sa_column=Column(String(32), index=True, nullable=False)
    )
    amount: Decimal = Field(sa_column=money_column())
    currency: str = Field(default="PHP", max_length=8)
    checkout_url: str | None = Field(default=None, max_length=1024)
    client_key: str | None = Field(default=None, max_length=255)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
    paid_at: datetime | None = Field(
        default=None, sa_column=timestamp_column(nullable=True)
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )


class PaymentWebhookEvent(SQLModel, table=True):
    """
    支付网关 Webhook 事件记录

    通过 event_id 唯一性防止重复处理同一事件；processed / ignored 的事件再次投递时直接确认，
    failed 的事件会被重新处理。
    """
    __tablename__ = "payment_webhook_events"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    event_id: str = Field(sa_column=Column(String(128), unique=True, index=True, nullable=False))
    event_type: str = Field(max_length=64)
    artifact_id: str | None = Field(default=None, max_length=128)
    payload: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    status: WebhookEventStatus = Field(sa_column=Column(String(16), nullable=False))
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    attempts: int = Field(default=1)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
    processed_at: datetime | None = Field(
        default=None, sa_column=timestamp_column(nullable=True)
    )
