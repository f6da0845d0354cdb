"""
支付路由模块

- 为订单创建 PayMongo Checkout Session / Payment Intent
- 查询（并向网关刷新）支付状态
- 接收 PayMongo webhook
"""
from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from app.api.deps import CurrentUser, SessionDep
from app.api.schemas import (
    ApiEnvelope,
    CheckoutCreateRequest,
    PaymentArtifactData,
    PaymentIntentCreateRequest,
    WebhookAckData,
)
from app.integrations.paymongo import PayMongoClient, get_paymongo_client
from app.models import PaymentArtifact
from app.services import payment_service

router = APIRouter(prefix="/payments", tags=["payments"])

PayMongoDep = Annotated[PayMongoClient, Depends(get_paymongo_client)]


async def get_raw_body(request: Request) -> bytes:
    """签名基于原始请求体计算，不能先解析成 JSON"""
    return await request.body()


RawBodyDep = Annotated[bytes, Depends(get_raw_body)]


def _to_artifact_data(artifact: PaymentArtifact) -> PaymentArtifactData:
    return PaymentArtifactData(
        artifact_id=artifact.artifact_id,
        order_id=artifact.order_id,
        kind=artifact.kind,
        status=artifact.status,
        amount=artifact.amount,
        currency=artifact.currency,
        checkout_url=artifact.checkout_url,
        client_key=artifact.client_key,
        paid_at=artifact.paid_at,
        created_at=artifact.created_at,
    )


@router.post("/checkout", response_model=ApiEnvelope)
def create_checkout(
    session: SessionDep,
    current_user: CurrentUser,
    client: PayMongoDep,
    body: CheckoutCreateRequest,
) -> ApiEnvelope:
    """
    创建 Checkout Session

    请求路径: POST /api/v1/payments/checkout

    网关不可用时返回 502，订单状态不变。
    """
    artifact = payment_service.create_checkout(
        session=session,
        order_id=body.order_id,
        user_id=current_user.id,
        customer=body.customer.model_dump() if body.customer else None,
        client=client,
    )
    return ApiEnvelope(data=_to_artifact_data(artifact))


@router.post("/intent", response_model=ApiEnvelope)
def create_payment_intent(
    session: SessionDep,
    current_user: CurrentUser,
    client: PayMongoDep,
    body: PaymentIntentCreateRequest,
) -> ApiEnvelope:
    """
    创建 Payment Intent

    请求路径: POST /api/v1/payments/intent
    """
    artifact = payment_service.create_payment_intent(
        session=session, order_id=body.order_id, user_id=current_user.id, client=client
    )
    return ApiEnvelope(data=_to_artifact_data(artifact))


@router.get("/checkout/{artifact_id}", response_model=ApiEnvelope)
def get_checkout_status(
    session: SessionDep,
    current_user: CurrentUser,
    client: PayMongoDep,
    artifact_id: str,
) -> ApiEnvelope:
    """
    查询支付状态（未支付时向网关刷新）

    请求路径: GET /api/v1/payments/checkout/{artifact_id}
    """
    artifact = payment_service.get_artifact_for_user(
        session=session, artifact_id=artifact_id, user_id=current_user.id
    )
    artifact = payment_service.sync_artifact(session=session, artifact=artifact, client=client)
    return ApiEnvelope(data=_to_artifact_data(artifact))


@router.post("/webhook", response_model=ApiEnvelope)
def webhook(
    session: SessionDep,
    client: PayMongoDep,
    raw_body: RawBodyDep,
    paymongo_signature: str | None = Header(default=None),
) -> ApiEnvelope:
    """
    PayMongo webhook

    请求路径: POST /api/v1/payments/webhook

    签名校验失败返回 401；其余情况（包括内部处理失败）一律返回 200。
    """
    ack = payment_service.handle_webhook(
        session=session, raw_body=raw_body, signature=paymongo_signature, client=client
    )
    return ApiEnvelope(
        data=WebhookAckData(
            accepted=ack.accepted, event_id=ack.event_id, status=ack.status, duplicate=ack.duplicate
        )
    )
