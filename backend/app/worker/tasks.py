"""
定时任务逻辑
"""

import logging
from datetime import timedelta

from sqlmodel import Session

from app.core.config import settings
from app.core.db import engine
from app.core.redis_client import get_redis_client
from app.services.payment_service import reconcile_pending_artifacts

logger = logging.getLogger(__name__)

RECONCILE_LOCK_KEY = "payments:reconcile:lock"
RECONCILE_LOCK_TTL_SECONDS = 60 * 10


def reconcile_payments() -> int:
    """
    支付对账

    webhook 丢失或处理失败时，主动向网关查询超过宽限期仍未支付的支付对象，
    已支付的按 webhook 相同逻辑确认订单。多个 worker 实例通过 Redis 锁互斥。

    Returns:
        本次确认为已支付的数量（未获取到锁时为 0）
    """
    with get_redis_client().hold_lock(
        RECONCILE_LOCK_KEY, ttl_seconds=RECONCILE_LOCK_TTL_SECONDS
    ) as acquired:
        if not acquired:
            logger.info("Payment reconciliation already running, skip this run.")
            return 0

        with Session(engine) as session:
            paid = reconcile_pending_artifacts(
                session=session,
                older_than=timedelta(minutes=settings.PAYMENT_SWEEP_GRACE_MINUTES),
            )
        logger.info("Payment reconciliation finished: paid=%d", paid)
        return paid
