"""
支付对账 worker 入口

    python -m app.worker.scheduler

单进程阻塞调度；多实例部署时由任务内的 Redis 锁保证同一时间只有一个实例在对账。
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.worker.tasks import reconcile_payments

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        reconcile_payments,
        IntervalTrigger(minutes=settings.PAYMENT_SWEEP_INTERVAL_MINUTES),
        id="payment_reconcile",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduler started. Payment reconciliation runs every %d minutes.",
        settings.PAYMENT_SWEEP_INTERVAL_MINUTES,
    )
    scheduler.start()


if __name__ == "__main__":
    main()
