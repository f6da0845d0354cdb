"""
测试启动前检查脚本

CI 中针对 PostgreSQL 运行集成测试前：等待数据库就绪，并确认迁移已经执行。
"""
import logging

from sqlalchemy import Engine, inspect
from sqlmodel import Session, select
from tenacity import after_log, before_log, retry, stop_after_attempt, wait_fixed

from app.core.db import engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5
wait_seconds = 1

REQUIRED_TABLES = (
    "users",
    "products",
    "orders",
    "order_status_history",
    "promo_codes",
    "payment_artifacts",
    "payment_webhook_events",
    "notifications",
)


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(db_engine: Engine) -> None:
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


def check_schema(db_engine: Engine) -> None:
    """缺表说明 alembic upgrade head 没有执行"""
    existing = set(inspect(db_engine).get_table_names())
    missing = [name for name in REQUIRED_TABLES if name not in existing]
    if missing:
        raise RuntimeError(f"Missing tables: {', '.join(missing)}. Run `alembic upgrade head` first.")


def main() -> None:
    logger.info("Waiting for test database")
    init(engine)
    check_schema(engine)
    logger.info("Test database is ready")


if __name__ == "__main__":  # pragma: no cover
    main()
