"""
应用启动前检查脚本

等待数据库和 Redis 就绪后再启动 API 与对账 worker。
主要用于 Docker Compose 环境，数据库容器可能还在初始化。
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session, select
from tenacity import after_log, before_log, retry, stop_after_attempt, wait_fixed

from app.core.db import engine
from app.core.redis_client import RedisClient, get_redis_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 5 分钟，每秒一次
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(db_engine: Engine) -> None:
    """执行 select 1，失败时由 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def wait_redis(client: RedisClient) -> None:
    # 对账任务依赖 Redis 锁
    if not client.ping():
        raise RuntimeError(f"Redis {client.host}:{client.port} is not ready")


def main() -> None:
    logger.info("Initializing service")
    init(engine)
    wait_redis(get_redis_client())
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
