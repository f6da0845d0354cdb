"""
Redis 客户端

只承担一件事：支付对账任务的分布式锁，保证多个 worker 实例同一时刻只有一个在跑。
锁使用 SET NX EX 获取，释放时用 Lua 脚本校验持有者，避免误删其他实例在锁过期后重新获取的锁。
"""
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

import redis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisClient:
    """
    Redis 锁客户端

    Redis 不可用时所有操作都返回 False 而不是抛出：对账任务拿不到锁就跳过本轮，
    下一轮再试。
    """

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
        connection: redis.Redis | None = None,
    ) -> None:
        """
        Args:
            connection: 已创建的 redis 连接（测试时注入替身）
        """
        self.host = host
        self.port = port
        self.client = connection or redis.Redis(
            host=host, port=port, db=db, password=password, decode_responses=True
        )

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except Exception as e:
            logger.error("Redis ping %s:%s failed: %s", self.host, self.port, e)
            return False

    def acquire_lock(self, key: str, token: str, *, ttl_seconds: int) -> bool:
        try:
            return bool(self.client.set(key, token, ex=ttl_seconds, nx=True))
        except Exception as e:
            logger.error("Failed to acquire lock %s: %s", key, e)
            return False

    def release_lock(self, key: str, token: str) -> bool:
        """只有 token 与当前持有者一致时才删除"""
        try:
            return self.client.eval(_RELEASE_SCRIPT, 1, key, token) == 1
        except Exception as e:
            logger.error("Failed to release lock %s: %s", key, e)
            return False

    @contextmanager
    def hold_lock(self, key: str, *, ttl_seconds: int) -> Iterator[bool]:
        """
        持有锁执行一段代码

            with client.hold_lock("payments:reconcile:lock", ttl_seconds=600) as acquired:
                if acquired:
                    ...

        ttl_seconds 应大于任务的最长执行时间，进程崩溃时锁会自动过期。
        """
        token = uuid4().hex
        acquired = self.acquire_lock(key, token, ttl_seconds=ttl_seconds)
        try:
            yield acquired
        finally:
            if acquired and not self.release_lock(key, token):
                logger.warning("Lock %s expired before release", key)

    def close(self) -> None:
        try:
            self.client.close()
        except Exception as e:
            logger.error("Failed to close Redis client: %s", e)


_redis_client: RedisClient | None = None


def get_redis_client() -> RedisClient:
    """全局 Redis 客户端，首次调用时按配置创建（创建时不建立连接）"""
    global _redis_client
    if _redis_client is None:
        from app.core.config import settings

        _redis_client = RedisClient(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
        )
        logger.info("Redis client initialized: %s:%s/%s", settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)
    return _redis_client
