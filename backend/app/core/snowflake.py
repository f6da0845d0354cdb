"""
Snowflake ID 生成器

所有表的主键都由这里生成（BIGINT），不依赖数据库序列，写入前即可拿到 ID，
订单、状态历史、支付记录可以在同一个 flush 中互相引用。

ID 结构（63 位有效）：
- 41 位：距 _EPOCH_MS 的毫秒数
- 10 位：节点 ID（SNOWFLAKE_NODE_ID，0-1023，多实例部署时必须不同）
- 12 位：同一毫秒内的序列号
"""
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

from app.core.config import settings

# 2024-01-01T00:00:00Z
_EPOCH_MS = 1704067200000
_NODE_BITS = 10
_SEQ_BITS = 12
_MAX_NODE = (1 << _NODE_BITS) - 1
_SEQ_MASK = (1 << _SEQ_BITS) - 1
# 可容忍的时钟回拨（毫秒），超过则拒绝生成
_MAX_BACKWARD_MS = 5000


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _wait_until(target_ms: int) -> int:
    ts = _now_ms()
    while ts < target_ms:
        time.sleep(0.001)
        ts = _now_ms()
    return ts


class Snowflake:
    """线程安全的 Snowflake 生成器；下单并发发生在同一进程的多个工作线程中"""

    def __init__(self, *, node_id: int) -> None:
        if not 0 <= node_id <= _MAX_NODE:
            raise ValueError(f"SNOWFLAKE_NODE_ID must be in [0, {_MAX_NODE}]")
        self.node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    def next_id(self) -> int:
        """
        生成下一个 ID

        Raises:
            RuntimeError: 时钟回拨超过 _MAX_BACKWARD_MS
        """
        with self._lock:
            ts = _now_ms()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARD_MS:
                    raise RuntimeError(f"Clock moved backwards by {drift}ms, refusing to generate IDs")
                ts = _wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & _SEQ_MASK
                if self._seq == 0:
                    # 本毫秒序列号用完
                    ts = _wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << (_NODE_BITS + _SEQ_BITS)) | (self.node_id << _SEQ_BITS) | self._seq


def id_created_at(snowflake_id: int) -> datetime:
    """从 ID 中取回生成时间（UTC），排查问题时用于定位订单创建时间"""
    ms = (snowflake_id >> (_NODE_BITS + _SEQ_BITS)) + _EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


_generator: Snowflake | None = None
_generator_lock = threading.Lock()


def _get_generator() -> Snowflake:
    # 两个线程各自创建生成器会在同一毫秒产生相同的 ID
    global _generator
    if _generator is None:
        with _generator_lock:
            if _generator is None:
                _generator = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _generator


def generate_id() -> int:
    """生成全局唯一 ID（SQLModel 主键的 default_factory）"""
    return _get_generator().next_id()
