"""
基础模型模块

所有表共用的时间函数与列定义。
SQLAlchemy 的 Column 不能在多张表之间共享，这里提供工厂函数，每次调用返回新列。
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Numeric
from sqlmodel import SQLModel

# 金额精度：12 位有效数字，2 位小数（分）
MONEY_PRECISION = 12
MONEY_SCALE = 2


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def id_column() -> Column:
    """Snowflake 主键列（由应用生成，不使用数据库自增）"""
    return Column(BigInteger, primary_key=True, autoincrement=False)


def timestamp_column(*, nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


def money_column(*, nullable: bool = False) -> Column:
    return Column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=nullable)


__all__ = ["SQLModel", "utc_now", "id_column", "timestamp_column", "money_column"]
