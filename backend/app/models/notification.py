"""
通知模型模块
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, ForeignKey, String, Text
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id

from .base import id_column, timestamp_column, utc_now


class Notification(SQLModel, table=True):
    """
    用户通知

    订单创建、状态变更时写入，写入失败不影响订单本身。
    """
    __tablename__ = "notifications"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    title: str = Field(sa_column=Column(String(255), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    is_read: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
