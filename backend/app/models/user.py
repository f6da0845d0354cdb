"""
用户模型模块

用户资料由 CRUD 层维护，订单引擎只读取身份与角色。
"""
from datetime import datetime

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id

from .base import id_column, timestamp_column, utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键，使用 Snowflake 算法生成的分布式唯一 ID
    - email: 邮箱（唯一）
    - name: 显示名称
    - is_admin: 是否为管理员（可执行发货、送达、管理员取消等操作）
    - created_at / updated_at: 时间戳
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    email: str = Field(
        max_length=255,
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
    )
    name: str | None = Field(default=None, max_length=128)
    is_admin: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
