"""
优惠码模型模块
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import DiscountType

from .base import id_column, money_column, timestamp_column, utc_now


class PromoCode(SQLModel, table=True):
    """
    优惠码模型

    下单时在同一事务内加锁读取并累加 used_count，保证 usage_limit 不会被并发突破。

    字段说明：
    - code: 优惠码（大写，唯一）
    - discount_type: percentage（按小计百分比）/ fixed（固定金额）
    - discount_value: 百分比数值或固定金额
    - starts_at / ends_at: 有效期（为空表示不限）
    - usage_limit: 最大使用次数（为空表示不限）
    - used_count: 已使用次数
    """
    __tablename__ = "promo_codes"
    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    code: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    discount_type: DiscountType = Field(sa_column=Column(String(16), nullable=False))
    discount_value: Decimal = Field(sa_column=money_column())
    starts_at: datetime | None = Field(
        default=None, sa_column=timestamp_column(nullable=True)
    )
    ends_at: datetime | None = Field(
        default=None, sa_column=timestamp_column(nullable=True)
    )
    is_active: bool = Field(default=True)
    usage_limit: int | None = Field(default=None)
    used_count: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
