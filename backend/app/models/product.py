"""
商品模型模块

订单引擎只关心库存相关字段（stock / sold）和下单时的价格快照来源。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, Integer, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id

from .base import id_column, money_column, timestamp_column, utc_now


class Product(SQLModel, table=True):
    """
    商品模型

    库存约束 stock >= 0 同时由数据库 CHECK 约束和库存账本的条件更新保证。

    字段说明：
    - price: 标价
    - discount_price: 折扣价（设置后按折扣价下单）
    - stock: 可售库存
    - sold: 累计售出数量
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=id_column(),
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))
    price: Decimal = Field(sa_column=money_column())
    discount_price: Decimal | None = Field(
        default=None, sa_column=money_column(nullable=True)
    )
    stock: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    sold: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=timestamp_column(),
    )

    @property
    def unit_price(self) -> Decimal:
        """下单时实际使用的单价"""
        if self.discount_price is not None:
            return Decimal(self.discount_price)
        return Decimal(self.price)
