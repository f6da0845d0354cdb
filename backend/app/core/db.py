"""
数据库连接模块

管理数据库引擎和会话的创建。

重要提示：
- 数据库表结构通过 Alembic 迁移管理，不要在这里创建表
- 确保在使用前导入所有模型（app.models）
"""
import logging
from decimal import Decimal

from sqlmodel import Session, create_engine, select

from app.core.config import settings
from app.enums import DiscountType
from app.models import PromoCode

logger = logging.getLogger(__name__)

# 创建数据库引擎（连接池）
# pool_pre_ping: 取连接前先探活，避免数据库重启后拿到失效连接
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


# 上线时预置的优惠码
DEFAULT_PROMO_CODES = [
    {"code": "WELCOME10", "discount_type": DiscountType.percentage, "discount_value": Decimal("10")},
    {"code": "SAVE50", "discount_type": DiscountType.fixed, "discount_value": Decimal("50")},
]


def init_db(session: Session) -> None:
    """
    写入种子数据（可重复执行，已存在的优惠码不会被覆盖）

    Args:
        session: 数据库会话
    """
    for seed in DEFAULT_PROMO_CODES:
        exists = session.exec(select(PromoCode).where(PromoCode.code == seed["code"])).first()
        if exists:
            continue
        session.add(PromoCode(**seed))
        logger.info("Seeded promo code %s", seed["code"])
    session.commit()
