"""优惠码 CRUD 操作"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlmodel import Session, select

from app.api.errors import InvalidPromoCode
from app.enums import DiscountType
from app.models import PromoCode, utc_now

CENT = Decimal("0.01")


def _aware(value: datetime | None) -> datetime | None:
    # SQLite 取回的时间没有时区信息
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_promo_for_update(*, session: Session, code: str) -> PromoCode | None:
    """按优惠码加锁读取（不区分大小写，统一大写存储）"""
    stmt = select(PromoCode).where(PromoCode.code == code.strip().upper()).with_for_update()
    return session.exec(stmt).first()


def is_redeemable(promo: PromoCode, *, now: datetime | None = None) -> bool:
    now = now or utc_now()
    starts_at = _aware(promo.starts_at)
    ends_at = _aware(promo.ends_at)
    if not promo.is_active:
        return False
    if starts_at is not None and now < starts_at:
        return False
    if ends_at is not None and now > ends_at:
        return False
    if promo.usage_limit is not None and promo.used_count >= promo.usage_limit:
        return False
    return True


def compute_discount(promo: PromoCode, subtotal: Decimal) -> Decimal:
    """计算折扣金额：百分比按小计四舍五入到分，固定金额不超过小计"""
    value = Decimal(promo.discount_value)
    if promo.discount_type == DiscountType.percentage:
        discount = (subtotal * value / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        discount = value.quantize(CENT, rounding=ROUND_HALF_UP)
    return min(discount, subtotal)


def redeem(*, session: Session, code: str, subtotal: Decimal) -> tuple[PromoCode, Decimal]:
    """
    在当前事务内核销优惠码

    Returns:
        (优惠码, 折扣金额)

    Raises:
        InvalidPromoCode: 优惠码不存在、未生效、已过期或已达使用上限
    """
    promo = get_promo_for_update(session=session, code=code)
    if promo is None or not is_redeemable(promo):
        raise InvalidPromoCode(code)

    promo.used_count += 1
    promo.updated_at = utc_now()
    session.add(promo)
    return promo, compute_discount(promo, subtotal)
