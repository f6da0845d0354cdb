"""
库存账本

所有库存变更都在这里完成，且都是单条条件 UPDATE：
数据库在 UPDATE 时持有行锁直到事务结束，因此并发扣减不会超卖。
不要在应用层读出 stock、计算后再写回。

多商品订单按商品 ID 升序扣减/归还，避免两个订单以相反顺序锁同一批商品造成死锁。

条件 UPDATE 不同步会话中已加载的 Product 对象，事务结束后它们会过期并重新加载。
"""
import logging
from collections.abc import Iterable

from sqlalchemy import case, update
from sqlmodel import Session, select

from app.api.errors import OutOfStock, ValidationError
from app.models import Product, utc_now

logger = logging.getLogger(__name__)


def _aggregate(lines: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """合并同一商品的数量，并按商品 ID 升序返回"""
    totals: dict[int, int] = {}
    for product_id, quantity in lines:
        if quantity <= 0:
            raise ValidationError(f"Quantity for product {product_id} must be positive")
        totals[product_id] = totals.get(product_id, 0) + quantity
    return sorted(totals.items())


def reserve(*, session: Session, product_id: int, quantity: int) -> int:
    """
    预留库存：stock -= quantity, sold += quantity（仅当 stock >= quantity）

    Returns:
        扣减后的剩余库存

    Raises:
        OutOfStock: 库存不足（或商品不存在），本次调用不产生任何变更
    """
    if quantity <= 0:
        raise ValidationError(f"Quantity for product {product_id} must be positive")

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(
            stock=Product.stock - quantity,
            sold=Product.sold + quantity,
            updated_at=utc_now(),
        )
        .returning(Product.stock)
        .execution_options(synchronize_session=False)
    )
    remaining = session.exec(stmt).scalar_one_or_none()  # type: ignore[call-overload]
    if remaining is None:
        # 只用于错误提示，不参与判断
        row = session.exec(select(Product.name, Product.stock).where(Product.id == product_id)).first()
        name, available = (row[0], row[1]) if row else (None, None)
        raise OutOfStock(product_id=product_id, name=name, available=available, requested=quantity)

    if remaining == 0:
        logger.info("Product %s is now out of stock", product_id)
    return int(remaining)


def reserve_many(*, session: Session, lines: Iterable[tuple[int, int]]) -> dict[int, int]:
    """按商品 ID 升序预留多行库存，返回 {product_id: 剩余库存}"""
    return {
        product_id: reserve(session=session, product_id=product_id, quantity=quantity)
        for product_id, quantity in _aggregate(lines)
    }


def restore(*, session: Session, product_id: int, quantity: int) -> None:
    """
    归还库存：stock += quantity, sold -= quantity（sold 不会低于 0）

    只用于取消订单的补偿，从不抛出 OutOfStock。
    """
    if quantity <= 0:
        raise ValidationError(f"Quantity for product {product_id} must be positive")

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            stock=Product.stock + quantity,
            sold=case((Product.sold >= quantity, Product.sold - quantity), else_=0),
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    if result.rowcount == 0:
        logger.warning(
            "Product %s no longer exists, skipped restoring %s units", product_id, quantity
        )


def restore_many(*, session: Session, lines: Iterable[tuple[int, int]]) -> None:
    """按商品 ID 升序归还多行库存"""
    for product_id, quantity in _aggregate(lines):
        restore(session=session, product_id=product_id, quantity=quantity)
