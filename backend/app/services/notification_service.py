"""
通知服务

订单创建、状态变更后向用户写入一条通知。
通知是尽力而为的：调用方已经提交了订单事务，这里的任何失败都只记录日志，不向上抛出。
"""
import logging

from sqlmodel import Session

from app.models import Notification

logger = logging.getLogger(__name__)


def notify(*, session: Session, user_id: int, title: str, message: str) -> Notification | None:
    """
    写入用户通知（独立提交）

    Returns:
        写入成功返回通知记录，失败返回 None
    """
    try:
        notification = Notification(user_id=user_id, title=title, message=message)
        session.add(notification)
        session.commit()
        session.refresh(notification)
        return notification
    except Exception:
        session.rollback()
        logger.exception("Failed to create notification for user %s: %s", user_id, title)
        return None
