"""
工具路由模块

提供系统工具类的 API 端点，如健康检查等。
"""
import logging

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from app.api.deps import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
def health_check(session: SessionDep) -> bool:
    """
    健康检查端点

    执行一次 SELECT 1 确认数据库可用，下单与支付回调都依赖数据库。

    请求路径: GET /api/v1/utils/health-check/

    Returns:
        bool: 服务正常时返回 True；数据库不可用时返回 503
    """
    try:
        session.exec(select(1))
    except Exception as e:
        logger.error("Health check failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from e
    return True
