"""
FastAPI 应用主入口

- Sentry（非本地环境且配置了 SENTRY_DSN 时启用）
- 统一响应格式 {"code", "message", "data"} 的异常处理器
- CORS
- /api/v1 路由

运行方式：
    uvicorn app.main:app --reload
    fastapi dev app/main.py
"""
import logging
from typing import Any

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from app.api.errors import AppError
from app.api.main import api_router
from app.core.config import settings

logger = logging.getLogger(__name__)


def custom_generate_unique_id(route: APIRoute) -> str:
    """OpenAPI 操作 ID：{tag}-{route_name}，例如 orders-create_order"""
    return f"{route.tags[0]}-{route.name}"


if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
)


def _envelope(status_code: int, code: Any, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "data": data},
    )


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    """
    业务异常（库存不足、非法状态变更、网关错误等）

    message 对客户端可见；网关原始错误只在抛出处写日志，不会出现在这里。
    """
    if exc.status_code >= 500:
        logger.error("Request failed with %s: %s", exc.code, exc.message)
    return _envelope(exc.status_code, exc.code, exc.message)


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    HTTPException（认证失败、权限不足等）

    detail 为 {"code", "message"} 时原样使用，否则错误码为 状态码 * 1000（如 401000）。
    """
    if isinstance(exc.detail, dict) and {"code", "message"} <= set(exc.detail.keys()):
        return _envelope(exc.status_code, exc.detail.get("code"), str(exc.detail.get("message")))
    return _envelope(exc.status_code, exc.status_code * 1000, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体/参数校验失败（422），data.errors 为字段级错误列表"""
    # 错误中可能包含 Decimal 等无法直接序列化的值
    return _envelope(422, 422000, "Validation error", {"errors": jsonable_encoder(exc.errors())})


if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(api_router, prefix=settings.API_V1_STR)
