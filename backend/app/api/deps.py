"""
FastAPI 依赖注入模块

- SessionDep: 每个请求一个数据库会话，请求结束时关闭
- CurrentUser: 从 Bearer token 解析出的当前用户（sub 为用户 ID）
- AdminUser: 当前用户且必须是管理员（修改订单状态）

令牌由上游认证服务签发，这里只做校验。
"""
from collections.abc import Generator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from app.api.schemas import TokenPayload
from app.core import security
from app.core.config import settings
from app.core.db import engine
from app.models import User

reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """数据库会话；下单、状态变更等服务函数自行提交或回滚"""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _user_id_from_token(token: str) -> int:
    """
    解析令牌中的用户 ID

    Raises:
        HTTPException(401): 签名错误、已过期、缺少 sub 或 sub 不是整数
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[security.ALGORITHM])
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise _unauthorized()
    if not token_data.sub:
        raise _unauthorized()
    try:
        return int(token_data.sub)
    except ValueError:
        raise _unauthorized()


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    user = session.get(User, _user_id_from_token(token.credentials))
    if not user:
        raise _unauthorized("User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_current_admin(current_user: CurrentUser) -> User:
    """非管理员返回 403"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The user doesn't have enough privileges",
        )
    return current_user


AdminUser = Annotated[User, Depends(get_current_admin)]
