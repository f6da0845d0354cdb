"""
JWT 令牌工具

登录与令牌签发由上游认证服务负责，这里只保留签名算法和签发函数，
供依赖注入解析令牌、以及测试/运维脚本生成令牌使用。
"""
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    """签发访问令牌，sub 为用户 ID"""
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt
