"""
令牌工具模块 (Token Utilities Module)

EdgeWatch 不管理用户账号，用户由 Wiki 主站负责。这里只负责校验 Wiki 签发的 JWT，
从中取出调用者的用户 ID（用于记录告警确认人）。签发函数供测试和运维脚本使用。

EdgeWatch does not own user accounts; the wiki does. This module only validates
JWTs issued by the wiki and extracts the caller's user id (recorded when an alert
is acknowledged). The signing helper serves tests and operational scripts.
"""
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.core.config import settings


def create_access_token(subject: str) -> str:
    """
    生成访问令牌 (Generate access token)

    Args:
        subject (str): 用户标识，通常是用户 ID (User identifier, usually the user id)

    Returns:
        str: JWT 访问令牌字符串 (JWT access token string)
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return jwt.encode(
        {"sub": subject, "exp": expire, "type": "access"},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm
    )


def decode_token(token: str) -> dict | None:
    """
    解析 JWT 令牌，失败返回 None (Decode JWT token, return None on failure)

    签名无效、格式错误或已过期时返回 None。
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
