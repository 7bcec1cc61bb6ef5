"""
FastAPI 依赖项模块 (FastAPI Dependencies Module)

从 Bearer Token 中解析调用者身份。角色与权限由 Wiki 主站负责，这里只确认令牌有效。

Resolves the caller from the bearer token. Roles and permissions belong to the
wiki; this layer only checks that the token is valid.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_token

# Bearer Token 认证方案 (Bearer Token Authentication Scheme)
security = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> int:
    """
    从请求头中提取并验证 JWT，返回当前用户 ID (Extract and validate JWT, return current user id)
    """
    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
