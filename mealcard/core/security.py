"""
安全相关功能
JWT 令牌签发与校验，以及按角色鉴权的 FastAPI 依赖
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from ..config.settings import settings
from ..models.account import UserRole
from .exceptions import AuthenticationError, PermissionDeniedError


class CurrentUser(BaseModel):
    """令牌中携带的调用方身份"""
    user_id: int
    role: UserRole


class SecurityManager:
    """安全管理器"""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None,
                 expire_hours: Optional[int] = None):
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.expire_hours = expire_hours or settings.jwt_expire_hours

    def create_jwt_token(self, user_id: int, role: UserRole,
                         additional_claims: Dict[str, Any] = None) -> str:
        """创建JWT token，sub 为用户ID"""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "role": UserRole(role).value,
            "iat": now,
            "exp": now + timedelta(hours=self.expire_hours),
        }
        if additional_claims:
            payload.update(additional_claims)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_jwt_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    def get_user_from_token(self, token: str) -> CurrentUser:
        payload = self.decode_jwt_token(token)
        try:
            return CurrentUser(user_id=int(payload["sub"]), role=payload["role"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Token missing subject or role")


# 全局安全管理器实例
security_manager = SecurityManager()

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, role: UserRole) -> str:
    return security_manager.create_jwt_token(user_id, role)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> CurrentUser:
    """从 Authorization header 中解析调用方身份"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer token")
    return security_manager.get_user_from_token(credentials.credentials)


def require_role(*roles: UserRole) -> Callable:
    """生成只允许指定角色访问的依赖"""
    allowed = {UserRole(r).value for r in roles}

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if UserRole(user.role).value not in allowed:
            raise PermissionDeniedError(
                "当前角色无权访问", details={"role": UserRole(user.role).value}
            )
        return user

    return checker


require_student = require_role(UserRole.STUDENT)
require_restaurant = require_role(UserRole.RESTAURANT)
require_admin = require_role(UserRole.SUPER_ADMIN)
