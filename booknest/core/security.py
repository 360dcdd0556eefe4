"""身份认证（外部身份提供方的最小适配）

注册、OTP 邮箱验证等流程不在本服务内，这里只负责把 Bearer JWT
解析为 UserIdentity。
"""

from dataclasses import dataclass
from typing import Optional

import jwt
from jwt.exceptions import PyJWTError

from booknest.core.exceptions import AuthenticationFailed


@dataclass(frozen=True)
class UserIdentity:
    id: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class IdentityProvider:
    """基于 HS256 共享密钥的 JWT 身份提供方"""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def authenticate(self, token: str) -> UserIdentity:
        try:
            # 算法固定为配置值，不信任 token 头部
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except PyJWTError:
            raise AuthenticationFailed("Not authorized, token failed")

        user_id = payload.get("id") or payload.get("sub")
        if not user_id:
            raise AuthenticationFailed("Not authorized, token failed")

        return UserIdentity(
            id=str(user_id),
            email=payload.get("email"),
            role=payload.get("role", "user"),
        )

    def current_user(self, authorization: Optional[str]) -> UserIdentity:
        """从 Authorization 请求头解析当前用户"""
        if not authorization:
            raise AuthenticationFailed("Not authorized, no token")

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise AuthenticationFailed("Not authorized, no token")

        return self.authenticate(token.strip())

    def issue_token(self, user_id: str, email: str = None, role: str = "user") -> str:
        """签发令牌"""
        payload = {"id": user_id, "role": role}
        if email:
            payload["email"] = email
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)
