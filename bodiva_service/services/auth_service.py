"""
认证服务
仅校验由外部身份服务签发的 JWT，本服务不签发令牌、不保存用户
"""

import logging
from typing import List, Optional

import jwt
from pydantic import BaseModel, Field

from bodiva_service.config import settings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    sub: str
    exp: Optional[int] = None
    roles: List[str] = Field(default_factory=list)


def verify_token(token: str) -> Optional[TokenPayload]:
    """校验签名与过期时间，失败返回 None"""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub"]},
        )
        return TokenPayload(
            sub=str(payload["sub"]),
            exp=int(payload["exp"]) if "exp" in payload else None,
            roles=list(payload.get("roles") or []),
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Token 已过期")
    except jwt.InvalidTokenError as exc:
        logger.debug(f"Token 无效: {exc}")
    return None
