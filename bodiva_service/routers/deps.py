"""路由公共依赖：从 Bearer Token 解析当前操作员"""

from typing import Optional

from fastapi import Header, HTTPException, status

from bodiva_service.services.auth_service import verify_token


async def get_current_operator(
    authorization: Optional[str] = Header(default=None),
) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="未提供认证令牌")
    token_data = verify_token(authorization[7:])
    if token_data is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="令牌无效或已过期")
    return {"operator": token_data.sub, "roles": token_data.roles}
