"""统一 API 响应模型"""

from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ApiResponse(BaseModel):
    """标准 API 响应封装，错误响应的 error 字段为机器可读的错误代码"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed", data: Any = None) -> "ApiResponse":
        return cls(success=False, error=error, message=message, data=data)

    def to_response(self, status_code: int) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=self.model_dump(mode="json"))
