"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清理指定标的的历史缓存
"""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from bodiva_service.layers.cache import get_cache_layer
from bodiva_service.models.response import ApiResponse
from bodiva_service.routers.deps import get_current_operator

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    symbols: List[str] = Field(..., min_length=1)


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(operator: dict = Depends(get_current_operator)):
    """获取缓存统计信息（各后端键数量）"""
    stats = await get_cache_layer().stats()
    return ApiResponse.ok(data=stats)


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest, operator: dict = Depends(get_current_operator)):
    symbols = [s.strip().upper() for s in body.symbols if s.strip()]
    await get_cache_layer().invalidate_symbols(symbols)
    return ApiResponse.ok(data=symbols, message=f"缓存已清理: {', '.join(symbols)}")
