"""
行情记录维护路由（需要操作员令牌）
POST   /api/records              - 单条录入 / 覆盖
DELETE /api/records/day/{date}   - 删除整个交易日
DELETE /api/records/{record_id}  - 删除单条记录
"""

import datetime as dt

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from bodiva_service.models.market import ManualEntry
from bodiva_service.models.response import ApiResponse
from bodiva_service.routers.deps import get_current_operator
from bodiva_service.services.sync_service import get_sync_service

router = APIRouter(prefix="/api/records", tags=["行情维护"])


@router.post("", response_model=ApiResponse)
async def create_record(body: ManualEntry, operator: dict = Depends(get_current_operator)):
    """数值字段按区域格式解析（如 "1.234,56"），(date, symbol) 已存在时整体覆盖"""
    record = await get_sync_service().create_record(body)
    return ApiResponse.ok(data=jsonable_encoder(record), message=f"已保存 {record.symbol}")


@router.delete("/day/{date}", response_model=ApiResponse)
async def delete_day(date: dt.date, operator: dict = Depends(get_current_operator)):
    deleted = await get_sync_service().delete_day(date)
    return ApiResponse.ok(
        data={"date": date.isoformat(), "deleted": deleted},
        message=f"已删除 {date} 的 {deleted} 条记录",
    )


@router.delete("/{record_id}", response_model=ApiResponse)
async def delete_record(record_id: str, operator: dict = Depends(get_current_operator)):
    record = await get_sync_service().delete_record(record_id)
    return ApiResponse.ok(data=jsonable_encoder(record), message="记录已删除")
