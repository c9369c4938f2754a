"""
行情同步路由（需要操作员令牌）
POST /api/sync          - 自动同步（多策略回退）
POST /api/sync/cancel   - 取消正在运行的自动同步
POST /api/sync/upload   - 手动上传表格文件
POST /api/sync/paste    - 粘贴网页表格文本
POST /api/sync/seed     - 生成演示历史数据
"""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from bodiva_service.models.response import ApiResponse
from bodiva_service.routers.deps import get_current_operator
from bodiva_service.services.sync_service import get_sync_service

router = APIRouter(prefix="/api/sync", tags=["行情同步"])


# ── 请求模型 ──────────────────────────────────────────────

class SyncRequest(BaseModel):
    date: Optional[dt.date] = None


class PasteRequest(BaseModel):
    text: str = Field(..., min_length=1)
    date: Optional[dt.date] = None


class SeedRequest(BaseModel):
    days: int = Field(default=30, ge=1, le=365)


# ── 路由处理器 ────────────────────────────────────────────

@router.post("", response_model=ApiResponse)
async def sync_from_source(
    body: Optional[SyncRequest] = None,
    operator: dict = Depends(get_current_operator),
):
    """
    从交易所下载当日行情文件并导入

    所有策略失败时返回 503，响应中包含手动下载地址与上传接口。
    """
    day = body.date if body else None
    result = await get_sync_service().sync_from_source(day)
    return ApiResponse.ok(
        data=jsonable_encoder(result),
        message=f"同步完成（{result.strategy}），写入 {result.count} 条记录",
    )


@router.post("/cancel", response_model=ApiResponse)
async def cancel_sync(operator: dict = Depends(get_current_operator)):
    """取消正在运行的自动同步；被取消的同步请求返回 409"""
    cancelled = get_sync_service().cancel_sync()
    return ApiResponse.ok(
        data={"cancelled": cancelled},
        message="已请求取消同步" if cancelled else "当前没有运行中的同步",
    )


@router.post("/upload", response_model=ApiResponse)
async def upload_spreadsheet(
    file: UploadFile = File(...),
    date: Optional[dt.date] = Form(default=None),
    operator: dict = Depends(get_current_operator),
):
    """上传从交易所网站手动下载的 .xlsx / .xls 文件"""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="上传文件为空")
    result = await get_sync_service().upload_manual(content, date)
    return ApiResponse.ok(
        data=jsonable_encoder(result),
        message=f"导入完成，写入 {result.count} 条记录",
    )


@router.post("/paste", response_model=ApiResponse)
async def paste_text(body: PasteRequest, operator: dict = Depends(get_current_operator)):
    result = await get_sync_service().import_text(body.text, body.date)
    return ApiResponse.ok(
        data=jsonable_encoder(result),
        message=f"导入完成，写入 {result.count} 条记录",
    )


@router.post("/seed", response_model=ApiResponse)
async def seed_demo(
    body: Optional[SeedRequest] = None,
    operator: dict = Depends(get_current_operator),
):
    """生成演示历史数据，便于在没有真实数据时查看图表"""
    days = body.days if body else 30
    result = await get_sync_service().seed_demo_history(days)
    return ApiResponse.ok(
        data=jsonable_encoder(result),
        message=f"已生成 {days} 天演示数据（{result.count} 条）",
    )
