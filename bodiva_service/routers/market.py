"""
行情查询路由
GET /api/market/records         - 行情记录列表
GET /api/market/dates           - 已有数据的交易日
GET /api/market/summary/{date}  - 单日市场汇总
GET /api/market/history         - 每日市场成交汇总
"""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.encoders import jsonable_encoder

from bodiva_service.models.response import ApiResponse
from bodiva_service.services.market_service import get_market_service

router = APIRouter(prefix="/api/market", tags=["行情数据"])


@router.get("/records", response_model=ApiResponse)
async def list_records(
    date: Optional[dt.date] = Query(default=None, description="交易日 YYYY-MM-DD"),
    symbol: Optional[str] = Query(default=None),
    title_type: Optional[str] = Query(default=None, description="证券类别，如 Acções / Obrigações"),
    search: Optional[str] = Query(default=None, description="代码或类别模糊搜索"),
    limit: int = Query(default=500, ge=1, le=5000),
):
    records = await get_market_service().list_records(
        {"date": date, "symbol": symbol, "title_type": title_type, "search": search},
        limit=limit,
    )
    return ApiResponse.ok(data=jsonable_encoder(records))


@router.get("/dates", response_model=ApiResponse)
async def list_dates():
    """所有交易日，最新在前"""
    dates = await get_market_service().list_dates()
    return ApiResponse.ok(data=[d.isoformat() for d in dates])


@router.get("/summary/{date}", response_model=ApiResponse)
async def day_summary(date: dt.date):
    """
    单日市场汇总

    包含成交总额 / 笔数 / 数量、涨跌家数、涨幅 / 跌幅 / 成交额前五、
    按类别的板块统计、平均每笔成交额以及前三名集中度。
    """
    summary = await get_market_service().get_day_summary(date)
    return ApiResponse.ok(data=jsonable_encoder(summary))


@router.get("/history", response_model=ApiResponse)
async def market_history():
    history = await get_market_service().get_market_history()
    return ApiResponse.ok(data=jsonable_encoder(history))
