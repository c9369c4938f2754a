"""
技术分析路由
GET /api/technical/{symbol}  - 获取技术指标、趋势预测与市场情绪
"""

from typing import Literal, Optional

from fastapi import APIRouter, Query

from bodiva_service.config import settings
from bodiva_service.models.market import IndicatorConfig
from bodiva_service.models.response import ApiResponse
from bodiva_service.services.technical_service import get_technical_service

router = APIRouter(prefix="/api/technical", tags=["技术分析"])


@router.get("/{symbol}", response_model=ApiResponse)
async def get_technical_indicators(
    symbol: str,
    window: Literal["7D", "1M", "3M", "1Y", "ALL"] = Query(default="1M", description="时间窗口"),
    sma5: bool = Query(default=True),
    ema9: bool = Query(default=True),
    ema21: bool = Query(default=True),
    support_resistance: bool = Query(default=True),
    forecast: bool = Query(default=True),
    sentiment: bool = Query(default=True),
    levels_source: Literal["full", "window"] = Query(
        default="full", description="支撑 / 阻力位计算范围：全量历史或当前窗口"
    ),
    horizon: Optional[int] = Query(default=None, ge=1, le=365, description="预测天数"),
):
    """
    获取证券技术分析指标

    - 指标（SMA5 / EMA9 / EMA21）、预测与情绪均基于所选窗口
    - 预测含随机扰动，每次请求结果不同
    """
    config = IndicatorConfig(
        window=window,
        sma5=sma5,
        ema9=ema9,
        ema21=ema21,
        support_resistance=support_resistance,
        forecast=forecast,
        sentiment=sentiment,
        levels_source=levels_source,
        horizon=horizon or settings.FORECAST_HORIZON,
    )
    report = await get_technical_service().get_indicators(symbol, config)
    return ApiResponse.ok(data=report.model_dump(mode="json", by_alias=True))
