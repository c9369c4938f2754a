"""
技术分析服务
整合处理层 + 分析层，提供技术指标计算的高级接口
"""

import logging
from typing import Any, Optional

from bodiva_service.layers.analysis import WINDOW_SIZES, get_analysis_layer
from bodiva_service.layers.processing import get_processing_layer
from bodiva_service.models.market import IndicatorConfig, IndicatorReport
from bodiva_service.services.market_service import MarketService, get_market_service

logger = logging.getLogger(__name__)


class TechnicalService:
    """技术分析服务（只读，不写入任何数据）"""

    def __init__(self, market: Optional[MarketService] = None):
        self._proc = get_processing_layer()
        self._analysis = get_analysis_layer()
        self._market = market or get_market_service()

    async def get_indicators(
        self,
        symbol: str,
        config: Optional[IndicatorConfig] = None,
        rng: Optional[Any] = None,
    ) -> IndicatorReport:
        """
        获取指定标的的技术指标

        Args:
            symbol: 证券代码
            config: 窗口与指标开关，None 使用默认配置
            rng: 预测扰动使用的随机数生成器（需提供 .random()），测试时可注入

        Returns:
            IndicatorReport：窗口内序列（含 SMA5 / EMA9 / EMA21）、预测、支撑阻力、情绪、统计
        """
        config = config or IndicatorConfig()
        symbol = symbol.strip().upper()
        history = await self._market.get_symbol_history(symbol)
        report = IndicatorReport(symbol=symbol, window=config.window)
        if not history:
            logger.info(f"标的 {symbol} 暂无历史数据")
            return report

        full = self._proc.to_frame(history)
        df = self._analysis.window(full, WINDOW_SIZES[config.window])

        # 指标均在窗口数据上计算
        if config.sma5:
            df = self._analysis.add_sma(df, 5)
        periods = [p for p, enabled in ((9, config.ema9), (21, config.ema21)) if enabled]
        if periods:
            df = self._analysis.add_ema(df, periods)
        report.series = self._analysis.to_points(df)

        if config.forecast:
            report.forecast = self._analysis.forecast(df, horizon=config.horizon, rng=rng)
        if config.support_resistance:
            levels_df = full if config.levels_source == "full" else df
            report.support_resistance = self._analysis.support_resistance(
                levels_df, source=config.levels_source
            )
        if config.sentiment:
            report.sentiment = self._analysis.sentiment(df)
        report.stats = self._analysis.symbol_stats(full)
        return report


# ── 模块级别单例 ──────────────────────────────────────────
_technical_service: Optional[TechnicalService] = None


def get_technical_service() -> TechnicalService:
    global _technical_service
    if _technical_service is None:
        _technical_service = TechnicalService()
    return _technical_service
