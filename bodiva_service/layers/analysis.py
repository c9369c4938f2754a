"""
Layer 4 – 技术分析层
在处理层输出的标准 DataFrame（按日期升序）上计算：
SMA / EMA、支撑阻力位、线性趋势预测、市场情绪，以及单日市场汇总。
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from bodiva_service.models.market import (
    ForecastPoint,
    IndicatorPoint,
    MarketDataRecord,
    Sentiment,
    SupportResistance,
    SymbolStats,
)

logger = logging.getLogger(__name__)

WINDOW_SIZES: Dict[str, Optional[int]] = {"7D": 7, "1M": 30, "3M": 90, "1Y": 365, "ALL": None}
MIN_POINTS = 5
SENTIMENT_THRESHOLD = 5.0
NOISE_FACTOR = 0.05
TOP_N = 5
CONCENTRATION_TOP = 3

# 面向终端用户的建议文案（葡语）
SENTIMENT_TEMPLATES: Dict[str, Dict[str, str]] = {
    "bullish": {
        "sentiment": "Bullish (Alta)",
        "reason": (
            "O activo demonstra uma forte tendência de acumulação com quebra de resistências "
            "históricas. O volume sustentado sugere que investidores institucionais estão a "
            "manter posições longas."
        ),
        "action": "Manter ou Reforçar em correcções até à SMA 5.",
    },
    "bearish": {
        "sentiment": "Bearish (Baixa)",
        "reason": (
            "Pressão vendedora acentuada após quebra de suportes críticos. O gráfico sugere "
            "exaustão de compradores no curto prazo."
        ),
        "action": "Aguardar sinal de reversão nos suportes inferiores antes de novas entradas.",
    },
    "neutral": {
        "sentiment": "Neutral / Lateralização",
        "reason": (
            "O mercado encontra-se em fase de consolidação. Os indicadores EMA 9 e 21 estão a "
            "cruzar-se frequentemente, indicando falta de direcção clara."
        ),
        "action": "Monitorizar quebra da zona de congestão actual para definir entrada.",
    },
}


def _none_if_nan(value: Any) -> Optional[float]:
    return None if pd.isna(value) else float(value)


class AnalysisLayer:
    """技术分析层：所有方法均为纯函数，不修改输入"""

    # ── 窗口 ──────────────────────────────────────────────

    def window(self, df: pd.DataFrame, size: Optional[int]) -> pd.DataFrame:
        """保留最近 size 行（None 表示全部），输出仍按日期升序"""
        if size is None or df.empty:
            return df.copy()
        return df.tail(size).reset_index(drop=True)

    # ── 均线 ──────────────────────────────────────────────

    def add_sma(self, df: pd.DataFrame, period: int = 5) -> pd.DataFrame:
        """简单移动平均，样本不足 period 时为空"""
        df = df.copy()
        df[f"SMA{period}"] = df["price"].rolling(window=period, min_periods=period).mean()
        return df

    def add_ema(self, df: pd.DataFrame, periods: Sequence[int] = (9, 21)) -> pd.DataFrame:
        """指数移动平均：以首个价格为种子，α = 2/(k+1)"""
        df = df.copy()
        for p in periods:
            df[f"EMA{p}"] = df["price"].ewm(span=p, adjust=False).mean()
        return df

    def to_points(self, df: pd.DataFrame) -> List[IndicatorPoint]:
        points = []
        for row in df.itertuples(index=False):
            points.append(IndicatorPoint(
                date=row.date,
                price=float(row.price),
                amount=float(row.amount),
                sma5=_none_if_nan(getattr(row, "SMA5", None)),
                ema9=_none_if_nan(getattr(row, "EMA9", None)),
                ema21=_none_if_nan(getattr(row, "EMA21", None)),
            ))
        return points

    # ── 支撑 / 阻力 ──────────────────────────────────────

    def support_resistance(self, df: pd.DataFrame, source: str = "full") -> SupportResistance:
        """价格最小值 / 最大值；少于 5 个点时均为空"""
        if len(df) < MIN_POINTS:
            return SupportResistance(source=source)
        return SupportResistance(
            support=float(df["price"].min()),
            resistance=float(df["price"].max()),
            source=source,
        )

    # ── 趋势预测 ──────────────────────────────────────────

    def forecast(
        self,
        df: pd.DataFrame,
        horizon: int = 90,
        rng: Optional[Any] = None,
    ) -> List[ForecastPoint]:
        """
        线性趋势外推 + 有界随机扰动

        斜率为价格对序号 0..n-1 的最小二乘斜率，扰动幅度为总体标准差的 5%。
        第 i 天（i = 1..horizon，自然日）预测值：last + slope*i + u*std*0.05，u ∈ [0, 1)。
        结果不可复现，除非传入确定性的 rng。
        """
        n = len(df)
        if n < MIN_POINTS:
            return []
        rng = rng if rng is not None else np.random.default_rng()

        prices = df["price"].to_numpy(dtype=float)
        x = np.arange(n, dtype=float)
        slope = ((x - x.mean()) * (prices - prices.mean())).sum() / ((x - x.mean()) ** 2).sum()
        std = float(prices.std(ddof=0))

        last_price = float(prices[-1])
        last_date = df["date"].iloc[-1]
        points = []
        for i in range(1, horizon + 1):
            predicted = last_price + slope * i + rng.random() * std * NOISE_FACTOR
            points.append(ForecastPoint(
                date=last_date + timedelta(days=i),
                predicted_price=round(float(predicted), 2),
            ))
        return points

    # ── 市场情绪 ──────────────────────────────────────────

    def sentiment(self, df: pd.DataFrame) -> Optional[Sentiment]:
        """窗口内涨幅 >5% 看涨，<-5% 看跌，否则中性"""
        if len(df) < MIN_POINTS:
            return None
        first = float(df["price"].iloc[0])
        last = float(df["price"].iloc[-1])
        growth = (last - first) / first * 100 if first else 0.0

        if growth > SENTIMENT_THRESHOLD:
            trend = "bullish"
        elif growth < -SENTIMENT_THRESHOLD:
            trend = "bearish"
        else:
            trend = "neutral"
        return Sentiment(trend=trend, growth=round(growth, 4), **SENTIMENT_TEMPLATES[trend])

    def symbol_stats(self, df: pd.DataFrame) -> Optional[SymbolStats]:
        if df.empty:
            return None
        return SymbolStats(
            ath=float(df["price"].max()),
            atl=float(df["price"].min()),
            avg_volume=float(df["amount"].mean()),
            observations=len(df),
        )

    # ── 单日汇总 ──────────────────────────────────────────

    def day_summary(self, records: Iterable[MarketDataRecord]) -> Dict[str, Any]:
        """单个交易日的市场汇总（总量、涨跌家数、榜单、板块、集中度）"""
        rows = list(records)
        total_volume = sum(r.amount for r in rows)
        total_trades = sum(r.num_trades for r in rows)
        total_quantity = sum(r.quantity for r in rows)

        by_amount = sorted(rows, key=lambda r: r.amount, reverse=True)
        gainers = sorted((r for r in rows if r.variation > 0), key=lambda r: r.variation, reverse=True)
        losers = sorted((r for r in rows if r.variation < 0), key=lambda r: r.variation)

        segments: Dict[str, Dict[str, Any]] = {}
        for r in rows:
            seg = segments.setdefault(
                r.title_type,
                {"name": r.title_type, "amount": 0.0, "trades": 0, "quantity": 0, "count": 0},
            )
            seg["amount"] += r.amount
            seg["trades"] += r.num_trades
            seg["quantity"] += r.quantity
            seg["count"] += 1

        return {
            "total_volume": total_volume,
            "total_trades": total_trades,
            "total_quantity": total_quantity,
            "gainers": len(gainers),
            "losers": len(losers),
            "top_gainers": gainers[:TOP_N],
            "top_losers": losers[:TOP_N],
            "top_volume": by_amount[:TOP_N],
            "segments": sorted(segments.values(), key=lambda s: s["amount"], reverse=True),
            "avg_trade_size": total_volume / total_trades if total_trades > 0 else 0.0,
            "market_concentration": self.market_concentration(rows),
        }

    def market_concentration(self, records: Sequence[MarketDataRecord]) -> float:
        """成交额前 3 名占当日总成交额的百分比，总额为 0 时返回 0"""
        total = sum(r.amount for r in records)
        if total == 0:
            return 0.0
        top = sorted((r.amount for r in records), reverse=True)[:CONCENTRATION_TOP]
        return sum(top) / total * 100

    def market_history(self, records: Iterable[MarketDataRecord]) -> List[Dict[str, Any]]:
        """按交易日聚合成交额与成交笔数，日期升序"""
        daily: Dict[Any, Dict[str, Any]] = {}
        for r in records:
            agg = daily.setdefault(r.date, {"date": r.date, "volume": 0.0, "trades": 0})
            agg["volume"] += r.amount
            agg["trades"] += r.num_trades
        return [daily[d] for d in sorted(daily)]


# ── 模块级别单例 ──────────────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
