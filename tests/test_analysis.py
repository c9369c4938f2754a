"""
技术分析层 / 查询服务单元测试

覆盖范围：
  - 窗口截取、SMA 边界、EMA 种子
  - 线性趋势预测（注入确定性随机数）
  - 市场情绪、支撑阻力、标的统计
  - 单日汇总（榜单、板块、集中度）与市场历史
  - TechnicalService / MarketService 端到端
"""

from datetime import date, timedelta

import pandas as pd
import pytest

from bodiva_service.layers.analysis import WINDOW_SIZES, AnalysisLayer
from bodiva_service.layers.store import InMemoryMarketDataStore
from bodiva_service.models.market import IndicatorConfig, MarketDataRecord
from bodiva_service.services.market_service import MarketService
from bodiva_service.services.technical_service import TechnicalService

START = date(2024, 1, 1)


class ZeroRng:
    """random() 恒为 0，使预测结果可复现"""

    def random(self) -> float:
        return 0.0


def _frame(prices, amounts=None) -> pd.DataFrame:
    n = len(prices)
    return pd.DataFrame({
        "date": [START + timedelta(days=i) for i in range(n)],
        "price": [float(p) for p in prices],
        "amount": [float(a) for a in (amounts or [100.0] * n)],
    })


def _record(symbol, price, day=START, **kwargs) -> MarketDataRecord:
    return MarketDataRecord(date=day, symbol=symbol, price=price, **kwargs)


# ─────────────────────────────────────────────────────────
# 1. 均线
# ─────────────────────────────────────────────────────────

class TestMovingAverages:
    def setup_method(self):
        self.analysis = AnalysisLayer()

    def test_window(self):
        df = _frame(range(1, 41))
        assert len(self.analysis.window(df, WINDOW_SIZES["1M"])) == 30
        assert self.analysis.window(df, WINDOW_SIZES["7D"])["price"].iloc[0] == 34.0
        assert len(self.analysis.window(df, WINDOW_SIZES["ALL"])) == 40

    def test_sma_boundary(self):
        df = self.analysis.add_sma(_frame([1, 2, 3, 4, 5, 6]))
        assert df["SMA5"].iloc[:4].isna().all()
        assert df["SMA5"].iloc[4] == pytest.approx(3.0)
        assert df["SMA5"].iloc[5] == pytest.approx(4.0)

    def test_ema_seeded_with_first_price(self):
        df = self.analysis.add_ema(_frame([10, 20, 30]), periods=[9])
        k = 2 / (9 + 1)
        assert df["EMA9"].iloc[0] == 10.0
        assert df["EMA9"].iloc[1] == pytest.approx(20 * k + 10 * (1 - k))

    def test_does_not_mutate_input(self):
        df = _frame([1, 2, 3, 4, 5])
        self.analysis.add_sma(df)
        self.analysis.add_ema(df)
        assert list(df.columns) == ["date", "price", "amount"]

    def test_to_points_maps_nan_to_none(self):
        df = self.analysis.add_sma(_frame([1, 2, 3, 4, 5]))
        points = self.analysis.to_points(df)
        assert points[0].sma5 is None
        assert points[4].sma5 == pytest.approx(3.0)
        assert points[0].ema9 is None


# ─────────────────────────────────────────────────────────
# 2. 预测 / 情绪 / 支撑阻力
# ─────────────────────────────────────────────────────────

class TestForecastAndSignals:
    def setup_method(self):
        self.analysis = AnalysisLayer()

    def test_forecast_needs_five_points(self):
        assert self.analysis.forecast(_frame([1, 2, 3, 4])) == []

    def test_forecast_trend_sign(self):
        up = self.analysis.forecast(_frame([10, 11, 12, 13, 14]), horizon=3, rng=ZeroRng())
        assert [p.predicted_price for p in up] == [15.0, 16.0, 17.0]
        assert up[0].date == START + timedelta(days=5)
        assert all(p.is_forecast for p in up)

        down = self.analysis.forecast(_frame([20, 18, 16, 14, 12]), horizon=2, rng=ZeroRng())
        assert down[-1].predicted_price < 12

    def test_forecast_noise_bounded(self):
        class MaxRng:
            def random(self):
                return 1.0

        df = _frame([10, 10, 10, 10, 20])
        std = pd.Series(df["price"]).std(ddof=0)
        slope = 2.0
        point = self.analysis.forecast(df, horizon=1, rng=MaxRng())[0]
        assert point.predicted_price == pytest.approx(round(20 + slope + std * 0.05, 2))

    def test_forecast_default_horizon(self):
        assert len(self.analysis.forecast(_frame([1, 2, 3, 4, 5]))) == 90

    @pytest.mark.parametrize("prices, trend", [
        ([100, 101, 103, 104, 110], "bullish"),
        ([100, 98, 97, 96, 90], "bearish"),
        ([100, 101, 99, 102, 104], "neutral"),
    ])
    def test_sentiment(self, prices, trend):
        result = self.analysis.sentiment(_frame(prices))
        assert result.trend == trend
        assert result.sentiment and result.reason and result.action

    def test_sentiment_templates(self):
        bullish = self.analysis.sentiment(_frame([100, 101, 103, 104, 110]))
        assert bullish.sentiment == "Bullish (Alta)"
        assert bullish.growth == pytest.approx(10.0)

    def test_sentiment_insufficient_or_zero_start(self):
        assert self.analysis.sentiment(_frame([1, 2, 3])) is None
        assert self.analysis.sentiment(_frame([0, 1, 2, 3, 4])).trend == "neutral"

    def test_support_resistance(self):
        levels = self.analysis.support_resistance(_frame([5, 3, 9, 4, 6]))
        assert (levels.support, levels.resistance) == (3.0, 9.0)
        empty = self.analysis.support_resistance(_frame([5, 3]))
        assert empty.support is None and empty.resistance is None

    def test_symbol_stats(self):
        stats = self.analysis.symbol_stats(_frame([5, 3, 9], amounts=[10, 20, 30]))
        assert (stats.ath, stats.atl, stats.avg_volume) == (9.0, 3.0, 20.0)


# ─────────────────────────────────────────────────────────
# 3. 单日汇总 / 市场历史
# ─────────────────────────────────────────────────────────

class TestMarketSummary:
    def setup_method(self):
        self.analysis = AnalysisLayer()
        self.day = [
            _record("A", 1, variation=2.0, amount=500, num_trades=5, quantity=50),
            _record("B", 1, variation=-1.0, amount=300, num_trades=3, quantity=30),
            _record("C", 1, variation=0.0, amount=100, num_trades=1, quantity=10, title_type="Obrigações"),
            _record("D", 1, variation=5.0, amount=100, num_trades=1, quantity=10, title_type="Obrigações"),
        ]

    def test_totals_and_lists(self):
        summary = self.analysis.day_summary(self.day)
        assert summary["total_volume"] == 1000
        assert summary["total_trades"] == 10
        assert summary["total_quantity"] == 100
        assert (summary["gainers"], summary["losers"]) == (2, 1)
        assert [r.symbol for r in summary["top_gainers"]] == ["D", "A"]
        assert [r.symbol for r in summary["top_volume"]][:2] == ["A", "B"]
        assert summary["avg_trade_size"] == 100

    def test_segments_sorted_by_amount(self):
        segments = self.analysis.day_summary(self.day)["segments"]
        assert [s["name"] for s in segments] == ["Acções", "Obrigações"]
        assert segments[1] == {"name": "Obrigações", "amount": 200, "trades": 2, "quantity": 20, "count": 2}

    def test_concentration(self):
        assert self.analysis.market_concentration(self.day) == pytest.approx(90.0)
        assert self.analysis.market_concentration([_record("A", 1, amount=0)]) == 0.0
        assert self.analysis.market_concentration([]) == 0.0

    def test_empty_day(self):
        summary = self.analysis.day_summary([])
        assert summary["total_volume"] == 0
        assert summary["avg_trade_size"] == 0.0

    def test_market_history_ascending(self):
        records = [
            _record("A", 1, START + timedelta(days=1), amount=10, num_trades=1),
            _record("A", 1, START, amount=5, num_trades=2),
            _record("B", 1, START, amount=5, num_trades=2),
        ]
        history = self.analysis.market_history(records)
        assert [h["date"] for h in history] == [START, START + timedelta(days=1)]
        assert history[0]["volume"] == 10 and history[0]["trades"] == 4


# ─────────────────────────────────────────────────────────
# 4. 服务层
# ─────────────────────────────────────────────────────────

async def _seeded_store(n: int = 40) -> InMemoryMarketDataStore:
    store = InMemoryMarketDataStore()
    await store.upsert([
        _record("BFA", 100 + i, START + timedelta(days=i), amount=1000.0) for i in range(n)
    ] + [_record("BAI", 50, START, amount=10.0)])
    return store


class TestServices:
    @pytest.mark.asyncio
    async def test_indicator_report(self):
        store = await _seeded_store()
        svc = TechnicalService(market=MarketService(store=store))
        report = await svc.get_indicators("bfa", IndicatorConfig(window="1M", horizon=5), rng=ZeroRng())

        assert report.symbol == "BFA"
        assert len(report.series) == 30
        assert report.series[0].date == START + timedelta(days=10)
        assert report.series[3].sma5 is None
        assert report.series[4].sma5 is not None
        assert len(report.forecast) == 5
        assert report.forecast[0].predicted_price == 140.0
        # 默认支撑阻力取全量历史
        assert report.support_resistance.support == 100.0
        assert report.sentiment.trend == "bullish"
        assert report.stats.observations == 40

    @pytest.mark.asyncio
    async def test_indicator_flags_and_window_levels(self):
        store = await _seeded_store()
        svc = TechnicalService(market=MarketService(store=store))
        config = IndicatorConfig(
            window="7D", sma5=False, ema21=False, forecast=False, sentiment=False,
            levels_source="window",
        )
        report = await svc.get_indicators("BFA", config)
        assert report.forecast == []
        assert report.sentiment is None
        assert all(p.sma5 is None and p.ema21 is None for p in report.series)
        assert report.series[-1].ema9 is not None
        assert report.support_resistance.support == 133.0
        assert report.support_resistance.source == "window"

    @pytest.mark.asyncio
    async def test_indicator_unknown_symbol(self):
        svc = TechnicalService(market=MarketService(store=InMemoryMarketDataStore()))
        report = await svc.get_indicators("NOPE")
        assert report.series == [] and report.stats is None

    @pytest.mark.asyncio
    async def test_report_serialises_camel_case(self):
        store = await _seeded_store(6)
        svc = TechnicalService(market=MarketService(store=store))
        payload = (await svc.get_indicators("BFA", IndicatorConfig(horizon=1))).model_dump(by_alias=True)
        assert "supportResistance" in payload
        assert "predictedPrice" in payload["forecast"][0]
        assert payload["series"][0]["isForecast"] is False

    @pytest.mark.asyncio
    async def test_market_service_summary_defaults_to_latest_day(self):
        store = await _seeded_store(3)
        svc = MarketService(store=store)
        summary = await svc.get_day_summary()
        assert summary["date"] == START + timedelta(days=2)
        assert summary["records"] == 1
        assert (await svc.list_dates())[0] == START + timedelta(days=2)

    @pytest.mark.asyncio
    async def test_symbol_history_cached(self):
        store = await _seeded_store(3)
        svc = MarketService(store=store)
        first = await svc.get_symbol_history("BFA")
        await store.delete({"symbol": "BFA"})
        cached = await svc.get_symbol_history("BFA")
        assert [r.price for r in cached] == [r.price for r in first]
        assert await svc.get_symbol_history("BFA", force_refresh=True) == []
