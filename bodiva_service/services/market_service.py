"""
行情查询服务
整合存储、缓存、分析三层，对外提供只读的行情访问接口
"""

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

from bodiva_service.layers.analysis import get_analysis_layer
from bodiva_service.layers.cache import HISTORY_NS, get_cache_layer
from bodiva_service.layers.store import MarketDataStore, get_store
from bodiva_service.models.market import MarketDataRecord

logger = logging.getLogger(__name__)


class MarketService:
    """行情数据业务服务"""

    def __init__(self, store: Optional[MarketDataStore] = None):
        self._store_override = store
        self._cache = get_cache_layer()
        self._analysis = get_analysis_layer()

    @property
    def store(self) -> MarketDataStore:
        return self._store_override or get_store()

    # ── 记录列表 ──────────────────────────────────────────

    async def list_records(
        self, filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None
    ) -> List[MarketDataRecord]:
        """按条件查询行情记录，默认日期倒序、代码升序"""
        filters = {k: v for k, v in (filters or {}).items() if v not in (None, "")}
        return await self.store.find(filters, limit=limit)

    async def list_dates(self) -> List[dt.date]:
        """所有已有数据的交易日，最新在前"""
        return await self.store.distinct_dates()

    # ── 单日汇总 / 市场历史 ──────────────────────────────

    async def get_day_summary(self, day: Optional[dt.date] = None) -> Dict[str, Any]:
        """
        单日市场汇总

        Args:
            day: 交易日，None 表示最近一个交易日
        """
        if day is None:
            dates = await self.list_dates()
            if not dates:
                return {"date": None, "records": 0, **self._analysis.day_summary([])}
            day = dates[0]
        records = await self.store.find({"date": day})
        summary = self._analysis.day_summary(records)
        return {"date": day, "records": len(records), **summary}

    async def get_market_history(self) -> List[Dict[str, Any]]:
        records = await self.store.find()
        return self._analysis.market_history(records)

    # ── 单个标的历史 ──────────────────────────────────────

    async def get_symbol_history(
        self, symbol: str, force_refresh: bool = False
    ) -> List[MarketDataRecord]:
        """单个标的的全量历史（日期升序，带缓存），写入时按标的失效"""
        symbol = symbol.strip().upper()
        if not force_refresh:
            cached = await self._cache.get(HISTORY_NS, symbol)
            if cached is not None:
                return [MarketDataRecord(**row) for row in cached]

        records = await self.store.find({"symbol": symbol}, order=[("date", 1)])
        if records:
            await self._cache.set(
                [r.model_dump(mode="json") for r in records], HISTORY_NS, symbol
            )
        return records


# ── 模块级别单例 ──────────────────────────────────────────
_market_service: Optional[MarketService] = None


def get_market_service() -> MarketService:
    global _market_service
    if _market_service is None:
        _market_service = MarketService()
    return _market_service
