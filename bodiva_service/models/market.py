"""行情数据模型"""

import datetime as dt
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MarketDataRecord(BaseModel):
    """单个交易日、单个证券的行情记录，(date, symbol) 全局唯一"""

    id: Optional[str] = None
    date: dt.date
    symbol: str
    title_type: str = "Acções"
    price: float = 0.0
    variation: float = 0.0
    num_trades: int = Field(default=0, ge=0)
    quantity: int = Field(default=0, ge=0)
    amount: float = 0.0
    created_at: Optional[dt.datetime] = None

    @property
    def key(self) -> tuple:
        return (self.date, self.symbol)

    def to_document(self) -> Dict[str, Any]:
        """存储层文档（不含 id / created_at，由存储层分配）"""
        return self.model_dump(exclude={"id", "created_at"})


class ManualEntry(BaseModel):
    """后台手动录入的原始表单值，数值字段仍为区域格式文本"""

    date: dt.date = Field(default_factory=dt.date.today)
    symbol: str = Field(..., min_length=1)
    title_type: str = "Acções"
    price: str = ""
    variation: str = "0"
    num_trades: str = "0"
    quantity: str = "0"
    amount: str = "0"


class DedupResult(BaseModel):
    records: List[MarketDataRecord]
    duplicates_removed: int = 0


class SyncResult(BaseModel):
    """一次写入操作的结果，用于向操作员反馈"""

    count: int
    duplicates_removed: int = 0
    date: Optional[dt.date] = None
    source: str = ""
    strategy: Optional[str] = None
    attempts: List[Dict[str, Any]] = Field(default_factory=list)


# ── 技术指标 ──────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IndicatorPoint(_CamelModel):
    date: dt.date
    price: float
    amount: Optional[float] = None
    sma5: Optional[float] = None
    ema9: Optional[float] = None
    ema21: Optional[float] = None
    is_forecast: bool = False


class ForecastPoint(_CamelModel):
    date: dt.date
    predicted_price: float
    is_forecast: bool = True


class SupportResistance(_CamelModel):
    support: Optional[float] = None
    resistance: Optional[float] = None
    source: Literal["full", "window"] = "full"


class Sentiment(_CamelModel):
    trend: Literal["bullish", "bearish", "neutral"]
    sentiment: str
    reason: str
    action: str
    growth: float


class SymbolStats(_CamelModel):
    ath: float
    atl: float
    avg_volume: float
    observations: int


class IndicatorConfig(BaseModel):
    """指标计算配置，由调用方显式传入"""

    window: Literal["7D", "1M", "3M", "1Y", "ALL"] = "1M"
    sma5: bool = True
    ema9: bool = True
    ema21: bool = True
    support_resistance: bool = True
    forecast: bool = True
    sentiment: bool = True
    # 支撑 / 阻力默认取全量历史，可切换为仅当前窗口
    levels_source: Literal["full", "window"] = "full"
    horizon: int = Field(default=90, ge=1, le=365)


class IndicatorReport(_CamelModel):
    symbol: str
    window: str
    series: List[IndicatorPoint] = Field(default_factory=list)
    forecast: List[ForecastPoint] = Field(default_factory=list)
    support_resistance: Optional[SupportResistance] = None
    sentiment: Optional[Sentiment] = None
    stats: Optional[SymbolStats] = None
