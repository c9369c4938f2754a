"""
Layer 3 – 数据处理层
批内去重、记录标准化，以及转换为分析层使用的 DataFrame。
"""

import logging
from typing import Dict, Iterable, Optional

import pandas as pd

from bodiva_service.layers.parsing import parse_digits, parse_locale_number
from bodiva_service.models.market import DedupResult, ManualEntry, MarketDataRecord

logger = logging.getLogger(__name__)

FRAME_COLUMNS = [
    "date", "symbol", "title_type", "price", "variation",
    "num_trades", "quantity", "amount",
]


class ProcessingLayer:
    """数据处理层：去重 + 标准化 + 格式化"""

    def deduplicate(self, records: Iterable[MarketDataRecord]) -> DedupResult:
        """
        按 (date, symbol) 去重，同一批次内保留最后出现的记录

        输出顺序为每个键首次出现的位置，重复执行结果不变。
        """
        records = list(records)
        latest: Dict[tuple, MarketDataRecord] = {}
        for record in records:
            latest[record.key] = record
        unique = list(latest.values())
        removed = len(records) - len(unique)
        if removed:
            logger.info(f"批内去重：移除 {removed} 条重复记录")
        return DedupResult(records=unique, duplicates_removed=removed)

    def from_manual_entry(
        self, entry: ManualEntry, symbol_max_length: int = 255
    ) -> MarketDataRecord:
        """后台单条录入：与表格导入使用相同的数字解析规则"""
        return MarketDataRecord(
            date=entry.date,
            symbol=entry.symbol.strip().upper()[:symbol_max_length],
            title_type=entry.title_type.strip()[:255],
            price=parse_locale_number(entry.price),
            variation=parse_locale_number(entry.variation),
            num_trades=parse_digits(entry.num_trades),
            quantity=parse_digits(entry.quantity),
            amount=parse_locale_number(entry.amount),
        )

    def to_frame(self, records: Iterable[MarketDataRecord]) -> pd.DataFrame:
        """
        记录列表转换为按日期升序排列的 DataFrame

        标准列：date, symbol, title_type, price, variation, num_trades, quantity, amount
        """
        rows = [r.model_dump(include=set(FRAME_COLUMNS)) for r in records]
        if not rows:
            return pd.DataFrame(columns=FRAME_COLUMNS)

        df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
        for col in ["price", "variation", "amount"]:
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0).astype(float)
        df = df.sort_values("date", kind="stable").reset_index(drop=True)
        return df


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
