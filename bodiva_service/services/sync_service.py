"""
行情同步服务
整合获取、解析、处理、存储四层：所有写入路径（自动同步、手动上传、粘贴、
单条录入、演示数据）最终都经过 去重 → upsert → 审计 → 缓存失效。
"""

import asyncio
import datetime as dt
import logging
import random
from typing import Any, Dict, List, Optional, Sequence

from bodiva_service.config import ServiceSettings, settings
from bodiva_service.exceptions import RecordNotFoundError, RetrievalExhaustedError
from bodiva_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from bodiva_service.layers.cache import get_cache_layer
from bodiva_service.layers.extraction import (
    decode_spreadsheet,
    extract_records,
    parse_delimited_text,
)
from bodiva_service.layers.processing import get_processing_layer
from bodiva_service.layers.store import MarketDataStore, get_store, symbols_of
from bodiva_service.models.market import ManualEntry, MarketDataRecord, SyncResult

logger = logging.getLogger(__name__)

# ── 审计动作 ──────────────────────────────────────────────
ACTION_CREATE = "BODIVA_DATA_CREATE"
ACTION_BULK_IMPORT = "BODIVA_DATA_BULK_IMPORT"
ACTION_SYNC = "BODIVA_DATA_SYNC"
ACTION_DELETE = "BODIVA_DATA_DELETE"
ACTION_DELETE_DAY = "BODIVA_DATA_DELETE_DAY"
ACTION_SEED = "BODIVA_DATA_SEED"

# 演示数据：(代码, 类别, 基准价)
DEMO_SYMBOLS = (
    ("BFA", "Acções", 25000.0),
    ("BAI", "Acções", 42000.0),
    ("UNITEL", "Acções", 15000.0),
    ("ENDE", "Obrigações", 1000.0),
    ("TAAG", "Obrigações", 1050.0),
)


class SyncService:
    """行情写入业务服务"""

    def __init__(
        self,
        store: Optional[MarketDataStore] = None,
        acquisition: Optional[AcquisitionLayer] = None,
        cfg: Optional[ServiceSettings] = None,
    ):
        self._store_override = store
        self._acq = acquisition or get_acquisition_layer()
        self._cfg = cfg or settings
        self._cache = get_cache_layer()
        self._proc = get_processing_layer()
        # 正在运行的自动同步的取消信号
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def store(self) -> MarketDataStore:
        return self._store_override or get_store()

    # ── 公共写入路径 ──────────────────────────────────────

    async def ingest_records(
        self,
        records: Sequence[MarketDataRecord],
        source: str,
        action: str = ACTION_BULK_IMPORT,
        strategy: Optional[str] = None,
        attempts: Optional[List[Dict[str, Any]]] = None,
    ) -> SyncResult:
        """批内去重后 upsert，写审计日志并使相关标的缓存失效"""
        deduped = self._proc.deduplicate(records)
        count = await self.store.upsert(deduped.records)

        dates = sorted({r.date for r in deduped.records})
        symbols = symbols_of(deduped.records)
        await self._cache.invalidate_symbols(symbols)
        await self.store.log_action(action, {
            "count": count,
            "duplicates_removed": deduped.duplicates_removed,
            "dates": [d.isoformat() for d in dates],
            "source": source,
            "strategy": strategy,
        })
        logger.info(
            f"✅ 写入 {count} 条行情记录（来源：{source}，批内重复 {deduped.duplicates_removed} 条）"
        )
        return SyncResult(
            count=count,
            duplicates_removed=deduped.duplicates_removed,
            date=dates[-1] if dates else None,
            source=source,
            strategy=strategy,
            attempts=attempts or [],
        )

    async def create_record(self, entry: ManualEntry) -> MarketDataRecord:
        """后台单条录入，(date, symbol) 已存在时整体覆盖"""
        record = self._proc.from_manual_entry(entry)
        await self.store.upsert([record])
        await self._cache.invalidate_symbols([record.symbol])
        await self.store.log_action(ACTION_CREATE, {
            "symbol": record.symbol,
            "date": record.date.isoformat(),
            "price": record.price,
        })
        saved = await self.store.find({"date": record.date, "symbol": record.symbol}, limit=1)
        return saved[0] if saved else record

    async def delete_record(self, record_id: str) -> MarketDataRecord:
        existing = await self.store.get(record_id)
        if existing is None:
            raise RecordNotFoundError(record_id)
        await self.store.delete({"id": record_id})
        await self._cache.invalidate_symbols([existing.symbol])
        await self.store.log_action(ACTION_DELETE, {
            "id": record_id,
            "symbol": existing.symbol,
            "date": existing.date.isoformat(),
        })
        return existing

    async def delete_day(self, day: dt.date) -> int:
        """删除某个交易日的全部记录，返回删除条数"""
        existing = await self.store.find({"date": day})
        deleted = await self.store.delete({"date": day})
        await self._cache.invalidate_symbols(symbols_of(existing))
        await self.store.log_action(ACTION_DELETE_DAY, {"date": day.isoformat(), "count": deleted})
        logger.info(f"已删除 {day} 的 {deleted} 条记录")
        return deleted

    async def replace_day(
        self, day: dt.date, records: Sequence[MarketDataRecord], source: str = "replace"
    ) -> SyncResult:
        """
        用新批次替换某个交易日的全部记录

        先删除后写入，两步之间没有事务保护：写入失败时该交易日可能为空，
        重新执行即可恢复。
        """
        await self.delete_day(day)
        stamped = [r.model_copy(update={"date": day}) for r in records]
        return await self.ingest_records(stamped, source)

    # ── 导入 ──────────────────────────────────────────────

    async def import_text(self, text: str, day: Optional[dt.date] = None) -> SyncResult:
        """导入从网页复制的制表符分隔文本"""
        records = parse_delimited_text(
            text,
            day or dt.date.today(),
            default_title_type=self._cfg.DEFAULT_TITLE_TYPE,
        )
        return await self.ingest_records(records, source="paste")

    async def import_spreadsheet(
        self,
        content: bytes,
        day: Optional[dt.date] = None,
        source: str = "upload",
        action: str = ACTION_BULK_IMPORT,
        strategy: Optional[str] = None,
        attempts: Optional[List[Dict[str, Any]]] = None,
    ) -> SyncResult:
        """解码表格字节并导入，所有记录标记为同一数据日期"""
        grid = decode_spreadsheet(content)
        records = extract_records(
            grid,
            day or dt.date.today(),
            strict_header=self._cfg.EXTRACTION_STRICT_HEADER,
            symbol_max_length=self._cfg.SYMBOL_MAX_LENGTH,
            default_title_type=self._cfg.DEFAULT_TITLE_TYPE,
        )
        return await self.ingest_records(
            records, source=source, action=action, strategy=strategy, attempts=attempts
        )

    # ── 自动同步 / 手动回退 ──────────────────────────────

    async def sync_from_source(
        self,
        day: Optional[dt.date] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """
        按策略顺序从数据源获取当日行情文件并导入

        Raises:
            RetrievalExhaustedError: 所有策略均失败，需要操作员手动上传
            RetrievalCancelledError: 操作员取消
        """
        cancel_event = cancel_event or asyncio.Event()
        self._cancel_event = cancel_event
        try:
            result = await self._acq.retrieve(cancel_event)
        finally:
            if self._cancel_event is cancel_event:
                self._cancel_event = None
        return await self.import_spreadsheet(
            result.content,
            day,
            source="sync",
            action=ACTION_SYNC,
            strategy=result.strategy,
            attempts=result.attempts,
        )

    async def upload_manual(self, content: bytes, day: Optional[dt.date] = None) -> SyncResult:
        """
        手动回退：暂存上传文件并重新执行同步，使其走与自动同步相同的中转路径

        中转未启用或暂存失败时直接在本地解析。
        """
        if self._acq.relay_enabled:
            try:
                staged_path = self.stage_manual_upload(content)
            except OSError as exc:
                logger.warning(f"⚠️ 上传文件暂存失败，改为本地解析: {exc}")
            else:
                try:
                    result = await self._acq.retrieve_staged(staged_path)
                except RetrievalExhaustedError:
                    logger.warning("⚠️ 中转未能处理暂存文件，改为本地解析")
                else:
                    return await self.import_spreadsheet(
                        result.content,
                        day,
                        source="manual_upload",
                        strategy=result.strategy,
                        attempts=result.attempts,
                    )
        return await self.import_spreadsheet(content, day, source="manual_upload")

    def stage_manual_upload(self, content: bytes) -> str:
        return self._acq.stage_manual_upload(content)

    def cancel_sync(self) -> bool:
        """请求取消正在运行的自动同步，在下一个策略开始前生效；没有运行中的同步时返回 False"""
        if self._cancel_event is None:
            return False
        self._cancel_event.set()
        logger.info("已请求取消自动同步")
        return True

    # ── 演示数据 ──────────────────────────────────────────

    async def seed_demo_history(
        self,
        days: int = 30,
        today: Optional[dt.date] = None,
        rng: Optional[random.Random] = None,
    ) -> SyncResult:
        """
        生成最近 days 天的演示行情（随机游走，每日波动 -1.5% ~ +2%）
        """
        rng = rng or random.Random()
        today = today or dt.date.today()
        prices = {symbol: base for symbol, _, base in DEMO_SYMBOLS}
        records: List[MarketDataRecord] = []

        for offset in range(days):
            day = today - dt.timedelta(days=offset)
            for symbol, title_type, _ in DEMO_SYMBOLS:
                variance = 0.985 + rng.random() * 0.035
                price = round(prices[symbol] * variance, 2)
                quantity = rng.randint(100, 2099)
                records.append(MarketDataRecord(
                    date=day,
                    symbol=symbol,
                    title_type=title_type,
                    price=price,
                    variation=(variance - 1) * 100,
                    num_trades=rng.randint(1, 10),
                    quantity=quantity,
                    amount=price * quantity,
                ))
                prices[symbol] = price

        return await self.ingest_records(records, source="seed", action=ACTION_SEED)


# ── 模块级别单例 ──────────────────────────────────────────
_sync_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService()
    return _sync_service
