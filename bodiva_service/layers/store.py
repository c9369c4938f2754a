"""
Layer 2 – 存储层
行情记录的持久化，冲突键为 (date, symbol)，写入均为幂等 upsert。

后端：
  MongoDB（motor 异步驱动）   → 正常模式
  进程内存                    → MongoDB 不可用时的降级模式 / 测试
"""

import asyncio
import logging
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, UpdateOne
from pymongo.errors import PyMongoError

from bodiva_service.db import get_mongo_db
from bodiva_service.exceptions import StoreError
from bodiva_service.models.market import MarketDataRecord

logger = logging.getLogger(__name__)

COLLECTION = "bodiva_market_data"
AUDIT_COLLECTION = "audit_logs"
CONFLICT_KEY: Tuple[str, ...] = ("date", "symbol")

Order = Sequence[Tuple[str, int]]
DEFAULT_ORDER: Order = (("date", DESCENDING), ("symbol", ASCENDING))


class MarketDataStore(Protocol):
    """存储契约：find / upsert / delete"""

    async def find(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[MarketDataRecord]: ...

    async def get(self, record_id: str) -> Optional[MarketDataRecord]: ...

    async def upsert(
        self, records: Sequence[MarketDataRecord], conflict_key: Tuple[str, ...] = CONFLICT_KEY
    ) -> int: ...

    async def delete(self, filters: Dict[str, Any]) -> int: ...

    async def distinct_dates(self) -> List[date]: ...

    async def log_action(self, action: str, details: Dict[str, Any]) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ── MongoDB ───────────────────────────────────────────────

class MongoMarketDataStore:
    """MongoDB 存储，(date, symbol) 唯一复合索引保证不产生重复行"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db
        self._col = db[COLLECTION]

    async def ensure_indexes(self) -> None:
        await self._col.create_index(
            [("date", ASCENDING), ("symbol", ASCENDING)], unique=True, name="date_symbol_unique"
        )
        await self._col.create_index([("symbol", ASCENDING), ("date", DESCENDING)])

    @staticmethod
    def _to_document(record: MarketDataRecord) -> Dict[str, Any]:
        doc = record.to_document()
        doc["date"] = record.date.isoformat()
        return doc

    @staticmethod
    def _from_document(doc: Dict[str, Any]) -> MarketDataRecord:
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        data["date"] = _as_date(data["date"])
        return MarketDataRecord(**data)

    @staticmethod
    def _query(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if not filters:
            return query
        if filters.get("id"):
            try:
                query["_id"] = ObjectId(filters["id"])
            except (InvalidId, TypeError):
                # 非法 id 不会匹配任何记录
                query["_id"] = None
        if filters.get("date"):
            query["date"] = _as_date(filters["date"]).isoformat()
        else:
            date_range: Dict[str, str] = {}
            if filters.get("date_from"):
                date_range["$gte"] = _as_date(filters["date_from"]).isoformat()
            if filters.get("date_to"):
                date_range["$lte"] = _as_date(filters["date_to"]).isoformat()
            if date_range:
                query["date"] = date_range
        if filters.get("symbol"):
            query["symbol"] = filters["symbol"].upper()
        if filters.get("title_type"):
            query["title_type"] = filters["title_type"]
        if filters.get("search"):
            pattern = {"$regex": re.escape(filters["search"]), "$options": "i"}
            query["$or"] = [{"symbol": pattern}, {"title_type": pattern}]
        return query

    async def find(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[MarketDataRecord]:
        try:
            cursor = self._col.find(self._query(filters)).sort(list(order or DEFAULT_ORDER))
            if limit:
                cursor = cursor.limit(limit)
            return [self._from_document(doc) async for doc in cursor]
        except PyMongoError as exc:
            raise StoreError(f"行情记录查询失败: {exc}") from exc

    async def get(self, record_id: str) -> Optional[MarketDataRecord]:
        found = await self.find({"id": record_id}, limit=1)
        return found[0] if found else None

    async def upsert(
        self, records: Sequence[MarketDataRecord], conflict_key: Tuple[str, ...] = CONFLICT_KEY
    ) -> int:
        if not records:
            return 0
        now = _utcnow()
        ops = []
        for record in records:
            doc = self._to_document(record)
            ops.append(UpdateOne(
                {k: doc[k] for k in conflict_key},
                {"$set": doc, "$setOnInsert": {"created_at": now}},
                upsert=True,
            ))
        try:
            result = await self._col.bulk_write(ops, ordered=True)
        except PyMongoError as exc:
            raise StoreError(f"行情记录写入失败: {exc}") from exc
        return result.upserted_count + result.matched_count

    async def delete(self, filters: Dict[str, Any]) -> int:
        query = self._query(filters)
        if not query:
            raise StoreError("拒绝执行无条件删除")
        try:
            result = await self._col.delete_many(query)
        except PyMongoError as exc:
            raise StoreError(f"行情记录删除失败: {exc}") from exc
        return result.deleted_count

    async def distinct_dates(self) -> List[date]:
        try:
            values = await self._col.distinct("date")
        except PyMongoError as exc:
            raise StoreError(f"交易日期查询失败: {exc}") from exc
        return sorted((_as_date(v) for v in values), reverse=True)

    async def log_action(self, action: str, details: Dict[str, Any]) -> None:
        try:
            await self._db[AUDIT_COLLECTION].insert_one({
                "action": action,
                "table_name": COLLECTION,
                "details": details,
                "created_at": _utcnow(),
            })
        except PyMongoError as exc:
            logger.warning(f"⚠️ 审计日志写入失败 {action}: {exc}")


# ── 内存存储（降级模式） ──────────────────────────────────

def _matches(record: MarketDataRecord, filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    if filters.get("id") and record.id != filters["id"]:
        return False
    if filters.get("date") and record.date != _as_date(filters["date"]):
        return False
    if filters.get("date_from") and record.date < _as_date(filters["date_from"]):
        return False
    if filters.get("date_to") and record.date > _as_date(filters["date_to"]):
        return False
    if filters.get("symbol") and record.symbol != filters["symbol"].upper():
        return False
    if filters.get("title_type") and record.title_type != filters["title_type"]:
        return False
    if filters.get("search"):
        term = filters["search"].lower()
        if term not in record.symbol.lower() and term not in record.title_type.lower():
            return False
    return True


def _sort(records: List[MarketDataRecord], order: Order) -> List[MarketDataRecord]:
    # 稳定排序：从最后一个排序键开始依次排序
    for field, direction in reversed(list(order)):
        records.sort(key=lambda r: getattr(r, field), reverse=direction == DESCENDING)
    return records


class InMemoryMarketDataStore:
    """进程内存储，语义与 MongoDB 存储一致；每次调用在锁内原子执行"""

    def __init__(self):
        self._rows: Dict[tuple, MarketDataRecord] = {}
        self._audit: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    @property
    def audit_log(self) -> List[Dict[str, Any]]:
        return list(self._audit)

    async def find(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[MarketDataRecord]:
        async with self._lock:
            found = [r.model_copy() for r in self._rows.values() if _matches(r, filters)]
        found = _sort(found, order or DEFAULT_ORDER)
        return found[:limit] if limit else found

    async def get(self, record_id: str) -> Optional[MarketDataRecord]:
        found = await self.find({"id": record_id}, limit=1)
        return found[0] if found else None

    async def upsert(
        self, records: Sequence[MarketDataRecord], conflict_key: Tuple[str, ...] = CONFLICT_KEY
    ) -> int:
        now = _utcnow()
        async with self._lock:
            for record in records:
                key = tuple(getattr(record, k) for k in conflict_key)
                existing = self._rows.get(key)
                self._rows[key] = record.model_copy(update={
                    "id": existing.id if existing else uuid.uuid4().hex,
                    "created_at": existing.created_at if existing else now,
                })
        return len(records)

    async def delete(self, filters: Dict[str, Any]) -> int:
        if not filters:
            raise StoreError("拒绝执行无条件删除")
        async with self._lock:
            keys = [k for k, r in self._rows.items() if _matches(r, filters)]
            for key in keys:
                del self._rows[key]
        return len(keys)

    async def distinct_dates(self) -> List[date]:
        async with self._lock:
            dates = {r.date for r in self._rows.values()}
        return sorted(dates, reverse=True)

    async def log_action(self, action: str, details: Dict[str, Any]) -> None:
        self._audit.append({"action": action, "details": details, "created_at": _utcnow()})


# ── 存储选择 ──────────────────────────────────────────────
_memory_store: Optional[InMemoryMarketDataStore] = None


def get_memory_store() -> InMemoryMarketDataStore:
    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryMarketDataStore()
    return _memory_store


def get_store() -> MarketDataStore:
    """MongoDB 可用时使用 MongoDB，否则降级为进程内存储"""
    db = get_mongo_db()
    if db is not None:
        return MongoMarketDataStore(db)
    return get_memory_store()


def symbols_of(records: Iterable[MarketDataRecord]) -> List[str]:
    return sorted({r.symbol for r in records})
