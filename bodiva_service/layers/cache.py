"""
Layer 2.5 – 缓存层
优先级：Redis（内存） → 文件（本地）
缓存单个标的的历史序列；任何写入该标的的操作都会使其缓存失效。
"""

import hashlib
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from bodiva_service.config import settings
from bodiva_service.db import get_redis

logger = logging.getLogger(__name__)

HISTORY_NS = "history"


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + list(parts))
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def _file_path(key: str) -> str:
    safe = key.replace(":", "_").replace("/", "_")
    return os.path.join(settings.CACHE_DIR, f"{safe}.json")


class CacheLayer:
    """多级缓存层，自动根据可用连接选择后端"""

    async def get(self, namespace: str, *parts: str) -> Optional[Any]:
        key = _make_key(namespace, *parts)

        # L1: Redis
        redis = get_redis()
        if redis:
            try:
                raw = await redis.get(key)
                if raw:
                    logger.debug(f"缓存命中（Redis）: {key}")
                    return json.loads(raw)
            except Exception as exc:
                logger.debug(f"Redis 读取失败: {exc}")

        # L2: 文件
        path = _file_path(key)
        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    doc = json.load(fh)
                expires_at = doc.get("expires_at")
                if expires_at and expires_at < datetime.now(tz=timezone.utc).timestamp():
                    os.remove(path)
                else:
                    logger.debug(f"缓存命中（文件）: {key}")
                    return doc.get("value")
            except (OSError, ValueError) as exc:
                logger.debug(f"文件缓存读取失败: {exc}")

        return None

    async def set(
        self,
        value: Any,
        namespace: str,
        *parts: str,
        ttl: int = None,
    ) -> None:
        if ttl is None:
            ttl = settings.HISTORY_CACHE_TTL
        key = _make_key(namespace, *parts)
        serialized = json.dumps(value, ensure_ascii=False, default=str)

        # L1: Redis
        redis = get_redis()
        if redis:
            try:
                await redis.setex(key, ttl, serialized)
                logger.debug(f"缓存写入（Redis）: {key}")
                return
            except Exception as exc:
                logger.debug(f"Redis 写入失败: {exc}")

        # L2: 文件
        try:
            os.makedirs(settings.CACHE_DIR, exist_ok=True)
            expires_ts = (datetime.now(tz=timezone.utc) + timedelta(seconds=ttl)).timestamp()
            with open(_file_path(key), "w", encoding="utf-8") as fh:
                fh.write(json.dumps({"value": json.loads(serialized), "expires_at": expires_ts}, ensure_ascii=False))
            logger.debug(f"缓存写入（文件）: {key}")
        except OSError as exc:
            logger.debug(f"文件缓存写入失败: {exc}")

    async def delete(self, namespace: str, *parts: str) -> None:
        key = _make_key(namespace, *parts)
        redis = get_redis()
        if redis:
            try:
                await redis.delete(key)
            except Exception as exc:
                logger.debug(f"Redis 删除失败: {exc}")
        path = _file_path(key)
        if os.path.exists(path):
            try:
                os.remove(path)
            except OSError as exc:
                logger.debug(f"文件缓存删除失败: {exc}")

    async def invalidate_symbols(self, symbols: Iterable[str]) -> None:
        """写入后使受影响标的的历史缓存失效"""
        for symbol in set(symbols):
            await self.delete(HISTORY_NS, symbol)

    async def stats(self) -> dict:
        """返回各缓存后端统计信息"""
        result: dict = {}
        redis = get_redis()
        if redis:
            try:
                result["redis"] = {"keys": await redis.dbsize(), "status": "healthy"}
            except Exception as exc:
                result["redis"] = {"status": "error", "error": str(exc)}
        else:
            result["redis"] = {"status": "disabled"}

        cache_dir = settings.CACHE_DIR
        try:
            file_count = len([
                f for f in os.listdir(cache_dir) if f.endswith(".json")
            ]) if os.path.exists(cache_dir) else 0
            result["file"] = {"files": file_count, "dir": cache_dir, "status": "healthy"}
        except OSError as exc:
            result["file"] = {"status": "error", "error": str(exc)}

        return result


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[CacheLayer] = None


def get_cache_layer() -> CacheLayer:
    global _cache
    if _cache is None:
        _cache = CacheLayer()
    return _cache
