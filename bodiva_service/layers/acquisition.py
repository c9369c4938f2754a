"""
Layer 1 – 数据获取层
数据源会主动拦截自动化访问，因此按顺序尝试多种获取策略：

  1. 可信中转（服务端直连，优先消费操作员手动上传的暂存文件）
  2. 公共代理（返回原始字节，或返回 base64 编码的 JSON 信封）
  3. 全部失败 → 抛出 RetrievalExhaustedError，由上层引导操作员手动上传

每个策略失败都不是致命的；策略之间严格串行，单次尝试有超时上限，
并在每次尝试前检查取消信号。
"""

import asyncio
import base64
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from bodiva_service.config import ServiceSettings, settings
from bodiva_service.exceptions import (
    RetrievalCancelledError,
    RetrievalExhaustedError,
    TransportError,
)

logger = logging.getLogger(__name__)

MANUAL_UPLOAD_PREFIX = "latest_manual"
_SPREADSHEET_ACCEPT = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet,"
    "application/vnd.ms-excel,*/*;q=0.8"
)


def _ensure_ok(response: httpx.Response, strategy: str) -> bytes:
    if response.status_code >= 400:
        raise TransportError(
            f"HTTP {response.status_code}", strategy, {"status_code": response.status_code}
        )
    if not response.content:
        raise TransportError("空响应", strategy)
    return response.content


# ── 手动上传暂存 ──────────────────────────────────────────

def stage_manual_upload(content: bytes, import_dir: str) -> str:
    """保存操作员上传的文件，供中转策略下次执行时优先消费；每次上传使用独立文件名"""
    os.makedirs(import_dir, exist_ok=True)
    name = f"{MANUAL_UPLOAD_PREFIX}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.xlsx"
    path = os.path.join(import_dir, name)
    with open(path, "wb") as fh:
        fh.write(content)
    logger.info(f"手动上传文件已暂存: {path}")
    return path


def consume_staged_upload(import_dir: str, path: Optional[str] = None) -> Optional[bytes]:
    """
    读取并删除暂存上传文件，没有则返回 None

    指定 path 时只消费该文件，否则消费最新的一个。
    """
    if path is None:
        if not os.path.isdir(import_dir):
            return None
        staged = sorted(f for f in os.listdir(import_dir) if f.startswith(MANUAL_UPLOAD_PREFIX))
        if not staged:
            return None
        path = os.path.join(import_dir, staged[-1])
    elif not os.path.isfile(path):
        return None
    with open(path, "rb") as fh:
        content = fh.read()
    os.remove(path)
    logger.info(f"消费暂存上传文件: {path}")
    return content


def archive_payload(content: bytes, import_dir: str) -> Optional[str]:
    """归档每次成功获取的原始文件，失败只记录警告"""
    stamp = datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    path = os.path.join(import_dir, "logs", f"sync_{stamp}.xlsx")
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(content)
    except OSError as exc:
        logger.warning(f"⚠️ 原始文件归档失败: {exc}")
        return None
    return path


# ── 获取策略 ──────────────────────────────────────────────

class Transport(ABC):
    """单个获取策略：成功返回非空字节，失败抛出 TransportError / httpx.HTTPError"""

    name: str = "transport"

    @abstractmethod
    async def fetch(self, client: httpx.AsyncClient) -> bytes:
        ...


class RelayTransport(Transport):
    """可信中转：优先消费暂存的手动上传文件，否则由服务端直连数据源"""

    name = "relay"

    def __init__(
        self,
        source_url: str,
        import_dir: str,
        user_agent: str,
        staged_path: Optional[str] = None,
    ):
        self.source_url = source_url
        self.import_dir = import_dir
        self.user_agent = user_agent
        # 绑定某次上传的暂存文件时，只处理该文件，不再直连数据源
        self.staged_path = staged_path

    async def fetch(self, client: httpx.AsyncClient) -> bytes:
        staged = consume_staged_upload(self.import_dir, self.staged_path)
        if staged:
            return staged
        if self.staged_path is not None:
            raise TransportError(f"暂存文件不存在: {self.staged_path}", self.name)
        response = await client.get(
            self.source_url,
            headers={"User-Agent": self.user_agent, "Accept": _SPREADSHEET_ACCEPT},
        )
        return _ensure_ok(response, self.name)


class RawProxyTransport(Transport):
    """公共代理，直接返回原始字节"""

    def __init__(self, name: str, url_template: str, source_url: str):
        self.name = name
        self.url_template = url_template
        self.source_url = source_url

    @property
    def url(self) -> str:
        return self.url_template.format(url=quote(self.source_url, safe=""))

    async def fetch(self, client: httpx.AsyncClient) -> bytes:
        return _ensure_ok(await client.get(self.url), self.name)


class EnvelopeProxyTransport(RawProxyTransport):
    """公共代理，返回 JSON 信封，载荷字段为 base64（可能带 data URI 前缀）"""

    def __init__(self, name: str, url_template: str, source_url: str, field: str = "contents"):
        super().__init__(name, url_template, source_url)
        self.field = field

    async def fetch(self, client: httpx.AsyncClient) -> bytes:
        response = await client.get(self.url)
        _ensure_ok(response, self.name)
        envelope = response.json()
        contents = envelope.get(self.field) if isinstance(envelope, dict) else None
        if not contents or not isinstance(contents, str):
            raise TransportError(f"信封字段 '{self.field}' 缺失或不是字符串", self.name)
        payload = contents.split("base64,", 1)[1] if "base64," in contents else contents
        decoded = base64.b64decode(payload)
        if not decoded:
            raise TransportError("base64 载荷为空", self.name)
        return decoded


# ── 回退管道 ──────────────────────────────────────────────

@dataclass
class RetrievalResult:
    content: bytes
    strategy: str
    attempts: List[Dict[str, Any]] = field(default_factory=list)


ClientFactory = Callable[[], httpx.AsyncClient]


class RetrievalPipeline:
    """按顺序尝试各策略，首个成功即停止，后续策略不再调用"""

    def __init__(
        self,
        transports: Sequence[Transport],
        timeout: float = 20.0,
        source_url: str = "",
        client_factory: Optional[ClientFactory] = None,
    ):
        self.transports = list(transports)
        self.timeout = timeout
        self.source_url = source_url
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)
        )

    async def retrieve(self, cancel_event: Optional[asyncio.Event] = None) -> RetrievalResult:
        attempts: List[Dict[str, Any]] = []
        async with self._client_factory() as client:
            for transport in self.transports:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("同步已被取消，停止后续策略")
                    raise RetrievalCancelledError(attempts)

                started = time.monotonic()
                logger.info(f"尝试获取策略: {transport.name}")
                try:
                    content = await asyncio.wait_for(transport.fetch(client), timeout=self.timeout)
                    if not content:
                        raise TransportError("空响应", transport.name)
                except asyncio.TimeoutError:
                    error = f"超时（>{self.timeout}s）"
                except Exception as exc:
                    # CancelledError 不属于 Exception，照常向上传播
                    error = str(exc) or exc.__class__.__name__
                else:
                    attempts.append(self._attempt(transport, started, ok=True))
                    logger.info(f"✅ 获取成功（策略：{transport.name}），{len(content)} 字节")
                    return RetrievalResult(content=content, strategy=transport.name, attempts=attempts)

                attempts.append(self._attempt(transport, started, ok=False, error=error))
                logger.warning(f"⚠️ 获取策略失败（{transport.name}）: {error}")

        logger.error(f"❌ 全部 {len(attempts)} 个获取策略均失败，需要手动上传")
        raise RetrievalExhaustedError(attempts, self.source_url)

    @staticmethod
    def _attempt(
        transport: Transport, started: float, ok: bool, error: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            "strategy": transport.name,
            "ok": ok,
            "error": error,
            "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
        }


def build_transports(cfg: ServiceSettings) -> List[Transport]:
    """按配置组装策略列表：中转在前，公共代理按配置顺序在后"""
    transports: List[Transport] = []
    if cfg.RELAY_ENABLED:
        transports.append(RelayTransport(cfg.BODIVA_URL, cfg.IMPORT_DIR, cfg.USER_AGENT))
    for proxy in cfg.FALLBACK_PROXIES:
        kind = proxy.get("kind", "raw")
        if kind == "envelope":
            transports.append(EnvelopeProxyTransport(
                proxy["name"], proxy["url"], cfg.BODIVA_URL, field=proxy.get("field", "contents")
            ))
        elif kind == "raw":
            transports.append(RawProxyTransport(proxy["name"], proxy["url"], cfg.BODIVA_URL))
        else:
            logger.warning(f"未知的代理类型 {kind}（{proxy.get('name')}），已忽略")
    return transports


def build_default_pipeline(cfg: ServiceSettings) -> RetrievalPipeline:
    return RetrievalPipeline(
        build_transports(cfg),
        timeout=cfg.FETCH_TIMEOUT,
        source_url=cfg.BODIVA_URL,
        client_factory=lambda: httpx.AsyncClient(
            timeout=httpx.Timeout(cfg.FETCH_TIMEOUT),
            follow_redirects=True,
            headers={"User-Agent": cfg.USER_AGENT},
        ),
    )


class AcquisitionLayer:
    """数据获取层：封装回退管道、手动上传暂存与原始文件归档"""

    def __init__(
        self,
        cfg: Optional[ServiceSettings] = None,
        pipeline: Optional[RetrievalPipeline] = None,
    ):
        self._cfg = cfg or settings
        self._pipeline = pipeline or build_default_pipeline(self._cfg)

    @property
    def source_url(self) -> str:
        return self._cfg.BODIVA_URL

    @property
    def relay_enabled(self) -> bool:
        return self._cfg.RELAY_ENABLED

    async def retrieve(self, cancel_event: Optional[asyncio.Event] = None) -> RetrievalResult:
        result = await self._pipeline.retrieve(cancel_event)
        if self._cfg.ARCHIVE_DOWNLOADS:
            archive_payload(result.content, self._cfg.IMPORT_DIR)
        return result

    def stage_manual_upload(self, content: bytes) -> str:
        return stage_manual_upload(content, self._cfg.IMPORT_DIR)

    async def retrieve_staged(
        self, staged_path: str, cancel_event: Optional[asyncio.Event] = None
    ) -> RetrievalResult:
        """只通过中转处理指定的暂存文件，并发上传之间互不串用"""
        relay = RelayTransport(
            self._cfg.BODIVA_URL, self._cfg.IMPORT_DIR, self._cfg.USER_AGENT,
            staged_path=staged_path,
        )
        pipeline = RetrievalPipeline(
            [relay], timeout=self._cfg.FETCH_TIMEOUT, source_url=self._cfg.BODIVA_URL,
        )
        return await pipeline.retrieve(cancel_event)


# ── 模块级别单例 ──────────────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition
