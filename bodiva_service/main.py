"""
BODIVA 行情数据服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn bodiva_service.main:app --host 0.0.0.0 --port 8001
    python -m bodiva_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bodiva_service import __version__
from bodiva_service.config import settings
from bodiva_service.db import init_mongodb, init_redis, close_connections
from bodiva_service.exceptions import (
    ExtractionError,
    RecordNotFoundError,
    RetrievalCancelledError,
    RetrievalExhaustedError,
)
from bodiva_service.models.response import ApiResponse
from bodiva_service.routers import cache, health, market, records, sync, technical

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 BODIVA 行情数据服务 v{__version__} 启动中")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   数据源    : {settings.BODIVA_URL}")
    logger.info(f"   获取策略  : {'relay + ' if settings.RELAY_ENABLED else ''}"
                f"{', '.join(p['name'] for p in settings.FALLBACK_PROXIES)}")
    logger.info("=" * 60)

    # 初始化数据库连接（失败不阻断启动，降级运行）
    mongo_ok = await init_mongodb()
    redis_ok = await init_redis()

    if mongo_ok and redis_ok:
        logger.info("✅ 所有数据库连接就绪")
    elif mongo_ok:
        logger.warning("⚠️ Redis 不可用，历史缓存降级为文件模式")
    elif redis_ok:
        logger.warning("⚠️ MongoDB 不可用，行情数据仅保存在进程内存中，重启后丢失")
    else:
        logger.warning("⚠️ 数据库均不可用，降级为内存存储 + 文件缓存模式")

    yield

    logger.info("🔄 行情数据服务正在关闭...")
    await close_connections()
    logger.info("✅ 行情数据服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="BODIVA 行情数据服务",
    description=(
        "安哥拉证券交易所（BODIVA）每日行情的采集与分析微服务：\n"
        "- 📥 多策略自动同步（中转 → 公共代理 → 手动上传回退）\n"
        "- 🧾 表格 / 粘贴文本解析（葡语数字格式）\n"
        "- 🗄️ 幂等 upsert 存储（MongoDB，冲突键 date + symbol）\n"
        "- 📈 技术指标（SMA / EMA / 支撑阻力 / 趋势预测 / 市场情绪）\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 多策略获取原始表格\n"
        "Extraction Layer   ← 表头定位、行映射、数字解析\n"
        "Processing Layer   ← 批内去重、标准化\n"
        "Store Layer        ← MongoDB / 内存 upsert\n"
        "Cache Layer        ← Redis → 文件\n"
        "Analysis Layer     ← 技术指标与市场汇总\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 异常处理 ──────────────────────────────────────────────
@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    logger.warning(f"⚠️ 数据解析失败: {exc.message}")
    return ApiResponse.fail(exc.error_code, exc.message, exc.details or None).to_response(422)


@app.exception_handler(RetrievalExhaustedError)
async def retrieval_exhausted_handler(request: Request, exc: RetrievalExhaustedError):
    # 引导操作员手动下载后上传
    return ApiResponse.fail(exc.error_code, exc.message, {
        "manual_fallback": True,
        "source_url": exc.source_url,
        "upload_endpoint": "/api/sync/upload",
        "attempts": exc.attempts,
    }).to_response(503)


@app.exception_handler(RetrievalCancelledError)
async def retrieval_cancelled_handler(request: Request, exc: RetrievalCancelledError):
    return ApiResponse.fail(exc.error_code, exc.message).to_response(409)


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return ApiResponse.fail(exc.error_code, exc.message).to_response(404)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(market.router)
app.include_router(technical.router)
app.include_router(records.router)
app.include_router(sync.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "BODIVA Market Data Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "bodiva_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
