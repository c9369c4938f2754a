"""
行情数据服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BODIVA_EXCEL_URL = "https://www.bodiva.ao/reports/controllers/excel/Export/ResumoMercados.php"


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker 环境使用服务名 'mongodb'，本地使用 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


def _default_proxies() -> List[Dict[str, str]]:
    """公共回退代理，按顺序尝试；{url} 为已编码的源地址"""
    return [
        {"name": "corsproxy.io", "url": "https://corsproxy.io/?{url}", "kind": "raw"},
        {"name": "allorigins", "url": "https://api.allorigins.win/get?url={url}", "kind": "envelope"},
        {"name": "codetabs", "url": "https://api.codetabs.com/v1/proxy?quest={url}", "kind": "raw"},
    ]


class ServiceSettings(BaseSettings):
    """行情数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── MongoDB 配置（支持服务发现） ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="bodiva")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_ENABLED: bool = Field(default=True)
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── Redis 配置（支持服务发现） ─────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── JWT 校验（令牌由外部身份服务签发） ─────────────────
    JWT_SECRET: str = Field(default="change-me-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")

    # ── 数据源 / 回退策略 ─────────────────────────────────
    BODIVA_URL: str = Field(default=BODIVA_EXCEL_URL)
    RELAY_ENABLED: bool = Field(default=True)
    FALLBACK_PROXIES: List[Dict[str, str]] = Field(default_factory=_default_proxies)
    FETCH_TIMEOUT: float = Field(default=20.0)       # 单次策略超时（秒）
    USER_AGENT: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
        )
    )
    IMPORT_DIR: str = Field(default="./imports")     # 手动上传暂存 / 下载归档目录
    ARCHIVE_DOWNLOADS: bool = Field(default=True)

    # ── 解析配置 ──────────────────────────────────────────
    DEFAULT_TITLE_TYPE: str = Field(default="Acções")
    SYMBOL_MAX_LENGTH: int = Field(default=50)
    EXTRACTION_STRICT_HEADER: bool = Field(default=False)

    # ── 缓存 / 分析配置 ───────────────────────────────────
    HISTORY_CACHE_TTL: int = Field(default=3600)     # 单个标的历史序列 TTL（秒）
    CACHE_DIR: str = Field(default="./cache")        # 文件缓存目录
    FORECAST_HORIZON: int = Field(default=90)        # 预测天数

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="Africa/Luanda")


@lru_cache
def get_settings() -> ServiceSettings:
    """获取全局配置（单例）"""
    return ServiceSettings()


settings = get_settings()
