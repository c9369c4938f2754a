"""测试公共夹具：隔离文件缓存 / 导入目录，并重置模块级单例"""

import os
import sys

import pytest

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def isolated_service(tmp_path, monkeypatch):
    """每个测试使用独立的缓存目录、导入目录和内存存储"""
    from bodiva_service.config import settings
    from bodiva_service.layers import acquisition, store
    from bodiva_service.services import market_service, sync_service, technical_service

    monkeypatch.setattr(settings, "CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setattr(settings, "IMPORT_DIR", str(tmp_path / "imports"))
    monkeypatch.setattr(store, "_memory_store", None)
    monkeypatch.setattr(acquisition, "_acquisition", None)
    monkeypatch.setattr(market_service, "_market_service", None)
    monkeypatch.setattr(sync_service, "_sync_service", None)
    monkeypatch.setattr(technical_service, "_technical_service", None)
    yield tmp_path
