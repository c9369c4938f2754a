"""行情数据服务异常定义."""

from typing import Any, Dict, List, Optional


class BodivaServiceError(Exception):
    """服务基础异常类."""

    def __init__(
        self,
        message: str,
        error_code: str = "GENERAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        """初始化异常.

        Args:
            message: 错误消息
            error_code: 错误代码
            details: 额外详情
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


# ── 解析异常 ──────────────────────────────────────────────

class ExtractionError(BodivaServiceError):
    """表格 / 文本解析异常."""

    def __init__(
        self,
        message: str,
        error_code: str = "EXTRACTION_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)


class EmptyWorkbookError(ExtractionError):
    """工作簿为空."""

    def __init__(self, message: str = "Excel 文件为空或无效"):
        super().__init__(message, "EMPTY_WORKBOOK")


class HeaderNotFoundError(ExtractionError):
    """前若干行中未找到表头."""

    def __init__(self, markers: List[str], scanned_rows: int):
        super().__init__(
            f"未在前 {scanned_rows} 行中找到表头（标记：{', '.join(markers)}）",
            "HEADER_NOT_FOUND",
            {"markers": list(markers), "scanned_rows": scanned_rows},
        )


class NoValidRowsError(ExtractionError):
    """过滤后没有有效数据行."""

    def __init__(
        self,
        message: str = (
            "未找到有效数据，格式应为：代码 | 类别 | 价格 | 涨跌幅 | 成交笔数 | 成交量 | 成交额"
        ),
    ):
        super().__init__(message, "NO_VALID_ROWS")


class SpreadsheetDecodeError(ExtractionError):
    """无法解码的表格内容."""

    def __init__(self, reason: str):
        super().__init__(f"表格内容无法解码: {reason}", "SPREADSHEET_DECODE_ERROR", {"reason": reason})


# ── 数据获取异常 ──────────────────────────────────────────

class RetrievalError(BodivaServiceError):
    """数据获取相关异常."""


class TransportError(RetrievalError):
    """单个获取策略失败（非致命）."""

    def __init__(self, message: str, strategy: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSPORT_ERROR", details)
        self.strategy = strategy


class RetrievalExhaustedError(RetrievalError):
    """所有自动获取策略均失败，需要人工上传."""

    def __init__(self, attempts: List[Dict[str, Any]], source_url: str):
        super().__init__(
            "自动同步被数据源拦截，请手动下载行情文件后上传处理",
            "RETRIEVAL_EXHAUSTED",
            {"attempts": attempts, "source_url": source_url},
        )
        self.attempts = attempts
        self.source_url = source_url


class RetrievalCancelledError(RetrievalError):
    """获取流程被操作员取消."""

    def __init__(self, attempts: List[Dict[str, Any]]):
        super().__init__("同步已取消", "RETRIEVAL_CANCELLED", {"attempts": attempts})
        self.attempts = attempts


# ── 存储异常 ──────────────────────────────────────────────

class StoreError(BodivaServiceError):
    """存储层异常（约束冲突、连接丢失等）."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORE_ERROR", details)


class RecordNotFoundError(BodivaServiceError):
    """记录不存在."""

    def __init__(self, record_id: str):
        super().__init__(f"记录不存在: {record_id}", "RECORD_NOT_FOUND", {"id": record_id})
        self.record_id = record_id
