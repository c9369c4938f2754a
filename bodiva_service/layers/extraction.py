"""
Layer 1.5 – 解析层
将 BODIVA 每日行情表格（或后台粘贴的制表符文本）转换为结构化记录。

表格固定列顺序：
  0: Valor Mobiliário  1: Tipologia  2: Preço  3: Variação
  4: N° de Negócios    5: Quantidade 6: Montante
"""

import io
import logging
import math
from datetime import date
from typing import Any, List, Optional, Sequence, Set, Tuple

import openpyxl
import pandas as pd
import xlrd
from lxml import html as lxml_html

from bodiva_service.exceptions import (
    EmptyWorkbookError,
    HeaderNotFoundError,
    NoValidRowsError,
    SpreadsheetDecodeError,
)
from bodiva_service.layers.parsing import parse_digits, parse_locale_number
from bodiva_service.models.market import MarketDataRecord

logger = logging.getLogger(__name__)

HEADER_MARKERS = ("Mobiliário", "Título")
HEADER_SCAN_ROWS = 10
NOISE_MARKERS = ("valor mobiliário", "tipologia", "resumo", "copyright")
DEFAULT_TITLE_TYPE = "Acções"
TITLE_TYPE_MAX_LENGTH = 100
FIELD_COUNT = 7

# 文件头魔数
_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def _cell_text(value: Any) -> str:
    """单元格值统一为文本；整数值浮点数去掉 .0，避免数字提取时多出一位"""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def _cell(row: Sequence[Any], idx: int) -> str:
    return _cell_text(row[idx]).strip() if idx < len(row) else ""


# ── 表头定位 ──────────────────────────────────────────────

def locate_header(grid: Sequence[Sequence[Any]], strict: bool = False) -> int:
    """在前 HEADER_SCAN_ROWS 行中查找包含表头标记的行，找不到时默认第 0 行"""
    for idx, row in enumerate(grid[:HEADER_SCAN_ROWS]):
        cells = [_cell_text(c) for c in row]
        if any(marker in cell for cell in cells for marker in HEADER_MARKERS):
            return idx
    if strict:
        raise HeaderNotFoundError(list(HEADER_MARKERS), min(len(grid), HEADER_SCAN_ROWS))
    logger.debug("未找到表头标记，默认首行为表头")
    return 0


def _build_record(
    fields: Sequence[Any],
    data_date: date,
    symbol_max_length: int,
    default_title_type: str,
) -> MarketDataRecord:
    return MarketDataRecord(
        date=data_date,
        symbol=_cell(fields, 0).upper()[:symbol_max_length],
        title_type=_cell(fields, 1)[:TITLE_TYPE_MAX_LENGTH] or default_title_type,
        price=parse_locale_number(_cell(fields, 2)),
        variation=parse_locale_number(_cell(fields, 3)),
        num_trades=parse_digits(_cell(fields, 4)),
        quantity=parse_digits(_cell(fields, 5)),
        amount=parse_locale_number(_cell(fields, 6)),
    )


def extract_records(
    grid: Sequence[Sequence[Any]],
    data_date: date,
    *,
    strict_header: bool = False,
    symbol_max_length: int = 50,
    default_title_type: str = DEFAULT_TITLE_TYPE,
) -> List[MarketDataRecord]:
    """
    将二维单元格网格映射为行情记录

    Args:
        grid: 表格单元格（首个工作表）
        data_date: 数据日期，由调用方提供并写入本批所有记录
        strict_header: 找不到表头时是否报错（默认回退到首行）
        symbol_max_length: 证券代码最大长度
        default_title_type: 类别为空时的默认值
    """
    if not grid:
        raise EmptyWorkbookError()

    header_idx = locate_header(grid, strict=strict_header)
    records = [
        _build_record(row, data_date, symbol_max_length, default_title_type)
        for row in grid[header_idx + 1:]
        if _cell(row, 0)
    ]
    if not records:
        raise NoValidRowsError("表格中没有有效的数据行")

    logger.info(f"表格解析完成：表头位于第 {header_idx + 1} 行，有效记录 {len(records)} 条")
    return records


# ── 粘贴文本 ──────────────────────────────────────────────

def parse_delimited_text(
    text: str,
    data_date: date,
    *,
    symbol_max_length: int = 255,
    default_title_type: str = DEFAULT_TITLE_TYPE,
) -> List[MarketDataRecord]:
    """解析从网页复制的制表符分隔文本，跳过表头 / 页脚等噪声行"""
    records: List[MarketDataRecord] = []
    for line in (text or "").strip().split("\n"):
        if not line.strip():
            continue
        lower = line.lower()
        if any(marker in lower for marker in NOISE_MARKERS):
            continue

        parts = line.rstrip("\r").split("\t")
        if len(parts) < FIELD_COUNT:
            continue
        if len(parts[0].strip()) < 2:
            continue
        records.append(_build_record(parts, data_date, symbol_max_length, default_title_type))

    if not records:
        raise NoValidRowsError()
    return records


# ── 表格解码 ──────────────────────────────────────────────

def _frame_to_grid(df: pd.DataFrame) -> List[List[str]]:
    return [[_cell_text(v) for v in row] for row in df.itertuples(index=False, name=None)]


def _percent_cells(content: bytes, engine: Optional[str]) -> Set[Tuple[int, int]]:
    """首个工作表中数字格式为百分比的单元格坐标（0 起始的行、列）"""
    cells: Set[Tuple[int, int]] = set()
    if engine == "openpyxl":
        wb = openpyxl.load_workbook(io.BytesIO(content), data_only=True)
        try:
            for r, row in enumerate(wb.worksheets[0].iter_rows()):
                for c, cell in enumerate(row):
                    if "%" in (cell.number_format or ""):
                        cells.add((r, c))
        finally:
            wb.close()
    elif engine == "xlrd":
        book = xlrd.open_workbook(file_contents=content, formatting_info=True)
        sheet = book.sheet_by_index(0)
        for r in range(sheet.nrows):
            for c in range(sheet.row_len(r)):
                fmt = book.format_map.get(book.xf_list[sheet.cell_xf_index(r, c)].format_key)
                if fmt is not None and "%" in fmt.format_str:
                    cells.add((r, c))
    return cells


def _read_workbook(content: bytes) -> pd.DataFrame:
    engine = None
    if content.startswith(_ZIP_MAGIC):
        engine = "openpyxl"
    elif content.startswith(_OLE_MAGIC):
        engine = "xlrd"
    df = pd.read_excel(
        io.BytesIO(content), sheet_name=0, header=None, dtype=object, engine=engine
    )
    # 百分比格式的单元格按显示值读取（0.0156 显示为 1.56%）
    for r, c in _percent_cells(content, engine):
        if r >= df.shape[0] or c >= df.shape[1]:
            continue
        value = df.iat[r, c]
        if isinstance(value, (int, float)) and not isinstance(value, bool) and not pd.isna(value):
            df.iat[r, c] = round(value * 100, 10)
    return df


def _read_html_grid(content: bytes) -> List[List[str]]:
    # 保留单元格原文，数字格式交给 parse_locale_number 处理
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    tables = lxml_html.fromstring(text).xpath("//table")
    if not tables:
        raise ValueError("HTML 中没有表格")
    return [
        [" ".join(cell.text_content().split()) for cell in row.xpath("./th|./td")]
        for row in tables[0].xpath(".//tr")
    ]


def decode_spreadsheet(content: bytes) -> List[List[str]]:
    """
    将下载或上传的表格字节解码为首个工作表的文本网格

    支持 xlsx / xls，以及交易所偶尔以 .xls 名义输出的 HTML 表格。
    """
    if not content:
        raise EmptyWorkbookError()

    head = content[:512].lstrip().lower()
    looks_like_html = head.startswith(b"<") and b"<table" in content[:65536].lower()

    try:
        if looks_like_html:
            grid = [row for row in _read_html_grid(content) if any(row)]
        else:
            grid = _frame_to_grid(_read_workbook(content).dropna(how="all"))
    except Exception as exc:
        raise SpreadsheetDecodeError(str(exc)) from exc

    if not grid:
        raise EmptyWorkbookError()
    return grid
