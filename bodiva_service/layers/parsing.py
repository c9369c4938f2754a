"""
数值解析工具
将葡语区域格式的数字文本（如 "1.050.050,00 AOA"、"−15,30"、"0,00%"）转换为浮点数。
解析失败一律返回 0，保证批量导入不会因单个脏单元格中断。
"""

import math
import re
from typing import Any

# 各种 unicode 减号
_MINUS_VARIANTS = re.compile(r"[−–—]")
# 三位大写货币代码（AOA / USD ...）
_CURRENCY_CODE = re.compile(r"[A-Z]{3}")
_WHITESPACE = re.compile(r"\s")
# parseFloat 语义：只取最长的合法数字前缀
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_NON_DIGITS = re.compile(r"\D")


def _leading_float(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    if not match:
        return 0.0
    try:
        value = float(match.group(0))
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_locale_number(value: Any) -> float:
    """
    解析区域格式数字，永不抛出异常

    含逗号时视为葡语格式（点为千分位、逗号为小数点），否则按普通浮点数解析；
    尾部的 % 等非数字字符会被自然截断。
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0

    text = str(value).strip()
    if not text:
        return 0.0

    clean = _MINUS_VARIANTS.sub("-", text)
    clean = _CURRENCY_CODE.sub("", clean)
    clean = _WHITESPACE.sub("", clean)

    if "," in clean:
        clean = clean.replace(".", "").replace(",", ".", 1)
    return _leading_float(clean)


def parse_digits(value: Any) -> int:
    """只保留数字字符后转为整数（笔数、数量），失败返回 0"""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        if value.is_integer():
            value = int(value)
    digits = _NON_DIGITS.sub("", str(value))
    return int(digits) if digits else 0
