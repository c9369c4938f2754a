"""
解析层单元测试

覆盖范围：
  - 葡语区域格式数字解析
  - 表头定位与行映射（二维网格 → 行情记录）
  - 粘贴文本解析（噪声行过滤）
  - 表格字节解码（xlsx / HTML 表格）
"""

import io
from datetime import date

import pytest
from openpyxl import Workbook

from bodiva_service.exceptions import (
    EmptyWorkbookError,
    HeaderNotFoundError,
    NoValidRowsError,
    SpreadsheetDecodeError,
)
from bodiva_service.layers.extraction import (
    decode_spreadsheet,
    extract_records,
    locate_header,
    parse_delimited_text,
)
from bodiva_service.layers.parsing import parse_digits, parse_locale_number

HEADER = ["Valor Mobiliário", "Tipologia", "Preço", "Variação", "N° de Negócios", "Quantidade", "Montante"]
DAY = date(2024, 3, 15)


def _sample_grid() -> list:
    return [
        ["Resumo dos Mercados", "", "", "", "", "", ""],
        HEADER,
        ["bfa", "Acções", "25.000,00", "1,50%", "3", "120", "3.000.000,00"],
        ["   ", "Acções", "1", "0", "1", "1", "1"],
        ["ENDE", "", "1.000,00", "−0,50", "2", "50", "50.000,00"],
    ]


# ─────────────────────────────────────────────────────────
# 1. 数字解析
# ─────────────────────────────────────────────────────────

class TestParseLocaleNumber:
    @pytest.mark.parametrize("raw, expected", [
        ("1.050.050,00", 1050050.00),
        ("0,00%", 0.0),
        ("", 0.0),
        (None, 0.0),
        ("−15,30", -15.30),
        ("1.050.050,00 AOA", 1050050.00),
        ("  42000 ", 42000.0),
        ("12.5", 12.5),
        ("abc", 0.0),
    ])
    def test_examples(self, raw, expected):
        assert parse_locale_number(raw) == pytest.approx(expected)

    def test_native_numbers_pass_through(self):
        assert parse_locale_number(25000) == 25000.0
        assert parse_locale_number(1.75) == 1.75

    def test_non_finite_is_zero(self):
        assert parse_locale_number(float("nan")) == 0.0
        assert parse_locale_number(float("inf")) == 0.0

    def test_never_raises_on_garbage(self):
        for raw in ["--", ",", "AOA", "%", "1,2,3", object()]:
            assert isinstance(parse_locale_number(raw), float)


class TestParseDigits:
    def test_strips_separators(self):
        assert parse_digits("1.234") == 1234
        assert parse_digits("12 500") == 12500

    def test_float_cell(self):
        """Excel 整数单元格常以浮点数读入"""
        assert parse_digits(15.0) == 15

    def test_empty_and_garbage(self):
        assert parse_digits(None) == 0
        assert parse_digits("") == 0
        assert parse_digits("n/a") == 0


# ─────────────────────────────────────────────────────────
# 2. 表格网格解析
# ─────────────────────────────────────────────────────────

class TestExtractRecords:
    def test_end_to_end_grid(self):
        """表头在第 2 行、含一行空代码 → 2 条记录，日期为调用方提供的日期"""
        records = extract_records(_sample_grid(), DAY)
        assert len(records) == 2
        assert all(r.date == DAY for r in records)

        bfa, ende = records
        assert bfa.symbol == "BFA"
        assert bfa.price == 25000.0
        assert bfa.variation == pytest.approx(1.5)
        assert bfa.num_trades == 3
        assert bfa.quantity == 120
        assert bfa.amount == 3000000.0

        assert ende.title_type == "Acções"
        assert ende.variation == pytest.approx(-0.5)

    def test_locate_header(self):
        assert locate_header(_sample_grid()) == 1

    def test_header_fallback_to_first_row(self):
        grid = [
            ["Code", "Type", "P", "V", "N", "Q", "M"],
            ["BAI", "Acções", "42.000,00", "0", "1", "10", "420.000,00"],
        ]
        assert locate_header(grid) == 0
        records = extract_records(grid, DAY)
        assert [r.symbol for r in records] == ["BAI"]

    def test_strict_header(self):
        grid = [["x"] * 7, ["BAI", "Acções", "1", "0", "1", "1", "1"]]
        with pytest.raises(HeaderNotFoundError):
            extract_records(grid, DAY, strict_header=True)

    def test_header_only(self):
        with pytest.raises(NoValidRowsError):
            extract_records([HEADER], DAY)

    def test_empty_grid(self):
        with pytest.raises(EmptyWorkbookError):
            extract_records([], DAY)

    def test_short_rows_default_to_zero(self):
        records = extract_records([HEADER, ["BFA", "Acções", "10,5"]], DAY)
        assert records[0].price == 10.5
        assert records[0].num_trades == 0
        assert records[0].amount == 0.0

    def test_symbol_length_cap(self):
        records = extract_records([HEADER, ["x" * 80, "Acções", "1", "0", "1", "1", "1"]], DAY)
        assert records[0].symbol == "X" * 50


# ─────────────────────────────────────────────────────────
# 3. 粘贴文本
# ─────────────────────────────────────────────────────────

class TestParseDelimitedText:
    def test_skips_noise_lines(self):
        text = "\n".join([
            "\t".join(HEADER),
            "BFA\tAcções\t25.000,00\t1,50\t3\t120\t3.000.000,00",
            "X\tAcções\t1\t1\t1\t1\t1",
            "BAI\tAcções\t42.000,00\t0\t1\t10\t420.000,00",
            "Linha incompleta\t1",
            "Copyright 2024 BODIVA",
        ])
        records = parse_delimited_text(text, DAY)
        assert [r.symbol for r in records] == ["BFA", "BAI"]
        assert records[1].amount == 420000.0

    def test_windows_line_endings(self):
        text = "BFA\tAcções\t25.000,00\t1,50\t3\t120\t3.000.000,00\r\n"
        records = parse_delimited_text(text, DAY)
        assert records[0].amount == 3000000.0

    def test_no_valid_rows(self):
        with pytest.raises(NoValidRowsError):
            parse_delimited_text("Resumo\nnada aqui", DAY)


# ─────────────────────────────────────────────────────────
# 4. 表格解码
# ─────────────────────────────────────────────────────────

def _xlsx_bytes(rows: list) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class TestDecodeSpreadsheet:
    def test_xlsx_workbook(self):
        content = _xlsx_bytes([
            ["Resumo dos Mercados"],
            HEADER,
            ["BFA", "Acções", "25.000,00", "1,50", 3, 120, "3.000.000,00"],
            ["UNITEL", "Acções", 15000.5, 0, 2, 40, 600020],
        ])
        grid = decode_spreadsheet(content)
        assert grid[1][0] == "Valor Mobiliário"

        records = extract_records(grid, DAY)
        assert len(records) == 2
        assert records[0].num_trades == 3
        assert records[1].price == 15000.5
        assert records[1].quantity == 40

    def test_percent_formatted_variation(self):
        """百分比格式单元格按显示值读取，其余数值保持原值"""
        wb = Workbook()
        ws = wb.active
        ws.append(["Resumo dos Mercados"])
        ws.append([])
        ws.append(HEADER)
        ws.append(["BFA", "Acções", 25000, 0.0156, 3, 120, 3000000])
        ws.append(["BAI", "Acções", 0.5, -0.02, 1, 10, 5])
        ws["D4"].number_format = "0.00%"
        ws["D5"].number_format = "0.00%"
        buf = io.BytesIO()
        wb.save(buf)

        records = extract_records(decode_spreadsheet(buf.getvalue()), DAY)
        assert records[0].variation == pytest.approx(1.56)
        assert records[1].variation == pytest.approx(-2.0)
        assert records[0].price == 25000.0
        assert records[1].price == 0.5
        assert records[0].amount == 3000000.0

    def test_html_table_keeps_locale_text(self):
        content = (
            "<html><body><table>"
            "<tr><th>Valor Mobiliário</th><th>Tipologia</th><th>Preço</th><th>Variação</th>"
            "<th>N° de Negócios</th><th>Quantidade</th><th>Montante</th></tr>"
            "<tr><td>BAI</td><td>Acções</td><td>42.000,00</td><td>0,00</td>"
            "<td>1</td><td>1.000</td><td>42.000.000,00</td></tr>"
            "</table></body></html>"
        ).encode("utf-8")
        records = extract_records(decode_spreadsheet(content), DAY)
        assert records[0].price == 42000.0
        assert records[0].quantity == 1000

    def test_empty_bytes(self):
        with pytest.raises(EmptyWorkbookError):
            decode_spreadsheet(b"")

    def test_garbage_bytes(self):
        with pytest.raises(SpreadsheetDecodeError):
            decode_spreadsheet(b"definitely not a spreadsheet")
