"""Tests for the worksheet extraction strategies and the row selector."""

from __future__ import annotations

import datetime as dt
import io

import openpyxl
import pandas as pd
import pytest

from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.errors import ErrorCode, IngestError
from ingestkit_reports.extractor import (
    DelimitedTextStrategy,
    RowObjectStrategy,
    StructuredArrayStrategy,
    WorksheetExtractor,
    WorksheetSource,
    drop_blank_rows,
    format_cell,
    records_to_rows,
    reparse_delimited,
    select_rows,
    trim_to_data_bounds,
)
from ingestkit_reports.models import ExtractionMethod


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _source(data: bytes, tab_name: str) -> WorksheetSource:
    wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True)
    return WorksheetSource(
        tab_name=tab_name,
        worksheet=wb[tab_name],
        excel_file=pd.ExcelFile(io.BytesIO(data), engine="openpyxl"),
    )


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------


class TestFormatCell:
    def test_none(self) -> None:
        assert format_cell(None, None, "%Y-%m-%d") == ""

    def test_integral_float(self) -> None:
        assert format_cell(1234.0, "General", "%Y-%m-%d") == "1234"

    def test_fractional_float(self) -> None:
        assert format_cell(12.5, "General", "%Y-%m-%d") == "12.5"

    def test_bool(self) -> None:
        assert format_cell(True, None, "%Y-%m-%d") == "TRUE"
        assert format_cell(False, None, "%Y-%m-%d") == "FALSE"

    def test_date(self) -> None:
        assert format_cell(dt.datetime(2024, 1, 31, 8, 0), None, "%Y-%m-%d") == "2024-01-31"
        assert format_cell(dt.date(2024, 2, 1), None, "%d/%m/%Y") == "01/02/2024"

    def test_percent_format(self) -> None:
        assert format_cell(0.25, "0%", "%Y-%m-%d") == "25%"
        assert format_cell(0.256, "0.0%", "%Y-%m-%d") == "25.6%"

    def test_nan(self) -> None:
        assert format_cell(float("nan"), None, "%Y-%m-%d") == ""

    def test_string_trimmed(self) -> None:
        assert format_cell("  $5  ", None, "%Y-%m-%d") == "$5"

    def test_currency_with_grouping(self) -> None:
        assert format_cell(12345.67, '"$"#,##0.00', "%Y-%m-%d") == "$12,345.67"

    def test_thousands_grouping(self) -> None:
        assert format_cell(1234567, "#,##0", "%Y-%m-%d") == "1,234,567"
        assert format_cell(1234.5, "#,##0.00", "%Y-%m-%d") == "1,234.50"

    def test_fixed_decimals(self) -> None:
        assert format_cell(3, "0.00", "%Y-%m-%d") == "3.00"
        assert format_cell(2.675, "0.00", "%Y-%m-%d") == "2.68"

    def test_optional_decimals(self) -> None:
        assert format_cell(12.5, "0.##", "%Y-%m-%d") == "12.5"
        assert format_cell(12.0, "0.##", "%Y-%m-%d") == "12"

    @pytest.mark.parametrize(
        ("number_format", "expected"),
        [
            ("[$€-407]#,##0.00", "€1,234.50"),
            ("£#,##0.00", "£1,234.50"),
            ('#,##0.00 "EUR"', "1,234.50 EUR"),
            ("#,##0.00 [$€-407]", "1,234.50 €"),
            ("[Blue]$#,##0.00", "$1,234.50"),
        ],
    )
    def test_currency_symbols(self, number_format, expected) -> None:
        assert format_cell(1234.5, number_format, "%Y-%m-%d") == expected

    def test_negative_without_section(self) -> None:
        assert format_cell(-1234, '"$"#,##0.00', "%Y-%m-%d") == "-$1,234.00"

    def test_negative_section_in_parentheses(self) -> None:
        fmt = '"$"#,##0.00_);[Red]\\("$"#,##0.00\\)'
        assert format_cell(-1234, fmt, "%Y-%m-%d") == "($1,234.00)"
        assert format_cell(1234, fmt, "%Y-%m-%d") == "$1,234.00"

    def test_accounting_format(self) -> None:
        fmt = '_("$"* #,##0.00_);_("$"* \\(#,##0.00\\);_("$"* "-"??_);_(@_)'
        assert format_cell(1234.5, fmt, "%Y-%m-%d") == "$1,234.50"
        assert format_cell(-1234.5, fmt, "%Y-%m-%d") == "$(1,234.50)"
        assert format_cell(0, fmt, "%Y-%m-%d") == "$-"

    def test_bare_parentheses_negative(self) -> None:
        fmt = "#,##0.00_);(#,##0.00)"
        assert format_cell(-1234.5, fmt, "%Y-%m-%d") == "(1,234.50)"
        assert format_cell(0.125, "0.00%", "%Y-%m-%d") == "12.50%"

    def test_semicolon_inside_quotes(self) -> None:
        assert format_cell(5, '0" a;b"', "%Y-%m-%d") == "5 a;b"

    @pytest.mark.parametrize("number_format", ["General", "@", "0.00E+00", "h:mm", None, ""])
    def test_unrendered_formats_keep_raw_number(self, number_format) -> None:
        assert format_cell(1234.5, number_format, "%Y-%m-%d") == "1234.5"
        assert format_cell(7.0, number_format, "%Y-%m-%d") == "7"

    def test_infinite_keeps_raw_number(self) -> None:
        assert format_cell(float("inf"), "#,##0", "%Y-%m-%d") == "inf"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class TestStrategies:
    def test_structured_array(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes({"P&L": [["Metric", "Value"], ["Sales", 100.0], ["Note", None]]})
        result = StructuredArrayStrategy(sample_config).run(_source(data, "P&L"))
        assert result.method is ExtractionMethod.STRUCTURED_ARRAY
        assert result.rows == [["Metric", "Value"], ["Sales", "100"], ["Note", ""]]
        assert result.size == 3

    def test_delimited_text_quotes_embedded_delimiters(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes({"Products": [["ASIN", "Title"], ["B01", "Widget, Blue"]]})
        result = DelimitedTextStrategy(sample_config).run(_source(data, "Products"))
        assert result.text == 'ASIN,Title\nB01,"Widget, Blue"\n'
        assert result.size == len(result.text)

    def test_delimited_text_renders_percent(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes(
            {"P&L": [["Margin", 0.25]]},
            number_formats={("P&L", "B1"): "0%"},
        )
        result = DelimitedTextStrategy(sample_config).run(_source(data, "P&L"))
        assert result.text == "Margin,25%\n"

    def test_structured_array_trims_offset_table(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes(
            {"P&L": []},
            cells={("P&L", "B2"): "Sales", ("P&L", "C2"): "$100", ("P&L", "B3"): "Net Profit"},
        )
        result = StructuredArrayStrategy(sample_config).run(_source(data, "P&L"))
        assert result.rows == [["Sales", "$100"], ["Net Profit", ""]]

    def test_delimited_text_renders_currency(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes(
            {"P&L": [["Sales", 12345.67]]},
            number_formats={("P&L", "B1"): '"$"#,##0.00'},
        )
        result = DelimitedTextStrategy(sample_config).run(_source(data, "P&L"))
        assert result.text == 'Sales,"$12,345.67"\n'

    def test_row_objects(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes({"Products": [["ASIN", "Title"], ["B01", "Widget"], ["B02", None]]})
        result = RowObjectStrategy(sample_config).run(_source(data, "Products"))
        assert result.records == [
            {"ASIN": "B01", "Title": "Widget"},
            {"ASIN": "B02", "Title": None},
        ]

    def test_row_objects_require_pandas_workbook(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes({"Products": [["ASIN"]]})
        source = _source(data, "Products")
        source.excel_file = None
        with pytest.raises(ValueError):
            RowObjectStrategy(sample_config).run(source)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectRows:
    def test_delimited_text_wins_above_ratio(self, sample_config) -> None:
        rows, method = select_rows(
            [["x"]],
            "alpha,beta\ngamma,delta\n",
            [{"alpha": "gamma"}, {"alpha": "x"}],
            sample_config,
        )
        assert method is ExtractionMethod.DELIMITED_TEXT
        assert rows == [["alpha", "beta"], ["gamma", "delta"]]

    def test_ratio_is_strictly_greater(self, sample_config) -> None:
        rows, method = select_rows([["abc", "def"]], "abc,def\n", None, sample_config)
        assert method is ExtractionMethod.STRUCTURED_ARRAY
        assert rows == [["abc", "def"]]

    def test_delimited_text_needs_newline(self, sample_config) -> None:
        _, method = select_rows([["x"]], "alpha,beta,gamma", None, sample_config)
        assert method is ExtractionMethod.STRUCTURED_ARRAY

    def test_row_objects_when_more_rows(self, sample_config) -> None:
        rows, method = select_rows(
            [["h"]], None, [{"h": 1}, {"h": [1, 2]}, {"h": None}], sample_config
        )
        assert method is ExtractionMethod.ROW_OBJECT
        assert rows == [["h"], ["1"], ["[1, 2]"]]

    def test_row_objects_need_more_rows_than_structured(self, sample_config) -> None:
        rows, method = select_rows(
            [["h"], ["1"]], None, [{"h": 1}], sample_config
        )
        assert method is ExtractionMethod.STRUCTURED_ARRAY
        assert rows == [["h"], ["1"]]

    def test_row_objects_need_keys(self, sample_config) -> None:
        _, method = select_rows(None, None, [{}, {}], sample_config)
        assert method is ExtractionMethod.STRUCTURED_ARRAY

    def test_all_missing_gives_empty(self, sample_config) -> None:
        assert select_rows(None, None, None, sample_config) == (
            [],
            ExtractionMethod.STRUCTURED_ARRAY,
        )

    def test_threshold_is_configurable(self) -> None:
        config = ReportParserConfig(delimited_text_ratio_threshold=100.0)
        _, method = select_rows([["x"]], "alpha,beta\ngamma,delta\n", None, config)
        assert method is ExtractionMethod.STRUCTURED_ARRAY


class TestHelpers:
    def test_drop_blank_rows(self) -> None:
        rows = [["", ""], ["null", "undefined"], [" NULL ", ""], ["x", ""]]
        assert drop_blank_rows(rows) == [["x", ""]]

    def test_reparse_strips_one_layer_of_quotes(self) -> None:
        assert reparse_delimited('a,"b, c"\n\n"d",e\n') == [["a", "b, c"], ["d", "e"]]

    def test_records_to_rows_blank_unnamed_header(self) -> None:
        rows = records_to_rows([{"ASIN": "B01", "Unnamed: 1": "x"}], "%Y-%m-%d")
        assert rows == [["ASIN", ""], ["B01", "x"]]

    def test_trim_to_data_bounds(self) -> None:
        rows = [["", "", ""], ["", "Sales", "$100"], ["", "", ""], ["", "Net", "$40"], ["", ""]]
        assert trim_to_data_bounds(rows) == [["Sales", "$100"], ["", ""], ["Net", "$40"]]

    def test_trim_to_data_bounds_all_blank(self) -> None:
        assert trim_to_data_bounds([["", " "], [""]]) == []
        assert trim_to_data_bounds([]) == []


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class TestWorksheetExtractor:
    def test_extract_records_every_attempt(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes(
            {"Payouts": [["Latest Payout", "$1,000.00"], ["Previous Payout", 900]]}
        )
        extraction = WorksheetExtractor(sample_config).extract(_source(data, "Payouts"))
        assert extraction.method is ExtractionMethod.DELIMITED_TEXT
        assert extraction.rows == [
            ["Latest Payout", "$1,000.00"],
            ["Previous Payout", "900"],
        ]
        assert [a.method for a in extraction.attempts] == [
            ExtractionMethod.STRUCTURED_ARRAY,
            ExtractionMethod.DELIMITED_TEXT,
            ExtractionMethod.ROW_OBJECT,
        ]
        assert all(a.succeeded for a in extraction.attempts)

    def test_dates_rendered(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes({"Payouts": [["Latest Payout Date", dt.datetime(2024, 1, 31)]]})
        extraction = WorksheetExtractor(sample_config).extract(_source(data, "Payouts"))
        assert extraction.rows == [["Latest Payout Date", "2024-01-31"]]

    def test_all_strategies_fail(self, sample_config) -> None:
        errors: list[IngestError] = []
        source = WorksheetSource(tab_name="Broken", worksheet=object(), excel_file=None)
        extraction = WorksheetExtractor(sample_config).extract(source, errors)
        assert extraction.rows == []
        assert not any(a.succeeded for a in extraction.attempts)
        codes = [e.code for e in errors]
        assert codes.count(ErrorCode.W_EXTRACTION_STRATEGY_FAILED) == 3
        assert codes[-1] is ErrorCode.W_EXTRACTION_ALL_FAILED
        assert all(e.tab_name == "Broken" for e in errors)

    def test_one_strategy_failure_is_tolerated(self, workbook_bytes, sample_config) -> None:
        data = workbook_bytes({"Payouts": [["Latest Payout", 100]]})
        source = _source(data, "Payouts")
        source.excel_file = None
        errors: list[IngestError] = []
        extraction = WorksheetExtractor(sample_config).extract(source, errors)
        assert extraction.rows == [["Latest Payout", "100"]]
        assert [e.code for e in errors] == [ErrorCode.W_EXTRACTION_STRATEGY_FAILED]
