"""Per-worksheet extraction with ranked, independently fallible strategies.

Three strategies read every worksheet:

1. **structured array** -- openpyxl ``iter_rows``, one list of display
   strings per row, header included, trimmed to the cells that hold data.
2. **delimited text** -- the formatted sheet rendered to CSV through a
   pandas ``DataFrame``, to be reparsed with the quote-aware tokenizer.
3. **row objects** -- pandas ``read_excel(header=0)`` records keyed by the
   header text.

Each strategy may fail on its own; a failure is recorded as an
:class:`~ingestkit_reports.models.ExtractionAttempt` and never escapes.
:func:`select_rows` then picks one result with a fixed, first-match-wins
policy.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import pandas as pd

from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.errors import ErrorCode, IngestError
from ingestkit_reports.models import (
    ExtractionAttempt,
    ExtractionMethod,
    WorksheetExtraction,
)
from ingestkit_reports.tokenizer import split_cells, split_logical_lines

logger = logging.getLogger("ingestkit_reports")

_NULL_MARKERS = frozenset({"", "null", "undefined"})


@dataclass
class WorksheetSource:
    """Everything the strategies need to read one tab.

    ``excel_file`` is shared by all tabs of a workbook and may be ``None``
    when pandas could not open the buffer; the row-object strategy then
    fails for every tab.
    """

    tab_name: str
    worksheet: Any
    excel_file: pd.ExcelFile | None = None


@dataclass
class StrategyResult:
    """Raw output of one strategy.  ``size`` is rows or characters."""

    method: ExtractionMethod
    size: int
    rows: list[list[str]] | None = None
    text: str | None = None
    records: list[dict[str, Any]] | None = None


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------

_DIGIT_PLACEHOLDERS = frozenset("0#?")
_PATTERN_CHARS = frozenset("0#?,.")
_DATE_TIME_CHARS = frozenset("dmyhs")


def _split_sections(number_format: str) -> list[str]:
    """Split a number format on ``;`` outside quoted literals."""
    sections: list[str] = []
    current: list[str] = []
    quoted = False
    for ch in number_format:
        if ch == '"':
            quoted = not quoted
        if ch == ";" and not quoted:
            sections.append("".join(current))
            current = []
        else:
            current.append(ch)
    sections.append("".join(current))
    return sections


def _parse_section(section: str) -> tuple[str, str, str, bool] | None:
    """Split one format section into prefix, digit pattern, suffix and a percent flag.

    Returns ``None`` for sections that are not plain numeric formats
    (``General``, text, dates, times, scientific notation).
    """
    prefix: list[str] = []
    pattern: list[str] = []
    suffix: list[str] = []
    percent = False
    i = 0
    while i < len(section):
        ch = section[i]
        target = suffix if pattern else prefix
        if ch == '"':
            end = section.find('"', i + 1)
            end = len(section) if end == -1 else end
            target.append(section[i + 1 : end])
            i = end + 1
            continue
        if ch == "\\":
            target.append(section[i + 1 : i + 2])
            i += 2
            continue
        if ch in "_*":
            # Padding and repeat-fill take the following character.
            i += 2
            continue
        if ch == "[":
            end = section.find("]", i)
            if end == -1:
                return None
            token = section[i + 1 : end]
            if token.startswith("$"):
                target.append(token[1:].split("-", 1)[0])
            i = end + 1
            continue
        if ch in _PATTERN_CHARS:
            if not suffix:
                pattern.append(ch)
            i += 1
            continue
        if ch in "eE" or ch.lower() in _DATE_TIME_CHARS or ch == "@":
            return None
        if ch == "%":
            percent = True
        target.append(ch)
        i += 1

    digits = "".join(pattern)
    if not _DIGIT_PLACEHOLDERS.intersection(digits):
        return None
    return "".join(prefix), digits, "".join(suffix), percent


def _render_digits(number: Decimal, pattern: str) -> str:
    integer_part, _, fraction_part = pattern.partition(".")
    scale = len(integer_part) - len(integer_part.rstrip(","))
    if scale:
        number = number / (Decimal(1000) ** scale)
        integer_part = integer_part.rstrip(",")
    grouped = "," in integer_part
    decimals = sum(1 for ch in fraction_part if ch in _DIGIT_PLACEHOLDERS)
    required = fraction_part.count("0")

    rounded = number.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    text = f"{rounded:,.{decimals}f}" if grouped else f"{rounded:.{decimals}f}"

    if decimals > required:
        whole, _, frac = text.partition(".")
        frac = frac.rstrip("0").ljust(required, "0")
        text = f"{whole}.{frac}" if frac else whole
    if "0" not in integer_part and text.startswith("0"):
        text = text[1:]
    return text


def render_number(value: int | float, number_format: str) -> str | None:
    """Render *value* the way a spreadsheet displays it under *number_format*.

    Handles thousands grouping (``#,##0``), fixed decimals (``0.00``),
    percentages, quoted and bracketed currency literals (``"$"``,
    ``[$€-407]``, bare ``£``), and separate negative / zero sections such as
    the accounting ``_("$"* #,##0.00_);_("$"* \\(#,##0.00\\);...``.

    Returns ``None`` when the format is not a plain numeric one; callers then
    fall back to the raw value.
    """
    if not math.isfinite(value):
        return None

    number = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    sections = _split_sections(number_format)
    sign = ""
    if number < 0 and len(sections) >= 2 and sections[1]:
        section = sections[1]
        number = -number
    elif number == 0 and len(sections) >= 3 and sections[2]:
        section = sections[2]
    else:
        section = sections[0]
        if number < 0:
            sign = "-"
            number = -number

    parsed = _parse_section(section)
    if parsed is None:
        return None
    prefix, pattern, suffix, percent = parsed
    if percent:
        number *= 100
    return f"{sign}{prefix}{_render_digits(number, pattern)}{suffix}".strip()


def format_cell(value: Any, number_format: str | None, date_format: str) -> str:
    """Render one cell value as display text.

    ``None`` and NaN become ``""``; dates use *date_format*; booleans become
    ``TRUE`` / ``FALSE``.  Numbers follow their cell's number format through
    :func:`render_number`; under ``General`` integral floats drop the ``.0``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (dt.datetime, dt.date)):
        return value.strftime(date_format)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return ""
        if number_format and number_format != "General":
            rendered = render_number(value, number_format)
            if rendered is not None:
                return rendered
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, dt.time):
        return value.isoformat()
    return str(value).strip()


def trim_to_data_bounds(rows: list[list[str]]) -> list[list[str]]:
    """Trim a formatted grid to the bounding box of non-empty cells.

    ``iter_rows`` always starts at ``A1``, so a table placed at ``B2`` would
    otherwise carry a leading blank row and a leading blank column.  Empty
    rows inside the box are kept.
    """
    if not rows:
        return []

    min_row = len(rows)
    max_row = -1
    min_col = max(len(r) for r in rows)
    max_col = -1

    for row_idx, row in enumerate(rows):
        for col_idx, val in enumerate(row):
            if val.strip():
                min_row = min(min_row, row_idx)
                max_row = max(max_row, row_idx)
                min_col = min(min_col, col_idx)
                max_col = max(max_col, col_idx)

    if max_row == -1:
        return []

    return [row[min_col : max_col + 1] for row in rows[min_row : max_row + 1]]


def _worksheet_rows(worksheet: Any, date_format: str) -> list[list[str]]:
    rows: list[list[str]] = []
    for row in worksheet.iter_rows():
        rows.append(
            [
                format_cell(
                    cell.value, getattr(cell, "number_format", None), date_format
                )
                for cell in row
            ]
        )
    return trim_to_data_bounds(rows)



def _jsonable(value: Any, date_format: str) -> str:
    if isinstance(value, (list, dict, tuple)):
        return json.dumps(value, default=str)
    if value is pd.NaT:
        return ""
    if isinstance(value, pd.Timestamp):
        return value.strftime(date_format)
    return format_cell(value, None, date_format)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class StructuredArrayStrategy:
    """Read the worksheet cell by cell with openpyxl."""

    method = ExtractionMethod.STRUCTURED_ARRAY

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config

    def run(self, source: WorksheetSource) -> StrategyResult:
        rows = _worksheet_rows(source.worksheet, self._config.date_format)
        return StrategyResult(method=self.method, size=len(rows), rows=rows)


class DelimitedTextStrategy:
    """Render the formatted worksheet to delimited text via pandas."""

    method = ExtractionMethod.DELIMITED_TEXT

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config

    def run(self, source: WorksheetSource) -> StrategyResult:
        frame = pd.DataFrame(
            _worksheet_rows(source.worksheet, self._config.date_format)
        )
        text = frame.to_csv(
            sep=self._config.field_delimiter,
            index=False,
            header=False,
            lineterminator="\n",
        )
        return StrategyResult(method=self.method, size=len(text), text=text)


class RowObjectStrategy:
    """Read the tab through pandas as header-keyed records."""

    method = ExtractionMethod.ROW_OBJECT

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config

    def run(self, source: WorksheetSource) -> StrategyResult:
        if source.excel_file is None:
            raise ValueError("workbook could not be opened by pandas")
        frame = pd.read_excel(
            source.excel_file,
            sheet_name=source.tab_name,
            header=0,
            dtype=object,
        )
        frame = frame.astype(object).where(frame.notna(), None)
        records = frame.to_dict(orient="records")
        return StrategyResult(
            method=self.method, size=len(records), records=records
        )


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def reparse_delimited(text: str, delimiter: str = ",") -> list[list[str]]:
    """Turn rendered delimited text back into trimmed rows.

    Quoted cells lose one layer of surrounding quotes; quoted delimiters and
    newlines stay inside their cell.
    """
    return [split_cells(line, delimiter) for line in split_logical_lines(text)]


def records_to_rows(
    records: list[dict[str, Any]], date_format: str
) -> list[list[str]]:
    """Header row from the first record's key order, then one row per record."""
    keys = list(records[0])
    header = ["" if str(k).startswith("Unnamed:") else str(k) for k in keys]
    rows = [header]
    for record in records:
        rows.append([_jsonable(record.get(key), date_format) for key in keys])
    return rows


def drop_blank_rows(rows: list[list[str]]) -> list[list[str]]:
    """Keep rows with at least one cell that is not blank, ``null`` or ``undefined``."""
    return [
        row
        for row in rows
        if any(str(cell).strip().lower() not in _NULL_MARKERS for cell in row)
    ]


def select_rows(
    structured: list[list[str]] | None,
    delimited: str | None,
    row_objects: list[dict[str, Any]] | None,
    config: ReportParserConfig,
) -> tuple[list[list[str]], ExtractionMethod]:
    """Choose one strategy's output; the first matching rule wins.

    1. Delimited text, when its length per structured row exceeds
       ``config.delimited_text_ratio_threshold`` and it contains both the
       delimiter and a newline.
    2. Row objects, when there are more of them than structured rows and
       the first one has at least one key.
    3. The structured array (empty when that strategy failed).

    Blank rows are dropped from the result.
    """
    structured_count = len(structured) if structured else 0

    if delimited:
        ratio = len(delimited) / max(structured_count, 1)
        if (
            ratio > config.delimited_text_ratio_threshold
            and config.field_delimiter in delimited
            and "\n" in delimited
        ):
            rows = reparse_delimited(delimited, config.field_delimiter)
            return drop_blank_rows(rows), ExtractionMethod.DELIMITED_TEXT

    if (
        row_objects
        and len(row_objects) > structured_count
        and len(row_objects[0]) >= 1
    ):
        rows = records_to_rows(row_objects, config.date_format)
        return drop_blank_rows(rows), ExtractionMethod.ROW_OBJECT

    return drop_blank_rows(structured or []), ExtractionMethod.STRUCTURED_ARRAY


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class WorksheetExtractor:
    """Run every strategy on a worksheet and select the final rows.

    Parameters
    ----------
    config:
        Pipeline configuration controlling the selection threshold, the
        delimiter, and date rendering.
    """

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config
        self._strategies = (
            StructuredArrayStrategy(config),
            DelimitedTextStrategy(config),
            RowObjectStrategy(config),
        )

    def extract(
        self,
        source: WorksheetSource,
        errors: list[IngestError] | None = None,
    ) -> WorksheetExtraction:
        """Extract rows from one worksheet.  Never raises.

        Parameters
        ----------
        source:
            The tab to read.
        errors:
            Optional list that strategy warnings are appended to.

        Returns
        -------
        WorksheetExtraction
            Selected rows, the chosen method, and one attempt per strategy.
            When every strategy fails, ``rows`` is empty.
        """
        if errors is None:
            errors = []

        attempts: list[ExtractionAttempt] = []
        results: dict[ExtractionMethod, StrategyResult] = {}

        for strategy in self._strategies:
            result = self._try_strategy(strategy, source, attempts, errors)
            if result is not None:
                results[strategy.method] = result

        if not results:
            errors.append(
                IngestError(
                    code=ErrorCode.W_EXTRACTION_ALL_FAILED,
                    message=f"All extraction strategies failed for '{source.tab_name}'.",
                    tab_name=source.tab_name,
                    stage="extract",
                    recoverable=True,
                )
            )
            logger.warning(
                "All extraction strategies failed for tab '%s'", source.tab_name
            )
            return WorksheetExtraction(
                tab_name=source.tab_name,
                rows=[],
                method=ExtractionMethod.STRUCTURED_ARRAY,
                attempts=attempts,
            )

        structured = results.get(ExtractionMethod.STRUCTURED_ARRAY)
        delimited = results.get(ExtractionMethod.DELIMITED_TEXT)
        row_objects = results.get(ExtractionMethod.ROW_OBJECT)

        rows, method = select_rows(
            structured.rows if structured else None,
            delimited.text if delimited else None,
            row_objects.records if row_objects else None,
            self._config,
        )
        logger.debug(
            "Tab '%s': selected %s (%d rows)",
            source.tab_name,
            method.value,
            len(rows),
        )
        return WorksheetExtraction(
            tab_name=source.tab_name,
            rows=rows,
            method=method,
            attempts=attempts,
        )

    def _try_strategy(
        self,
        strategy: StructuredArrayStrategy | DelimitedTextStrategy | RowObjectStrategy,
        source: WorksheetSource,
        attempts: list[ExtractionAttempt],
        errors: list[IngestError],
    ) -> StrategyResult | None:
        """Run one strategy; record the attempt.  Returns ``None`` on failure."""
        try:
            result = strategy.run(source)
        except Exception as exc:
            logger.debug(
                "%s failed for tab '%s'",
                strategy.method.value,
                source.tab_name,
                exc_info=True,
            )
            attempts.append(
                ExtractionAttempt(
                    method=strategy.method, succeeded=False, error=str(exc)
                )
            )
            errors.append(
                IngestError(
                    code=ErrorCode.W_EXTRACTION_STRATEGY_FAILED,
                    message=(
                        f"{strategy.method.value} extraction failed for "
                        f"'{source.tab_name}': {exc}"
                    ),
                    tab_name=source.tab_name,
                    stage="extract",
                    recoverable=True,
                )
            )
            return None

        logger.debug(
            "Tab '%s': %s size=%d",
            source.tab_name,
            strategy.method.value,
            result.size,
        )
        attempts.append(
            ExtractionAttempt(
                method=strategy.method, succeeded=True, size=result.size
            )
        )
        return result
