"""ReportRouter -- orchestrator and public API for ingestkit-reports.

Routes one report document through the pipeline:

1. Validate the input and choose the entry path (workbook or delimited
   text), correcting a mislabelled media type by sniffing the content.
2. Build one :class:`~ingestkit_reports.models.TabOutcome` per worksheet
   (via :class:`~ingestkit_reports.extractor.WorksheetExtractor`) or per
   CSV section (via :class:`~ingestkit_reports.sections.SectionSplitter`).
3. Classify and normalize every unit through
   :class:`~ingestkit_reports.aggregator.ReportAggregator`.
4. Return a :class:`~ingestkit_reports.models.ReportParseResult`.

Only fatal problems with the input as a whole raise
:class:`~ingestkit_reports.errors.ReportParseException`; everything scoped to
a tab, section, or row is collected as a warning.
"""

from __future__ import annotations

import io
import logging
import time

import openpyxl
import pandas as pd
from openpyxl.chartsheet import Chartsheet

from ingestkit_reports.aggregator import ReportAggregator
from ingestkit_reports.classifier import ReportClassifier
from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.errors import ErrorCode, IngestError, ReportParseException
from ingestkit_reports.extractor import (
    WorksheetExtractor,
    WorksheetSource,
    drop_blank_rows,
)
from ingestkit_reports.models import (
    ParsedReport,
    ReportParseResult,
    SourceFormat,
    TabOutcome,
)
from ingestkit_reports.sections import SectionSplitter
from ingestkit_reports.sniffer import coerce_to_bytes, is_spreadsheet_content
from ingestkit_reports.tokenizer import split_logical_lines

logger = logging.getLogger("ingestkit_reports")

WORKBOOK_MIME_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.google-apps.spreadsheet",
        "application/vnd.ms-excel",
    }
)
WORKBOOK_EXTENSIONS = (".xlsx", ".xlsm")

_BOM = "\ufeff"


def _fatal(code: ErrorCode, message: str) -> ReportParseException:
    logger.error("Report parse failed: %s", message)
    return ReportParseException(
        code=code, message=message, stage="input", recoverable=False
    )


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class ReportRouter:
    """Orchestrator that turns one report document into a ``ParsedReport``.

    Parameters
    ----------
    config:
        Pipeline configuration.  Uses defaults when *None*.
    """

    def __init__(self, config: ReportParserConfig | None = None) -> None:
        self._config = config or ReportParserConfig()
        self._extractor = WorksheetExtractor(self._config)
        self._classifier = ReportClassifier()
        self._splitter = SectionSplitter(self._config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse_workbook(self, data: bytes | bytearray | memoryview) -> ReportParseResult:
        """Parse an in-memory spreadsheet workbook.

        Parameters
        ----------
        data:
            The raw ``.xlsx`` bytes.

        Returns
        -------
        ReportParseResult
            The report plus per-tab diagnostics.

        Raises
        ------
        ReportParseException
            If the buffer is not bytes-like, is empty, exceeds the size
            limit, cannot be opened as a workbook, or holds no worksheets.
        """
        start = time.monotonic()
        buffer = self._validate_buffer(data)
        workbook = self._open_workbook(buffer)
        excel_file: pd.ExcelFile | None = None
        aggregator = ReportAggregator(self._config)

        try:
            sheet_names = list(workbook.sheetnames)
            if not sheet_names:
                raise _fatal(
                    ErrorCode.E_PARSE_NO_WORKSHEETS,
                    "Workbook contains no worksheets.",
                )

            excel_file = self._open_excel_file(buffer)
            for tab_name in sheet_names:
                try:
                    outcome = self._tab_outcome(
                        workbook[tab_name], tab_name, excel_file, aggregator.errors
                    )
                except Exception as exc:
                    logger.warning(
                        "Tab '%s' could not be read: %s", tab_name, exc, exc_info=True
                    )
                    aggregator.errors.append(
                        IngestError(
                            code=ErrorCode.W_TAB_FAILED,
                            message=f"Reading tab '{tab_name}' failed: {exc}",
                            tab_name=tab_name,
                            stage="extract",
                            recoverable=True,
                        )
                    )
                    outcome = TabOutcome.skip(ErrorCode.W_TAB_FAILED, str(exc))
                aggregator.consume(tab_name, outcome, self._classifier.classify_tab)
        finally:
            if excel_file is not None:
                excel_file.close()
            workbook.close()

        return self._build_result(aggregator, SourceFormat.WORKBOOK, start)

    def parse_delimited_text(self, text: str) -> ReportParseResult:
        """Parse a flat delimited (CSV-like) report body.

        Blank text yields the fully defaulted report.

        Raises
        ------
        ReportParseException
            If *text* is not a ``str``.
        """
        start = time.monotonic()
        if not isinstance(text, str):
            raise _fatal(
                ErrorCode.E_INPUT_INVALID_TYPE,
                f"Delimited text input must be str, got {type(text).__name__}.",
            )

        aggregator = ReportAggregator(self._config)
        body = text.lstrip(_BOM)
        if not body.strip():
            logger.info("Delimited text is blank; returning empty report")
            return self._build_result(aggregator, SourceFormat.DELIMITED_TEXT, start)

        sections = self._splitter.split(split_logical_lines(body))
        for name, rows in sections.items():
            rows = drop_blank_rows(rows)
            outcome = (
                TabOutcome.ok(rows)
                if rows
                else TabOutcome.skip(ErrorCode.W_TAB_NO_ROWS)
            )
            aggregator.consume(name, outcome, self._classifier.classify_section)

        return self._build_result(aggregator, SourceFormat.DELIMITED_TEXT, start)

    def parse(
        self,
        content: str | bytes | bytearray | memoryview,
        mime_type: str | None = None,
        file_name: str | None = None,
    ) -> ReportParseResult:
        """Parse a downloaded report whatever its declared type.

        The declared *mime_type* / *file_name* are hints only: spreadsheet
        containers are detected from the content, and a text body labelled
        as a spreadsheet that cannot be opened falls back to the
        delimited-text path.
        """
        declared_workbook = self._declares_workbook(mime_type, file_name)
        warnings: list[IngestError] = []

        if isinstance(content, (bytes, bytearray, memoryview)):
            if is_spreadsheet_content(content):
                return self.parse_workbook(content)
            if declared_workbook:
                warnings.append(
                    self._warning(
                        ErrorCode.W_WORKBOOK_FALLBACK_TO_TEXT,
                        "Declared spreadsheet is not a workbook container; "
                        "parsed as delimited text.",
                    )
                )
            text = bytes(content).decode("utf-8", errors="replace")
            return self._with_warnings(self.parse_delimited_text(text), warnings)

        if isinstance(content, str):
            if not is_spreadsheet_content(content):
                return self.parse_delimited_text(content)

            logger.info("Text body looks like a spreadsheet container; opening as workbook")
            warnings.append(
                self._warning(
                    ErrorCode.W_CONTENT_SNIFFED,
                    "Text content sniffed as a spreadsheet container.",
                )
            )
            try:
                result = self.parse_workbook(coerce_to_bytes(content))
            except ReportParseException as exc:
                if exc.code not in (
                    ErrorCode.E_PARSE_CORRUPT,
                    ErrorCode.E_PARSE_NO_WORKSHEETS,
                ):
                    raise
                logger.warning(
                    "Sniffed workbook could not be opened (%s); parsing as text",
                    exc.code.value,
                )
                warnings.append(
                    self._warning(
                        ErrorCode.W_WORKBOOK_FALLBACK_TO_TEXT,
                        f"Workbook open failed ({exc.message}); parsed as delimited text.",
                    )
                )
                result = self.parse_delimited_text(content)
            return self._with_warnings(result, warnings)

        raise _fatal(
            ErrorCode.E_INPUT_INVALID_TYPE,
            f"Report content must be str or bytes, got {type(content).__name__}.",
        )

    # ------------------------------------------------------------------
    # Workbook helpers
    # ------------------------------------------------------------------

    def _validate_buffer(self, data: object) -> bytes:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise _fatal(
                ErrorCode.E_INPUT_INVALID_TYPE,
                f"Workbook input must be bytes-like, got {type(data).__name__}.",
            )
        buffer = bytes(data)
        if not buffer:
            raise _fatal(ErrorCode.E_PARSE_EMPTY, "Workbook buffer is empty (0 bytes).")
        limit = self._config.max_file_size_mb * 1024 * 1024
        if len(buffer) > limit:
            raise _fatal(
                ErrorCode.E_SECURITY_TOO_LARGE,
                f"Workbook is {len(buffer)} bytes, exceeding the "
                f"{self._config.max_file_size_mb} MB limit.",
            )
        return buffer

    def _open_workbook(self, buffer: bytes) -> openpyxl.Workbook:
        """Open with openpyxl, retrying in read-only mode before giving up."""
        try:
            return openpyxl.load_workbook(io.BytesIO(buffer), data_only=True)
        except Exception as exc:
            logger.warning("openpyxl could not open workbook: %s; retrying read-only", exc)

        try:
            return openpyxl.load_workbook(
                io.BytesIO(buffer), data_only=True, read_only=True
            )
        except Exception as exc:
            raise _fatal(
                ErrorCode.E_PARSE_CORRUPT,
                f"Buffer could not be opened as a spreadsheet: {exc}",
            ) from exc

    @staticmethod
    def _open_excel_file(buffer: bytes) -> pd.ExcelFile | None:
        try:
            return pd.ExcelFile(io.BytesIO(buffer), engine="openpyxl")
        except Exception:
            logger.debug("pandas could not open workbook", exc_info=True)
            return None

    def _tab_outcome(
        self,
        worksheet: object,
        tab_name: str,
        excel_file: pd.ExcelFile | None,
        errors: list[IngestError],
    ) -> TabOutcome:
        """Extract one tab's rows, or say why it contributes nothing."""
        if isinstance(worksheet, Chartsheet) or not hasattr(worksheet, "iter_rows"):
            return TabOutcome.skip(ErrorCode.W_TAB_NO_WORKSHEET, "chart-only sheet")

        max_row = worksheet.max_row
        if max_row is None:
            # Read-only sheets saved without a <dimension> record report no size.
            max_row = sum(1 for _ in worksheet.iter_rows(values_only=True))
        first = next(worksheet.iter_rows(min_row=1, max_row=1, values_only=True), ())
        if max_row == 0 or (max_row == 1 and all(v is None for v in first)):
            return TabOutcome.skip(ErrorCode.W_TAB_EMPTY_RANGE)

        if max_row > self._config.max_rows_per_tab:
            errors.append(
                IngestError(
                    code=ErrorCode.W_TAB_TOO_MANY_ROWS,
                    message=(
                        f"Tab '{tab_name}' has {max_row} rows, exceeding "
                        f"max_rows_per_tab ({self._config.max_rows_per_tab}). "
                        f"Tab skipped."
                    ),
                    tab_name=tab_name,
                    stage="extract",
                    recoverable=True,
                )
            )
            logger.warning(
                "Tab '%s' exceeds max_rows_per_tab (%d > %d); skipped",
                tab_name,
                max_row,
                self._config.max_rows_per_tab,
            )
            return TabOutcome.skip(ErrorCode.W_TAB_TOO_MANY_ROWS)

        extraction = self._extractor.extract(
            WorksheetSource(tab_name=tab_name, worksheet=worksheet, excel_file=excel_file),
            errors,
        )
        if not extraction.rows:
            return TabOutcome.skip(ErrorCode.W_TAB_NO_ROWS)
        return TabOutcome.ok(extraction.rows)

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    def _build_result(
        self,
        aggregator: ReportAggregator,
        source_format: SourceFormat,
        start: float,
    ) -> ReportParseResult:
        duration = time.monotonic() - start
        logger.info(
            "Parsed %s report: %d units processed, %d skipped, %d warnings in %.3fs",
            source_format.value,
            len(aggregator.processed),
            len(aggregator.skipped),
            len(aggregator.errors),
            duration,
        )
        return ReportParseResult(
            report=aggregator.snapshot(),
            source_format=source_format,
            units_processed=len(aggregator.processed),
            units_skipped=len(aggregator.skipped),
            skipped_reasons=dict(aggregator.skipped),
            errors=list(aggregator.errors),
            parser_version=self._config.parser_version,
            parse_duration_seconds=duration,
        )

    @staticmethod
    def _with_warnings(
        result: ReportParseResult, warnings: list[IngestError]
    ) -> ReportParseResult:
        if not warnings:
            return result
        return result.model_copy(update={"errors": warnings + result.errors})

    @staticmethod
    def _warning(code: ErrorCode, message: str) -> IngestError:
        return IngestError(code=code, message=message, stage="route", recoverable=True)

    @staticmethod
    def _declares_workbook(mime_type: str | None, file_name: str | None) -> bool:
        if mime_type and mime_type.split(";")[0].strip().lower() in WORKBOOK_MIME_TYPES:
            return True
        return bool(file_name and file_name.lower().endswith(WORKBOOK_EXTENSIONS))


# ---------------------------------------------------------------------------
# Convenience entry points
# ---------------------------------------------------------------------------


def parse_workbook(
    data: bytes | bytearray | memoryview,
    config: ReportParserConfig | None = None,
) -> ParsedReport:
    """Parse workbook bytes and return only the report."""
    return ReportRouter(config).parse_workbook(data).report


def parse_delimited_text(
    text: str, config: ReportParserConfig | None = None
) -> ParsedReport:
    """Parse a delimited report body and return only the report."""
    return ReportRouter(config).parse_delimited_text(text).report


def parse_report(
    content: str | bytes | bytearray | memoryview,
    mime_type: str | None = None,
    file_name: str | None = None,
    config: ReportParserConfig | None = None,
) -> ParsedReport:
    """Parse a downloaded report of any supported type."""
    return ReportRouter(config).parse(content, mime_type, file_name).report
