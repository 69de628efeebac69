"""ingestkit-reports -- marketplace seller report normalization.

Turns spreadsheet workbooks and flat delimited exports of seller reports into
one canonical ``ParsedReport`` (profit & loss, per-product performance,
payouts, and account-level marketplace performance).
"""

from ingestkit_reports.aggregator import ReportAggregator
from ingestkit_reports.classifier import ReportClassifier
from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.errors import ErrorCode, IngestError, ReportParseException
from ingestkit_reports.extractor import WorksheetExtractor, WorksheetSource, select_rows
from ingestkit_reports.models import (
    AmazonPerformance,
    Classification,
    ClassificationSource,
    ExtractionAttempt,
    ExtractionMethod,
    ParsedReport,
    Payouts,
    ProductRecord,
    ProfitLoss,
    ReportGroup,
    ReportParseResult,
    SourceFormat,
    TabOutcome,
    WorksheetExtraction,
)
from ingestkit_reports.normalizer import MetricNormalizer
from ingestkit_reports.router import (
    ReportRouter,
    parse_delimited_text,
    parse_report,
    parse_workbook,
)
from ingestkit_reports.sections import SectionSplitter
from ingestkit_reports.sniffer import is_spreadsheet_content

__all__ = [
    # Entry points
    "parse_workbook",
    "parse_delimited_text",
    "parse_report",
    "ReportRouter",
    # Enums
    "ReportGroup",
    "ExtractionMethod",
    "ClassificationSource",
    "SourceFormat",
    # Canonical report
    "ParsedReport",
    "ProfitLoss",
    "ProductRecord",
    "Payouts",
    "AmazonPerformance",
    # Stage artifacts
    "ExtractionAttempt",
    "WorksheetExtraction",
    "TabOutcome",
    "Classification",
    "ReportParseResult",
    # Pipeline components
    "WorksheetExtractor",
    "WorksheetSource",
    "select_rows",
    "SectionSplitter",
    "ReportClassifier",
    "MetricNormalizer",
    "ReportAggregator",
    "is_spreadsheet_content",
    # Errors
    "ErrorCode",
    "IngestError",
    "ReportParseException",
    # Config
    "ReportParserConfig",
]
