"""Pydantic data models, enumerations, and stage artifacts for ingestkit-reports.

This module defines the canonical report model (``ParsedReport`` and its four
groups), the enumerations used to describe extraction and classification
decisions, and the intermediate artifacts passed between pipeline stages.

Report records dump with camelCase aliases (``costOfGoods``,
``salesThisMonth`` ...) so the JSON shape matches what the dashboard
consumes; attribute access stays snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ingestkit_reports.errors import ErrorCode, IngestError

MISSING = "N/A"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ReportGroup(str, Enum):
    """The four canonical groups a tab or section can feed."""

    PROFIT_LOSS = "profit_loss"
    PRODUCT_PERFORMANCE = "product_performance"
    PAYOUTS = "payouts"
    AMAZON_PERFORMANCE = "amazon_performance"


class ExtractionMethod(str, Enum):
    """Which worksheet extraction strategy produced the final rows."""

    STRUCTURED_ARRAY = "structured_array"
    DELIMITED_TEXT = "delimited_text"
    ROW_OBJECT = "row_object"


class ClassificationSource(str, Enum):
    """What evidence decided the group of a tab or section."""

    TAB_NAME = "tab_name"
    SECTION_KEYWORD = "section_keyword"
    HEADER = "header"


class SourceFormat(str, Enum):
    """Which entry path parsed the document."""

    WORKBOOK = "workbook"
    DELIMITED_TEXT = "delimited_text"


# ---------------------------------------------------------------------------
# Canonical report
# ---------------------------------------------------------------------------


class _ReportRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProfitLoss(_ReportRecord):
    """Profit & Loss summary; every value is a raw string or ``"N/A"``."""

    sales: str = MISSING
    cost_of_goods: str = MISSING
    taxes: str = MISSING
    fba_fees: str = MISSING
    referral_fees: str = MISSING
    storage_fees: str = MISSING
    ad_expenses: str = MISSING
    refunds: str = MISSING
    expenses: str = MISSING
    net_profit: str = MISSING
    margin: str = MISSING
    roi: str = MISSING


class ProductRecord(_ReportRecord):
    """One row of per-product performance."""

    asin: str = ""
    title: str = ""
    sales_this_month: str = MISSING
    sales_change: str = ""
    net_profit_this_month: str = MISSING
    net_profit_change: str = ""
    margin_this_month: str = MISSING
    margin_change: str = ""
    units_this_month: str = MISSING
    units_change: str = ""
    refund_rate_this_month: str = MISSING
    refund_rate_change: str = ""
    ad_spend_this_month: str = MISSING
    ad_spend_change: str = ""
    acos_this_month: str = MISSING
    acos_change: str = ""
    tacos_this_month: str = MISSING
    tacos_change: str = ""
    ctr_this_month: str = MISSING
    ctr_change: str = ""
    cvr_this_month: str = MISSING
    cvr_change: str = ""


class Payouts(_ReportRecord):
    """Latest, previous, and average payout values."""

    latest: str = MISSING
    previous: str = MISSING
    average: str = MISSING


class AmazonPerformance(_ReportRecord):
    """Account-level marketplace metrics, this-month value plus change."""

    sales_this_month: str = MISSING
    sales_change: str = ""
    net_profit_this_month: str = MISSING
    net_profit_change: str = ""
    margin_this_month: str = MISSING
    margin_change: str = ""
    units_this_month: str = MISSING
    units_change: str = ""
    refund_rate_this_month: str = MISSING
    refund_rate_change: str = ""
    acos_this_month: str = MISSING
    acos_change: str = ""
    tacos_this_month: str = MISSING
    tacos_change: str = ""
    ctr_this_month: str = MISSING
    ctr_change: str = ""


class ParsedReport(_ReportRecord):
    """The canonical report produced for one input document.

    Always fully populated: groups that received no source rows keep their
    defaults.
    """

    profit_loss: ProfitLoss = Field(default_factory=ProfitLoss)
    product_performance: list[ProductRecord] = Field(default_factory=list)
    payouts: Payouts = Field(default_factory=Payouts)
    amazon_performance: AmazonPerformance = Field(default_factory=AmazonPerformance)

    @classmethod
    def empty(cls, missing_value: str = MISSING) -> ParsedReport:
        """Build a report with every value at its default.

        *missing_value* replaces the ``"N/A"`` sentinel in the value fields;
        change fields always default to the empty string.
        """
        if missing_value == MISSING:
            return cls()

        def _fill(model: type[_ReportRecord]) -> _ReportRecord:
            overrides = {
                name: missing_value
                for name, field in model.model_fields.items()
                if field.default == MISSING
            }
            return model(**overrides)

        return cls(
            profit_loss=_fill(ProfitLoss),  # type: ignore[arg-type]
            payouts=_fill(Payouts),  # type: ignore[arg-type]
            amazon_performance=_fill(AmazonPerformance),  # type: ignore[arg-type]
        )

    def to_dict(self) -> dict:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Stage artifacts
# ---------------------------------------------------------------------------


class ExtractionAttempt(BaseModel):
    """Outcome of one extraction strategy on one worksheet.

    ``size`` is a row count for the array and row-object strategies, and a
    character count for the delimited-text strategy.
    """

    method: ExtractionMethod
    succeeded: bool
    size: int = 0
    error: str | None = None


class WorksheetExtraction(BaseModel):
    """Rows selected for one worksheet, with the strategy audit trail."""

    tab_name: str
    rows: list[list[str]]
    method: ExtractionMethod
    attempts: list[ExtractionAttempt] = []


class TabOutcome(BaseModel):
    """Result of preparing one tab or section for aggregation.

    Either ``ok`` with rows to classify, or ``skip`` with a reason code.
    A skip is not an error: the unit simply contributes nothing.
    """

    status: Literal["ok", "skip"]
    rows: list[list[str]] = []
    reason: ErrorCode | None = None
    detail: str = ""

    @classmethod
    def ok(cls, rows: list[list[str]]) -> TabOutcome:
        return cls(status="ok", rows=rows)

    @classmethod
    def skip(cls, reason: ErrorCode, detail: str = "") -> TabOutcome:
        return cls(status="skip", reason=reason, detail=detail)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"


class Classification(BaseModel):
    """Which group a tab or section feeds, and why."""

    group: ReportGroup | None = None
    source: ClassificationSource | None = None
    matched: str | None = None


class ReportParseResult(BaseModel):
    """Final result returned by :class:`~ingestkit_reports.router.ReportRouter`."""

    report: ParsedReport
    source_format: SourceFormat
    units_processed: int
    units_skipped: int
    skipped_reasons: dict[str, str]
    errors: list[IngestError] = []
    parser_version: str
    parse_duration_seconds: float
