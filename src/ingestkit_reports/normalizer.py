"""Synonym-driven mapping of report rows onto the canonical schema.

Each group has a static lookup table.  Adding a synonym is a data change:
append it to the relevant table below.  Every match overwrites the previous
value of its field (last write wins); nothing is summed or averaged.  Values
are stored as the raw trimmed string so currency symbols, thousands
separators and percent signs survive for display.
"""

from __future__ import annotations

import logging

from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.errors import ErrorCode, IngestError
from ingestkit_reports.models import ParsedReport, ProductRecord
from ingestkit_reports.tokenizer import rejoin_split_amount

logger = logging.getLogger("ingestkit_reports")


# ---------------------------------------------------------------------------
# Synonym tables
# ---------------------------------------------------------------------------

# Exact lowercase row label -> ProfitLoss field.
PROFIT_LOSS_SYNONYMS: dict[str, str] = {
    "sales": "sales",
    "total sales": "sales",
    "gross sales": "sales",
    "revenue": "sales",
    "total revenue": "sales",
    "income": "sales",
    "cost of goods": "cost_of_goods",
    "cogs": "cost_of_goods",
    "cost of goods sold": "cost_of_goods",
    "cost of sales": "cost_of_goods",
    "taxes": "taxes",
    "tax": "taxes",
    "income tax": "taxes",
    "fba fees": "fba_fees",
    "fba": "fba_fees",
    "fulfillment fees": "fba_fees",
    "fulfillment by amazon fees": "fba_fees",
    "referral fees": "referral_fees",
    "referral": "referral_fees",
    "amazon referral fees": "referral_fees",
    "storage fees": "storage_fees",
    "storage": "storage_fees",
    "warehouse fees": "storage_fees",
    "ad expenses": "ad_expenses",
    "advertising": "ad_expenses",
    "ad spend": "ad_expenses",
    "advertising expenses": "ad_expenses",
    "marketing": "ad_expenses",
    "ads": "ad_expenses",
    "refunds": "refunds",
    "refund": "refunds",
    "returns": "refunds",
    "expenses": "expenses",
    "expense": "expenses",
    "total expenses": "expenses",
    "operating expenses": "expenses",
    "net profit": "net_profit",
    "profit": "net_profit",
    "net income": "net_profit",
    "profit after tax": "net_profit",
    "margin": "margin",
    "profit margin": "margin",
    "net margin": "margin",
    "roi": "roi",
    "return on investment": "roi",
    "return on investment %": "roi",
}

# Substring rules for payout labels, first match wins.
PAYOUT_SYNONYMS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("latest", "current", "this month"), "latest"),
    (("previous", "last"), "previous"),
    (("average", "avg", "mean"), "average"),
)

# (metric keywords that must all appear, keywords that must not appear,
#  this-month field, change field).  "tacos" precedes "acos" because every
#  TACOS label also contains "acos"; "margin" precedes "profit" so that
#  "Profit Margin This Month" lands on margin.
METRIC_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...], str, str], ...] = (
    (("tacos",), (), "tacos_this_month", "tacos_change"),
    (("acos",), ("tacos",), "acos_this_month", "acos_change"),
    (("margin",), (), "margin_this_month", "margin_change"),
    (("sales",), (), "sales_this_month", "sales_change"),
    (("profit",), (), "net_profit_this_month", "net_profit_change"),
    (("unit",), (), "units_this_month", "units_change"),
    (("refund",), (), "refund_rate_this_month", "refund_rate_change"),
    (("ad", "spend"), (), "ad_spend_this_month", "ad_spend_change"),
    (("ctr",), (), "ctr_this_month", "ctr_change"),
    (("cvr",), (), "cvr_this_month", "cvr_change"),
)

# Metrics reported on the account-level Amazon Performance block.
AMAZON_PERFORMANCE_FIELDS = frozenset(
    {
        "sales_this_month",
        "net_profit_this_month",
        "margin_this_month",
        "units_this_month",
        "refund_rate_this_month",
        "acos_this_month",
        "tacos_this_month",
        "ctr_this_month",
    }
)

# Plain product column headers used when no "this month" column exists.
PRODUCT_PLAIN_COLUMNS: dict[str, str] = {
    "sales": "sales_this_month",
    "revenue": "sales_this_month",
    "net profit": "net_profit_this_month",
    "profit": "net_profit_this_month",
    "margin": "margin_this_month",
    "units": "units_this_month",
    "quantity": "units_this_month",
    "refund rate": "refund_rate_this_month",
    "ad spend": "ad_spend_this_month",
    "advertising": "ad_spend_this_month",
    "acos": "acos_this_month",
    "tacos": "tacos_this_month",
    "ctr": "ctr_this_month",
    "cvr": "cvr_this_month",
}

PRODUCT_ASIN_HEADERS = ("sku", "product id", "product")
PRODUCT_TITLE_HEADERS = ("title", "product name", "name", "product")

_EMPTY_MARKERS = frozenset({"", "n/a"})
_HEADER_SCAN_ROWS = 5


def match_metric(label: str, suffix: str) -> tuple[str, str] | None:
    """Return ``(this_month_field, change_field)`` for a metric label.

    *label* must contain *suffix* (``"month"`` or ``"change"``) and every
    keyword of one :data:`METRIC_RULES` entry.
    """
    if suffix not in label:
        return None
    for keywords, excluded, this_month, change in METRIC_RULES:
        if all(k in label for k in keywords) and not any(
            x in label for x in excluded
        ):
            return this_month, change
    return None


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class MetricNormalizer:
    """Populate a :class:`ParsedReport` from rows routed to one group.

    Parameters
    ----------
    config:
        Pipeline configuration; supplies the missing-value sentinel, the
        delimiter, and whether split amounts are rejoined.
    """

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config

    # -- value helpers -------------------------------------------------------

    def _value(self, cell: object) -> str:
        """Raw trimmed value, or the missing sentinel for blank / N/A."""
        text = "" if cell is None else str(cell).strip()
        if text.lower() in _EMPTY_MARKERS:
            return self._config.missing_value
        return text

    @staticmethod
    def _change(cell: object) -> str:
        return "" if cell is None else str(cell).strip()

    def _label_value_row(self, row: list[str]) -> list[str]:
        if self._config.rejoin_split_amounts:
            return rejoin_split_amount(row, self._config.field_delimiter)
        return row

    def _log_value(self, unit_name: str, field: str, value: str) -> None:
        if self._config.log_sample_data:
            logger.debug("Unit '%s': %s = %r", unit_name, field, value)
        else:
            logger.debug("Unit '%s': set %s", unit_name, field)

    # -- Profit & Loss -------------------------------------------------------

    def apply_profit_loss(
        self,
        rows: list[list[str]],
        report: ParsedReport,
        errors: list[IngestError],
        unit_name: str,
    ) -> int:
        """Map label/value rows onto ``report.profit_loss``.

        Returns the number of fields written.
        """
        written = 0
        for row in rows:
            label = str(row[0]).strip().lower() if row else ""
            field = PROFIT_LOSS_SYNONYMS.get(label)
            if field is None:
                if label:
                    logger.debug(
                        "Unrecognized profit/loss metric in '%s': %r",
                        unit_name,
                        label,
                    )
                continue
            if len(row) < 2:
                errors.append(self._short_row(unit_name, label))
                continue
            row = self._label_value_row(row)
            value = self._value(row[1])
            setattr(report.profit_loss, field, value)
            self._log_value(unit_name, field, value)
            written += 1
        return written

    # -- Payouts -------------------------------------------------------------

    def apply_payouts(
        self,
        rows: list[list[str]],
        report: ParsedReport,
        errors: list[IngestError],
        unit_name: str,
    ) -> int:
        """Map payout label/value rows onto ``report.payouts``."""
        written = 0
        for row in rows:
            label = str(row[0]).strip().lower() if row else ""
            field = next(
                (
                    target
                    for needles, target in PAYOUT_SYNONYMS
                    if any(n in label for n in needles)
                ),
                None,
            )
            if field is None:
                if label:
                    logger.debug(
                        "Unrecognized payout label in '%s': %r", unit_name, label
                    )
                continue
            if len(row) < 2:
                errors.append(self._short_row(unit_name, label))
                continue
            row = self._label_value_row(row)
            value = self._value(row[1])
            setattr(report.payouts, field, value)
            self._log_value(unit_name, field, value)
            written += 1
        return written

    # -- Amazon Performance --------------------------------------------------

    def apply_amazon_performance(
        self,
        rows: list[list[str]],
        report: ParsedReport,
        errors: list[IngestError],
        unit_name: str,
    ) -> int:
        """Map ``label, this month, change`` rows onto ``report.amazon_performance``.

        A label with ``month`` sets the this-month value and the change from
        the third cell.  A label with ``change`` and no ``month`` sets only
        the change field from the second cell.
        """
        written = 0
        perf = report.amazon_performance
        for row in rows:
            label = str(row[0]).strip().lower() if row else ""
            fields = match_metric(label, "month")
            change_only = False
            if fields is None:
                fields = match_metric(label, "change")
                change_only = fields is not None
            if fields is None or fields[0] not in AMAZON_PERFORMANCE_FIELDS:
                if label:
                    logger.debug(
                        "Unrecognized performance metric in '%s': %r",
                        unit_name,
                        label,
                    )
                continue
            if len(row) < 2:
                errors.append(self._short_row(unit_name, label))
                continue

            this_month, change = fields
            if change_only:
                setattr(perf, change, self._change(row[1]))
            else:
                setattr(perf, this_month, self._value(row[1]))
                setattr(perf, change, self._change(row[2] if len(row) > 2 else ""))
            self._log_value(unit_name, this_month, str(row[1]))
            written += 1
        return written

    # -- Product Performance -------------------------------------------------

    def apply_products(
        self,
        rows: list[list[str]],
        report: ParsedReport,
        errors: list[IngestError],
        unit_name: str,
    ) -> int:
        """Convert a product table into :class:`ProductRecord` entries.

        Columns are located by header substrings.  Rows missing ``asin`` or
        ``title`` are skipped.  Returns the number of products appended.
        """
        if len(rows) < 2:
            logger.debug("Not enough rows for product data in '%s'", unit_name)
            return 0

        header_idx = self.find_product_header(rows)
        headers = [str(h).strip().lower() for h in rows[header_idx]]
        columns = self.map_product_columns(headers)
        logger.debug("Product columns in '%s': %s", unit_name, columns)

        added = 0
        for offset, row in enumerate(rows[header_idx + 1:], start=header_idx + 2):
            if not row:
                continue
            product = self._build_product(row, columns)
            if not product.asin or not product.title:
                errors.append(
                    IngestError(
                        code=ErrorCode.W_PRODUCT_MISSING_KEY,
                        message=(
                            f"Row {offset} of '{unit_name}' has no "
                            f"{'asin' if not product.asin else 'title'}; skipped."
                        ),
                        tab_name=unit_name,
                        stage="normalize",
                        recoverable=True,
                    )
                )
                continue
            report.product_performance.append(product)
            added += 1

        logger.debug("Products parsed from '%s': %d", unit_name, added)
        return added

    @staticmethod
    def find_product_header(rows: list[list[str]]) -> int:
        """Index of the header row: the first early row naming an ASIN column."""
        for idx, row in enumerate(rows[:_HEADER_SCAN_ROWS]):
            cells = [str(c).strip().lower() for c in row]
            if any("asin" in c for c in cells):
                return idx
            if cells and cells[0] in PRODUCT_ASIN_HEADERS:
                return idx
        return 0

    @staticmethod
    def map_product_columns(headers: list[str]) -> dict[str, int]:
        """Map ProductRecord field names to column indices."""
        columns: dict[str, int] = {}

        asin_idx = next((i for i, h in enumerate(headers) if "asin" in h), None)
        if asin_idx is None:
            asin_idx = next(
                (i for i, h in enumerate(headers) if h in PRODUCT_ASIN_HEADERS),
                None,
            )
        if asin_idx is not None:
            columns["asin"] = asin_idx

        for needle in PRODUCT_TITLE_HEADERS:
            title_idx = next(
                (
                    i
                    for i, h in enumerate(headers)
                    if i != asin_idx
                    and needle in h
                    and "month" not in h
                    and "change" not in h
                ),
                None,
            )
            if title_idx is not None:
                columns["title"] = title_idx
                break

        for idx, header in enumerate(headers):
            for suffix, slot in (("month", 0), ("change", 1)):
                fields = match_metric(header, suffix)
                if fields is not None and fields[slot] not in columns:
                    columns[fields[slot]] = idx

        for idx, header in enumerate(headers):
            field = PRODUCT_PLAIN_COLUMNS.get(header)
            if field is not None and field not in columns:
                columns[field] = idx

        return columns

    def _build_product(
        self, row: list[str], columns: dict[str, int]
    ) -> ProductRecord:
        values: dict[str, str] = {}
        for field, idx in columns.items():
            cell = row[idx] if idx < len(row) else ""
            if field in ("asin", "title") or field.endswith("_change"):
                values[field] = self._change(cell)
            else:
                values[field] = self._value(cell)
        if self._config.missing_value != "N/A":
            for name, info in ProductRecord.model_fields.items():
                if info.default == "N/A" and name not in values:
                    values[name] = self._config.missing_value
        return ProductRecord(**values)

    # -- errors --------------------------------------------------------------

    @staticmethod
    def _short_row(unit_name: str, label: str) -> IngestError:
        return IngestError(
            code=ErrorCode.W_ROW_TOO_SHORT,
            message=f"Row '{label}' in '{unit_name}' has no value cell; skipped.",
            tab_name=unit_name,
            stage="normalize",
            recoverable=True,
        )
