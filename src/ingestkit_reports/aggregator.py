"""Accumulate per-unit results into one canonical report.

Every tab or section is consumed as a :class:`~ingestkit_reports.models.TabOutcome`.
Skips are bookkeeping, not errors.  Classification and normalization of an
``ok`` unit run inside an isolation boundary: whatever goes wrong there is
recorded as ``W_TAB_FAILED`` and the unit contributes nothing, while the
rest of the document is still processed.
"""

from __future__ import annotations

import logging
from typing import Callable

from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.errors import ErrorCode, IngestError
from ingestkit_reports.models import (
    Classification,
    ParsedReport,
    ReportGroup,
    TabOutcome,
)
from ingestkit_reports.normalizer import MetricNormalizer

logger = logging.getLogger("ingestkit_reports")

Classify = Callable[[str, list[list[str]]], Classification]


class ReportAggregator:
    """Own one :class:`ParsedReport` and fold units into it in order."""

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config
        self._normalizer = MetricNormalizer(config)
        self._report = ParsedReport.empty(config.missing_value)
        self.errors: list[IngestError] = []
        self.processed: list[str] = []
        self.skipped: dict[str, str] = {}

    def apply(self, group: ReportGroup, rows: list[list[str]], unit_name: str) -> int:
        """Route *rows* to the normalizer for *group*; returns fields written."""
        if group is ReportGroup.PROFIT_LOSS:
            handler = self._normalizer.apply_profit_loss
        elif group is ReportGroup.PRODUCT_PERFORMANCE:
            handler = self._normalizer.apply_products
        elif group is ReportGroup.PAYOUTS:
            handler = self._normalizer.apply_payouts
        else:
            handler = self._normalizer.apply_amazon_performance
        return handler(rows, self._report, self.errors, unit_name)

    def consume(self, unit_name: str, outcome: TabOutcome, classify: Classify) -> None:
        """Fold one unit's outcome into the report.

        Args:
            unit_name: Tab name or section banner, used in diagnostics.
            outcome: ``ok`` rows to classify and apply, or a ``skip``.
            classify: Classifier callable for this kind of unit.
        """
        if not outcome.is_ok:
            reason = outcome.reason.value if outcome.reason else "skipped"
            self.skipped[unit_name] = reason
            logger.debug("Unit '%s' skipped: %s %s", unit_name, reason, outcome.detail)
            return

        backup = self._report.model_copy(deep=True)
        error_count = len(self.errors)
        try:
            classification = classify(unit_name, outcome.rows)
            if classification.group is None:
                self.skipped[unit_name] = ErrorCode.W_UNCLASSIFIED.value
                self.errors.append(
                    IngestError(
                        code=ErrorCode.W_UNCLASSIFIED,
                        message=f"'{unit_name}' matched no report group; ignored.",
                        tab_name=unit_name,
                        stage="classify",
                        recoverable=True,
                    )
                )
                return
            self.apply(classification.group, outcome.rows, unit_name)
        except Exception as exc:
            logger.warning(
                "Unit '%s' failed and was skipped: %s", unit_name, exc, exc_info=True
            )
            self._report = backup
            del self.errors[error_count:]
            self.skipped[unit_name] = ErrorCode.W_TAB_FAILED.value
            self.errors.append(
                IngestError(
                    code=ErrorCode.W_TAB_FAILED,
                    message=f"Processing '{unit_name}' failed: {exc}",
                    tab_name=unit_name,
                    stage="normalize",
                    recoverable=True,
                )
            )
            return

        self.processed.append(unit_name)

    def snapshot(self) -> ParsedReport:
        """A deep copy of the report built so far."""
        return self._report.model_copy(deep=True)
