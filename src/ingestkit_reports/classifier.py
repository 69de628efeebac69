"""Rule-based classifier routing tabs and sections to report groups.

A unit is classified by its name first.  When the name is uninformative
("Sheet1", "Data"), the first row's vocabulary decides instead.  Rules are
ordered: the first matching rule wins.
"""

from __future__ import annotations

import logging

from ingestkit_reports.models import Classification, ClassificationSource, ReportGroup
from ingestkit_reports.sections import match_section_keyword

logger = logging.getLogger("ingestkit_reports")

# (group, substrings) evaluated in priority order against the lowercased name.
NAME_RULES: tuple[tuple[ReportGroup, tuple[str, ...]], ...] = (
    (ReportGroup.PROFIT_LOSS, ("profit", "loss")),
    (ReportGroup.PRODUCT_PERFORMANCE, ("product", "asin")),
    (ReportGroup.PAYOUTS, ("payout",)),
    (ReportGroup.AMAZON_PERFORMANCE, ("amazon", "performance")),
)

# (group, substrings) evaluated in priority order against header cells.
HEADER_RULES: tuple[tuple[ReportGroup, tuple[str, ...]], ...] = (
    (ReportGroup.PRODUCT_PERFORMANCE, ("asin", "product", "title")),
    (ReportGroup.PROFIT_LOSS, ("profit", "loss", "sales", "expense")),
    (ReportGroup.PAYOUTS, ("payout", "payment")),
    (ReportGroup.AMAZON_PERFORMANCE, ("amazon", "performance", "acos", "tacos")),
)


class ReportClassifier:
    """Decide which canonical group a tab or section feeds."""

    # -- public API ----------------------------------------------------------

    def classify_tab(self, name: str, rows: list[list[str]]) -> Classification:
        """Classify a worksheet by its tab name, then by its header row.

        Args:
            name: The worksheet tab name.
            rows: Extracted rows; only the first row is inspected.

        Returns:
            A :class:`Classification`; ``group`` is ``None`` when nothing
            matched and the tab should contribute nothing.
        """
        lowered = name.lower().strip()
        for group, needles in NAME_RULES:
            matched = next((n for n in needles if n in lowered), None)
            if matched is not None:
                logger.debug(
                    "Unit '%s' classified as %s by name (%r)",
                    name,
                    group.value,
                    matched,
                )
                return Classification(
                    group=group,
                    source=ClassificationSource.TAB_NAME,
                    matched=matched,
                )
        return self.classify_by_header(name, rows)

    def classify_section(
        self, name: str, rows: list[list[str]]
    ) -> Classification:
        """Classify a CSV section by its banner keywords, then as a tab.

        Banners such as ``P&L`` or ``Earnings`` carry none of the tab-name
        words, so the section keyword table is consulted first.
        """
        hit = match_section_keyword(name)
        if hit is not None:
            group, keyword = hit
            logger.debug(
                "Section '%s' classified as %s by keyword (%r)",
                name,
                group.value,
                keyword,
            )
            return Classification(
                group=group,
                source=ClassificationSource.SECTION_KEYWORD,
                matched=keyword,
            )
        return self.classify_tab(name, rows)

    def classify_by_header(
        self, name: str, rows: list[list[str]]
    ) -> Classification:
        """Classify from the lowercased text of the first row."""
        if not rows:
            return Classification()

        headers = [str(cell).lower() for cell in rows[0]]
        for group, needles in HEADER_RULES:
            for header in headers:
                matched = next((n for n in needles if n in header), None)
                if matched is not None:
                    logger.debug(
                        "Unit '%s' classified as %s by header (%r)",
                        name,
                        group.value,
                        matched,
                    )
                    return Classification(
                        group=group,
                        source=ClassificationSource.HEADER,
                        matched=matched,
                    )

        logger.debug("Unit '%s' could not be classified", name)
        return Classification()
