"""Section splitting for flat CSV-like report dumps.

A report exported as a single delimited body marks each logical block with a
bare banner line ("Profit & Loss", "Per-Product Performance", ...).  The
splitter partitions the tokenized lines into named sections by keyword
heuristics, and infers a single product section when no banner exists.
"""

from __future__ import annotations

import logging

from ingestkit_reports.config import ReportParserConfig
from ingestkit_reports.models import ReportGroup
from ingestkit_reports.tokenizer import split_cells

logger = logging.getLogger("ingestkit_reports")

SECTION_KEYWORDS: dict[ReportGroup, tuple[str, ...]] = {
    ReportGroup.PROFIT_LOSS: (
        "profit & loss",
        "profit and loss",
        "p&l",
        "financial summary",
    ),
    ReportGroup.PRODUCT_PERFORMANCE: (
        "per-product performance",
        "product performance",
        "product data",
        "asin performance",
    ),
    ReportGroup.PAYOUTS: (
        "payouts",
        "payout",
        "earnings",
        "revenue",
    ),
    ReportGroup.AMAZON_PERFORMANCE: (
        "amazon performance",
        "platform performance",
        "marketplace performance",
    ),
}

ALL_SECTION_KEYWORDS: tuple[str, ...] = tuple(
    keyword for keywords in SECTION_KEYWORDS.values() for keyword in keywords
)

INFERRED_PRODUCT_SECTION = "Per-Product Performance"

_PRODUCT_HEADER_HINTS = ("asin", "product", "title")


def match_section_keyword(text: str) -> tuple[ReportGroup, str] | None:
    """Return the group and keyword of the first section keyword in *text*."""
    lowered = text.lower()
    for group, keywords in SECTION_KEYWORDS.items():
        for keyword in keywords:
            if keyword in lowered:
                return group, keyword
    return None


class SectionSplitter:
    """Partition logical lines into ``{section name: rows}``.

    Parameters
    ----------
    config:
        Pipeline configuration; supplies the field delimiter.
    """

    def __init__(self, config: ReportParserConfig) -> None:
        self._config = config

    def is_section_header(self, line: str) -> bool:
        """True for a bare banner line: a keyword and no delimiter."""
        if self._config.field_delimiter in line:
            return False
        lowered = line.lower()
        return any(keyword in lowered for keyword in ALL_SECTION_KEYWORDS)

    def split(self, lines: list[str]) -> dict[str, list[list[str]]]:
        """Split *lines* into named sections, in document order.

        Rows before the first banner belong to no section and are dropped.
        A repeated banner replaces the earlier section of the same name.
        """
        delimiter = self._config.field_delimiter
        sections: dict[str, list[list[str]]] = {}
        current_name = ""
        buffer: list[list[str]] = []

        for line in lines:
            if self.is_section_header(line):
                self._flush(sections, current_name, buffer)
                current_name = line.strip()
                buffer = []
                logger.debug("Starting section '%s'", current_name)
                continue
            if line.strip():
                buffer.append(split_cells(line, delimiter))

        self._flush(sections, current_name, buffer)

        if not sections and lines:
            inferred = self._infer_product_section(lines)
            if inferred is not None:
                sections[INFERRED_PRODUCT_SECTION] = inferred

        logger.debug("Found sections: %s", list(sections))
        return sections

    # -- internal helpers ----------------------------------------------------

    @staticmethod
    def _flush(
        sections: dict[str, list[list[str]]],
        name: str,
        buffer: list[list[str]],
    ) -> None:
        if name and buffer:
            sections[name] = buffer
            logger.debug("Found section '%s' with %d rows", name, len(buffer))

    def _infer_product_section(
        self, lines: list[str]
    ) -> list[list[str]] | None:
        """Treat the whole document as one product table if the header says so."""
        delimiter = self._config.field_delimiter
        headers = [cell.lower() for cell in split_cells(lines[0], delimiter)]
        has_hint = any(
            hint in header for header in headers for hint in _PRODUCT_HEADER_HINTS
        )
        has_full_set = all(
            any(name in header for header in headers)
            for name in ("asin", "title", "sales")
        )
        if not (has_hint or has_full_set):
            logger.debug("No section banners and no product header; nothing inferred")
            return None

        logger.info(
            "No section banners found; inferred '%s' from header row",
            INFERRED_PRODUCT_SECTION,
        )
        return [split_cells(line, delimiter) for line in lines]
