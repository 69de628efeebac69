"""Shared test fixtures for ingestkit-reports tests.

Provides a default ``sample_config`` fixture, an in-memory ``.xlsx`` byte
factory built with openpyxl, and a representative delimited report body.
"""

from __future__ import annotations

import io
import re
import zipfile
from typing import Any, Callable

import openpyxl
import pytest

from ingestkit_reports.config import ReportParserConfig


def build_workbook(
    tabs: dict[str, list[list[Any]]],
    number_formats: dict[tuple[str, str], str] | None = None,
    cells: dict[tuple[str, str], Any] | None = None,
) -> bytes:
    """Return the bytes of a workbook with one worksheet per *tabs* entry.

    *number_formats* maps ``(tab name, cell coordinate)`` to an Excel number
    format, e.g. ``{("P&L", "B3"): "0%"}``.  *cells* writes single values at
    a coordinate, for tables that do not start at ``A1``.
    """
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in tabs.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    for (name, coord), value in (cells or {}).items():
        wb[name][coord] = value
    for (name, coord), fmt in (number_formats or {}).items():
        wb[name][coord].number_format = fmt
    buffer = io.BytesIO()
    wb.save(buffer)
    wb.close()
    return buffer.getvalue()


def patch_sheet_xml(data: bytes, sheet: int, transform: Callable[[str], str]) -> bytes:
    """Rewrite ``xl/worksheets/sheet<sheet>.xml`` inside workbook *data*.

    openpyxl cannot write cached formula results or omit the ``<dimension>``
    record, so tests edit the saved XML directly.
    """
    target = f"xl/worksheets/sheet{sheet}.xml"
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as source, zipfile.ZipFile(
        out, "w", zipfile.ZIP_DEFLATED
    ) as dest:
        for item in source.infolist():
            payload = source.read(item.filename)
            if item.filename == target:
                payload = transform(payload.decode("utf-8")).encode("utf-8")
            dest.writestr(item, payload)
    return out.getvalue()


def with_cached_value(data: bytes, sheet: int, coord: str, value: str) -> bytes:
    """Store *value* as the cached result of the formula cell at *coord*."""

    def transform(xml: str) -> str:
        pattern = re.compile(
            rf'(<c r="{coord}"[^>]*>\s*<f>[^<]*</f>)\s*(?:<v\s*/>|<v></v>)?'
        )
        patched, count = pattern.subn(rf"\g<1><v>{value}</v>", xml, count=1)
        assert count == 1, f"no formula cell at {coord}"
        return patched

    return patch_sheet_xml(data, sheet, transform)


def without_dimension(data: bytes, sheet: int) -> bytes:
    """Drop the ``<dimension>`` record so read-only sheets report no size."""
    return patch_sheet_xml(
        data, sheet, lambda xml: re.sub(r"<dimension[^>]*/>", "", xml)
    )


@pytest.fixture()
def sample_config() -> ReportParserConfig:
    """Return a ReportParserConfig with all defaults."""
    return ReportParserConfig()


@pytest.fixture()
def workbook_bytes() -> Callable[..., bytes]:
    """Factory fixture: ``workbook_bytes({"Tab": [[...], ...]})``."""
    return build_workbook


@pytest.fixture()
def seller_report_csv() -> str:
    """A flat export with all four sections, quoted amounts and a multi-line title."""
    return (
        "Profit & Loss\n"
        "Metric,Value\n"
        'Sales,"$12,345.67"\n'
        'Cost of Goods,"$4,000.00"\n'
        "FBA Fees,$800.00\n"
        'Net Profit,"$3,210.00"\n'
        "Margin,26%\n"
        "\n"
        "Per-Product Performance\n"
        "ASIN,Title,Sales This Month,Sales Change,Units This Month,"
        "ACOS This Month,TACOS This Month\n"
        'B000TEST01,"Widget, Blue",$500.00,+5%,20,12%,8%\n'
        'B000TEST02,"Gadget\nDeluxe",$300.00,-2%,10,15%,9%\n'
        ",Missing Asin,$1.00,,,,\n"
        "\n"
        "Payouts\n"
        'Latest Payout,"$1,000.00"\n'
        "Previous Payout,$900.00\n"
        "Average Payout,$950.00\n"
        "\n"
        "Amazon Performance\n"
        'Sales This Month,"$12,345.67",+10%\n'
        "ACOS This Month,14%,-1%\n"
        "TACOS This Month,9%,+0.5%\n"
    )


@pytest.fixture()
def cached_formula() -> Callable[..., bytes]:
    """Factory fixture: ``cached_formula(data, sheet, "B2", "40")``."""
    return with_cached_value


@pytest.fixture()
def strip_dimension() -> Callable[..., bytes]:
    """Factory fixture: ``strip_dimension(data, sheet)``."""
    return without_dimension
