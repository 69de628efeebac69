"""Normalized error codes, structured error model, and the fatal exception.

Errors are split into three tiers:

* **Fatal** (``E_`` codes) -- the whole input is unusable.  Raised to the
  caller as :class:`ReportParseException`.
* **Unit** (``W_TAB_*``, ``W_EXTRACTION_*``, ``W_UNCLASSIFIED`` ...) -- one
  worksheet or CSV section contributed nothing; parsing continues.
* **Row** (``W_ROW_*``, ``W_PRODUCT_*``) -- one row was skipped; sibling rows
  are still processed.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Normalized error codes for the ingestkit-reports engine.

    Values equal their names so they are stable strings suitable for
    metrics and alerting.  ``E_`` prefix = fatal, ``W_`` prefix = warning.
    """

    # Fatal input errors
    E_INPUT_INVALID_TYPE = "E_INPUT_INVALID_TYPE"
    E_PARSE_EMPTY = "E_PARSE_EMPTY"
    E_PARSE_CORRUPT = "E_PARSE_CORRUPT"
    E_PARSE_NO_WORKSHEETS = "E_PARSE_NO_WORKSHEETS"
    E_SECURITY_TOO_LARGE = "E_SECURITY_TOO_LARGE"

    # Tab / section warnings
    W_TAB_NO_WORKSHEET = "W_TAB_NO_WORKSHEET"
    W_TAB_EMPTY_RANGE = "W_TAB_EMPTY_RANGE"
    W_TAB_NO_ROWS = "W_TAB_NO_ROWS"
    W_TAB_FAILED = "W_TAB_FAILED"
    W_EXTRACTION_STRATEGY_FAILED = "W_EXTRACTION_STRATEGY_FAILED"
    W_EXTRACTION_ALL_FAILED = "W_EXTRACTION_ALL_FAILED"
    W_UNCLASSIFIED = "W_UNCLASSIFIED"
    W_TAB_TOO_MANY_ROWS = "W_TAB_TOO_MANY_ROWS"
    W_CONTENT_SNIFFED = "W_CONTENT_SNIFFED"
    W_WORKBOOK_FALLBACK_TO_TEXT = "W_WORKBOOK_FALLBACK_TO_TEXT"

    # Row warnings
    W_ROW_TOO_SHORT = "W_ROW_TOO_SHORT"
    W_PRODUCT_MISSING_KEY = "W_PRODUCT_MISSING_KEY"


class IngestError(BaseModel):
    """Structured error with code, message, and context.

    ``tab_name`` holds the worksheet name for workbook input, or the section
    banner text for delimited-text input.
    """

    code: ErrorCode
    message: str
    tab_name: str | None = None
    stage: str | None = None
    recoverable: bool = False


class ReportParseException(Exception):
    """Raisable exception wrapping an :class:`IngestError` data model.

    Used only for fatal errors, where no partial report is returned.
    Carries the structured ``IngestError`` as the ``.error`` attribute for
    inspection and serialization.
    """

    def __init__(self, **kwargs: object) -> None:
        self.error = IngestError(**kwargs)  # type: ignore[arg-type]
        super().__init__(self.error.message)

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def stage(self) -> str | None:
        return self.error.stage

    @property
    def recoverable(self) -> bool:
        return self.error.recoverable
