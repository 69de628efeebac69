"""Content sniffing for spreadsheet containers.

Upstream storage frequently mislabels spreadsheet exports as CSV.  These
checks look at the content itself so the router can pick the workbook path
regardless of the declared media type.
"""

from __future__ import annotations

_ZIP_MAGIC = b"PK"

# Substrings that only appear in a zipped OOXML workbook read as text.
_CONTAINER_MARKERS = (
    "PK\x03\x04",
    "xl/",
    "workbook.xml",
    "worksheets/",
    "drawings/",
)


def is_spreadsheet_content(content: object) -> bool:
    """Return True if *content* is a zipped spreadsheet container.

    Binary input is checked for the ZIP local-file-header signature in its
    first two bytes.  String input is checked for any of the container
    markers anywhere in the text.  Any other type is not spreadsheet content.
    """
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content[:2]) == _ZIP_MAGIC
    if isinstance(content, str):
        return any(marker in content for marker in _CONTAINER_MARKERS)
    return False


def coerce_to_bytes(content: str | bytes | bytearray | memoryview) -> bytes:
    """Return the raw bytes behind *content*.

    Text that carries a binary container was decoded one byte per character,
    so it is re-encoded with ``latin-1`` to recover the original bytes.
    """
    if isinstance(content, str):
        return content.encode("latin-1", errors="replace")
    return bytes(content)
