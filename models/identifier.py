"""
Identifier parsing: turns free-form text into transcript identifiers (CUIs).

Supported input examples:
    "20233489"                       → "20233489"
    "20233489,Ana Gabriela,CS"       → "20233489"   (first field only)
    "CUI"                            → dropped      (header line)
    "2023348"                        → dropped      (7 digits)
"""

import re

# Exactly eight ASCII digits; \d would also accept other Unicode digits
IDENTIFIER_PATTERN = re.compile(r"[0-9]{8}")

# A line's first field ends at the first of these
_DELIMITERS = re.compile(r"[,;\t]")

_LINE_BREAK = re.compile(r"\r?\n")


def is_valid_identifier(value) -> bool:
    return isinstance(value, str) and IDENTIFIER_PATTERN.fullmatch(value) is not None


def document_filename(identifier: str) -> str:
    return f"Document_{identifier}.pdf"


def parse_identifiers(text: str) -> list[str]:
    """
    Split *text* into lines and keep the first field of each line that is a
    valid identifier. Order and duplicates are preserved; everything else is
    dropped without reporting.
    """
    identifiers = []
    for line in _LINE_BREAK.split(text):
        if not line.strip():
            continue
        candidate = _DELIMITERS.split(line, 1)[0].strip().strip("\"'")
        if is_valid_identifier(candidate):
            identifiers.append(candidate)
    return identifiers
