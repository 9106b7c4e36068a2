from __future__ import annotations

import re

IDENTIFIER_PATTERN = re.compile(r"^EP\d+$")
IDENTIFIER_FIELD = "__ep"


class ValidationError(Exception):
    """Raised when input data fails validation before any remote call."""


class FormatError(ValidationError):
    """Raised when a patent identifier does not match the expected pattern."""


class MissingColumnsError(ValidationError):
    """Raised when an uploaded workbook lacks required columns."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required column(s): {', '.join(missing)}")
        self.missing = missing


class IdentifierColumnError(ValidationError):
    """Raised when the patent number column cannot be located."""

    def __init__(self, column: str, headers: list[str]) -> None:
        super().__init__(f"Identifier column not found: {column}")
        self.column = column
        self.headers = headers


def normalize_identifier(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def validate_identifier(value: object) -> str:
    identifier = normalize_identifier(value)
    if not IDENTIFIER_PATTERN.match(identifier):
        raise FormatError(f"Invalid EP format: {identifier}")
    return identifier
