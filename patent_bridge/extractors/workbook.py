"""Parser for uploaded patent batch workbooks.

Only the first sheet is read.  Every cell is kept as text so that patent and
application numbers survive untouched, and each row gains the resolved patent
number under :data:`IDENTIFIER_FIELD` for the job tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import Any

import pandas as pd

from patent_bridge.core.validation import IDENTIFIER_FIELD, IdentifierColumnError, MissingColumnsError

DEFAULT_IDENTIFIER_COLUMN = "Patent Number"

REQUIRED_COLUMNS = [
    "Client Account Name",
    "Client Reference",
    "Client Default Correspondence Email",
    "User Email",
    "Sales Order Link",
    "Sales Order Correspondence Address",
    "Application Number",
    DEFAULT_IDENTIFIER_COLUMN,
    "Filing Date",
    "Applicant Names",
]


@dataclass
class ParsedWorkbook:
    rows: list[dict[str, Any]]
    headers: list[str]
    sheet_name: str
    identifier_column: str = DEFAULT_IDENTIFIER_COLUMN
    source: bytes = field(default=b"", repr=False)


def _clean_dataframe(frame: pd.DataFrame) -> pd.DataFrame:
    renamed = {col: str(col).strip() for col in frame.columns}
    frame = frame.rename(columns=renamed)
    return frame.dropna(how="all").fillna("")


def read_first_sheet(data: bytes) -> tuple[str, pd.DataFrame]:
    excel = pd.ExcelFile(BytesIO(data))
    sheet_name = str(excel.sheet_names[0])
    frame = excel.parse(sheet_name, dtype=str)
    return sheet_name, _clean_dataframe(frame)


def parse_workbook(data: bytes, identifier_column: str | None = None) -> ParsedWorkbook:
    """Read the batch rows and validate the column layout.

    Raises :class:`MissingColumnsError` when any required column is absent and
    :class:`IdentifierColumnError` when the patent number column cannot be
    found.  An explicit ``identifier_column`` replaces the default
    ``Patent Number`` column.
    """

    sheet_name, frame = read_first_sheet(data)
    headers = [str(col) for col in frame.columns]

    column = (identifier_column or "").strip() or DEFAULT_IDENTIFIER_COLUMN
    required = [name for name in REQUIRED_COLUMNS if name != DEFAULT_IDENTIFIER_COLUMN]
    missing = [name for name in required if name not in headers]
    if missing:
        raise MissingColumnsError(missing)
    if column not in headers:
        raise IdentifierColumnError(column, headers)

    rows: list[dict[str, Any]] = []
    for record in frame.to_dict(orient="records"):
        row = {header: ("" if record.get(header) is None else str(record.get(header))) for header in headers}
        row[IDENTIFIER_FIELD] = row[column]
        rows.append(row)

    return ParsedWorkbook(
        rows=rows,
        headers=headers,
        sheet_name=sheet_name,
        identifier_column=column,
        source=data,
    )


__all__ = [
    "DEFAULT_IDENTIFIER_COLUMN",
    "ParsedWorkbook",
    "REQUIRED_COLUMNS",
    "parse_workbook",
    "read_first_sheet",
]
