from __future__ import annotations

import re
import zipfile
from io import BytesIO
from typing import Any, Callable, Iterable, Sequence

import pandas as pd
from openpyxl import load_workbook

from patent_bridge.core.validation import IDENTIFIER_FIELD
from patent_bridge.domain import RegistryRecord

BASE_APPEND_COLUMNS = [
    "StatusCode",
    "LastChangeDate",
    "Representative",
    "FilingDate",
    "GrantDate",
]

CLIENT_COLUMN = "Client Account Name"
ADDRESS_COLUMN = "Sales Order Correspondence Address"
EMAIL_COLUMN = "Client Default Correspondence Email"

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")


def _first_line(value: Any) -> str:
    lines = str(value or "").splitlines()
    return lines[0].strip() if lines else ""


def _address_email(row: dict[str, Any]) -> str:
    match = _EMAIL_RE.search(str(row.get(ADDRESS_COLUMN) or ""))
    if match:
        return match.group(0)
    return str(row.get(EMAIL_COLUMN) or "").strip()


SPLIT_KEYS: dict[str, tuple[str, Callable[[dict[str, Any]], str]]] = {
    "client": (CLIENT_COLUMN, lambda row: str(row.get(CLIENT_COLUMN) or "").strip()),
    "address_name": (ADDRESS_COLUMN, lambda row: _first_line(row.get(ADDRESS_COLUMN))),
    "address_email": (ADDRESS_COLUMN, _address_email),
}


def available_splits(headers: Iterable[str]) -> list[str]:
    present = set(headers)
    return [key for key, (column, _) in SPLIT_KEYS.items() if column in present]


def group_key(row: dict[str, Any], split_by: str) -> str:
    if split_by not in SPLIT_KEYS:
        raise ValueError(f"Unknown split key: {split_by}")
    _, extract = SPLIT_KEYS[split_by]
    return extract(row) or "Unknown"


def safe_filename(value: str, default: str = "client") -> str:
    cleaned = re.sub(r"[^\w\-]+", "_", value)
    cleaned = re.sub(r"_+", "_", cleaned)[:80]
    return cleaned or default


def unique_name(name: str, used: set[str]) -> str:
    candidate = name
    counter = 2
    while candidate in used:
        candidate = f"{name}_{counter}"
        counter += 1
    used.add(candidate)
    return candidate


def _original_headers(rows: Sequence[dict[str, Any]]) -> list[str]:
    headers: list[str] = []
    for row in rows:
        for key in row.keys():
            if key != IDENTIFIER_FIELD and key not in headers:
                headers.append(key)
    return headers


def merge_results(
    rows: Sequence[dict[str, Any]],
    results: Sequence[RegistryRecord | None],
) -> tuple[list[str], list[dict[str, Any]]]:
    """Combine input rows with their lookup results.

    Owner columns come in ``OwnerN``/``OwnerNAddress`` pairs, as many as the
    row with the most owners needs; shorter rows are padded with blanks.
    """

    max_owners = max((record.owner_count for record in results if record is not None), default=0)
    owner_headers: list[str] = []
    for number in range(1, max_owners + 1):
        owner_headers.extend([f"Owner{number}", f"Owner{number}Address"])
    headers = _original_headers(rows) + BASE_APPEND_COLUMNS + owner_headers

    combined: list[dict[str, Any]] = []
    for index, row in enumerate(rows):
        record = results[index] if index < len(results) else None
        record = record or RegistryRecord()
        out = {key: value for key, value in row.items() if key != IDENTIFIER_FIELD}
        out.update(
            {
                "StatusCode": record.status_code,
                "LastChangeDate": record.last_change_date,
                "Representative": record.representative,
                "FilingDate": record.filing_date,
                "GrantDate": record.grant_date,
            }
        )
        owners = record.owners()
        for number in range(1, max_owners + 1):
            name, address = owners[number - 1] if number <= len(owners) else ("", "")
            out[f"Owner{number}"] = name
            out[f"Owner{number}Address"] = address
        combined.append(out)
    return headers, combined


def append_results_to_workbook(
    data: bytes,
    sheet_name: str,
    rows: Sequence[dict[str, Any]],
    results: Sequence[RegistryRecord | None],
) -> bytes:
    """Replace ``sheet_name`` in the uploaded workbook with the merged rows."""

    headers, records = merge_results(rows, results)
    workbook = load_workbook(BytesIO(data))
    position = len(workbook.sheetnames)
    if sheet_name in workbook.sheetnames:
        position = workbook.sheetnames.index(sheet_name)
        workbook.remove(workbook[sheet_name])
    sheet = workbook.create_sheet(sheet_name, position)
    sheet.append(headers)
    for record in records:
        sheet.append([record.get(header, "") for header in headers])
    workbook.active = position

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_subset_workbook(
    rows: Sequence[dict[str, Any]],
    results: Sequence[RegistryRecord | None],
    sheet_name: str = "Sheet1",
) -> bytes:
    headers, records = merge_results(rows, results)
    frame = pd.DataFrame(records, columns=headers)
    buffer = BytesIO()
    frame.to_excel(buffer, index=False, sheet_name=sheet_name, engine="openpyxl")
    return buffer.getvalue()


def build_split_archive(
    rows: Sequence[dict[str, Any]],
    results: Sequence[RegistryRecord | None],
    split_by: str = "address_name",
) -> bytes:
    """Zip one merged workbook per group of rows."""

    groups: dict[str, tuple[list[dict[str, Any]], list[RegistryRecord | None]]] = {}
    for index, row in enumerate(rows):
        key = group_key(row, split_by)
        bundle = groups.setdefault(key, ([], []))
        bundle[0].append(row)
        bundle[1].append(results[index] if index < len(results) else None)

    buffer = BytesIO()
    used: set[str] = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for key, (group_rows, group_results) in groups.items():
            name = unique_name(safe_filename(key), used)
            archive.writestr(f"{name}.xlsx", build_subset_workbook(group_rows, group_results))
    return buffer.getvalue()


__all__ = [
    "BASE_APPEND_COLUMNS",
    "SPLIT_KEYS",
    "append_results_to_workbook",
    "available_splits",
    "build_split_archive",
    "build_subset_workbook",
    "group_key",
    "merge_results",
    "safe_filename",
    "unique_name",
]
