"""Power of Attorney archives: one PDF per patent owner, grouped per client."""
from __future__ import annotations

import re
import zipfile
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Sequence

from patent_bridge.domain import RegistryRecord
from patent_bridge.exporters.workbook import CLIENT_COLUMN, group_key, safe_filename, unique_name
from patent_bridge.extractors.workbook import read_first_sheet
from patent_bridge.infrastructure.documents import DocumentRenderer, fill_template, load_template

DEFAULT_GROUP = "All owners"

_OWNER_COLUMN_RE = re.compile(r"^Owner(\d+)$")


@dataclass(frozen=True)
class OwnerEntry:
    name: str
    address: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.address)


def _add_owner(
    groups: dict[str, list[OwnerEntry]],
    seen: dict[str, set[tuple[str, str]]],
    group: str,
    owner: OwnerEntry,
) -> None:
    if not owner.name:
        return
    keys = seen.setdefault(group, set())
    if owner.key in keys:
        return
    keys.add(owner.key)
    groups.setdefault(group, []).append(owner)


def collect_owner_groups(
    rows: Sequence[dict[str, Any]],
    results: Sequence[RegistryRecord | None],
    group_by: str = "client",
) -> dict[str, list[OwnerEntry]]:
    """Group the distinct owners found by a finished job.

    Rows whose lookup failed contribute nothing.
    """

    groups: dict[str, list[OwnerEntry]] = {}
    seen: dict[str, set[tuple[str, str]]] = {}
    for index, row in enumerate(rows):
        record = results[index] if index < len(results) else None
        if record is None or record.is_error:
            continue
        group = group_key(row, group_by)
        for name, address in record.owners():
            _add_owner(groups, seen, group, OwnerEntry(name.strip(), address.strip()))
    return groups


def owners_from_sheet(data: bytes) -> dict[str, list[OwnerEntry]]:
    """Read owners back from an (edited) results workbook.

    Owner columns are ``Owner1``, ``Owner1Address``, ``Owner2`` and so on.
    Rows are grouped by client when the sheet carries the client column.
    """

    _, frame = read_first_sheet(data)
    numbers = sorted(
        int(match.group(1)) for match in (_OWNER_COLUMN_RE.match(str(col)) for col in frame.columns) if match
    )
    has_client = CLIENT_COLUMN in frame.columns

    groups: dict[str, list[OwnerEntry]] = {}
    seen: dict[str, set[tuple[str, str]]] = {}
    for record in frame.to_dict(orient="records"):
        group = str(record.get(CLIENT_COLUMN) or "").strip() if has_client else ""
        group = group or DEFAULT_GROUP
        for number in numbers:
            owner = OwnerEntry(
                str(record.get(f"Owner{number}") or "").strip(),
                str(record.get(f"Owner{number}Address") or "").strip(),
            )
            _add_owner(groups, seen, group, owner)
    return groups


async def build_poa_archive(
    groups: dict[str, list[OwnerEntry]],
    renderer: DocumentRenderer,
    template: str | None = None,
) -> bytes:
    """Render every owner's PoA and zip them as ``<group>/<owner>.pdf``."""

    html = template if template is not None else load_template()
    entries: list[tuple[str, OwnerEntry]] = [(group, owner) for group, owners in groups.items() for owner in owners]
    documents = [fill_template(html, owner.name, owner.address) for _, owner in entries]
    pdfs = await renderer.render_many(documents)

    buffer = BytesIO()
    folders: set[str] = set()
    folder_names: dict[str, str] = {}
    files: dict[str, set[str]] = {}
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for (group, owner), pdf in zip(entries, pdfs):
            if group not in folder_names:
                folder_names[group] = unique_name(safe_filename(group), folders)
            folder = folder_names[group]
            filename = unique_name(safe_filename(owner.name, default="owner"), files.setdefault(folder, set()))
            archive.writestr(f"{folder}/{filename}.pdf", pdf)
    return buffer.getvalue()


__all__ = [
    "DEFAULT_GROUP",
    "OwnerEntry",
    "build_poa_archive",
    "collect_owner_groups",
    "owners_from_sheet",
]
