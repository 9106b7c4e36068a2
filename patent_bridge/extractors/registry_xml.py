"""Field extraction for register search responses.

The upstream feed mixes namespace prefixes freely (``pat:Owner`` next to a
bare ``Owner``, ``com:`` on some name elements but not on others), so the
extraction works on the raw text with prefix-agnostic patterns instead of a
namespace-aware parse.  Every lookup is scoped to its enclosing block so that
e.g. a ``FilingDate`` of a priority claim is never mistaken for the filing
date of the application itself.

Status event dates are compared as strings.  This is only correct while the
feed keeps emitting fixed-width ``YYYY-MM-DD`` dates.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass

from patent_bridge.domain import RegistryRecord

_FLAGS = re.IGNORECASE | re.DOTALL
_PREFIX = r"(?:\w+:)?"
_NAME_TAGS = ("PersonFullName", "OrganizationNameText", "NameText")

_PUBLICATION_RE = re.compile(
    rf"<{_PREFIX}(PublicationNumber|PatentNumber)(?:\s[^>]*)?>([^<]*)</{_PREFIX}\1\s*>",
    _FLAGS,
)


@dataclass(frozen=True)
class StatusEvent:
    date: str
    key: str
    detail: str = ""

    @property
    def code(self) -> str:
        if self.key and self.detail:
            return f"{self.key}/{self.detail}"
        return self.key or self.detail


def _clean(value: str | None) -> str:
    if not value:
        return ""
    return html.unescape(value).strip()


def _element(tag: str) -> re.Pattern[str]:
    return re.compile(
        rf"<{_PREFIX}{tag}(?:\s[^>]*)?>(.*?)</{_PREFIX}{tag}\s*>",
        _FLAGS,
    )


def _blocks(text: str, tag: str) -> list[str]:
    return [match.group(1) for match in _element(tag).finditer(text)]


def _first(text: str, tag: str) -> str:
    match = _element(tag).search(text)
    return _clean(match.group(1)) if match else ""


def _all(text: str, tag: str) -> list[str]:
    return [_clean(match.group(1)) for match in _element(tag).finditer(text)]


def _scoped(text: str, parent: str, tag: str) -> str:
    for block in _blocks(text, parent):
        value = _first(block, tag)
        if value:
            return value
    return ""


def _name(text: str) -> str:
    for tag in _NAME_TAGS:
        value = _first(text, tag)
        if value:
            return value
    return ""


def publication_numbers(text: str) -> list[str]:
    """Return every publication/patent number in the payload, normalised."""

    return [re.sub(r"\s+", "", match.group(2)).upper() for match in _PUBLICATION_RE.finditer(text)]


def status_events(text: str) -> list[StatusEvent]:
    """Return the legal status events, most recent first.

    Ties keep document order.
    """

    events: list[StatusEvent] = []
    for block in _blocks(text, "StatusEventData"):
        date = _first(block, "EventDate")
        key = _first(block, "KeyEventCode")
        if not date or not key:
            continue
        events.append(StatusEvent(date=date, key=key, detail=_first(block, "DetailedEventCode")))
    return sorted(events, key=lambda event: event.date, reverse=True)


def representative(text: str) -> str:
    practitioners = _blocks(text, "RegisteredPractitioner")
    for tag in _NAME_TAGS:
        for block in practitioners:
            value = _first(block, tag)
            if value:
                return value
    return ""


def owners(text: str) -> list[tuple[str, str]]:
    """Return ``(name, address)`` per owner block in document order."""

    pairs: list[tuple[str, str]] = []
    for block in _blocks(text, "Owner"):
        lines = [line for line in _all(block, "AddressLineText") if line]
        country = _first(block, "CountryCode")
        if country:
            lines.append(country)
        pairs.append((_name(block), ", ".join(lines)))
    return pairs


def extract_fields(text: str) -> RegistryRecord:
    events = status_events(text)
    current = events[0] if events else StatusEvent(date="", key="")
    status_code = current.code
    last_change = current.date

    not_in_force_date = _first(text, "NotInForceDate")
    reason = _first(text, "ReasonNotInForceCategory")
    if not_in_force_date or reason:
        status_code = f"Not in force: {reason or 'Unknown reason'}"
        last_change = not_in_force_date or last_change

    owner_pairs = owners(text)
    return RegistryRecord(
        status_code=status_code,
        last_change_date=last_change,
        representative=representative(text),
        filing_date=_scoped(text, "ApplicationIdentification", "FilingDate"),
        grant_date=_scoped(text, "PatentGrantIdentification", "GrantDate"),
        owner_names=[name for name, _ in owner_pairs],
        owner_addresses=[address for _, address in owner_pairs],
    )


__all__ = [
    "StatusEvent",
    "extract_fields",
    "owners",
    "publication_numbers",
    "representative",
    "status_events",
]
