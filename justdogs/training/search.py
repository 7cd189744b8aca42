"""Case-insensitive substring search over a fixed set of record fields."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

DOG_FIELDS = ("name", "breed")
MESSAGE_FIELDS = ("subject", "content")
USER_FIELDS = ("full_name", "email")
BOOKING_FIELDS = ("booking_type", "location", "special_instructions")
SESSION_FIELDS = ("notes",)


def matches(record: Mapping, term: str, fields: Sequence[str]) -> bool:
    needle = term.lower()
    for field in fields:
        value = record.get(field)
        if value is not None and needle in str(value).lower():
            return True
    return False


def filter_records(records: Iterable[Mapping], term: str | None, fields: Sequence[str]) -> list:
    """Return the records matching ``term`` in their original order.

    An empty or blank term returns every record.
    """

    records = list(records)
    if not term or not term.strip():
        return records
    return [record for record in records if matches(record, term, fields)]
