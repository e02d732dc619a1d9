from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

_CURRENCY_STRIP_PATTERN = re.compile(r"[$,\s]")
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")
MAX_REPORTED_PARSE_ERRORS = 20


@dataclass(frozen=True, slots=True)
class FieldResult:
    """Outcome of parsing one raw XML text value into a typed field."""

    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class FieldParseError:
    record_index: int
    app_number: Optional[str]
    column: str
    raw_value: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_index": self.record_index,
            "app_number": self.app_number,
            "column": self.column,
            "raw_value": self.raw_value,
            "reason": self.reason,
        }


def _clean(raw: Optional[str]) -> str:
    if raw is None:
        return ""
    return " ".join(raw.split())


def parse_text(raw: Optional[str]) -> FieldResult:
    cleaned = _clean(raw)
    return FieldResult(value=cleaned or None)


def parse_state(raw: Optional[str]) -> FieldResult:
    cleaned = _clean(raw).upper()
    return FieldResult(value=cleaned or None)


def parse_currency(raw: Optional[str]) -> FieldResult:
    cleaned = _CURRENCY_STRIP_PATTERN.sub("", _clean(raw))
    if not cleaned:
        return FieldResult()
    try:
        amount = float(cleaned)
    except ValueError:
        return FieldResult(error=f"not a currency amount: {raw!r}")
    # float() also accepts "nan" and "inf"; neither is an award.
    if not math.isfinite(amount):
        return FieldResult(error=f"not a finite currency amount: {raw!r}")
    return FieldResult(value=amount)


def parse_date(raw: Optional[str]) -> FieldResult:
    cleaned = _clean(raw)
    if not cleaned:
        return FieldResult()

    # Some exports carry a time component; only the date part is kept.
    candidate = cleaned.split("T", 1)[0].split(" ", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return FieldResult(value=datetime.strptime(candidate, fmt).date())
        except ValueError:
            continue
    return FieldResult(error=f"not a date: {raw!r}")


def parse_disciplines(raw: Optional[str]) -> FieldResult:
    parts = [part.strip() for part in _clean(raw).split(";")]
    joined = ";".join(part for part in parts if part)
    return FieldResult(value=joined or None)


def split_disciplines(value: Any) -> list[str]:
    if value is None or not isinstance(value, str):
        return []
    return [part.strip() for part in value.split(";") if part.strip()]


def summarize_parse_errors(errors: list[FieldParseError]) -> dict[str, Any]:
    """JSON-safe count of parse failures per column plus the first few records.

    This is what the grant cache descriptor stores, so a cached load reports the
    same failures as the ingest that built it.
    """

    by_column = Counter(error.column for error in errors)
    return {
        "count": len(errors),
        "by_column": dict(sorted(by_column.items())),
        "examples": [error.to_dict() for error in errors[:MAX_REPORTED_PARSE_ERRORS]],
    }


FIELD_PARSERS: dict[str, Callable[[Optional[str]], FieldResult]] = {
    "app_number": parse_text,
    "program": parse_text,
    "institution": parse_text,
    "institution_state": parse_state,
    "award_outright": parse_currency,
    "award_matching": parse_currency,
    "begin_date": parse_date,
    "end_date": parse_date,
    "disciplines": parse_disciplines,
}
