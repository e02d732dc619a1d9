from __future__ import annotations

from datetime import date

from neh_grants.normalize.fields import (
    FIELD_PARSERS,
    FieldParseError,
    parse_currency,
    parse_date,
    parse_disciplines,
    parse_state,
    parse_text,
    split_disciplines,
    summarize_parse_errors,
)
from neh_grants.normalize.schema import GRANT_COLUMNS


def test_parse_currency_accepts_plain_and_formatted_amounts() -> None:
    assert parse_currency("1234").value == 1234.0
    assert parse_currency("1,234.50").value == 1234.5
    assert parse_currency(" $40,000 ").value == 40000.0
    assert parse_currency("-250").value == -250.0


def test_parse_currency_treats_blank_as_missing_and_text_as_error() -> None:
    blank = parse_currency("   ")
    assert blank.ok
    assert blank.value is None

    bad = parse_currency("n/a")
    assert not bad.ok
    assert bad.value is None
    assert "n/a" in str(bad.error)


def test_parse_currency_rejects_non_finite_amounts() -> None:
    for raw in ("nan", "inf", "-Infinity", "$inf"):
        result = parse_currency(raw)
        assert not result.ok, raw
        assert result.value is None


def test_parse_date_supports_iso_us_and_timestamped_values() -> None:
    assert parse_date("2001-03-15").value == date(2001, 3, 15)
    assert parse_date("03/15/2001").value == date(2001, 3, 15)
    assert parse_date("2001-03-15T00:00:00").value == date(2001, 3, 15)
    assert parse_date(None).value is None

    bad = parse_date("sometime in 2001")
    assert not bad.ok
    assert bad.value is None


def test_text_state_and_discipline_parsers_normalize_whitespace() -> None:
    assert parse_text("  University   of Iowa ").value == "University of Iowa"
    assert parse_text("").value is None
    assert parse_state(" dc ").value == "DC"
    assert parse_disciplines(" History ; ; American Studies ").value == "History;American Studies"
    assert parse_disciplines(None).value is None


def test_split_disciplines_ignores_non_text_values() -> None:
    assert split_disciplines("History;Philosophy, General") == ["History", "Philosophy, General"]
    assert split_disciplines(None) == []
    assert split_disciplines(float("nan")) == []


def test_every_grant_column_has_a_field_parser() -> None:
    assert list(FIELD_PARSERS) == GRANT_COLUMNS


def test_summarize_parse_errors_counts_by_column() -> None:
    errors = [
        FieldParseError(0, "FA-1", "award_outright", "oops", "not a currency amount: 'oops'"),
        FieldParseError(3, None, "end_date", "someday", "not a date: 'someday'"),
        FieldParseError(4, "FA-5", "award_outright", "inf", "not a finite currency amount: 'inf'"),
    ]

    summary = summarize_parse_errors(errors)

    assert summary["count"] == 3
    assert summary["by_column"] == {"award_outright": 2, "end_date": 1}
    assert summary["examples"][1] == {
        "record_index": 3,
        "app_number": None,
        "column": "end_date",
        "raw_value": "someday",
        "reason": "not a date: 'someday'",
    }
    assert summarize_parse_errors([]) == {"count": 0, "by_column": {}, "examples": []}
