from __future__ import annotations

import json

import pandas as pd
import pytest

from neh_grants.metrics.engine import compute_state_metrics
from neh_grants.metrics.summary import (
    award_size_summary,
    build_run_summary,
    discipline_counts,
    program_summary,
)
from neh_grants.normalize.schema import GRANT_COLUMNS
from neh_grants.reconcile.state_names import StateNameIndex


def _grants() -> pd.DataFrame:
    frame = pd.DataFrame(
        [
            ["A-1", "Fellowships", "Univ A", "IA", 1000.0, 0.0, "2001-01-01", "2001-12-31", "History;Philosophy"],
            ["A-2", "Fellowships", "Univ B", "IA", 3000.0, 1000.0, "2002-01-01", "2002-02-01", "History"],
            ["A-3", None, "Museum C", "NE", 500.0, 500.0, "2004-01-01", "2003-01-01", "Art History; History"],
            ["A-4", "Challenge Grants", "Library D", "GU", 9000.0, 0.0, "2005-01-01", "2006-01-01", None],
        ],
        columns=GRANT_COLUMNS,
    )
    frame["begin_date"] = pd.to_datetime(frame["begin_date"])
    frame["end_date"] = pd.to_datetime(frame["end_date"])
    return frame


def _result():
    population = pd.DataFrame({"state_name": ["Iowa", "Nebraska"], "population": [3046355, 1826341]})
    return compute_state_metrics(_grants(), population, StateNameIndex.build())


def test_discipline_counts_split_semicolon_tags_once_per_grant() -> None:
    counts = discipline_counts(_result().included_grants)

    assert counts == [
        {"discipline": "History", "grant_count": 3},
        {"discipline": "Art History", "grant_count": 1},
        {"discipline": "Philosophy", "grant_count": 1},
    ]


def test_program_summary_orders_by_total_and_labels_missing_programs() -> None:
    summary = program_summary(_result().included_grants)

    assert summary["program"].tolist() == ["Fellowships", "Unknown"]
    assert summary["grant_count"].tolist() == [2, 1]
    assert summary["total_amount"].tolist() == pytest.approx([5000.0, 1000.0])


def test_award_size_summary_reports_distribution_and_total() -> None:
    summary = award_size_summary(_result().included_grants)

    assert summary["count"] == 3
    assert summary["total"] == pytest.approx(6000.0)
    assert summary["median"] == pytest.approx(1000.0)
    assert summary["max"] == pytest.approx(4000.0)


def test_build_run_summary_is_json_serializable_and_counts_flags() -> None:
    summary = build_run_summary(_result())

    encoded = json.loads(json.dumps(summary))
    assert encoded["census_year"] == 2010
    assert encoded["exclusions"]["excluded_count"] == 1
    assert encoded["exclusions"]["excluded_percent"] == 25.0
    assert encoded["uncovered_abbreviations"] == ["GU"]
    assert encoded["flags"] == {"amount_flagged": 0, "duration_flagged": 1}
    assert encoded["field_parse_errors"] == {"count": 0, "by_column": {}, "examples": []}
    assert encoded["duration_days"]["count"] == 2
    assert [state["state_abbreviation"] for state in encoded["states"]] == ["IA", "NE"]
    assert sum(state["percent_share"] for state in encoded["states"]) == pytest.approx(100.0)


def test_build_run_summary_carries_ingest_parse_errors() -> None:
    population = pd.DataFrame({"state_name": ["Iowa", "Nebraska"], "population": [3046355, 1826341]})
    parse_errors = {
        "count": 1,
        "by_column": {"award_matching": 1},
        "examples": [
            {
                "record_index": 7,
                "app_number": "A-8",
                "column": "award_matching",
                "raw_value": "TBD",
                "reason": "not a currency amount: 'TBD'",
            }
        ],
    }

    result = compute_state_metrics(
        _grants(), population, StateNameIndex.build(), field_parse_errors=parse_errors
    )
    summary = build_run_summary(result)

    assert summary["field_parse_errors"] == parse_errors
