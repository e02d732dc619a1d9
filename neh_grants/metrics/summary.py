from __future__ import annotations

from collections import Counter
from typing import Any

import pandas as pd

from neh_grants.metrics.engine import StateMetricsResult
from neh_grants.normalize.fields import split_disciplines
from neh_grants.normalize.schema import CENSUS_YEAR


def _distribution(values: pd.Series) -> dict[str, Any]:
    numeric = pd.to_numeric(values, errors="coerce").dropna().astype("float64")
    if numeric.empty:
        return {"count": 0, "mean": 0.0, "median": 0.0, "min": 0.0, "max": 0.0}
    return {
        "count": int(len(numeric)),
        "mean": float(numeric.mean()),
        "median": float(numeric.median()),
        "min": float(numeric.min()),
        "max": float(numeric.max()),
    }


def duration_summary(grants: pd.DataFrame) -> dict[str, Any]:
    """Distribution of grant durations in days, ignoring flagged durations."""

    usable = grants.loc[~grants["duration_flagged"].astype(bool), "duration_days"]
    return _distribution(usable)


def award_size_summary(grants: pd.DataFrame) -> dict[str, Any]:
    summary = _distribution(grants["total_amount"])
    summary["total"] = float(pd.to_numeric(grants["total_amount"], errors="coerce").sum())
    return summary


def discipline_counts(grants: pd.DataFrame) -> list[dict[str, Any]]:
    counter: Counter[str] = Counter()
    for value in grants["disciplines"]:
        counter.update(set(split_disciplines(value)))
    ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return [{"discipline": name, "grant_count": count} for name, count in ranked]


def program_summary(grants: pd.DataFrame) -> pd.DataFrame:
    if grants.empty:
        return pd.DataFrame(columns=["program", "grant_count", "total_amount"])
    programs = grants.assign(program=grants["program"].fillna("Unknown"))
    summary = programs.groupby("program", as_index=False).agg(
        grant_count=("total_amount", "size"),
        total_amount=("total_amount", "sum"),
    )
    return summary.sort_values(
        by=["total_amount", "program"],
        ascending=[False, True],
        kind="mergesort",
    ).reset_index(drop=True)


def state_shares(result: StateMetricsResult) -> list[dict[str, Any]]:
    return [
        {
            "state_name": str(row.state_name),
            "state_abbreviation": str(row.state_abbreviation),
            "population": int(row.population),
            "grant_count": int(row.grant_count),
            "total_awarded": float(row.total_awarded),
            "per_capita_award": float(row.per_capita_award),
            "percent_share": float(row.percent_share),
        }
        for row in result.metrics.itertuples(index=False)
    ]


def build_run_summary(result: StateMetricsResult) -> dict[str, Any]:
    """JSON-safe scalars for the run report.

    Distributions cover the included grants only; flag counts cover every
    ingested grant. ``field_parse_errors`` counts values that were present in
    the XML but could not be parsed, which the flags alone cannot tell apart
    from missing tags.
    """

    included = result.included_grants
    flag_columns = ["amount_flagged", "duration_flagged"]
    all_flags = pd.concat(
        [included[flag_columns], result.excluded_grants[flag_columns]],
        ignore_index=True,
    )
    programs = program_summary(included)
    return {
        "census_year": CENSUS_YEAR,
        "national_per_capita": result.national_per_capita,
        "jurisdiction_count": int(len(result.metrics)),
        "exclusions": result.exclusions.to_dict(),
        "uncovered_abbreviations": sorted(result.uncovered_abbreviations),
        "invalid_population_states": list(result.invalid_population_states),
        "field_parse_errors": {
            "count": int(result.field_parse_errors.get("count", 0)),
            "by_column": dict(result.field_parse_errors.get("by_column", {})),
            "examples": list(result.field_parse_errors.get("examples", [])),
        },
        "flags": {
            "amount_flagged": int(all_flags["amount_flagged"].astype(bool).sum()),
            "duration_flagged": int(all_flags["duration_flagged"].astype(bool).sum()),
        },
        "award_size": award_size_summary(included),
        "duration_days": duration_summary(included),
        "disciplines": discipline_counts(included),
        "programs": [
            {
                "program": str(row.program),
                "grant_count": int(row.grant_count),
                "total_amount": float(row.total_amount),
            }
            for row in programs.itertuples(index=False)
        ],
        "states": state_shares(result),
    }
