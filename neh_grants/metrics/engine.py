from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import numpy as np
import pandas as pd

from neh_grants.normalize.fields import summarize_parse_errors
from neh_grants.normalize.schema import METRIC_COLUMNS
from neh_grants.reconcile.state_names import StateNameIndex, normalize_abbreviation

logger = logging.getLogger(__name__)

UNRESOLVED_STATE = "unresolved_state"
MISSING_POPULATION = "missing_population"
_MISSING_ABBREVIATION_KEY = "<missing>"


@dataclass(frozen=True, slots=True)
class ExclusionSummary:
    excluded_count: int
    total_count: int
    excluded_amount: float
    by_state: dict[str, int] = field(default_factory=dict)
    by_reason: dict[str, int] = field(default_factory=dict)

    @property
    def excluded_percent(self) -> float:
        if self.total_count <= 0:
            return 0.0
        return self.excluded_count * 100.0 / self.total_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "excluded_count": self.excluded_count,
            "total_count": self.total_count,
            "excluded_percent": self.excluded_percent,
            "excluded_amount": self.excluded_amount,
            "by_state": dict(self.by_state),
            "by_reason": dict(self.by_reason),
        }


@dataclass(slots=True)
class StateMetricsResult:
    metrics: pd.DataFrame
    included_grants: pd.DataFrame
    excluded_grants: pd.DataFrame
    exclusions: ExclusionSummary
    national_per_capita: float
    uncovered_abbreviations: set[str] = field(default_factory=set)
    invalid_population_states: list[str] = field(default_factory=list)
    field_parse_errors: dict[str, Any] = field(default_factory=lambda: summarize_parse_errors([]))


def derive_grant_columns(grants: pd.DataFrame) -> pd.DataFrame:
    """Add total_amount, duration_days and their data-quality flags to a copy of ``grants``.

    A grant missing either award component contributes 0.0 and is flagged, as is
    any negative component. Negative or uncomputable durations are kept and
    flagged rather than dropped.
    """

    derived = grants.copy()
    outright = pd.to_numeric(derived["award_outright"], errors="coerce")
    matching = pd.to_numeric(derived["award_matching"], errors="coerce")
    missing_amount = outright.isna() | matching.isna()
    negative_amount = (outright < 0) | (matching < 0)
    derived["total_amount"] = (outright + matching).where(~missing_amount, 0.0).astype("float64")
    derived["amount_flagged"] = (missing_amount | negative_amount).astype(bool)

    begin = pd.to_datetime(derived["begin_date"], errors="coerce")
    end = pd.to_datetime(derived["end_date"], errors="coerce")
    duration = (end - begin).dt.days.astype("float64")
    derived["duration_days"] = duration.astype("Int64")
    derived["duration_flagged"] = (duration.isna() | (duration < 0)).astype(bool)

    flagged_amounts = int(derived["amount_flagged"].sum())
    negative_durations = int((duration < 0).sum())
    if flagged_amounts:
        logger.warning("%d grants have missing or negative award amounts", flagged_amounts)
    if negative_durations:
        logger.warning("%d grants end before they begin", negative_durations)
    return derived


def _population_lookup(population: pd.DataFrame) -> pd.Series:
    deduped = population.drop_duplicates(subset=["state_name"], keep="first")
    if len(deduped) != len(population):
        logger.warning("Population table has duplicate state names; keeping the first of each.")
    return pd.Series(
        pd.to_numeric(deduped["population"], errors="coerce").to_numpy(),
        index=deduped["state_name"].astype(str).to_numpy(),
    )


def _summarize_exclusions(derived: pd.DataFrame, excluded: pd.DataFrame) -> ExclusionSummary:
    by_state = (
        excluded["state_abbreviation"].fillna(_MISSING_ABBREVIATION_KEY).value_counts().sort_index()
    )
    by_reason = excluded["exclusion_reason"].value_counts().sort_index()
    return ExclusionSummary(
        excluded_count=int(len(excluded)),
        total_count=int(len(derived)),
        excluded_amount=float(excluded["total_amount"].sum()),
        by_state={str(key): int(value) for key, value in by_state.items()},
        by_reason={str(key): int(value) for key, value in by_reason.items()},
    )


def _aggregate_by_state(
    included: pd.DataFrame,
    population_by_name: pd.Series,
) -> tuple[pd.DataFrame, list[str]]:
    if included.empty:
        empty = pd.DataFrame(
            {
                "state_name": pd.Series(dtype="object"),
                "state_abbreviation": pd.Series(dtype="object"),
                "grant_count": pd.Series(dtype="int64"),
                "total_awarded": pd.Series(dtype="float64"),
                "population": pd.Series(dtype="int64"),
                "per_capita_award": pd.Series(dtype="float64"),
            }
        )
        return empty, []

    grouped = included.groupby(["state_name", "state_abbreviation"], as_index=False).agg(
        grant_count=("total_amount", "size"),
        total_awarded=("total_amount", "sum"),
    )
    grouped["population"] = grouped["state_name"].map(population_by_name)

    valid = grouped["population"].notna() & (grouped["population"] > 0)
    invalid_states = sorted(grouped.loc[~valid, "state_name"].tolist())
    for state_name in invalid_states:
        logger.error(
            "Population for %s is zero or missing; its per-capita row is excluded.", state_name
        )

    metrics = grouped.loc[valid].copy()
    metrics["population"] = metrics["population"].astype("int64")
    metrics["grant_count"] = metrics["grant_count"].astype("int64")
    metrics["per_capita_award"] = metrics["total_awarded"] / metrics["population"]
    return metrics, invalid_states


def compute_state_metrics(
    grants: pd.DataFrame,
    population: pd.DataFrame,
    index: StateNameIndex,
    *,
    field_parse_errors: Mapping[str, Any] | None = None,
) -> StateMetricsResult:
    """Join grants to population by jurisdiction and compute per-capita award metrics.

    Grants whose state abbreviation does not resolve, or resolves to a name with
    no population row, are excluded and counted. Output rows are ordered by
    per-capita award (descending) with ties broken by state name. Ingest parse
    failures, when given, are carried through unchanged for reporting.
    """

    derived = derive_grant_columns(grants)
    population_by_name = _population_lookup(population)

    derived["state_abbreviation"] = derived["institution_state"].map(normalize_abbreviation)
    derived["state_name"] = derived["state_abbreviation"].map(index.full_name)
    resolved = derived["state_name"].notna()
    has_population = derived["state_name"].isin(population_by_name.index)
    derived["exclusion_reason"] = np.select(
        [~resolved, ~has_population],
        [UNRESOLVED_STATE, MISSING_POPULATION],
        default="",
    )

    is_excluded = derived["exclusion_reason"] != ""
    included = derived.loc[~is_excluded].drop(columns=["exclusion_reason"]).reset_index(drop=True)
    excluded = derived.loc[is_excluded].reset_index(drop=True)
    exclusions = _summarize_exclusions(derived, excluded)
    if exclusions.excluded_count:
        logger.warning(
            "Excluded %d of %d grants (%.2f%%, $%.2f) without a matching population: %s",
            exclusions.excluded_count,
            exclusions.total_count,
            exclusions.excluded_percent,
            exclusions.excluded_amount,
            exclusions.by_state,
        )

    metrics, invalid_states = _aggregate_by_state(included, population_by_name)

    population_total = float(metrics["population"].sum())
    awarded_total = float(metrics["total_awarded"].sum())
    national_per_capita = awarded_total / population_total if population_total > 0 else 0.0
    if awarded_total != 0:
        metrics["percent_share"] = metrics["total_awarded"] / awarded_total * 100.0
    else:
        metrics["percent_share"] = 0.0

    metrics = metrics.sort_values(
        by=["per_capita_award", "state_name"],
        ascending=[False, True],
        kind="mergesort",
    ).reset_index(drop=True)[METRIC_COLUMNS]

    uncovered = index.coverage_check(
        derived["institution_state"].tolist(),
        population_by_name.index.tolist(),
    )
    logger.info(
        "Computed metrics for %d jurisdictions from %d grants; national per-capita $%.4f",
        len(metrics),
        len(included),
        national_per_capita,
    )
    return StateMetricsResult(
        metrics=metrics,
        included_grants=included,
        excluded_grants=excluded,
        exclusions=exclusions,
        national_per_capita=national_per_capita,
        uncovered_abbreviations=uncovered,
        invalid_population_states=invalid_states,
        field_parse_errors=(
            dict(field_parse_errors) if field_parse_errors is not None else summarize_parse_errors([])
        ),
    )
