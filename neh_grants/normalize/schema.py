from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from typing import Optional


@dataclass(frozen=True, slots=True)
class GrantRecord:
    """One NEH grant as parsed from the XML export.

    Field order is the column order of the grant table and its CSV cache.
    """

    app_number: Optional[str]
    program: Optional[str]
    institution: Optional[str]
    institution_state: Optional[str]
    award_outright: Optional[float]
    award_matching: Optional[float]
    begin_date: Optional[date]
    end_date: Optional[date]
    disciplines: Optional[str]


GRANT_COLUMNS = [record_field.name for record_field in fields(GrantRecord)]
CURRENCY_COLUMNS = ("award_outright", "award_matching")
DATE_COLUMNS = ("begin_date", "end_date")

POPULATION_COLUMNS = ["state_name", "population"]

METRIC_COLUMNS = [
    "state_name",
    "state_abbreviation",
    "population",
    "grant_count",
    "total_awarded",
    "per_capita_award",
    "percent_share",
]

# Census year used for every grant in the decade; no per-year interpolation.
CENSUS_YEAR = 2010


@dataclass(frozen=True, slots=True)
class PopulationRecord:
    state_name: str
    population: int
