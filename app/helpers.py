from __future__ import annotations

from typing import Any

import pandas as pd


def format_currency(value: Any, *, decimals: int = 0) -> str:
    amount = _coerce_float(value)
    if amount is None:
        return "Unknown"
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.{decimals}f}"


def format_percent(value: Any, *, decimals: int = 1) -> str:
    percent = _coerce_float(value)
    if percent is None:
        return "Unknown"
    return f"{percent:.{decimals}f}%"


def metrics_display_frame(metrics: pd.DataFrame) -> pd.DataFrame:
    display = metrics.copy()
    display["total_awarded"] = display["total_awarded"].map(format_currency)
    display["per_capita_award"] = display["per_capita_award"].map(
        lambda value: format_currency(value, decimals=2)
    )
    display["percent_share"] = display["percent_share"].map(
        lambda value: format_percent(value, decimals=2)
    )
    display["population"] = display["population"].map(lambda value: f"{int(value):,}")
    return display.rename(
        columns={
            "state_name": "Jurisdiction",
            "state_abbreviation": "Abbr.",
            "population": "Population (2010)",
            "grant_count": "Grants",
            "total_awarded": "Total awarded",
            "per_capita_award": "Per capita",
            "percent_share": "Share of total",
        }
    )


def exclusion_caption(exclusions: dict[str, Any]) -> str:
    count = int(exclusions.get("excluded_count") or 0)
    total = int(exclusions.get("total_count") or 0)
    if count == 0:
        return f"All {total:,} grants matched a jurisdiction with population data."
    return (
        f"{count:,} of {total:,} grants ({format_percent(exclusions.get('excluded_percent'), decimals=2)}, "
        f"{format_currency(exclusions.get('excluded_amount'))}) had no matching population and were excluded."
    )


def _coerce_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(numeric):
        return None
    return numeric
