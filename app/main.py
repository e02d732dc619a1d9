from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pandas as pd
import streamlit as st

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.helpers import exclusion_caption, format_currency, metrics_display_frame
from neh_grants.config import load_config
from neh_grants.metrics.summary import build_run_summary
from scripts.run_pipeline import compute_from_config

CONFIG_PATH = ROOT_DIR / "pipeline_config.json"


@st.cache_data(show_spinner=False)
def _load_results(config_path_text: str) -> tuple[dict[str, Any], pd.DataFrame, pd.DataFrame]:
    config = load_config(Path(config_path_text))
    result = compute_from_config(config)
    return build_run_summary(result), result.metrics, result.excluded_grants


def _display_headline(summary: dict[str, Any]) -> None:
    award_size = summary["award_size"]
    duration = summary["duration_days"]
    columns = st.columns(4)
    columns[0].metric("National per-capita award", format_currency(summary["national_per_capita"], decimals=4))
    columns[1].metric("Total awarded", format_currency(award_size["total"]))
    columns[2].metric("Median award", format_currency(award_size["median"]))
    columns[3].metric("Median duration (days)", f"{duration['median']:.0f}")
    st.caption(exclusion_caption(summary["exclusions"]))


def _display_state_charts(metrics: pd.DataFrame) -> None:
    st.subheader("Per-capita award by jurisdiction")
    st.bar_chart(metrics.set_index("state_abbreviation")["per_capita_award"])
    st.subheader("Share of national award total")
    share = metrics.sort_values("percent_share", ascending=False, kind="mergesort")
    st.bar_chart(share.set_index("state_abbreviation")["percent_share"])


def _display_exclusions(summary: dict[str, Any], excluded: pd.DataFrame) -> None:
    st.subheader("Excluded grants")
    by_state = summary["exclusions"]["by_state"]
    if not by_state:
        st.write("No grants were excluded.")
        return
    st.dataframe(
        pd.DataFrame(
            [{"abbreviation": key, "grants": value} for key, value in by_state.items()]
        ),
        hide_index=True,
    )
    with st.expander("Excluded grant records"):
        st.dataframe(
            excluded[["app_number", "institution", "institution_state", "total_amount", "exclusion_reason"]],
            hide_index=True,
        )


def main() -> None:
    st.set_page_config(page_title="NEH Grants per Capita", layout="wide")
    st.title("NEH grants in the 2000s, per capita by state")
    st.caption("Population figures are from the 2010 census and are applied to the whole decade.")

    try:
        summary, metrics, excluded = _load_results(str(CONFIG_PATH))
    except (FileNotFoundError, ValueError, RuntimeError, OSError) as exc:
        st.error(f"Could not load grant metrics: {exc}")
        st.stop()
        return

    _display_headline(summary)
    st.subheader("Jurisdictions")
    st.dataframe(metrics_display_frame(metrics), hide_index=True, use_container_width=True)
    _display_state_charts(metrics)
    _display_exclusions(summary, excluded)
    parse_errors = summary["field_parse_errors"]
    if parse_errors["count"]:
        st.warning(
            f"{parse_errors['count']} XML values could not be parsed and were treated as missing: "
            + ", ".join(f"{column} ({count})" for column, count in parse_errors["by_column"].items())
        )

    left, right = st.columns(2)
    with left:
        st.subheader("Disciplines")
        st.dataframe(pd.DataFrame(summary["disciplines"]), hide_index=True)
    with right:
        st.subheader("Programs")
        st.dataframe(pd.DataFrame(summary["programs"]), hide_index=True)


if __name__ == "__main__":
    main()
