from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import pytest

from neh_grants.config import PipelineConfig
from scripts.run_pipeline import _config_from_args, parse_args, run_pipeline

GRANTS_XML = """<Grants>
  <Grant>
    <AppNumber>FV-1</AppNumber>
    <Program>Preservation Assistance</Program>
    <InstState>VT</InstState>
    <AwardOutright>300</AwardOutright>
    <AwardMatching>200</AwardMatching>
    <BeginGrant>2001-01-01</BeginGrant>
    <EndGrant>2001-07-01</EndGrant>
    <Disciplines>History</Disciplines>
  </Grant>
  <Grant>
    <AppNumber>FT-1</AppNumber>
    <Program>Fellowships</Program>
    <InstState>TX</InstState>
    <AwardOutright>1500</AwardOutright>
    <AwardMatching>500</AwardMatching>
    <BeginGrant>2002-01-01</BeginGrant>
    <EndGrant>2002-12-31</EndGrant>
    <Disciplines>Linguistics</Disciplines>
  </Grant>
  <Grant>
    <AppNumber>FG-1</AppNumber>
    <Program>Fellowships</Program>
    <InstState>GU</InstState>
    <AwardOutright>100</AwardOutright>
    <AwardMatching>0</AwardMatching>
  </Grant>
</Grants>
"""


def _config(tmp_path: Path, grants_xml: str = GRANTS_XML) -> PipelineConfig:
    raw_path = tmp_path / "raw" / "grants.xml"
    raw_path.parent.mkdir(parents=True)
    raw_path.write_text(grants_xml, encoding="utf-8")
    return PipelineConfig(
        grants_xml_path=raw_path,
        grants_cache_path=tmp_path / "processed" / "grants.csv",
        population_cache_path=tmp_path / "processed" / "population.csv",
        api_key_path=tmp_path / "census_api_key.txt",
        report_dir=tmp_path / "reports",
    )


def _write_population_cache(config: PipelineConfig) -> None:
    config.population_cache_path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame({"state_name": ["Texas", "Vermont"], "population": [1000, 100]}).to_csv(
        config.population_cache_path, index=False
    )


def test_run_pipeline_writes_report_and_state_metrics(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _write_population_cache(config)

    report = run_pipeline(config)

    assert report["status"] == "success"
    assert report["exception_summary"] is None
    persisted = json.loads(Path(report["artifact_paths"]["report"]).read_text(encoding="utf-8"))
    summary = persisted["summary"]
    assert summary["national_per_capita"] == 2500 / 1100
    assert summary["exclusions"]["excluded_count"] == 1
    assert summary["exclusions"]["by_state"] == {"GU": 1}
    assert [state["state_name"] for state in summary["states"]] == ["Vermont", "Texas"]

    metrics = pd.read_csv(report["artifact_paths"]["state_metrics"])
    assert metrics["per_capita_award"].tolist() == [5.0, 2.0]
    assert config.grants_cache_path.exists()


def test_run_pipeline_records_missing_credential_as_failure(tmp_path: Path) -> None:
    config = _config(tmp_path)

    report = run_pipeline(config)

    assert report["status"] == "failed"
    assert report["summary"] is None
    assert report["exception_summary"]["type"] == "MissingCredentialError"
    assert report["artifact_paths"]["state_metrics"] is None
    assert Path(report["artifact_paths"]["report"]).exists()
    assert not config.population_cache_path.exists()


def test_run_report_counts_field_parse_errors_on_fresh_and_cached_runs(monkeypatch, tmp_path: Path) -> None:
    bad_xml = GRANTS_XML.replace("<AwardOutright>300</AwardOutright>", "<AwardOutright>oops</AwardOutright>")
    bad_xml = bad_xml.replace("<EndGrant>2002-12-31</EndGrant>", "<EndGrant>someday</EndGrant>")
    config = _config(tmp_path, bad_xml)
    _write_population_cache(config)

    fresh = run_pipeline(config)["summary"]

    def _fail_if_called(*args, **kwargs):  # noqa: ANN002, ANN003
        raise AssertionError("cache should have been used")

    monkeypatch.setattr("neh_grants.io.tabular_cache.parse_grants_xml", _fail_if_called)
    cached = run_pipeline(config)["summary"]

    for summary in (fresh, cached):
        parse_errors = summary["field_parse_errors"]
        assert parse_errors["count"] == 2
        assert parse_errors["by_column"] == {"award_outright": 1, "end_date": 1}
        assert [example["app_number"] for example in parse_errors["examples"]] == ["FV-1", "FT-1"]
        assert summary["flags"] == {"amount_flagged": 1, "duration_flagged": 2}


def test_cli_flags_override_retry_settings(tmp_path: Path) -> None:
    args = parse_args(
        [
            "--config",
            str(tmp_path / "missing_config.json"),
            "--request-timeout-seconds",
            "12",
            "--max-retries",
            "5",
            "--backoff-factor",
            "1.5",
        ]
    )

    config = _config_from_args(args)

    assert config.request_timeout_seconds == 12.0
    assert config.max_retries == 5
    assert config.backoff_factor == 1.5


def test_cli_rejects_out_of_range_retry_count(tmp_path: Path) -> None:
    args = parse_args(["--config", str(tmp_path / "missing_config.json"), "--max-retries", "11"])

    with pytest.raises(ValueError):
        _config_from_args(args)
