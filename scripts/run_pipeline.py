from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from neh_grants.census.client import CensusClient
from neh_grants.census.loader import load_population
from neh_grants.config import PipelineConfig, load_config, resolve_repo_path
from neh_grants.io.tabular_cache import load_grants, write_json_atomic, write_table_atomic
from neh_grants.metrics.engine import StateMetricsResult, compute_state_metrics
from neh_grants.metrics.summary import build_run_summary
from neh_grants.reconcile.state_names import StateNameIndex

logger = logging.getLogger("run_pipeline")

STATE_METRICS_FILENAME = "state_metrics.csv"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Join NEH grants with 2010 census population and report per-capita awards."
    )
    parser.add_argument("--config", type=Path, default=ROOT_DIR / "pipeline_config.json")
    parser.add_argument("--grants-xml", type=Path, default=None)
    parser.add_argument("--grants-cache", type=Path, default=None)
    parser.add_argument("--population-cache", type=Path, default=None)
    parser.add_argument("--api-key-file", type=Path, default=None)
    parser.add_argument("--report-dir", type=Path, default=None)
    parser.add_argument("--request-timeout-seconds", type=float, default=None)
    parser.add_argument("--max-retries", type=int, default=None)
    parser.add_argument("--backoff-factor", type=float, default=None)
    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> PipelineConfig:
    config = load_config(resolve_repo_path(args.config))
    overrides: dict[str, Any] = {}
    for arg_name, field_name in (
        ("grants_xml", "grants_xml_path"),
        ("grants_cache", "grants_cache_path"),
        ("population_cache", "population_cache_path"),
        ("api_key_file", "api_key_path"),
        ("report_dir", "report_dir"),
    ):
        value = getattr(args, arg_name)
        if value is not None:
            overrides[field_name] = resolve_repo_path(value)
    for field_name in ("request_timeout_seconds", "max_retries", "backoff_factor"):
        value = getattr(args, field_name)
        if value is not None:
            overrides[field_name] = value
    return replace(config, **overrides)


def _exception_summary(exc: Exception) -> dict[str, str]:
    return {"type": type(exc).__name__, "message": str(exc)}


def compute_from_config(config: PipelineConfig) -> StateMetricsResult:
    grants = load_grants(config.grants_xml_path, config.grants_cache_path)
    with CensusClient(
        timeout_seconds=config.request_timeout_seconds,
        max_retries=config.max_retries,
        backoff_factor=config.backoff_factor,
    ) as client:
        population = load_population(
            config.population_cache_path,
            api_key_path=config.api_key_path,
            http_client=client,
        )
    return compute_state_metrics(
        grants.table,
        population,
        StateNameIndex.build(),
        field_parse_errors=grants.field_parse_errors,
    )


def run_pipeline(config: PipelineConfig | None = None) -> dict[str, Any]:
    resolved_config = config or PipelineConfig()
    started_at = datetime.now(tz=UTC)
    report_stamp = started_at.strftime("%Y%m%dT%H%M%SZ")
    report_path = resolved_config.report_dir / f"pipeline_{report_stamp}.json"
    metrics_path = resolved_config.report_dir / STATE_METRICS_FILENAME

    summary: dict[str, Any] | None = None
    metrics_written: Path | None = None
    run_exception: dict[str, str] | None = None
    try:
        result = compute_from_config(resolved_config)
        summary = build_run_summary(result)
        write_table_atomic(result.metrics, metrics_path)
        metrics_written = metrics_path
    except Exception as exc:
        run_exception = _exception_summary(exc)
        logger.exception("Pipeline run failed.")
    finally:
        finished_at = datetime.now(tz=UTC)
        report_payload = {
            "status": "failed" if run_exception is not None else "success",
            "run_started_at": started_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "run_finished_at": finished_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "duration_seconds": round((finished_at - started_at).total_seconds(), 3),
            "config": resolved_config.to_dict(),
            "summary": summary,
            "artifact_paths": {
                "report": str(report_path.resolve()),
                "state_metrics": str(metrics_written.resolve()) if metrics_written else None,
            },
            "exception_summary": run_exception,
        }
        write_json_atomic(report_payload, report_path)
    return report_payload


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    report = run_pipeline(_config_from_args(args))

    print(f"Run status: {report['status']}")
    print(f"Wrote report: {report['artifact_paths']['report']}")
    summary = report["summary"]
    if summary is not None:
        exclusions = summary["exclusions"]
        print(f"National per-capita award: ${summary['national_per_capita']:.4f}")
        print(
            "Excluded grants: "
            f"{exclusions['excluded_count']}/{exclusions['total_count']} "
            f"({exclusions['excluded_percent']:.2f}%, ${exclusions['excluded_amount']:,.2f})"
        )
    return 0 if report["status"] == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
