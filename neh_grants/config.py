from __future__ import annotations

import json
import math
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_RAW_DIR = ROOT_DIR / "data" / "raw"
DEFAULT_PROCESSED_DIR = ROOT_DIR / "data" / "processed"
MAX_RETRIES_LIMIT = 10
_PATH_FIELDS = (
    "grants_xml_path",
    "grants_cache_path",
    "population_cache_path",
    "api_key_path",
    "report_dir",
)


def resolve_repo_path(path: Path | str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return ROOT_DIR / candidate


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    grants_xml_path: Path = DEFAULT_RAW_DIR / "NEH_Grants2000s.xml"
    grants_cache_path: Path = DEFAULT_PROCESSED_DIR / "neh_grants_2000s.csv"
    population_cache_path: Path = DEFAULT_PROCESSED_DIR / "census_2010_state_population.csv"
    api_key_path: Path = ROOT_DIR / "census_api_key.txt"
    report_dir: Path = ROOT_DIR / "reports" / "pipeline_runs"
    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 0.5

    def __post_init__(self) -> None:
        timeout = float(self.request_timeout_seconds)
        if not math.isfinite(timeout) or timeout <= 0.0:
            raise ValueError("request_timeout_seconds must be a positive finite number.")
        if int(self.max_retries) != self.max_retries or not 0 <= self.max_retries <= MAX_RETRIES_LIMIT:
            raise ValueError(f"max_retries must be an integer between 0 and {MAX_RETRIES_LIMIT}.")
        backoff = float(self.backoff_factor)
        if not math.isfinite(backoff) or backoff < 0.0:
            raise ValueError("backoff_factor must be a non-negative finite number.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> PipelineConfig:
        values = dict(payload or {})
        unknown = set(values).difference(cls.__dataclass_fields__)
        if unknown:
            raise ValueError("Unknown config keys: " + ", ".join(sorted(unknown)))

        defaults = cls()
        overrides: dict[str, Any] = {}
        for field_name in _PATH_FIELDS:
            if values.get(field_name) is not None:
                overrides[field_name] = resolve_repo_path(values[field_name])
        if values.get("request_timeout_seconds") is not None:
            overrides["request_timeout_seconds"] = float(values["request_timeout_seconds"])
        if values.get("max_retries") is not None:
            overrides["max_retries"] = int(values["max_retries"])
        if values.get("backoff_factor") is not None:
            overrides["backoff_factor"] = float(values["backoff_factor"])
        return replace(defaults, **overrides)

    def to_dict(self) -> dict[str, Any]:
        return {
            "grants_xml_path": str(self.grants_xml_path),
            "grants_cache_path": str(self.grants_cache_path),
            "population_cache_path": str(self.population_cache_path),
            "api_key_path": str(self.api_key_path),
            "report_dir": str(self.report_dir),
            "request_timeout_seconds": self.request_timeout_seconds,
            "max_retries": self.max_retries,
            "backoff_factor": self.backoff_factor,
        }


def load_config(config_path: Path | None) -> PipelineConfig:
    if config_path is None or not config_path.exists():
        return PipelineConfig()
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Config file '{config_path}' must contain a JSON object.")
    return PipelineConfig.from_mapping(payload)
