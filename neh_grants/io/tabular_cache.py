from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

import pandas as pd

from neh_grants.ingest.xml_grants import parse_grants_xml
from neh_grants.normalize.fields import summarize_parse_errors
from neh_grants.normalize.schema import CURRENCY_COLUMNS, DATE_COLUMNS

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 2
DESCRIPTOR_SUFFIX = ".meta.json"
CSV_DATE_FORMAT = "%Y-%m-%d"
_HASH_CHUNK_BYTES = 1024 * 1024


class CacheWriteError(OSError):
    """Raised when a cache file cannot be written; no partial cache is left behind."""


@dataclass(frozen=True, slots=True)
class CacheDescriptor:
    """Identity of the raw source a cached table was built from."""

    source_sha256: str
    source_size: int
    source_mtime: float
    row_count: int
    schema_version: int = CACHE_SCHEMA_VERSION
    written_at: str = ""
    field_parse_errors: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_source(
        cls,
        source_path: Path,
        *,
        row_count: int,
        field_parse_errors: Mapping[str, Any] | None = None,
    ) -> CacheDescriptor:
        stat = source_path.stat()
        return cls(
            source_sha256=file_sha256(source_path),
            source_size=int(stat.st_size),
            source_mtime=float(stat.st_mtime),
            row_count=int(row_count),
            written_at=datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            field_parse_errors=dict(field_parse_errors or {}),
        )

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> CacheDescriptor:
        return cls(
            source_sha256=str(payload["source_sha256"]),
            source_size=int(payload["source_size"]),
            source_mtime=float(payload["source_mtime"]),
            row_count=int(payload["row_count"]),
            schema_version=int(payload.get("schema_version", 0)),
            written_at=str(payload.get("written_at") or ""),
            field_parse_errors=dict(payload.get("field_parse_errors") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_sha256": self.source_sha256,
            "source_size": self.source_size,
            "source_mtime": self.source_mtime,
            "row_count": self.row_count,
            "schema_version": self.schema_version,
            "written_at": self.written_at,
            "field_parse_errors": dict(self.field_parse_errors),
        }

    def matches(self, source_path: Path) -> bool:
        if self.schema_version != CACHE_SCHEMA_VERSION:
            return False
        if source_path.stat().st_size != self.source_size:
            return False
        return file_sha256(source_path) == self.source_sha256


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def descriptor_path_for(cache_path: Path) -> Path:
    return cache_path.parent / f"{cache_path.name}{DESCRIPTOR_SUFFIX}"


def _temp_path_for(output_path: Path) -> Path:
    return output_path.parent / f"{output_path.name}.{uuid4().hex}.tmp"


def write_table_atomic(df: pd.DataFrame, output_path: Path) -> None:
    temp_path = _temp_path_for(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(temp_path, index=False, date_format=CSV_DATE_FORMAT)
        temp_path.replace(output_path)
    except OSError as exc:
        raise CacheWriteError(f"Could not write table cache '{output_path}': {exc}") from exc
    finally:
        if temp_path.exists():
            temp_path.unlink()


def write_json_atomic(payload: dict[str, Any], output_path: Path) -> None:
    temp_path = _temp_path_for(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        temp_path.replace(output_path)
    except OSError as exc:
        raise CacheWriteError(f"Could not write '{output_path}': {exc}") from exc
    finally:
        if temp_path.exists():
            temp_path.unlink()


def read_descriptor(cache_path: Path) -> CacheDescriptor | None:
    descriptor_path = descriptor_path_for(cache_path)
    if not descriptor_path.exists():
        return None
    try:
        payload = json.loads(descriptor_path.read_text(encoding="utf-8"))
        return CacheDescriptor.from_mapping(payload)
    except (ValueError, KeyError, TypeError):
        logger.warning("Ignoring unreadable cache descriptor at %s", descriptor_path)
        return None


@dataclass(slots=True)
class GrantTableLoad:
    table: pd.DataFrame
    field_parse_errors: dict[str, Any]
    from_cache: bool


def read_grant_table(cache_path: Path) -> pd.DataFrame:
    """Read a grant cache CSV with the declared column types.

    Currency columns come back as floats and date columns as datetimes; every
    other column is read as text so identifiers keep leading zeros. Only empty
    cells are missing values: literal text such as "NA" or "None" survives.
    """

    header = pd.read_csv(cache_path, nrows=0).columns.tolist()
    dtypes: dict[str, Any] = {}
    for column in header:
        if column in CURRENCY_COLUMNS:
            dtypes[column] = "float64"
        elif column not in DATE_COLUMNS:
            dtypes[column] = str
    table = pd.read_csv(cache_path, dtype=dtypes, keep_default_na=False, na_values=[""])
    for column in DATE_COLUMNS:
        if column in table.columns:
            table[column] = pd.to_datetime(table[column], format=CSV_DATE_FORMAT, errors="coerce")
    return table


def _is_fresh(raw_source_path: Path, descriptor: CacheDescriptor | None, cache_path: Path) -> bool:
    if not cache_path.exists():
        return False
    if descriptor is None:
        logger.info("Grant cache %s has no descriptor; rebuilding.", cache_path)
        return False
    if not descriptor.matches(raw_source_path):
        logger.info("Grant cache %s is stale for %s; rebuilding.", cache_path, raw_source_path)
        return False
    return True


def _cached_parse_errors(descriptor: CacheDescriptor | None) -> dict[str, Any]:
    if descriptor is None or not descriptor.field_parse_errors:
        return summarize_parse_errors([])
    return dict(descriptor.field_parse_errors)


def build_grant_cache(raw_source_path: Path, cache_path: Path) -> GrantTableLoad:
    result = parse_grants_xml(raw_source_path)
    parse_errors = summarize_parse_errors(result.errors)
    descriptor = CacheDescriptor.for_source(
        raw_source_path,
        row_count=result.record_count,
        field_parse_errors=parse_errors,
    )
    descriptor_path = descriptor_path_for(cache_path)

    # Drop the old descriptor first so a failed rebuild can never look fresh.
    if descriptor_path.exists():
        descriptor_path.unlink()
    try:
        write_table_atomic(result.table, cache_path)
        write_json_atomic(descriptor.to_dict(), descriptor_path)
    except CacheWriteError:
        if cache_path.exists():
            cache_path.unlink()
        raise

    logger.info("Wrote grant cache %s (%d rows)", cache_path, result.record_count)
    return GrantTableLoad(
        table=read_grant_table(cache_path),
        field_parse_errors=parse_errors,
        from_cache=False,
    )


def load_grants(raw_source_path: Path, cache_path: Path) -> GrantTableLoad:
    """Return the grant table and its parse-error summary, rebuilding the cache when stale.

    Parse errors found when the cache was built are read back from its
    descriptor, so a cached load reports them exactly as the original ingest did.
    """

    descriptor = read_descriptor(cache_path)
    if not raw_source_path.exists():
        if cache_path.exists():
            logger.warning(
                "Raw grants file %s is missing; using cached table %s without revalidation.",
                raw_source_path,
                cache_path,
            )
            return GrantTableLoad(
                table=read_grant_table(cache_path),
                field_parse_errors=_cached_parse_errors(descriptor),
                from_cache=True,
            )
        raise FileNotFoundError(
            f"Neither the grants XML '{raw_source_path}' nor a cache at '{cache_path}' exists."
        )

    if _is_fresh(raw_source_path, descriptor, cache_path):
        logger.info("Loading grants from cache %s", cache_path)
        return GrantTableLoad(
            table=read_grant_table(cache_path),
            field_parse_errors=_cached_parse_errors(descriptor),
            from_cache=True,
        )
    return build_grant_cache(raw_source_path, cache_path)


def load_grant_table(raw_source_path: Path, cache_path: Path) -> pd.DataFrame:
    """Return the grant table, rebuilding the CSV cache when it is missing or stale."""

    return load_grants(raw_source_path, cache_path).table
