from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from neh_grants.census.client import CensusClient
from neh_grants.census.errors import CensusFetchError, MissingCredentialError
from neh_grants.io.tabular_cache import write_table_atomic
from neh_grants.normalize.schema import CENSUS_YEAR, POPULATION_COLUMNS, PopulationRecord

logger = logging.getLogger(__name__)

CENSUS_ENDPOINT = f"https://api.census.gov/data/{CENSUS_YEAR}/dec/sf1"
TOTAL_POPULATION_VARIABLE = "P001001"


@dataclass(slots=True)
class CensusPayload:
    content: bytes
    fetched_at: datetime


def read_api_key(api_key_path: Path) -> str:
    if not api_key_path.exists():
        raise MissingCredentialError(
            f"Census API key file not found at '{api_key_path}'. "
            "Request a key at https://api.census.gov/data/key_signup.html and save it there."
        )
    api_key = api_key_path.read_text(encoding="utf-8").strip()
    if not api_key:
        raise MissingCredentialError(f"Census API key file '{api_key_path}' is empty.")
    return api_key


class CensusPopulationSource:
    """Total resident population per state from the 2010 decennial census."""

    name = "census_2010_state_population"
    endpoint = CENSUS_ENDPOINT

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def fetch(self, http_client: Any) -> CensusPayload:
        rows = http_client.fetch_rows(
            self.endpoint,
            params={
                "get": f"NAME,{TOTAL_POPULATION_VARIABLE}",
                "for": "state:*",
                "key": self._api_key,
            },
        )
        content = json.dumps(rows).encode("utf-8")
        return CensusPayload(content=content, fetched_at=datetime.now(tz=UTC))

    def parse(self, raw_content: bytes) -> list[PopulationRecord]:
        loaded = json.loads(raw_content.decode("utf-8-sig"))
        if not isinstance(loaded, list) or len(loaded) < 2 or not isinstance(loaded[0], list):
            raise CensusFetchError("Census response is not a header row followed by data rows.")

        header = [str(column) for column in loaded[0]]
        try:
            name_index = header.index("NAME")
            population_index = header.index(TOTAL_POPULATION_VARIABLE)
        except ValueError as exc:
            raise CensusFetchError(f"Census response header is missing a column: {header}") from exc

        records: list[PopulationRecord] = []
        for row in loaded[1:]:
            try:
                records.append(
                    PopulationRecord(
                        state_name=str(row[name_index]).strip(),
                        population=int(row[population_index]),
                    )
                )
            except (IndexError, TypeError, ValueError) as exc:
                raise CensusFetchError(f"Unreadable Census row {row!r}") from exc

        records.sort(key=lambda record: record.state_name)
        return records


def population_table(records: list[PopulationRecord]) -> pd.DataFrame:
    table = pd.DataFrame(
        [{"state_name": record.state_name, "population": record.population} for record in records],
        columns=POPULATION_COLUMNS,
    )
    return table.astype({"state_name": str, "population": "int64"})


def read_population_table(cache_path: Path) -> pd.DataFrame:
    return pd.read_csv(cache_path, dtype={"state_name": str, "population": "int64"})


def load_population(
    cache_path: Path,
    *,
    api_key_path: Path,
    http_client: Any | None = None,
) -> pd.DataFrame:
    """Return state population counts, fetching from the Census API only on a cache miss.

    The key is checked before any request. A failed fetch raises
    ``CensusFetchError`` and leaves no cache file behind.
    """

    if cache_path.exists():
        logger.info("Loading population from cache %s", cache_path)
        return read_population_table(cache_path)

    source = CensusPopulationSource(read_api_key(api_key_path))
    client = http_client if http_client is not None else CensusClient()
    try:
        payload = source.fetch(client)
    finally:
        if http_client is None:
            client.close()

    records = source.parse(payload.content)
    logger.info("Fetched population for %d jurisdictions from %s", len(records), source.endpoint)
    write_table_atomic(population_table(records), cache_path)
    return read_population_table(cache_path)
