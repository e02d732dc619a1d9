from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from neh_grants.census.errors import CensusFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "NEHGrantsAnalysis/0.1 (+https://localhost; contact=local)"
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
_CONNECT_TIMEOUT_SECONDS = 5.0
_SLOW_REQUEST_SECONDS = 5.0
_ERROR_BODY_CHARS = 200


def census_retry(max_retries: int, backoff_factor: float) -> Retry:
    # Status retries end with the last response returned, so the caller sees its code.
    return Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )


def request_timeouts(timeout_seconds: float) -> tuple[float, float]:
    return min(_CONNECT_TIMEOUT_SECONDS, timeout_seconds), timeout_seconds


@dataclass(slots=True)
class CensusClient:
    """Census data API reader returning the raw array-of-arrays table.

    Every failure mode (network error, exhausted retries, error status, empty
    or non-JSON body, wrong shape) surfaces as ``CensusFetchError``.
    """

    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 0.5
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self._session.mount(
            "https://",
            HTTPAdapter(max_retries=census_retry(self.max_retries, self.backoff_factor)),
        )

    def __enter__(self) -> CensusClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()

    def fetch_rows(self, url: str, *, params: dict[str, Any]) -> list[list[Any]]:
        started_at = time.monotonic()
        try:
            response = self._session.get(
                url,
                params=params,
                timeout=request_timeouts(self.timeout_seconds),
            )
        except requests.RequestException as exc:
            raise CensusFetchError(f"Census API request to {url} failed: {exc}") from exc

        elapsed = time.monotonic() - started_at
        if elapsed > _SLOW_REQUEST_SECONDS:
            # Params carry the API key and are never logged.
            logger.warning("Slow Census API response %.3fs from %s", elapsed, url)

        if not response.ok:
            body = response.text[:_ERROR_BODY_CHARS].strip()
            raise CensusFetchError(
                f"Census API returned HTTP {response.status_code} for {url}: {body or 'no body'}"
            )
        # The API answers an unmatched query with 204 and no body.
        if not response.content:
            raise CensusFetchError(f"Census API returned an empty response for {url}")
        try:
            rows = response.json()
        except ValueError as exc:
            raise CensusFetchError(f"Census API response from {url} is not JSON") from exc
        if not isinstance(rows, list) or not all(isinstance(row, list) for row in rows):
            raise CensusFetchError(f"Census API response from {url} is not a table of rows")
        logger.info("Census API returned %d rows from %s", len(rows), url)
        return rows
