from __future__ import annotations

from .client import CensusClient
from .errors import CensusFetchError, MissingCredentialError
from .loader import load_population, read_api_key

__all__ = [
    "CensusClient",
    "CensusFetchError",
    "MissingCredentialError",
    "load_population",
    "read_api_key",
]
