from __future__ import annotations


class MissingCredentialError(FileNotFoundError):
    """Raised when the Census API key file is missing or empty."""


class CensusFetchError(RuntimeError):
    """Raised when population data cannot be fetched or understood."""
