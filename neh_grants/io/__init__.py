"""On-disk caches for the grant and population tables."""

from neh_grants.io.tabular_cache import (
    CacheWriteError,
    GrantTableLoad,
    load_grant_table,
    load_grants,
    write_table_atomic,
)

__all__ = ["CacheWriteError", "GrantTableLoad", "load_grant_table", "load_grants", "write_table_atomic"]
