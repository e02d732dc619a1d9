from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

US_STATES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas", "CA": "California",
    "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware", "FL": "Florida", "GA": "Georgia",
    "HI": "Hawaii", "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada", "NH": "New Hampshire",
    "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York", "NC": "North Carolina",
    "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania",
    "RI": "Rhode Island", "SC": "South Carolina", "SD": "South Dakota", "TN": "Tennessee",
    "TX": "Texas", "UT": "Utah", "VT": "Vermont", "VA": "Virginia", "WA": "Washington",
    "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}

# Jurisdictions in the grant and census data that the 50-state table lacks.
EXTRA_JURISDICTIONS: dict[str, str] = {
    "DC": "District of Columbia",
    "PR": "Puerto Rico",
}


def normalize_abbreviation(value: Any) -> str | None:
    if value is None or not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    return normalized or None


@dataclass(frozen=True, slots=True)
class StateNameIndex:
    """Bidirectional abbreviation <-> full jurisdiction name lookup."""

    _by_abbreviation: Mapping[str, str] = field(repr=False)
    _by_name: Mapping[str, str] = field(repr=False)

    @classmethod
    def build(
        cls,
        reference: Mapping[str, str] = US_STATES,
        extra: Mapping[str, str] = EXTRA_JURISDICTIONS,
    ) -> StateNameIndex:
        by_abbreviation: dict[str, str] = {}
        by_name: dict[str, str] = {}
        for abbreviation, name in [*reference.items(), *extra.items()]:
            key = normalize_abbreviation(abbreviation)
            if key is None:
                raise ValueError(f"Blank abbreviation for jurisdiction '{name}'.")
            if key in by_abbreviation:
                raise ValueError(f"Duplicate jurisdiction abbreviation '{key}'.")
            if name in by_name:
                raise ValueError(f"Duplicate jurisdiction name '{name}'.")
            by_abbreviation[key] = name
            by_name[name] = key
        return cls(_by_abbreviation=by_abbreviation, _by_name=by_name)

    def full_name(self, abbreviation: Any) -> str | None:
        key = normalize_abbreviation(abbreviation)
        if key is None:
            return None
        return self._by_abbreviation.get(key)

    def abbreviation(self, full_name: str) -> str | None:
        return self._by_name.get(full_name.strip())

    def coverage_check(
        self,
        abbreviations: Iterable[Any],
        population_names: Iterable[str],
    ) -> set[str]:
        """Return the abbreviations that have no population entry.

        An abbreviation is uncovered when it does not resolve in this index, or
        when it resolves to a name absent from ``population_names``.
        """

        known_names = set(population_names)
        uncovered: set[str] = set()
        for value in abbreviations:
            key = normalize_abbreviation(value)
            if key is None:
                continue
            name = self._by_abbreviation.get(key)
            if name is None or name not in known_names:
                uncovered.add(key)
        return uncovered

    def items(self) -> list[tuple[str, str]]:
        return sorted(self._by_abbreviation.items())

    def __contains__(self, abbreviation: object) -> bool:
        return self.full_name(abbreviation) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._by_abbreviation))

    def __len__(self) -> int:
        return len(self._by_abbreviation)
