from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from neh_grants.normalize.fields import FIELD_PARSERS, FieldParseError, parse_text
from neh_grants.normalize.schema import CURRENCY_COLUMNS, DATE_COLUMNS, GRANT_COLUMNS

logger = logging.getLogger(__name__)

TAG_TO_COLUMN = {
    "AppNumber": "app_number",
    "Program": "program",
    "Institution": "institution",
    "InstState": "institution_state",
    "AwardOutright": "award_outright",
    "AwardMatching": "award_matching",
    "BeginGrant": "begin_date",
    "EndGrant": "end_date",
    "Disciplines": "disciplines",
}

_CAMEL_BOUNDARY_PATTERN = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD_PATTERN = re.compile(r"[^a-z0-9]+")


class MalformedGrantsXmlError(ValueError):
    """Raised when the grants export cannot be parsed as XML at all."""


@dataclass(slots=True)
class IngestResult:
    table: pd.DataFrame
    errors: list[FieldParseError] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return int(len(self.table))


def column_for_tag(tag: str) -> str:
    if tag in TAG_TO_COLUMN:
        return TAG_TO_COLUMN[tag]
    local_name = tag.rsplit("}", 1)[-1]
    snake = _CAMEL_BOUNDARY_PATTERN.sub("_", local_name).lower()
    return _NON_WORD_PATTERN.sub("_", snake).strip("_") or "unnamed"


def _element_text(element: ET.Element) -> str | None:
    if len(element) == 0:
        return element.text
    # Nested children are flattened into the same semicolon form as disciplines.
    pieces = [piece.strip() for piece in element.itertext() if piece and piece.strip()]
    return ";".join(pieces) if pieces else None


def _parse_grant_element(
    element: ET.Element,
    *,
    record_index: int,
) -> tuple[dict[str, Any], list[FieldParseError]]:
    raw_values: dict[str, str | None] = {}
    for child in element:
        raw_values[column_for_tag(child.tag)] = _element_text(child)

    app_number = parse_text(raw_values.get("app_number")).value
    record: dict[str, Any] = {}
    errors: list[FieldParseError] = []
    for column, raw in raw_values.items():
        parser = FIELD_PARSERS.get(column, parse_text)
        result = parser(raw)
        record[column] = result.value
        if not result.ok:
            errors.append(
                FieldParseError(
                    record_index=record_index,
                    app_number=app_number,
                    column=column,
                    raw_value=raw or "",
                    reason=str(result.error),
                )
            )
    return record, errors


def records_to_table(records: list[dict[str, Any]], extra_columns: list[str]) -> pd.DataFrame:
    columns = [*GRANT_COLUMNS, *extra_columns]
    table = pd.DataFrame(records, columns=columns)
    for column in CURRENCY_COLUMNS:
        table[column] = pd.to_numeric(table[column], errors="coerce").astype("float64")
    for column in DATE_COLUMNS:
        table[column] = pd.to_datetime(table[column], errors="coerce")
    return table


def parse_grants_xml(path: Path | str) -> IngestResult:
    """Parse a flat NEH grants export into one row per grant element.

    Every direct child of the root element is a grant; its leaf children become
    columns. Tags missing from a grant yield nulls. Values that fail their field
    parser are nulled and reported in ``IngestResult.errors``. Unparsable XML
    raises ``MalformedGrantsXmlError``.
    """

    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Grants XML not found: {source_path}")

    records: list[dict[str, Any]] = []
    errors: list[FieldParseError] = []
    extra_columns: list[str] = []
    depth = 0
    try:
        for event, element in ET.iterparse(source_path, events=("start", "end")):
            if event == "start":
                depth += 1
                continue
            depth -= 1
            if depth != 1:
                continue

            record, record_errors = _parse_grant_element(element, record_index=len(records))
            for column in record:
                if column not in GRANT_COLUMNS and column not in extra_columns:
                    extra_columns.append(column)
            for error in record_errors:
                logger.warning(
                    "Grant #%d (%s): could not parse %s=%r (%s)",
                    error.record_index,
                    error.app_number or "no app number",
                    error.column,
                    error.raw_value,
                    error.reason,
                )
            records.append(record)
            errors.extend(record_errors)
            element.clear()
    except ET.ParseError as exc:
        raise MalformedGrantsXmlError(f"Could not parse grants XML '{source_path}': {exc}") from exc

    table = records_to_table(records, extra_columns)
    logger.info(
        "Parsed %d grants from %s (%d field parse errors)",
        len(table),
        source_path,
        len(errors),
    )
    return IngestResult(table=table, errors=errors)
