from __future__ import annotations

from .xml_grants import IngestResult, MalformedGrantsXmlError, parse_grants_xml

__all__ = [
    "IngestResult",
    "MalformedGrantsXmlError",
    "parse_grants_xml",
]
