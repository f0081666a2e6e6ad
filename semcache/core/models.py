#!/usr/bin/env python3
"""
Value objects shared by the pre-aggregation subsystem.

- PreAggregationDefinition / Manifest: what to materialize (read-only)
- SchemaKey: registry key (catalog, schema, definition name)
- PhysicalTableBinding: current table-or-error state of one definition
- ExportLocation: intermediate export produced by a backend
- SessionContext: catalog/schema handed to the planner and converter
"""

import json
import re
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional

try:
    from .errors import ManifestError
except ImportError:
    from errors import ManifestError

DEFAULT_REFRESH_TIME = '30m'

_DURATION_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$')
_DURATION_UNITS = {
    'ms': timedelta(milliseconds=1),
    's': timedelta(seconds=1),
    'm': timedelta(minutes=1),
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
}


def parse_duration(value) -> timedelta:
    """
    Parse a refresh interval such as "500ms", "1s", "30m", "2h" or "1d".

    Args:
        value: Duration string, or a timedelta (returned unchanged)

    Returns:
        timedelta (always positive)
    """
    if isinstance(value, timedelta):
        duration = value
    else:
        match = _DURATION_PATTERN.match(str(value))
        if not match:
            raise ManifestError(f"Invalid duration: {value!r} (expected e.g. '30m', '1h', '500ms')")
        duration = float(match.group(1)) * _DURATION_UNITS[match.group(2)]

    if duration <= timedelta(0):
        raise ManifestError(f"Duration must be positive: {value!r}")
    return duration


@dataclass(frozen=True)
class SessionContext:
    catalog: str
    schema: str


@dataclass(frozen=True)
class PreAggregationDefinition:
    """A semantic query to keep materialized in the cache engine."""
    name: str
    sql: str                                  # Source query over the semantic model
    refresh_time: timedelta = field(default_factory=lambda: parse_duration(DEFAULT_REFRESH_TIME))

    @classmethod
    def from_dict(cls, data: Dict) -> 'PreAggregationDefinition':
        name = data.get('name')
        sql = data.get('sql')
        if not name or not isinstance(name, str):
            raise ManifestError(f"Pre-aggregation requires a non-empty name: {data}")
        if not sql or not isinstance(sql, str):
            raise ManifestError(f"Pre-aggregation '{name}' requires a sql query")
        return cls(
            name=name,
            sql=sql,
            refresh_time=parse_duration(data.get('refreshTime', DEFAULT_REFRESH_TIME)),
        )


@dataclass(frozen=True)
class Manifest:
    """Semantic model for one catalog/schema, as far as pre-aggregation cares."""
    catalog: str
    schema: str
    pre_aggregations: List[PreAggregationDefinition] = field(default_factory=list)

    def __post_init__(self):
        seen = set()
        for definition in self.pre_aggregations:
            if definition.name in seen:
                raise ManifestError(f"Duplicate pre-aggregation name: {definition.name}")
            seen.add(definition.name)

    def get_pre_aggregation(self, name: str) -> Optional[PreAggregationDefinition]:
        for definition in self.pre_aggregations:
            if definition.name == name:
                return definition
        return None

    @property
    def session_context(self) -> SessionContext:
        return SessionContext(self.catalog, self.schema)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Manifest':
        """
        Build a manifest from its JSON document.

        Example:
            {
                "catalog": "canner",
                "schema": "tpch",
                "preAggregations": [
                    {"name": "revenue_by_day", "sql": "SELECT ...", "refreshTime": "1h"}
                ]
            }
        """
        catalog = data.get('catalog')
        schema = data.get('schema')
        if not catalog or not schema:
            raise ManifestError("Manifest requires both 'catalog' and 'schema'")
        definitions = [
            PreAggregationDefinition.from_dict(item)
            for item in data.get('preAggregations', [])
        ]
        return cls(catalog=catalog, schema=schema, pre_aggregations=definitions)

    @classmethod
    def load(cls, path: Path) -> 'Manifest':
        path = Path(path)
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(f"Could not read manifest {path}: {e}")
        return cls.from_dict(data)


@dataclass(frozen=True)
class SchemaKey:
    """Identity of one pre-aggregation: catalog + schema + definition name."""
    catalog: str
    schema: str
    name: str

    def in_schema(self, catalog: str, schema: str) -> bool:
        return self.catalog == catalog and self.schema == schema

    def __str__(self):
        return f"{self.catalog}.{self.schema}.{self.name}"


@dataclass(frozen=True)
class PhysicalTableBinding:
    """
    Current state of one definition in the cache engine.

    After a completed run exactly one of table_name / error_message is set.
    Bindings are replaced wholesale, never mutated.
    """
    definition: PreAggregationDefinition
    table_name: Optional[str] = None
    error_message: Optional[str] = None
    create_time: float = field(default_factory=time.time)

    @classmethod
    def succeeded(cls, definition: PreAggregationDefinition, table_name: str,
                  create_time: float) -> 'PhysicalTableBinding':
        return cls(definition, table_name=table_name, create_time=create_time)

    @classmethod
    def failed(cls, definition: PreAggregationDefinition, error_message: str,
               create_time: float) -> 'PhysicalTableBinding':
        return cls(definition, error_message=error_message, create_time=create_time)

    @property
    def is_ready(self) -> bool:
        return self.table_name is not None and self.error_message is None


@dataclass(frozen=True)
class ExportLocation:
    """Directory holding exported files plus the glob that selects them."""
    path: str
    file_pattern: str

    @property
    def glob(self) -> str:
        return f"{self.path}/{self.file_pattern}"
