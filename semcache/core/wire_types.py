#!/usr/bin/env python3
"""
Wire types - PostgreSQL types announced to clients, and the DuckDB mapping.

The front end encodes every result column with one of these types. Cache
results come from DuckDB, so each DuckDB column type resolves to a wire type
once when a reader opens; unknown types fall back to VARCHAR.
"""

import re
from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class WireType:
    name: str       # pg_type.typname
    oid: int
    typlen: int     # -1 = variable length

    def __str__(self):
        return self.name


BOOLEAN = WireType('bool', 16, 1)
SMALLINT = WireType('int2', 21, 2)
INTEGER = WireType('int4', 23, 4)
BIGINT = WireType('int8', 20, 8)
REAL = WireType('float4', 700, 4)
DOUBLE = WireType('float8', 701, 8)
NUMERIC = WireType('numeric', 1700, -1)
VARCHAR = WireType('varchar', 1043, -1)
BYTEA = WireType('bytea', 17, -1)
DATE = WireType('date', 1082, 4)
TIME = WireType('time', 1083, 8)
TIMESTAMP = WireType('timestamp', 1114, 8)
TIMESTAMP_WITH_TIMEZONE = WireType('timestamptz', 1184, 8)
INTERVAL = WireType('interval', 1186, 16)
JSON = WireType('json', 114, -1)
UUID = WireType('uuid', 2950, 16)

# Keys are upper-cased DuckDB type names without parameters ("DECIMAL(18,3)" → "DECIMAL").
# Older duckdb releases report coarse Python-ish codes in cursor.description
# ("NUMBER", "STRING", "DATETIME", ...); those are mapped too.
DUCKDB_TYPE_TO_WIRE: Dict[str, WireType] = {
    'BOOLEAN': BOOLEAN,
    'BOOL': BOOLEAN,
    'TINYINT': SMALLINT,
    'SMALLINT': SMALLINT,
    'UTINYINT': SMALLINT,
    'INTEGER': INTEGER,
    'USMALLINT': INTEGER,
    'BIGINT': BIGINT,
    'UINTEGER': BIGINT,
    'UBIGINT': NUMERIC,
    'HUGEINT': NUMERIC,
    'UHUGEINT': NUMERIC,
    'FLOAT': REAL,
    'DOUBLE': DOUBLE,
    'DECIMAL': NUMERIC,
    'NUMBER': NUMERIC,
    'VARCHAR': VARCHAR,
    'STRING': VARCHAR,
    'BLOB': BYTEA,
    'BINARY': BYTEA,
    'DATE': DATE,
    'TIME': TIME,
    'TIMESTAMP': TIMESTAMP,
    'TIMESTAMP_S': TIMESTAMP,
    'TIMESTAMP_MS': TIMESTAMP,
    'TIMESTAMP_NS': TIMESTAMP,
    'DATETIME': TIMESTAMP,
    'TIMESTAMP WITH TIME ZONE': TIMESTAMP_WITH_TIMEZONE,
    'TIMESTAMPTZ': TIMESTAMP_WITH_TIMEZONE,
    'INTERVAL': INTERVAL,
    'TIMEDELTA': INTERVAL,
    'JSON': JSON,
    'UUID': UUID,
}

_TYPE_PARAMETERS = re.compile(r'\(.*\)$')


def to_wire_type(duckdb_type) -> WireType:
    """
    Resolve a DuckDB column type (DuckDBPyType or type name) to a wire type.

    Args:
        duckdb_type: type_code from cursor.description, or a type name

    Returns:
        Matching WireType, VARCHAR when the type has no dedicated mapping
    """
    name = _TYPE_PARAMETERS.sub('', str(duckdb_type).strip()).upper()
    return DUCKDB_TYPE_TO_WIRE.get(name, VARCHAR)
