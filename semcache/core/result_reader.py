#!/usr/bin/env python3
"""
Cache Result Reader - DuckDB cursor → lazy rows with wire-type coercion

Rows are pulled from the cursor in batches and converted one at a time:
- Column wire types are resolved once, when the reader opens
- TIMESTAMP values become epoch microseconds (UTC), so wire encoding never
  depends on the process time zone
- Everything else passes through unchanged

The reader is single-pass and cannot be restarted.
"""

import calendar
from collections import deque
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

try:
    from .errors import UnsupportedValueError
    from .wire_types import TIMESTAMP, WireType, to_wire_type
except ImportError:
    from errors import UnsupportedValueError
    from wire_types import TIMESTAMP, WireType, to_wire_type


def to_epoch_micros(value: datetime) -> int:
    """
    Convert a DuckDB timestamp to epoch microseconds.

    Naive values are the engine's local date-time and are read as UTC.

    Example:
        datetime(2023, 1, 1, 0, 0, 1, 500) → 1672531201000500
    """
    if value.tzinfo is None:
        seconds = calendar.timegm(value.timetuple())
    else:
        seconds = calendar.timegm(value.utctimetuple())
    return seconds * 1_000_000 + value.microsecond


class CacheResultReader:
    """Iterator of row tuples over one cache-engine query."""

    BATCH_SIZE = 1024

    def __init__(self, cursor):
        self._cursor = cursor
        self._buffer = deque()
        self._exhausted = False
        self._closed = False

        description = cursor.description or []
        self.column_names: List[str] = [column[0] for column in description]
        self.types: List[WireType] = [to_wire_type(column[1]) for column in description]

    @classmethod
    def open(cls, client, sql: str, parameters: Optional[Sequence[Any]] = None) -> 'CacheResultReader':
        """
        Execute sql on a fresh cursor of the cache engine and wrap it.

        Args:
            client: CacheEngineClient
            sql: Query text, with "?" placeholders
            parameters: Values bound to the placeholders
        """
        cursor = client.cursor()
        try:
            if parameters:
                cursor.execute(sql, list(parameters))
            else:
                cursor.execute(sql)
        except Exception:
            cursor.close()
            raise
        return cls(cursor)

    def __iter__(self):
        return self

    def __next__(self) -> Tuple:
        if not self._buffer:
            self._fill()
        if not self._buffer:
            raise StopIteration
        record = self._buffer.popleft()
        return tuple(self._convert(wire_type, value) for wire_type, value in zip(self.types, record))

    def _fill(self):
        if self._exhausted or self._closed:
            return
        batch = self._cursor.fetchmany(self.BATCH_SIZE)
        if len(batch) < self.BATCH_SIZE:
            self._exhausted = True
        self._buffer.extend(batch)

    def _convert(self, wire_type: WireType, value):
        if value is None:
            return None
        try:
            if wire_type is TIMESTAMP:
                if not isinstance(value, datetime):
                    raise TypeError(f"expected datetime, got {type(value).__name__}")
                return to_epoch_micros(value)
            return value
        except Exception as e:
            raise UnsupportedValueError(value, e)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        self._cursor.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
