#!/usr/bin/env python3
"""
Table Mapping Registry - logical pre-aggregation → physical cache table

Readers (query rewriting) look up the physical table for a definition while
refresh pipelines publish new bindings concurrently. Each entry is replaced
atomically; there are no cross-entry transactions.
"""

import threading
from typing import Dict, List, Optional, Tuple

try:
    from .models import PhysicalTableBinding, SchemaKey
except ImportError:
    from models import PhysicalTableBinding, SchemaKey


class TableMappingRegistry:
    """Thread-safe map of SchemaKey → PhysicalTableBinding."""

    def __init__(self):
        self._bindings: Dict[SchemaKey, PhysicalTableBinding] = {}
        self._lock = threading.Lock()

    def put(self, key: SchemaKey, binding: PhysicalTableBinding) -> Optional[PhysicalTableBinding]:
        """
        Replace the binding for key.

        Returns:
            The binding previously stored under key, if any
        """
        with self._lock:
            previous = self._bindings.get(key)
            self._bindings[key] = binding
            return previous

    def get(self, key: SchemaKey) -> Optional[PhysicalTableBinding]:
        with self._lock:
            return self._bindings.get(key)

    def remove(self, key: SchemaKey) -> Optional[PhysicalTableBinding]:
        with self._lock:
            return self._bindings.pop(key, None)

    def entries_for_schema(self, catalog: str, schema: str) -> List[Tuple[SchemaKey, PhysicalTableBinding]]:
        """Snapshot of every entry that belongs to catalog.schema."""
        with self._lock:
            return [
                (key, binding)
                for key, binding in self._bindings.items()
                if key.in_schema(catalog, schema)
            ]

    def items(self) -> List[Tuple[SchemaKey, PhysicalTableBinding]]:
        with self._lock:
            return list(self._bindings.items())

    def __len__(self):
        with self._lock:
            return len(self._bindings)

    def __contains__(self, key: SchemaKey):
        with self._lock:
            return key in self._bindings
