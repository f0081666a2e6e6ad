"""
Core modules for the pre-aggregation cache.
"""

from .cache_engine import CacheEngineClient
from .config import PreAggregationConfig
from .errors import PreAggregationError, StandardErrorCode, UnsupportedValueError
from .models import (
    ExportLocation,
    Manifest,
    PhysicalTableBinding,
    PreAggregationDefinition,
    SchemaKey,
    SessionContext,
)
from .backends import Backend, create_backend
from .manager import PreAggregationManager
from .result_reader import CacheResultReader
from .table_mapping import TableMappingRegistry
from .tasks import TaskInfo, TaskStatus

__all__ = [
    'CacheEngineClient',
    'PreAggregationConfig',
    'PreAggregationError',
    'StandardErrorCode',
    'UnsupportedValueError',
    'ExportLocation',
    'Manifest',
    'PhysicalTableBinding',
    'PreAggregationDefinition',
    'SchemaKey',
    'SessionContext',
    'Backend',
    'create_backend',
    'PreAggregationManager',
    'CacheResultReader',
    'TableMappingRegistry',
    'TaskInfo',
    'TaskStatus',
]
