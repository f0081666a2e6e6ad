#!/usr/bin/env python3
"""
Configuration for the pre-aggregation subsystem.

Values come from SEMCACHE_* environment variables, overridden by command-line
arguments (see semcache.run). Defaults suit a single-node gateway:
- In-memory DuckDB cache engine
- 5 refresh workers, 32 on-demand workers
- DuckDB threads = cores - 1 (leave one core for the front end)
"""

import os
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

try:
    from .errors import ConfigurationError
except ImportError:
    from errors import ConfigurationError

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ('duckdb',)


def _default_threads() -> int:
    return max(1, (os.cpu_count() or 8) - 1)


@dataclass
class PreAggregationConfig:
    """Runtime settings for the cache engine, backend and worker pools."""
    cache_database: str = ':memory:'        # DuckDB file backing the cache (":memory:" = ephemeral)
    source_database: Optional[str] = None   # Warehouse database for the duckdb backend
    export_dir: Path = field(default_factory=lambda: Path('/tmp/semcache-exports'))
    backend: str = 'duckdb'
    refresh_workers: int = 5
    manager_workers: int = 32
    duckdb_threads: int = field(default_factory=_default_threads)
    memory_limit: str = '4GB'

    def __post_init__(self):
        self.export_dir = Path(self.export_dir)
        if self.backend not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"Unsupported backend: {self.backend} (expected one of {', '.join(SUPPORTED_BACKENDS)})")
        if self.refresh_workers < 1:
            raise ConfigurationError(f"refresh_workers must be positive, got {self.refresh_workers}")
        if self.manager_workers < 1:
            raise ConfigurationError(f"manager_workers must be positive, got {self.manager_workers}")

    @classmethod
    def from_args(cls, args, base: Optional['PreAggregationConfig'] = None) -> 'PreAggregationConfig':
        """
        Build config from an argparse namespace.

        Attributes the namespace does not carry (or carries as None) keep
        the value from base, or the default when no base is given.
        """
        values = {}
        for name in cls.__dataclass_fields__:
            value = getattr(args, name, None)
            if value is not None:
                values[name] = value
        if base is not None:
            return replace(base, **values)
        return cls(**values)

    @classmethod
    def from_env(cls, environ=None) -> 'PreAggregationConfig':
        """Build config from SEMCACHE_* environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for name, f in cls.__dataclass_fields__.items():
            raw = environ.get(f"SEMCACHE_{name.upper()}")
            if raw is None:
                continue
            if name in ('refresh_workers', 'manager_workers', 'duckdb_threads'):
                try:
                    values[name] = int(raw)
                except ValueError:
                    raise ConfigurationError(f"SEMCACHE_{name.upper()} must be an integer, got {raw!r}")
            else:
                values[name] = raw
        config = cls(**values)
        logger.info(f"Loaded configuration from environment: backend={config.backend}, "
                    f"cache={config.cache_database}")
        return config
