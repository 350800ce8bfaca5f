#!/usr/bin/env python3
"""
Migration configuration for pgrelocate
Reads connection URLs and run settings from PGRELOCATE_* environment variables
"""

import os
from pathlib import Path
from typing import Optional, Tuple
from dataclasses import dataclass, field

ENV_PREFIX = 'PGRELOCATE_'


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}")


@dataclass
class MigrationConfig:
    """pgrelocate run settings.

    Explicit constructor arguments are kept; anything left unset is filled in
    from the environment.
    """

    source_url: Optional[str] = None
    target_url: Optional[str] = None
    schema: str = None

    include_data: bool = None
    batch_size: int = None
    suspend_constraints: bool = None

    # Identifier remap for the chat identifier columns
    remap_from: Optional[str] = None
    remap_to: Optional[str] = None
    remap_unconditional: bool = None

    # Schemas created on the target before DDL runs
    prepare_schemas: Tuple[str, ...] = field(default_factory=tuple)

    statement_timeout: int = None
    log_level: str = None
    report_dir: Path = None

    def __post_init__(self):
        """Load unset values from environment variables"""
        if self.source_url is None:
            self.source_url = _env('SOURCE_URL')
        if self.target_url is None:
            self.target_url = _env('TARGET_URL')
        if self.schema is None:
            self.schema = _env('SCHEMA', 'public')

        if self.include_data is None:
            self.include_data = _env_bool('INCLUDE_DATA', False)
        if self.batch_size is None:
            self.batch_size = _env_int('BATCH_SIZE', 100)
        if self.suspend_constraints is None:
            self.suspend_constraints = _env_bool('SUSPEND_CONSTRAINTS', True)

        if self.remap_from is None:
            self.remap_from = _env('REMAP_FROM')
        if self.remap_to is None:
            self.remap_to = _env('REMAP_TO')
        if self.remap_unconditional is None:
            self.remap_unconditional = _env_bool('REMAP_UNCONDITIONAL', False)

        if not self.prepare_schemas:
            schemas = _env('PREPARE_SCHEMAS')
            names = [s.strip() for s in schemas.split(',')] if schemas else []
            self.prepare_schemas = tuple(n for n in names if n) or (self.schema,)

        if self.statement_timeout is None:
            self.statement_timeout = _env_int('STATEMENT_TIMEOUT', 0)
        if self.log_level is None:
            self.log_level = _env('LOG_LEVEL', 'INFO')
        self.report_dir = Path(self.report_dir or _env('REPORT_DIR', '.'))

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    @property
    def remap_enabled(self) -> bool:
        return self.remap_to is not None and (self.remap_unconditional or self.remap_from is not None)

    def validate(self) -> list:
        """Return configuration issues that prevent a run"""
        issues = []
        if not self.source_url:
            issues.append(f"Source URL not set ({ENV_PREFIX}SOURCE_URL or --source)")
        if not self.target_url:
            issues.append(f"Target URL not set ({ENV_PREFIX}TARGET_URL or --target)")
        if self.remap_from is not None and self.remap_to is None:
            issues.append("Remap source value given without a replacement value")
        return issues
