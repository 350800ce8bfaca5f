"""
Per-item outcomes collected by the DDL and data phases.

Recoverable failures never raise out of a phase: each statement, batch and
table produces a result record and the phase returns the accumulated report.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any

STATEMENT_PREFIX_LENGTH = 100


class DDLPhase(Enum):
    SCHEMA = "schema"
    EXTENSION = "extension"
    SEQUENCE = "sequence"
    TYPE = "type"
    TABLE = "table"
    FOREIGN_KEY = "foreign_key"
    INDEX = "index"
    VIEW = "view"


@dataclass(frozen=True)
class DDLStatement:
    """One generated statement.

    ``manual`` statements are markers for objects that cannot be rebuilt from
    catalog text; they are reported, never executed.
    """
    phase: DDLPhase
    object_name: str
    sql: str
    manual: bool = False

    @property
    def prefix(self) -> str:
        text = ' '.join(self.sql.split())
        if len(text) > STATEMENT_PREFIX_LENGTH:
            return text[:STATEMENT_PREFIX_LENGTH] + '...'
        return text


class StatementStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StatementResult:
    statement: DDLStatement
    status: StatementStatus
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == StatementStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'phase': self.statement.phase.value,
            'object': self.statement.object_name,
            'status': self.status.value,
            'statement': self.statement.prefix,
            'error': self.error,
        }


@dataclass
class ExecutionReport:
    results: List[StatementResult] = field(default_factory=list)

    def add(self, result: StatementResult):
        self.results.append(result)

    def _count(self, status: StatementStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(StatementStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(StatementStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(StatementStatus.SKIPPED)

    @property
    def failures(self) -> List[StatementResult]:
        return [r for r in self.results if r.status == StatementStatus.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped': self.skipped,
            'failures': [r.to_dict() for r in self.failures],
            'manual': [r.to_dict() for r in self.results if r.status == StatementStatus.SKIPPED],
        }


class TransferStatus(Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"          # at least one batch failed
    EMPTY = "empty"              # source table has no rows
    MISSING_IN_TARGET = "missing_in_target"
    FAILED = "failed"            # table-level failure before any batch ran


@dataclass
class BatchResult:
    index: int
    rows: int
    inserted: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class TableTransferResult:
    table: str
    status: TransferStatus
    source_rows: int = 0
    batches: List[BatchResult] = field(default_factory=list)
    dropped_columns: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def migrated_rows(self) -> int:
        return sum(b.inserted for b in self.batches if b.success)

    @property
    def skipped_rows(self) -> int:
        """Rows sent in successful batches but skipped on a uniqueness conflict"""
        return sum(b.rows - b.inserted for b in self.batches if b.success)

    @property
    def failed_batches(self) -> List[BatchResult]:
        return [b for b in self.batches if not b.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.table,
            'status': self.status.value,
            'source_rows': self.source_rows,
            'migrated_rows': self.migrated_rows,
            'skipped_rows': self.skipped_rows,
            'failed_batches': [
                {'index': b.index, 'rows': b.rows, 'error': b.error} for b in self.failed_batches
            ],
            'dropped_columns': self.dropped_columns,
            'error': self.error,
        }


@dataclass
class TransferReport:
    tables: List[TableTransferResult] = field(default_factory=list)
    cyclic_tables: List[str] = field(default_factory=list)

    def add(self, result: TableTransferResult):
        self.tables.append(result)

    def get(self, table: str) -> Optional[TableTransferResult]:
        return next((t for t in self.tables if t.table == table), None)

    @property
    def total_migrated(self) -> int:
        return sum(t.migrated_rows for t in self.tables)

    @property
    def missing_tables(self) -> List[str]:
        return [t.table for t in self.tables if t.status == TransferStatus.MISSING_IN_TARGET]

    @property
    def failed_tables(self) -> List[str]:
        return [t.table for t in self.tables if t.status in (TransferStatus.FAILED, TransferStatus.PARTIAL)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_migrated_rows': self.total_migrated,
            'missing_tables': self.missing_tables,
            'failed_tables': self.failed_tables,
            'cyclic_tables': self.cyclic_tables,
            'tables': [t.to_dict() for t in self.tables],
        }


@dataclass(frozen=True)
class ObjectFailure:
    """A catalog object or maintenance step that could not be processed"""
    object_name: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {'object': self.object_name, 'error': self.error}
