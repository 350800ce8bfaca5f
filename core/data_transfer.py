#!/usr/bin/env python3
"""
Data Transfer Engine
====================

Copies row data table by table in dependency order.

For each table:
1. read every source row
2. keep only the columns that exist in the target table
3. apply the identifier remap, encode each value for its target column
4. insert in batches with ``INSERT ... ON CONFLICT DO NOTHING``

All batches of one table run on a single target session with
``session_replication_role = replica`` so that triggers and foreign keys do
not fire during the load. The role is restored before the session goes back
to the pool, whatever happened to the batches.

Re-running a transfer against a target that already holds the rows inserts
nothing: conflicts on existing keys are skipped, not raised.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.errors import RowEncodingError, TargetTableMissing
from core.results import TransferReport, TableTransferResult, TransferStatus, BatchResult
from core.safe_query_builder import SafeQueryBuilder
from core.type_encoder import encode
from core.type_registry import TypeInfo, ColumnCategory

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

# Columns carrying chat platform identifiers that differ between deployments
DEFAULT_REMAP_COLUMNS = frozenset({'user_telegram_id', 'chat_telegram_id'})

SUSPEND_CONSTRAINTS_SQL = "SET session_replication_role = replica"
RESTORE_CONSTRAINTS_SQL = "SET session_replication_role = DEFAULT"

TARGET_COLUMNS_QUERY = """
    SELECT column_name, data_type, udt_name, udt_schema
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""


@dataclass(frozen=True)
class IdentifierRemap:
    """Rewrite an identifier value in a fixed set of columns.

    With ``unconditional`` every value of a matching column is replaced, NULL
    included. Otherwise only values equal to ``source_value`` are replaced.
    Values are compared by their text form so that a remap configured from
    the environment matches integer columns.
    """
    source_value: Any
    replacement_value: Any
    unconditional: bool = False
    columns: frozenset = DEFAULT_REMAP_COLUMNS

    def matches(self, value: Any) -> bool:
        if self.unconditional:
            return True
        if value is None or self.source_value is None:
            return False
        return str(value) == str(self.source_value)

    def apply(self, column: str, value: Any, type_info: Optional[TypeInfo] = None) -> Any:
        if column not in self.columns or not self.matches(value):
            return value
        replacement = self.replacement_value
        if type_info is not None and type_info.category == ColumnCategory.INTEGER and replacement is not None:
            return int(replacement)
        return replacement


def chunked(rows: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class DataTransferEngine:
    """Move rows from a source adapter to a target adapter"""

    def __init__(self, source, target, schema: str = 'public', batch_size: int = DEFAULT_BATCH_SIZE,
                 suspend_constraints: bool = True, remap: Optional[IdentifierRemap] = None):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.source = source
        self.target = target
        self.schema = schema
        self.batch_size = batch_size
        self.suspend_constraints = suspend_constraints
        self.remap = remap

    def transfer(self, order: Iterable[str], cyclic: Iterable[str] = ()) -> TransferReport:
        """Transfer every table in ``order``.

        Tables listed in ``cyclic`` are always loaded with constraints
        suspended, since no insert order satisfies their foreign keys.
        """
        cyclic = list(cyclic)
        report = TransferReport(cyclic_tables=cyclic)
        cyclic_set = set(cyclic)

        for table in order:
            suspend = self.suspend_constraints or table in cyclic_set
            result = self.transfer_table(table, suspend=suspend)
            report.add(result)

        logger.info(f"Data transfer finished: {report.total_migrated} rows, "
                    f"{len(report.missing_tables)} missing tables, {len(report.failed_tables)} failed tables")
        return report

    def transfer_table(self, table: str, suspend: bool = True) -> TableTransferResult:
        qualified = SafeQueryBuilder.qualify(self.schema, table)
        logger.info(f"Migrating data for {qualified}...")

        source_result = self.source.execute_query(f"SELECT * FROM {qualified}")
        if not source_result['success']:
            logger.error(f"Could not read {qualified} from source: {source_result['error']}")
            return TableTransferResult(table, TransferStatus.FAILED, error=source_result['error'])

        rows = source_result['data']
        if not rows:
            logger.info(f"No data in {qualified}")
            return TableTransferResult(table, TransferStatus.EMPTY)

        try:
            target_types = self.target_columns(table)
        except TargetTableMissing as e:
            logger.warning(e.message)
            return TableTransferResult(table, TransferStatus.MISSING_IN_TARGET, source_rows=len(rows),
                                       error=e.message)

        source_columns = list(rows[0].keys())
        columns = [c for c in source_columns if c in target_types]
        dropped = [c for c in source_columns if c not in target_types]
        if dropped:
            logger.warning(f"Columns not in target {qualified}, skipped: {', '.join(dropped)}")

        result = TableTransferResult(table, TransferStatus.COMPLETED, source_rows=len(rows),
                                     dropped_columns=dropped)
        if not columns:
            result.status = TransferStatus.FAILED
            result.error = "No source column exists in the target table"
            logger.error(f"{qualified}: {result.error}")
            return result

        with self.target.session() as session:
            if suspend:
                self._set_role(session, SUSPEND_CONSTRAINTS_SQL, qualified)
            try:
                for index, batch in enumerate(chunked(rows, self.batch_size)):
                    result.batches.append(
                        self._insert_batch(session, qualified, index, batch, columns, target_types))
            finally:
                if suspend:
                    self._set_role(session, RESTORE_CONSTRAINTS_SQL, qualified)

        if result.failed_batches:
            result.status = TransferStatus.PARTIAL
        logger.info(f"Migrated {result.migrated_rows}/{len(rows)} rows to {qualified}"
                    + (f" ({result.skipped_rows} already present)" if result.skipped_rows else ""))
        return result

    def target_columns(self, table: str) -> Dict[str, TypeInfo]:
        """Column name -> TypeInfo for the target table, in ordinal order"""
        result = self.target.execute_query(TARGET_COLUMNS_QUERY, (self.schema, table))
        if not result['success'] or not result['data']:
            raise TargetTableMissing(f"{self.schema}.{table}")
        return {
            row['column_name']: TypeInfo(row['data_type'], row.get('udt_name'), row.get('udt_schema'))
            for row in result['data']
        }

    def build_insert(self, qualified: str, columns: List[str], batch: Sequence[Dict[str, Any]],
                     target_types: Dict[str, TypeInfo]) -> str:
        column_list = ', '.join(SafeQueryBuilder.quote_ident(c) for c in columns)
        tuples = []
        for row in batch:
            values = []
            for column in columns:
                type_info = target_types[column]
                value = row.get(column)
                if self.remap is not None:
                    value = self.remap.apply(column, value, type_info)
                values.append(encode(value, type_info, column))
            tuples.append('(' + ', '.join(values) + ')')
        return (f"INSERT INTO {qualified} ({column_list}) VALUES\n"
                + ',\n'.join(tuples)
                + "\nON CONFLICT DO NOTHING")

    def _insert_batch(self, session, qualified: str, index: int, batch: Sequence[Dict[str, Any]],
                      columns: List[str], target_types: Dict[str, TypeInfo]) -> BatchResult:
        batch_result = BatchResult(index=index, rows=len(batch))
        try:
            sql = self.build_insert(qualified, columns, batch, target_types)
        except (RowEncodingError, ValueError, TypeError) as e:
            batch_result.error = f"encoding failed: {e}"
            logger.error(f"{qualified} batch {index}: {batch_result.error}")
            return batch_result

        outcome = session.execute(sql, fetch=False)
        if outcome['success']:
            batch_result.inserted = outcome['rows_affected']
        else:
            batch_result.error = outcome['error']
            logger.error(f"{qualified} batch {index} failed: {outcome['error']}")
        return batch_result

    def _set_role(self, session, sql: str, qualified: str):
        outcome = session.execute(sql, fetch=False)
        if not outcome['success']:
            # needs superuser or replication privileges on most hosts
            logger.warning(f"Could not run '{sql}' for {qualified}: {outcome['error']}")
