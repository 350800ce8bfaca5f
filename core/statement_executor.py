"""
Applies generated DDL to the target, one autocommit statement at a time.

A failing statement is recorded and execution moves on: later statements may
still succeed (an index on a table that was created) and every statement is
re-runnable, so an operator can fix the cause and replay the whole list.
"""

import logging
from typing import Iterable

from core.errors import DDLApplicationError
from core.results import DDLStatement, StatementResult, StatementStatus, ExecutionReport

logger = logging.getLogger(__name__)


class StatementExecutor:

    def __init__(self, adapter):
        self.adapter = adapter

    def apply(self, statement: DDLStatement):
        """Run one statement, raising DDLApplicationError if the target rejects it"""
        result = self.adapter.execute_query(statement.sql, fetch=False)
        if not result['success']:
            raise DDLApplicationError(result['error'] or 'statement failed', statement=statement.prefix)

    def execute(self, statements: Iterable[DDLStatement]) -> ExecutionReport:
        report = ExecutionReport()

        for statement in statements:
            if statement.manual:
                logger.warning(f"Skipping manual statement for {statement.object_name}")
                report.add(StatementResult(statement, StatementStatus.SKIPPED))
                continue

            try:
                self.apply(statement)
            except DDLApplicationError as e:
                logger.error(f"Failed {statement.phase.value} {statement.object_name}: "
                             f"{e.message} [{statement.prefix}]")
                report.add(StatementResult(statement, StatementStatus.FAILED, e.message))
                continue

            logger.debug(f"Applied {statement.phase.value} {statement.object_name}")
            report.add(StatementResult(statement, StatementStatus.SUCCEEDED))

        logger.info(f"DDL applied: {report.succeeded} succeeded, {report.failed} failed, "
                    f"{report.skipped} skipped")
        return report
