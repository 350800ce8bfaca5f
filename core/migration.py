"""
pgrelocate Migration Runner
===========================

Wires the migration phases together:

    test connections -> prepare target -> (clean) -> read catalog
        -> synthesize DDL -> apply DDL -> (transfer data) -> report

Every phase records its failures and lets the run continue. Only a
ConnectionFailure ends the run early.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from config.migration_config import MigrationConfig
from core.audit_generator import MigrationReport
from core.catalog_reader import CatalogReader
from core.data_transfer import DataTransferEngine, IdentifierRemap
from core.ddl_synthesizer import DDLSynthesizer, BASELINE_EXTENSIONS, render_script
from core.dependency_resolver import resolve_order
from core.results import DDLStatement, ExecutionReport, TransferReport, ObjectFailure
from core.safe_query_builder import SafeQueryBuilder
from core.schema_ir import SchemaModel
from core.statement_executor import StatementExecutor
from extensions.plugins.postgresql_adapter import create_adapter_from_url

logger = logging.getLogger(__name__)

# Installed on the target before any DDL runs
PREPARE_EXTENSIONS = ('uuid-ossp', 'pgcrypto', 'pgjwt', 'pg_stat_statements', 'pg_trgm', 'vector')

TARGET_EXTENSIONS_QUERY = "SELECT extname FROM pg_extension ORDER BY extname"

CLEAN_QUERIES = (
    ('VIEW', "SELECT viewname AS name FROM pg_views WHERE schemaname = %s"),
    ('TABLE', "SELECT tablename AS name FROM pg_tables WHERE schemaname = %s"),
    ('SEQUENCE', "SELECT sequencename AS name FROM pg_sequences WHERE schemaname = %s"),
    ('TYPE', """
        SELECT t.typname AS name
        FROM pg_type t
        JOIN pg_namespace n ON n.oid = t.typnamespace
        LEFT JOIN pg_class c ON c.oid = t.typrelid
        WHERE n.nspname = %s
          AND t.typtype IN ('e', 'c', 'd')
          AND (t.typtype <> 'c' OR c.relkind = 'c')
    """),
)


class MigrationRunner:
    def __init__(self, config: MigrationConfig, source=None, target=None):
        self.config = config
        self._source = source
        self._target = target
        self.report = MigrationReport(config.report_dir, config.source_url, config.target_url, config.schema)
        self.synthesizer = DDLSynthesizer()

    @property
    def source(self):
        if self._source is None:
            self._source = create_adapter_from_url(
                self.config.source_url, statement_timeout=self.config.statement_timeout)
        return self._source

    @property
    def target(self):
        if self._target is None:
            self._target = create_adapter_from_url(
                self.config.target_url, statement_timeout=self.config.statement_timeout)
        return self._target

    def close(self):
        """Close database connections and release resources."""
        for adapter in (self._source, self._target):
            if adapter is not None:
                adapter.close()
        self._source = None
        self._target = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def test_connections(self) -> Dict[str, Any]:
        """Server versions of both sides and the baseline extensions found on the target"""
        logger.info("Testing database connections...")
        info = {
            'source_version': self.source.server_version(),
            'target_version': self.target.server_version(),
        }
        result = self.target.execute_query(TARGET_EXTENSIONS_QUERY)
        installed = {row['extname'] for row in result['data']} if result['success'] else set()
        info['target_extensions'] = sorted(installed & BASELINE_EXTENSIONS)

        logger.info(f"Source: PostgreSQL {info['source_version']}")
        logger.info(f"Target: PostgreSQL {info['target_version']}")
        logger.info(f"Target baseline extensions: {', '.join(info['target_extensions']) or 'none'}")
        self.report.record_connections(info)
        return info

    def prepare_target(self) -> List[ObjectFailure]:
        """Create the configured schemas and common extensions on the target"""
        logger.info("Preparing target database...")
        failures = []
        statements = [
            (schema, f"CREATE SCHEMA IF NOT EXISTS {SafeQueryBuilder.quote_ident(schema)}")
            for schema in self.config.prepare_schemas
        ]
        statements.extend(
            (ext, f"CREATE EXTENSION IF NOT EXISTS {SafeQueryBuilder.quote_ident(ext)}")
            for ext in PREPARE_EXTENSIONS
        )

        for name, sql in statements:
            result = self.target.execute_query(sql, fetch=False)
            if not result['success']:
                logger.warning(f"Could not prepare {name}: {result['error']}")
                failures.append(ObjectFailure(name, result['error']))

        self.report.record_failures('prepare', failures)
        return failures

    def clean_target(self) -> List[ObjectFailure]:
        """Drop views, tables, sequences and custom types of the schema on the target"""
        schema = self.config.schema
        logger.warning(f"Cleaning schema '{schema}' on target...")
        failures = []

        for kind, query in CLEAN_QUERIES:
            listing = self.target.execute_query(query, (schema,))
            if not listing['success']:
                failures.append(ObjectFailure(f"{kind.lower()}s", listing['error']))
                continue
            for row in listing['data']:
                qualified = SafeQueryBuilder.qualify(schema, row['name'])
                result = self.target.execute_query(f"DROP {kind} IF EXISTS {qualified} CASCADE", fetch=False)
                if result['success']:
                    logger.info(f"Dropped {kind.lower()} {qualified}")
                else:
                    logger.warning(f"Could not drop {kind.lower()} {qualified}: {result['error']}")
                    failures.append(ObjectFailure(qualified, result['error']))

        self.report.record_failures('clean', failures)
        return failures

    def read_schema(self) -> SchemaModel:
        reader = CatalogReader(self.source, self.config.schema)
        model = reader.read()
        self.report.record_model(model)
        self.report.record_failures('introspection', reader.failures)
        return model

    def synthesize(self, model: SchemaModel) -> List[DDLStatement]:
        statements = self.synthesizer.generate(model)
        for warning in self.synthesizer.warnings:
            self.report.log_warning(warning)
        return statements

    def migrate_schema(self, model: SchemaModel) -> ExecutionReport:
        logger.info("Migrating schema...")
        statements = self.synthesize(model)
        ddl_report = StatementExecutor(self.target).execute(statements)
        self.report.record_ddl(ddl_report)
        return ddl_report

    def build_remap(self) -> Optional[IdentifierRemap]:
        if not self.config.remap_enabled:
            return None
        return IdentifierRemap(
            source_value=self.config.remap_from,
            replacement_value=self.config.remap_to,
            unconditional=self.config.remap_unconditional,
        )

    def migrate_data(self, model: SchemaModel) -> TransferReport:
        logger.info("Migrating data...")
        resolution = resolve_order(model.table_names, model.dependency_graph())
        logger.info(f"Table load order: {', '.join(resolution.order)}")

        engine = DataTransferEngine(
            self.source, self.target,
            schema=self.config.schema,
            batch_size=self.config.batch_size,
            suspend_constraints=self.config.suspend_constraints,
            remap=self.build_remap(),
        )
        transfer_report = engine.transfer(resolution.order, resolution.cyclic)
        self.report.record_data(transfer_report)
        return transfer_report

    def dry_run(self, ddl_out: Path) -> Path:
        """Write the DDL for the source schema to ``ddl_out`` without touching the target"""
        model = self.read_schema()
        statements = self.synthesize(model)
        ddl_out = Path(ddl_out)
        ddl_out.parent.mkdir(parents=True, exist_ok=True)
        ddl_out.write_text(render_script(statements), encoding="utf-8")
        logger.info(f"Wrote {len(statements)} statements to {ddl_out}")
        return ddl_out

    def run(self, clean: bool = False, include_data: Optional[bool] = None) -> MigrationReport:
        """Run a full migration. Raises ConnectionFailure if either side is unreachable."""
        include_data = self.config.include_data if include_data is None else include_data
        logger.info(f"Starting migration of schema '{self.config.schema}'")

        self.test_connections()
        self.prepare_target()
        if clean:
            self.clean_target()

        model = self.read_schema()
        ddl_report = self.migrate_schema(model)
        if include_data:
            self.migrate_data(model)

        logger.info(f"Migration finished: {ddl_report.succeeded} statements applied, "
                    f"{ddl_report.failed} failed, {ddl_report.skipped} manual")
        return self.report
