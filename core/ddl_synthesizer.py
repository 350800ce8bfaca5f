#!/usr/bin/env python3
"""
DDL Synthesizer
===============

Maps a SchemaModel onto an ordered list of creation statements:

    schema -> extensions -> sequences -> types -> tables -> foreign keys
           -> indexes -> views

Foreign keys are added in their own pass once every table exists, and views
follow the views they select from. Every statement is guarded so that it can
be replayed against a target that was partially migrated by an earlier run.
"""

import logging
import re
from typing import List, Iterable, FrozenSet, Sequence

from core.dependency_resolver import resolve_order
from core.results import DDLPhase, DDLStatement
from core.safe_query_builder import SafeQueryBuilder
from core.schema_ir import (
    SchemaModel, TableDescriptor, SequenceDescriptor, CustomTypeDescriptor,
    CustomTypeKind, ConstraintKind, ViewDescriptor, IndexDescriptor,
)
from core.type_registry import TypeRegistry

logger = logging.getLogger(__name__)

# Extensions a freshly provisioned target is expected to have already
BASELINE_EXTENSIONS: FrozenSet[str] = frozenset({
    'plpgsql', 'pgcrypto', 'uuid-ossp', 'pgjwt', 'pg_stat_statements',
})

_CREATE_INDEX = re.compile(r'^\s*CREATE\s+(UNIQUE\s+)?INDEX\s+(?!IF\s+NOT\s+EXISTS)', re.IGNORECASE)

q = SafeQueryBuilder.quote_ident


def _ignore_duplicate(sql: str) -> str:
    """Wrap a statement that has no IF NOT EXISTS form"""
    return (
        "DO $pgrelocate$ BEGIN\n"
        f"  {sql};\n"
        "EXCEPTION\n"
        "  WHEN duplicate_object THEN NULL;\n"
        "END $pgrelocate$;"
    )


class DDLSynthesizer:
    """Generate target DDL from a schema snapshot"""

    def __init__(self, baseline_extensions: Iterable[str] = BASELINE_EXTENSIONS):
        self.baseline_extensions = frozenset(baseline_extensions)
        self.warnings: List[str] = []

    def generate(self, model: SchemaModel) -> List[DDLStatement]:
        self.warnings = []
        statements: List[DDLStatement] = []

        statements.append(DDLStatement(
            DDLPhase.SCHEMA, model.schema, f"CREATE SCHEMA IF NOT EXISTS {q(model.schema)};"))

        for ext in model.extensions:
            if ext.name in self.baseline_extensions:
                continue
            statements.append(DDLStatement(
                DDLPhase.EXTENSION, ext.name, f"CREATE EXTENSION IF NOT EXISTS {q(ext.name)};"))

        for seq in model.sequences:
            statements.append(self.sequence_statement(seq))

        for custom_type in model.types:
            statements.append(self.type_statement(custom_type))

        for table in model.tables:
            statements.append(self.table_statement(table))

        for table in model.tables:
            statements.extend(self.foreign_key_statements(table))

        for table in model.tables:
            for index in table.indexes:
                statements.append(self.index_statement(table, index))

        for view in order_views(model.views):
            statements.append(self.view_statement(view))

        logger.info(f"Generated {len(statements)} DDL statements for schema {model.schema}")
        return statements

    def sequence_statement(self, seq: SequenceDescriptor) -> DDLStatement:
        default_min, default_max = TypeRegistry.sequence_bounds(seq.data_type, seq.increment_by)
        min_value = seq.min_value if seq.min_value is not None else default_min
        max_value = seq.max_value if seq.max_value is not None else default_max

        lines = [f"CREATE SEQUENCE IF NOT EXISTS {seq.qualified_name}"]
        if seq.data_type:
            lines.append(f"  AS {seq.data_type}")
        lines.extend([
            f"  START WITH {seq.start_value}",
            f"  INCREMENT BY {seq.increment_by}",
            f"  MINVALUE {min_value}",
            f"  MAXVALUE {max_value}",
            f"  CACHE {seq.cache_size}",
            f"  {'CYCLE' if seq.cycle else 'NO CYCLE'};",
        ])
        sql = "\n".join(lines)

        if seq.placeholder:
            message = (f"Sequence {seq.schema}.{seq.name} was inferred from a column default; "
                       f"verify its bounds and current value manually")
            self.warnings.append(message)
            logger.warning(message)
            sql = f"-- inferred from column default, bounds are defaults\n{sql}"

        return DDLStatement(DDLPhase.SEQUENCE, f"{seq.schema}.{seq.name}", sql)

    def type_statement(self, custom_type: CustomTypeDescriptor) -> DDLStatement:
        name = f"{custom_type.schema}.{custom_type.name}"
        if custom_type.kind == CustomTypeKind.ENUM:
            labels = ','.join(SafeQueryBuilder.quote_literal(label) for label in custom_type.labels)
            sql = _ignore_duplicate(f"CREATE TYPE {custom_type.qualified_name} AS ENUM ({labels})")
            return DDLStatement(DDLPhase.TYPE, name, sql)

        message = f"{custom_type.kind.name.lower()} type {name} must be created manually"
        self.warnings.append(message)
        logger.warning(message)
        return DDLStatement(DDLPhase.TYPE, name, f"-- MANUAL: {message}", manual=True)

    def table_statement(self, table: TableDescriptor) -> DDLStatement:
        definitions = []
        for col in table.columns:
            col_def = f"  {q(col.name)} {TypeRegistry.render_column_type(col, table.schema)}"
            if not col.nullable:
                col_def += " NOT NULL"
            if col.default:
                col_def += f" DEFAULT {col.default}"
            definitions.append(col_def)

        # primary key first, then unique and check constraints
        inline = sorted(
            (c for c in table.constraints if c.is_inline),
            key=lambda c: c.kind != ConstraintKind.PRIMARY_KEY,
        )
        for constraint in inline:
            definitions.append(f"  CONSTRAINT {q(constraint.name)} {constraint.definition}")

        for constraint in table.constraints:
            if constraint.kind == ConstraintKind.EXCLUSION:
                message = f"Exclusion constraint {table.name}.{constraint.name} is not recreated"
                self.warnings.append(message)
                logger.warning(message)

        sql = f"CREATE TABLE IF NOT EXISTS {table.qualified_name} (\n" + ",\n".join(definitions) + "\n);"
        return DDLStatement(DDLPhase.TABLE, f"{table.schema}.{table.name}", sql)

    def foreign_key_statements(self, table: TableDescriptor) -> List[DDLStatement]:
        statements = []
        for fk in table.foreign_keys:
            sql = _ignore_duplicate(
                f"ALTER TABLE {table.qualified_name} ADD CONSTRAINT {q(fk.name)} {fk.definition}")
            statements.append(DDLStatement(DDLPhase.FOREIGN_KEY, f"{table.name}.{fk.name}", sql))
        return statements

    def index_statement(self, table: TableDescriptor, index: IndexDescriptor) -> DDLStatement:
        sql = _CREATE_INDEX.sub(
            lambda m: f"CREATE {m.group(1) or ''}INDEX IF NOT EXISTS ", index.definition, count=1)
        sql = sql.rstrip().rstrip(';') + ';'
        return DDLStatement(DDLPhase.INDEX, f"{table.schema}.{index.name}", sql)

    def view_statement(self, view: ViewDescriptor) -> DDLStatement:
        body = view.definition.strip().rstrip(';')
        sql = f"CREATE OR REPLACE VIEW {view.qualified_name} AS\n{body};"
        return DDLStatement(DDLPhase.VIEW, f"{view.schema}.{view.name}", sql)


def order_views(views: Sequence[ViewDescriptor]) -> List[ViewDescriptor]:
    """Views ordered so each one follows the views it selects from"""
    by_name = {view.name: view for view in views}
    resolution = resolve_order(by_name, {view.name: view.depends_on for view in views})
    return [by_name[name] for name in resolution.order]


def render_script(statements: Iterable[DDLStatement]) -> str:
    """Join statements into one replayable SQL script"""
    chunks = []
    for statement in statements:
        chunks.append(f"-- {statement.phase.value}: {statement.object_name}\n{statement.sql}\n")
    return "\n".join(chunks)
