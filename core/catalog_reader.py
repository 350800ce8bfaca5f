#!/usr/bin/env python3
"""
Catalog Reader
==============

Builds a SchemaModel for one application schema from pg_catalog and
information_schema.

Each object is introspected on its own: a failing query is recorded in
``CatalogReader.failures`` and the reader moves on to the next object.
Connection failures are not caught here and end the run.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from core.errors import IntrospectionError
from core.results import ObjectFailure
from core.safe_query_builder import SafeQueryBuilder
from core.schema_ir import (
    SchemaModel, TableDescriptor, ColumnDescriptor, ConstraintDescriptor,
    ConstraintKind, IndexDescriptor, SequenceDescriptor, CustomTypeDescriptor,
    CustomTypeKind, ViewDescriptor, ExtensionDescriptor,
)

logger = logging.getLogger(__name__)

# Schemas owned by the database or by the hosting platform, never rebuilt
SYSTEM_SCHEMAS = frozenset({
    'pg_catalog', 'information_schema', 'pg_toast', 'auth', 'storage',
    'extensions', 'supabase_functions', 'supabase_migrations',
    'realtime', 'vault', 'net', 'cron', 'graphql', 'graphql_public', 'pgsodium',
})

# nextval('seq'), nextval('public.seq'::regclass), nextval('"Odd"."Seq"'::regclass)
NEXTVAL_PATTERN = re.compile(r"nextval\('((?:[^']|'')+)'(?:::regclass)?\)", re.IGNORECASE)

SEQUENCES_QUERY = """
    SELECT
        schemaname,
        sequencename,
        data_type::text AS data_type,
        coalesce(start_value, 1) AS start_value,
        coalesce(increment_by, 1) AS increment_by,
        min_value,
        max_value,
        coalesce(cache_size, 1) AS cache_size,
        coalesce(cycle, false) AS cycle
    FROM pg_sequences
    WHERE schemaname = %s
    ORDER BY sequencename
"""

EXTENSIONS_QUERY = """
    SELECT extname, extversion
    FROM pg_extension
    ORDER BY extname
"""

TYPES_QUERY = """
    SELECT
        n.nspname AS schema,
        t.typname AS name,
        t.typtype AS type,
        CASE
            WHEN t.typtype = 'e' THEN ARRAY(
                SELECT e.enumlabel::text
                FROM pg_enum e
                WHERE e.enumtypid = t.oid
                ORDER BY e.enumsortorder
            )
            ELSE NULL
        END AS enum_values
    FROM pg_type t
    JOIN pg_namespace n ON n.oid = t.typnamespace
    LEFT JOIN pg_class c ON c.oid = t.typrelid
    WHERE n.nspname = %s
      AND t.typtype IN ('e', 'c', 'd')
      AND (t.typtype <> 'c' OR c.relkind = 'c')
    ORDER BY t.typname
"""

TABLES_QUERY = """
    SELECT schemaname, tablename
    FROM pg_tables
    WHERE schemaname = %s
      AND tablename NOT LIKE 'pg_%%'
    ORDER BY tablename
"""

COLUMNS_QUERY = """
    SELECT
        column_name,
        data_type,
        character_maximum_length,
        numeric_precision,
        numeric_scale,
        is_nullable,
        column_default,
        udt_name,
        udt_schema
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""

CONSTRAINTS_QUERY = """
    SELECT
        c.conname AS constraint_name,
        c.contype AS constraint_type,
        pg_get_constraintdef(c.oid) AS definition,
        refn.nspname AS referenced_schema,
        ref.relname AS referenced_table
    FROM pg_constraint c
    JOIN pg_namespace n ON n.oid = c.connamespace
    JOIN pg_class cls ON cls.oid = c.conrelid
    LEFT JOIN pg_class ref ON ref.oid = c.confrelid
    LEFT JOIN pg_namespace refn ON refn.oid = ref.relnamespace
    WHERE n.nspname = %s AND cls.relname = %s
    ORDER BY c.contype, c.conname
"""

INDEXES_QUERY = """
    SELECT indexname, indexdef
    FROM pg_indexes
    WHERE schemaname = %s AND tablename = %s
      AND indexname NOT IN (
          SELECT c.conname
          FROM pg_constraint c
          JOIN pg_namespace n ON n.oid = c.connamespace
          WHERE c.contype IN ('p', 'u') AND n.nspname = %s
      )
    ORDER BY indexname
"""

VIEWS_QUERY = """
    SELECT
        v.schemaname,
        v.viewname,
        v.definition,
        ARRAY(
            SELECT DISTINCT ref.relname::text
            FROM pg_class vc
            JOIN pg_namespace vn ON vn.oid = vc.relnamespace
            JOIN pg_rewrite r ON r.ev_class = vc.oid
            JOIN pg_depend d ON d.classid = 'pg_rewrite'::regclass AND d.objid = r.oid
            JOIN pg_class ref ON ref.oid = d.refobjid AND ref.relkind = 'v'
            JOIN pg_namespace rn ON rn.oid = ref.relnamespace
            WHERE vc.relname = v.viewname
              AND vn.nspname = v.schemaname
              AND rn.nspname = v.schemaname
              AND ref.oid <> vc.oid
        ) AS depends_on
    FROM pg_views v
    WHERE v.schemaname = %s
    ORDER BY v.viewname
"""


def parse_sequence_reference(default_expr: Optional[str], schema: str) -> Optional[Tuple[str, str]]:
    """Extract (schema, sequence) from a nextval() default expression.

    Returns None when the default does not call nextval or names a sequence
    through an expression that cannot be read back as a plain name.
    """
    if not default_expr:
        return None
    match = NEXTVAL_PATTERN.search(default_expr)
    if not match:
        return None

    ref = match.group(1).replace("''", "'")
    if '::' in ref:
        return None

    parts = re.findall(r'"(?:[^"]|"")+"|[^.]+', ref)
    names = [SafeQueryBuilder.strip_ident_quotes(p) if p.startswith('"') else p.lower() for p in parts]
    if len(names) == 1:
        return schema, names[0]
    if len(names) == 2:
        return names[0], names[1]
    return None


class CatalogReader:
    """Read the structural model of one schema from a source adapter"""

    def __init__(self, adapter, schema: str = 'public'):
        if schema in SYSTEM_SCHEMAS:
            raise ValueError(f"Schema '{schema}' is a system schema and cannot be migrated")
        self.adapter = adapter
        self.schema = schema
        self.failures: List[ObjectFailure] = []

    def _query(self, sql: str, params: Tuple, object_name: str) -> List[Dict[str, Any]]:
        result = self.adapter.execute_query(sql, params)
        if not result['success']:
            raise IntrospectionError(result.get('error') or 'query failed', object_name=object_name)
        return result['data']

    def _record_failure(self, object_name: str, error: Exception):
        logger.error(f"Introspection failed for {object_name}: {error}")
        self.failures.append(ObjectFailure(object_name, str(error)))

    def read(self) -> SchemaModel:
        """Introspect the schema. Never raises for a single failing object."""
        self.failures = []
        logger.info(f"Reading catalog for schema '{self.schema}'...")

        sequences = self.read_sequences()
        extensions = self.read_extensions()
        types = self.read_types()
        tables = self.read_tables()
        views = self.read_views()

        sequences.extend(self.infer_missing_sequences(tables, sequences))

        model = SchemaModel(
            schema=self.schema,
            tables=tuple(tables),
            sequences=tuple(sequences),
            types=tuple(types),
            views=tuple(views),
            extensions=tuple(extensions),
        )
        logger.info(
            f"Catalog read: {len(tables)} tables, {len(sequences)} sequences, {len(types)} types, "
            f"{len(views)} views, {len(extensions)} extensions, {len(self.failures)} failures"
        )
        return model

    def read_sequences(self) -> List[SequenceDescriptor]:
        try:
            rows = self._query(SEQUENCES_QUERY, (self.schema,), 'sequences')
        except IntrospectionError as e:
            self._record_failure('sequences', e)
            return []

        return [SequenceDescriptor(
            schema=row['schemaname'],
            name=row['sequencename'],
            data_type=row.get('data_type') or 'bigint',
            start_value=int(row['start_value']),
            increment_by=int(row['increment_by']),
            min_value=row['min_value'],
            max_value=row['max_value'],
            cache_size=int(row['cache_size']),
            cycle=bool(row['cycle']),
        ) for row in rows]

    def read_extensions(self) -> List[ExtensionDescriptor]:
        try:
            rows = self._query(EXTENSIONS_QUERY, (), 'extensions')
        except IntrospectionError as e:
            self._record_failure('extensions', e)
            return []
        return [ExtensionDescriptor(row['extname'], row.get('extversion')) for row in rows]

    def read_types(self) -> List[CustomTypeDescriptor]:
        try:
            rows = self._query(TYPES_QUERY, (self.schema,), 'types')
        except IntrospectionError as e:
            self._record_failure('types', e)
            return []

        types = []
        for row in rows:
            labels = row.get('enum_values') or ()
            if isinstance(labels, str):
                # unparsed array literal, e.g. '{a,b}'
                labels = [label.strip('"') for label in labels.strip('{}').split(',') if label]
            types.append(CustomTypeDescriptor(
                schema=row['schema'],
                name=row['name'],
                kind=CustomTypeKind(row['type']),
                labels=tuple(labels),
            ))
        return types

    def read_tables(self) -> List[TableDescriptor]:
        try:
            rows = self._query(TABLES_QUERY, (self.schema,), 'tables')
        except IntrospectionError as e:
            self._record_failure('tables', e)
            return []

        tables = []
        for row in rows:
            name = row['tablename']
            try:
                tables.append(self.read_table(name))
            except IntrospectionError as e:
                self._record_failure(f"{self.schema}.{name}", e)
        return tables

    def read_table(self, table_name: str) -> TableDescriptor:
        """Columns, constraints and indexes of one table"""
        object_name = f"{self.schema}.{table_name}"

        columns = tuple(
            ColumnDescriptor(
                name=col['column_name'],
                data_type=col['data_type'],
                udt_name=col.get('udt_name'),
                nullable=col['is_nullable'] == 'YES',
                default=col.get('column_default'),
                length=col.get('character_maximum_length'),
                precision=col.get('numeric_precision'),
                scale=col.get('numeric_scale'),
                udt_schema=col.get('udt_schema'),
            )
            for col in self._query(COLUMNS_QUERY, (self.schema, table_name), object_name)
        )

        constraints = []
        for con in self._query(CONSTRAINTS_QUERY, (self.schema, table_name), object_name):
            kind = ConstraintKind.from_contype(con['constraint_type'])
            if kind is None:
                continue
            constraints.append(ConstraintDescriptor(
                name=con['constraint_name'],
                kind=kind,
                definition=con['definition'],
                referenced_schema=con.get('referenced_schema'),
                referenced_table=con.get('referenced_table'),
            ))

        indexes = tuple(
            IndexDescriptor(idx['indexname'], idx['indexdef'])
            for idx in self._query(INDEXES_QUERY, (self.schema, table_name, self.schema), object_name)
        )

        logger.debug(f"Introspected {object_name}: {len(columns)} columns, "
                     f"{len(constraints)} constraints, {len(indexes)} indexes")
        return TableDescriptor(self.schema, table_name, columns, tuple(constraints), indexes)

    def read_views(self) -> List[ViewDescriptor]:
        try:
            rows = self._query(VIEWS_QUERY, (self.schema,), 'views')
        except IntrospectionError as e:
            self._record_failure('views', e)
            return []
        return [
            ViewDescriptor(row['schemaname'], row['viewname'], row['definition'],
                           depends_on=tuple(row.get('depends_on') or ()))
            for row in rows
        ]

    def infer_missing_sequences(self, tables: List[TableDescriptor],
                                known: List[SequenceDescriptor]) -> List[SequenceDescriptor]:
        """Placeholder sequences for nextval() defaults naming an undiscovered sequence.

        A column may use a sequence the introspecting role cannot see in
        pg_sequences. Its real bounds are not recoverable, so the placeholder
        gets START 1 / INCREMENT 1 and is flagged for manual verification.
        """
        seen: Set[Tuple[str, str]] = {(s.schema, s.name) for s in known}
        inferred = []
        for table in tables:
            for col in table.columns:
                ref = parse_sequence_reference(col.default, self.schema)
                if ref is None or ref in seen:
                    continue
                seq_schema, seq_name = ref
                if seq_schema != self.schema:
                    logger.warning(f"{table.name}.{col.name} uses sequence {seq_schema}.{seq_name} "
                                   f"outside schema '{self.schema}'; not recreated")
                    continue
                seen.add(ref)
                logger.warning(f"Sequence {seq_schema}.{seq_name} referenced by {table.name}.{col.name} "
                               f"not found in catalog, creating placeholder")
                inferred.append(SequenceDescriptor(
                    schema=seq_schema, name=seq_name, placeholder=True))
        return inferred
