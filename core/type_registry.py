from enum import Enum
from typing import Dict, Tuple, Optional

from core.safe_query_builder import SafeQueryBuilder
from core.schema_ir import ColumnDescriptor


class ColumnCategory(Enum):
    """How the encoder treats values destined for a column"""
    TIMESTAMP = "timestamp"
    ARRAY = "array"
    JSON = "json"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    NUMERIC = "numeric"
    BINARY = "binary"
    TEXT = "text"


class TypeInfo:
    """Target column type as reported by information_schema.columns"""
    def __init__(self, data_type: str, udt_name: Optional[str] = None, udt_schema: Optional[str] = None):
        self.data_type = (data_type or '').lower()
        self.udt_name = udt_name
        self.udt_schema = udt_schema

    @classmethod
    def from_column(cls, column: ColumnDescriptor) -> 'TypeInfo':
        return cls(column.data_type, column.udt_name, column.udt_schema)

    @property
    def category(self) -> ColumnCategory:
        return TypeRegistry.categorize(self.data_type, self.udt_name)

    def __repr__(self):
        return f"TypeInfo({self.data_type}, udt={self.udt_name})"


class TypeRegistry:
    # information_schema data_type -> category
    CATEGORIES: Dict[str, ColumnCategory] = {
        'timestamp with time zone': ColumnCategory.TIMESTAMP,
        'timestamp without time zone': ColumnCategory.TIMESTAMP,
        'array': ColumnCategory.ARRAY,
        'json': ColumnCategory.JSON,
        'jsonb': ColumnCategory.JSON,
        'boolean': ColumnCategory.BOOLEAN,
        'smallint': ColumnCategory.INTEGER,
        'integer': ColumnCategory.INTEGER,
        'bigint': ColumnCategory.INTEGER,
        'numeric': ColumnCategory.NUMERIC,
        'real': ColumnCategory.NUMERIC,
        'double precision': ColumnCategory.NUMERIC,
        'bytea': ColumnCategory.BINARY,
    }

    # Bounds used when a sequence omits MINVALUE/MAXVALUE
    SEQUENCE_BOUNDS: Dict[str, Tuple[int, int]] = {
        'smallint': (-32768, 32767),
        'integer': (-2147483648, 2147483647),
        'bigint': (-9223372036854775808, 9223372036854775807),
    }

    # Array element udt names that render as bare numbers inside ARRAY[...]
    NUMERIC_ELEMENT_TYPES = {'int2', 'int4', 'int8', 'numeric', 'float4', 'float8', 'oid'}

    # Schemas whose types never need qualifying
    BUILTIN_SCHEMAS = frozenset({'pg_catalog', 'information_schema'})

    @staticmethod
    def categorize(data_type: str, udt_name: Optional[str] = None) -> ColumnCategory:
        category = TypeRegistry.CATEGORIES.get((data_type or '').lower())
        if category:
            return category
        # USER-DEFINED columns over json/jsonb domains still hold JSON
        if udt_name in ('json', 'jsonb'):
            return ColumnCategory.JSON
        return ColumnCategory.TEXT

    @staticmethod
    def array_element_type(udt_name: Optional[str]) -> str:
        """'_int4' -> 'int4'; anything not following the underscore convention -> 'text'"""
        if udt_name and udt_name.startswith('_') and len(udt_name) > 1:
            return udt_name[1:]
        return 'text'

    @staticmethod
    def type_reference(name: str, udt_schema: Optional[str], qualify_in: Optional[str] = None) -> str:
        """Type name as written in DDL or a cast.

        Types living in a user schema are schema-qualified so they resolve
        whatever the target session's search_path is. With ``qualify_in`` only
        types from that schema are qualified.
        """
        if not udt_schema or udt_schema in TypeRegistry.BUILTIN_SCHEMAS:
            return name
        if qualify_in is not None and udt_schema != qualify_in:
            return name
        return SafeQueryBuilder.qualify(udt_schema, name)

    @staticmethod
    def array_cast_type(type_info: TypeInfo) -> str:
        element = TypeRegistry.array_element_type(type_info.udt_name)
        return TypeRegistry.type_reference(element, type_info.udt_schema) + '[]'

    @staticmethod
    def render_column_type(column: ColumnDescriptor, schema: Optional[str] = None) -> str:
        """Render the type clause of a column definition.

        Enum and array-of-enum types from ``schema`` come out schema-qualified.
        """
        data_type = column.data_type

        if data_type == 'ARRAY':
            element = TypeRegistry.array_element_type(column.udt_name)
            return TypeRegistry.type_reference(element, column.udt_schema, schema) + '[]'
        if data_type == 'character varying' and column.length:
            return f"varchar({column.length})"
        if data_type == 'character' and column.length:
            return f"char({column.length})"
        if data_type == 'numeric' and column.precision:
            if column.scale:
                return f"numeric({column.precision},{column.scale})"
            return f"numeric({column.precision})"
        if data_type == 'USER-DEFINED':
            if not column.udt_name:
                return 'text'
            return TypeRegistry.type_reference(column.udt_name, column.udt_schema, schema)
        return data_type

    @staticmethod
    def sequence_bounds(data_type: Optional[str], increment_by: int) -> Tuple[int, int]:
        """Default (min, max) PostgreSQL applies for a sequence of this type and direction"""
        type_min, type_max = TypeRegistry.SEQUENCE_BOUNDS.get(
            (data_type or 'bigint').lower(), TypeRegistry.SEQUENCE_BOUNDS['bigint'])
        if increment_by < 0:
            return type_min, -1
        return 1, type_max
