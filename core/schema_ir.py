"""
Structural model of one PostgreSQL schema, read once from the source catalog.

Every descriptor is frozen: the model is a snapshot that the DDL synthesizer
and the data transfer engine consume without touching a live connection.
"""

from dataclasses import dataclass
from typing import List, Dict, Optional, Tuple, FrozenSet
from enum import Enum

from core.safe_query_builder import SafeQueryBuilder


class ConstraintKind(Enum):
    PRIMARY_KEY = "p"
    UNIQUE = "u"
    FOREIGN_KEY = "f"
    CHECK = "c"
    EXCLUSION = "x"

    @classmethod
    def from_contype(cls, contype: str) -> Optional['ConstraintKind']:
        try:
            return cls(contype)
        except ValueError:
            # 'n' (NOT NULL, PG 18+) and 't' (constraint triggers) are carried elsewhere
            return None


class CustomTypeKind(Enum):
    ENUM = "e"
    COMPOSITE = "c"
    DOMAIN = "d"


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column definition as reported by information_schema.columns"""
    name: str
    data_type: str
    udt_name: Optional[str] = None
    nullable: bool = True
    default: Optional[str] = None
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    udt_schema: Optional[str] = None


@dataclass(frozen=True)
class ConstraintDescriptor:
    """Constraint with its pg_get_constraintdef() text"""
    name: str
    kind: ConstraintKind
    definition: str
    referenced_schema: Optional[str] = None
    referenced_table: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.kind in (ConstraintKind.PRIMARY_KEY, ConstraintKind.UNIQUE, ConstraintKind.CHECK)


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    definition: str


@dataclass(frozen=True)
class TableDescriptor:
    schema: str
    name: str
    columns: Tuple[ColumnDescriptor, ...] = ()
    constraints: Tuple[ConstraintDescriptor, ...] = ()
    indexes: Tuple[IndexDescriptor, ...] = ()

    @property
    def qualified_name(self) -> str:
        return SafeQueryBuilder.qualify(self.schema, self.name)

    @property
    def foreign_keys(self) -> List[ConstraintDescriptor]:
        return [c for c in self.constraints if c.kind == ConstraintKind.FOREIGN_KEY]

    @property
    def primary_key(self) -> Optional[ConstraintDescriptor]:
        return next((c for c in self.constraints if c.kind == ConstraintKind.PRIMARY_KEY), None)

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        return next((c for c in self.columns if c.name == name), None)


@dataclass(frozen=True)
class SequenceDescriptor:
    """Sequence definition.

    ``placeholder`` marks a sequence that was only seen inside a column default;
    its real bounds are unknown and the values here are defaults.
    """
    schema: str
    name: str
    data_type: str = "bigint"
    start_value: int = 1
    increment_by: int = 1
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cache_size: int = 1
    cycle: bool = False
    placeholder: bool = False

    @property
    def qualified_name(self) -> str:
        return SafeQueryBuilder.qualify(self.schema, self.name)


@dataclass(frozen=True)
class CustomTypeDescriptor:
    schema: str
    name: str
    kind: CustomTypeKind
    labels: Tuple[str, ...] = ()  # enum labels in enumsortorder

    @property
    def qualified_name(self) -> str:
        return SafeQueryBuilder.qualify(self.schema, self.name)


@dataclass(frozen=True)
class ViewDescriptor:
    schema: str
    name: str
    definition: str
    # other views of the same schema this one selects from
    depends_on: Tuple[str, ...] = ()

    @property
    def qualified_name(self) -> str:
        return SafeQueryBuilder.qualify(self.schema, self.name)


@dataclass(frozen=True)
class ExtensionDescriptor:
    name: str
    version: Optional[str] = None


@dataclass(frozen=True)
class SchemaModel:
    """Full snapshot of one schema"""
    schema: str
    tables: Tuple[TableDescriptor, ...] = ()
    sequences: Tuple[SequenceDescriptor, ...] = ()
    types: Tuple[CustomTypeDescriptor, ...] = ()
    views: Tuple[ViewDescriptor, ...] = ()
    extensions: Tuple[ExtensionDescriptor, ...] = ()

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def get_table(self, name: str) -> Optional[TableDescriptor]:
        return next((t for t in self.tables if t.name == name), None)

    @property
    def placeholder_sequences(self) -> List[SequenceDescriptor]:
        return [s for s in self.sequences if s.placeholder]

    def dependency_graph(self) -> Dict[str, FrozenSet[str]]:
        """table -> tables it references through foreign keys.

        Only references to tables of this model are kept; self references
        are dropped since they never constrain the load order between tables.
        """
        names = set(self.table_names)
        graph: Dict[str, FrozenSet[str]] = {}
        for table in self.tables:
            refs = {
                fk.referenced_table for fk in table.foreign_keys
                if fk.referenced_table in names
                and fk.referenced_table != table.name
                and (fk.referenced_schema in (None, self.schema))
            }
            graph[table.name] = frozenset(refs)
        return graph
