#!/usr/bin/env python3
"""
Safe Query Builder for pgrelocate
Quotes identifiers and literals for statements that are generated as text.

DDL and multi-row inserts are synthesized as complete statements so that they
can be written to a file or replayed by an operator; values therefore cannot
travel as bind parameters and every identifier and literal goes through here.
"""

from typing import Optional


class SafeQueryBuilder:
    """Identifier and literal quoting for PostgreSQL text statements."""

    @staticmethod
    def quote_ident(identifier: str) -> str:
        """Always double-quote an identifier, doubling embedded quotes."""
        if identifier is None or identifier == '':
            raise ValueError("Identifier must be a non-empty string")
        return '"' + identifier.replace('"', '""') + '"'

    @classmethod
    def qualify(cls, schema: Optional[str], name: str) -> str:
        """Schema-qualified, quoted object name."""
        if schema:
            return f"{cls.quote_ident(schema)}.{cls.quote_ident(name)}"
        return cls.quote_ident(name)

    @staticmethod
    def quote_literal(value: str) -> str:
        """Single-quoted string literal with embedded quotes doubled."""
        return "'" + str(value).replace("'", "''") + "'"

    @staticmethod
    def strip_ident_quotes(identifier: str) -> str:
        """Reverse quote_ident for a single (unqualified) name."""
        if len(identifier) >= 2 and identifier[0] == '"' and identifier[-1] == '"':
            return identifier[1:-1].replace('""', '"')
        return identifier
