#!/usr/bin/env python3
"""
Type Encoder
============

Turns one source value into a SQL literal suitable for the target column.

Rows come back from psycopg2 as native Python objects. Each value is first
wrapped in a ``SourceValue`` tagged with its ``ValueKind``; ``encode`` then
dispatches on the target column category and the value kind, in this order:

1. NULL
2. timestamp columns (envelope dicts unwrapped)
3. array columns
4. json columns, whatever the value kind, and structured values elsewhere
5. booleans
6. binary
7. everything else as an escaped string literal

Array columns are handled before structured values so that a Python list
bound for an ``int4[]`` column never becomes a JSON document.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, date, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from core.errors import RowEncodingError
from core.safe_query_builder import SafeQueryBuilder
from core.type_registry import TypeInfo, TypeRegistry, ColumnCategory

NULL_LITERAL = 'NULL'

# Keys checked, in order, when a timestamp arrives wrapped in an object
TIMESTAMP_ENVELOPE_KEYS = ('timestamp', 'value')


class ValueKind(Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    TEXT = "text"
    TIMESTAMP = "timestamp"
    SEQUENCE = "sequence"
    STRUCTURED = "structured"
    BINARY = "binary"


@dataclass(frozen=True)
class SourceValue:
    kind: ValueKind
    payload: Any = None

    @classmethod
    def of(cls, raw: Any) -> 'SourceValue':
        """Tag a raw driver value"""
        if isinstance(raw, SourceValue):
            return raw
        if raw is None:
            return cls(ValueKind.NULL)
        # bool is a subclass of int, check it first
        if isinstance(raw, bool):
            return cls(ValueKind.BOOL, raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, (datetime, date, time)):
            return cls(ValueKind.TIMESTAMP, raw)
        if isinstance(raw, (list, tuple)):
            return cls(ValueKind.SEQUENCE, list(raw))
        if isinstance(raw, dict):
            return cls(ValueKind.STRUCTURED, raw)
        if isinstance(raw, (bytes, bytearray, memoryview)):
            return cls(ValueKind.BINARY, bytes(raw))
        if isinstance(raw, (str, UUID)):
            return cls(ValueKind.TEXT, str(raw))
        return cls(ValueKind.TEXT, str(raw))

    @property
    def is_null(self) -> bool:
        return self.kind == ValueKind.NULL


def _json_default(obj):
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return '\\x' + bytes(obj).hex()
    return str(obj)


def _to_json(payload: Any) -> str:
    return json.dumps(payload, default=_json_default, ensure_ascii=False)


def _json_cast(type_info: TypeInfo) -> str:
    return type_info.udt_name if type_info.udt_name in ('json', 'jsonb') else 'jsonb'


def _unwrap_timestamp(value: SourceValue) -> SourceValue:
    payload = value.payload
    for key in TIMESTAMP_ENVELOPE_KEYS:
        if key in payload and payload[key] is not None:
            return SourceValue.of(payload[key])
    raise RowEncodingError(f"Timestamp envelope has none of {TIMESTAMP_ENVELOPE_KEYS}: {payload!r}")


def _encode_timestamp(value: SourceValue, type_info: TypeInfo, column: str = None) -> str:
    with_tz = type_info.data_type == 'timestamp with time zone'
    cast = '::timestamptz' if with_tz else '::timestamp'

    if value.kind == ValueKind.STRUCTURED:
        value = _unwrap_timestamp(value)
        if value.kind == ValueKind.NUMBER:
            # Envelopes written by JavaScript clients carry epoch milliseconds
            value = SourceValue(ValueKind.TIMESTAMP,
                                datetime.fromtimestamp(float(value.payload) / 1000, tz=timezone.utc))
        elif value.kind == ValueKind.TEXT:
            try:
                value = SourceValue(ValueKind.TIMESTAMP, datetime.fromisoformat(value.payload))
            except ValueError:
                pass

    if value.kind == ValueKind.TIMESTAMP:
        moment = value.payload
        if isinstance(moment, datetime) and with_tz and moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return SafeQueryBuilder.quote_literal(moment.isoformat()) + cast

    if value.kind in (ValueKind.TEXT, ValueKind.NUMBER):
        return SafeQueryBuilder.quote_literal(value.payload) + cast

    raise RowEncodingError(f"Cannot encode {value.kind.value} value as timestamp", column=column)


def _numeric_element(number) -> str:
    """Bare number, or a quoted literal for NaN and the infinities"""
    if isinstance(number, int):
        return str(number)
    if isinstance(number, Decimal):
        if number.is_finite():
            return str(number)
        if number.is_nan():
            return "'NaN'"
        return "'-Infinity'" if number.is_signed() else "'Infinity'"
    if math.isfinite(number):
        return str(number)
    if math.isnan(number):
        return "'NaN'"
    return "'Infinity'" if number > 0 else "'-Infinity'"


def _encode_array_element(item: Any, numeric: bool) -> str:
    element = SourceValue.of(item)
    if element.is_null:
        return NULL_LITERAL
    if element.kind == ValueKind.SEQUENCE:
        # nested dimension
        return 'ARRAY[' + ','.join(_encode_array_element(i, numeric) for i in element.payload) + ']'
    if element.kind == ValueKind.NUMBER and numeric:
        return _numeric_element(element.payload)
    if element.kind == ValueKind.BOOL:
        return SafeQueryBuilder.quote_literal('true' if element.payload else 'false')
    if element.kind == ValueKind.STRUCTURED:
        return SafeQueryBuilder.quote_literal(_to_json(element.payload))
    if element.kind == ValueKind.TIMESTAMP:
        return SafeQueryBuilder.quote_literal(element.payload.isoformat())
    if element.kind == ValueKind.BINARY:
        return SafeQueryBuilder.quote_literal('\\x' + element.payload.hex())
    return SafeQueryBuilder.quote_literal(element.payload)


def _encode_array(value: SourceValue, type_info: TypeInfo) -> str:
    if value.kind != ValueKind.SEQUENCE:
        return NULL_LITERAL
    element_type = TypeRegistry.array_element_type(type_info.udt_name)
    numeric = element_type in TypeRegistry.NUMERIC_ELEMENT_TYPES
    elements = ','.join(_encode_array_element(item, numeric) for item in value.payload)
    return f"ARRAY[{elements}]::{TypeRegistry.array_cast_type(type_info)}"


def encode(value: Any, type_info: TypeInfo, column: str = None) -> str:
    """Render ``value`` as a literal for a column of type ``type_info``.

    ``value`` may be a raw driver value or an already tagged ``SourceValue``.
    """
    value = SourceValue.of(value)
    category = type_info.category

    if value.is_null:
        return NULL_LITERAL

    if category == ColumnCategory.TIMESTAMP:
        return _encode_timestamp(value, type_info, column)

    if category == ColumnCategory.ARRAY:
        return _encode_array(value, type_info)

    # json columns decode to any JSON value, bare strings and booleans included
    if category == ColumnCategory.JSON or value.kind in (ValueKind.STRUCTURED, ValueKind.SEQUENCE):
        return SafeQueryBuilder.quote_literal(_to_json(value.payload)) + f"::{_json_cast(type_info)}"

    if value.kind == ValueKind.BOOL:
        return 'true' if value.payload else 'false'

    if value.kind == ValueKind.BINARY:
        return SafeQueryBuilder.quote_literal('\\x' + value.payload.hex())

    if value.kind == ValueKind.TIMESTAMP:
        return SafeQueryBuilder.quote_literal(value.payload.isoformat())

    if value.kind in (ValueKind.TEXT, ValueKind.NUMBER):
        return SafeQueryBuilder.quote_literal(value.payload)

    raise RowEncodingError(f"No encoding for {value.kind.value} value", column=column)
