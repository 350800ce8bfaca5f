#!/usr/bin/env python3
"""
Type Encoder Tests

Source values rendered as SQL literals for each target column category.
"""

from datetime import datetime, date, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from core.errors import RowEncodingError
from core.type_encoder import encode, SourceValue, ValueKind
from core.type_registry import TypeInfo

INT_ARRAY = TypeInfo('ARRAY', '_int4')
TEXT_ARRAY = TypeInfo('ARRAY', '_text')
FLOAT_ARRAY = TypeInfo('ARRAY', '_float8')
NUMERIC_ARRAY = TypeInfo('ARRAY', '_numeric')
TIMESTAMPTZ = TypeInfo('timestamp with time zone', 'timestamptz')
TIMESTAMP = TypeInfo('timestamp without time zone', 'timestamp')
JSONB = TypeInfo('jsonb', 'jsonb')
JSON = TypeInfo('json', 'json')
TEXT = TypeInfo('text', 'text')
BOOLEAN = TypeInfo('boolean', 'bool')
BYTEA = TypeInfo('bytea', 'bytea')
INTEGER = TypeInfo('integer', 'int4')


class TestSourceValueTagging:

    def test_bool_before_number(self):
        assert SourceValue.of(True).kind == ValueKind.BOOL
        assert SourceValue.of(1).kind == ValueKind.NUMBER

    def test_kinds(self):
        assert SourceValue.of(None).kind == ValueKind.NULL
        assert SourceValue.of(Decimal('1.5')).kind == ValueKind.NUMBER
        assert SourceValue.of(datetime(2024, 1, 1)).kind == ValueKind.TIMESTAMP
        assert SourceValue.of((1, 2)).kind == ValueKind.SEQUENCE
        assert SourceValue.of({'a': 1}).kind == ValueKind.STRUCTURED
        assert SourceValue.of(b'\x00').kind == ValueKind.BINARY
        assert SourceValue.of(UUID(int=1)).kind == ValueKind.TEXT

    def test_already_tagged_passthrough(self):
        tagged = SourceValue(ValueKind.TEXT, 'x')
        assert SourceValue.of(tagged) is tagged


class TestNullAndScalars:

    @pytest.mark.parametrize("type_info", [INT_ARRAY, TIMESTAMPTZ, JSONB, TEXT, BOOLEAN, BYTEA])
    def test_null_for_every_category(self, type_info):
        assert encode(None, type_info) == 'NULL'

    def test_booleans(self):
        assert encode(True, BOOLEAN) == 'true'
        assert encode(False, BOOLEAN) == 'false'

    def test_text_escaped(self):
        assert encode("O'Brien", TEXT) == "'O''Brien'"

    def test_numbers_quoted(self):
        assert encode(5, INTEGER) == "'5'"
        assert encode(Decimal('12.50'), TypeInfo('numeric', 'numeric')) == "'12.50'"

    def test_binary(self):
        assert encode(b'\x01\x02', BYTEA) == "'\\x0102'"

    def test_uuid(self):
        value = UUID('12345678-1234-5678-1234-567812345678')
        assert encode(value, TypeInfo('uuid', 'uuid')) == "'12345678-1234-5678-1234-567812345678'"


class TestArrays:

    def test_integer_array_with_null(self):
        assert encode([1, 2, None], INT_ARRAY) == 'ARRAY[1,2,NULL]::int4[]'

    def test_text_array_escaped(self):
        assert encode(['a', "b'c"], TEXT_ARRAY) == "ARRAY['a','b''c']::text[]"

    def test_empty_array_keeps_cast(self):
        assert encode([], INT_ARRAY) == 'ARRAY[]::int4[]'

    def test_nested_array(self):
        assert encode([[1, 2], [3, 4]], INT_ARRAY) == 'ARRAY[ARRAY[1,2],ARRAY[3,4]]::int4[]'

    def test_non_sequence_becomes_null(self):
        assert encode('{1,2}', INT_ARRAY) == 'NULL'
        assert encode({'a': 1}, INT_ARRAY) == 'NULL'

    def test_array_detection_precedes_json(self):
        # a list bound for an array column must not become a JSON document
        assert '::jsonb' not in encode([1, 2], INT_ARRAY)

    def test_text_array_numbers_quoted(self):
        assert encode([1, 2], TEXT_ARRAY) == "ARRAY['1','2']::text[]"

    def test_non_finite_float_elements_quoted(self):
        values = [1.5, float('nan'), float('inf'), float('-inf')]
        assert encode(values, FLOAT_ARRAY) == "ARRAY[1.5,'NaN','Infinity','-Infinity']::float8[]"

    def test_non_finite_decimal_elements_quoted(self):
        values = [Decimal('NaN'), Decimal('2.50'), Decimal('-Infinity')]
        assert encode(values, NUMERIC_ARRAY) == "ARRAY['NaN',2.50,'-Infinity']::numeric[]"

    def test_enum_array_cast_schema_qualified(self):
        assert encode(['happy'], TypeInfo('ARRAY', '_mood', 'app')) == "ARRAY['happy']::\"app\".\"mood\"[]"

    def test_builtin_array_cast_unqualified(self):
        assert encode([1], TypeInfo('ARRAY', '_int4', 'pg_catalog')) == 'ARRAY[1]::int4[]'


class TestStructured:

    def test_dict_to_jsonb(self):
        assert encode({'name': "it's"}, JSONB) == '\'{"name": "it\'\'s"}\'::jsonb'

    def test_list_to_json_column(self):
        assert encode([1, 2], JSON) == "'[1, 2]'::json"

    def test_dict_in_text_column_cast_to_jsonb(self):
        assert encode({'a': 1}, TEXT) == '\'{"a": 1}\'::jsonb'

    def test_nested_values_serialized(self):
        literal = encode({'at': datetime(2024, 1, 2, 3, 4, 5), 'n': Decimal('1.10')}, JSONB)
        assert literal == '\'{"at": "2024-01-02T03:04:05", "n": "1.10"}\'::jsonb'


class TestJsonColumns:

    @pytest.mark.parametrize("value, literal", [
        ('active', "'\"active\"'::jsonb"),
        (True, "'true'::jsonb"),
        (False, "'false'::jsonb"),
        (42, "'42'::jsonb"),
        (1.5, "'1.5'::jsonb"),
        ([1, 'a'], "'[1, \"a\"]'::jsonb"),
    ])
    def test_scalars_serialized_as_json(self, value, literal):
        assert encode(value, JSONB) == literal

    def test_json_column_keeps_its_type(self):
        assert encode("it's", JSON) == "'\"it''s\"'::json"

    def test_jsonb_domain(self):
        assert encode('x', TypeInfo('USER-DEFINED', 'jsonb')) == "'\"x\"'::jsonb"

    def test_text_column_string_untouched(self):
        assert encode('active', TEXT) == "'active'"


class TestTimestamps:

    def test_naive_datetime_is_utc_for_timestamptz(self):
        assert encode(datetime(2024, 1, 2, 3, 4, 5), TIMESTAMPTZ) == "'2024-01-02T03:04:05+00:00'::timestamptz"

    def test_naive_datetime_for_timestamp(self):
        assert encode(datetime(2024, 1, 2, 3, 4, 5), TIMESTAMP) == "'2024-01-02T03:04:05'::timestamp"

    def test_aware_datetime_kept(self):
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert encode(moment, TIMESTAMPTZ) == "'2024-01-02T03:04:05+00:00'::timestamptz"

    def test_date_value(self):
        assert encode(date(2024, 1, 2), TIMESTAMPTZ) == "'2024-01-02'::timestamptz"

    def test_string_passthrough_with_cast(self):
        assert encode('2024-01-01 10:00:00+00', TIMESTAMPTZ) == "'2024-01-01 10:00:00+00'::timestamptz"

    def test_envelope_epoch_milliseconds(self):
        assert encode({'timestamp': 1700000000000}, TIMESTAMPTZ) == "'2023-11-14T22:13:20+00:00'::timestamptz"

    def test_envelope_value_key(self):
        assert encode({'value': '2024-01-01T00:00:00'}, TIMESTAMPTZ) == "'2024-01-01T00:00:00+00:00'::timestamptz"

    def test_envelope_unparseable_text_passed_through(self):
        assert encode({'value': 'yesterday'}, TIMESTAMP) == "'yesterday'::timestamp"

    def test_envelope_without_known_key(self):
        with pytest.raises(RowEncodingError):
            encode({'when': 1}, TIMESTAMPTZ)

    def test_boolean_in_timestamp_column(self):
        with pytest.raises(RowEncodingError) as exc_info:
            encode(True, TIMESTAMPTZ, column='created_at')
        assert exc_info.value.column == 'created_at'
