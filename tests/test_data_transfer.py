#!/usr/bin/env python3
"""
Data Transfer Engine Tests

Batched, conflict-skipping row copies against the in-memory fake adapters.
"""

import logging

import pytest

from core.data_transfer import DataTransferEngine, IdentifierRemap, DEFAULT_REMAP_COLUMNS
from core.errors import ConnectionFailure
from core.results import TransferStatus
from core.type_registry import TypeInfo
from tests.fakes import FakeSourceAdapter, FakeTargetAdapter, TARGET_COLUMNS

MEMBER_COLUMNS = [('id', 'integer', 'int4'), ('user_telegram_id', 'bigint', 'int8'),
                  ('chat_telegram_id', 'text', 'text')]


def _engine(source, target, **kwargs):
    return DataTransferEngine(source, target, schema='public', **kwargs)


def _inserts(target):
    return [sql for sql in target.session_log if sql.startswith('INSERT')]


class TestTransfer:

    def test_rows_copied_in_batches(self, source_adapter, target_adapter):
        report = _engine(source_adapter, target_adapter).transfer(['users'])
        users = report.get('users')
        assert users.status == TransferStatus.COMPLETED
        assert users.source_rows == 250
        assert [b.rows for b in users.batches] == [100, 100, 50]
        assert users.migrated_rows == 250
        assert target_adapter.row_count('users') == 250
        assert report.total_migrated == 250

    def test_custom_batch_size(self, source_adapter, target_adapter):
        report = _engine(source_adapter, target_adapter, batch_size=2).transfer(['posts'])
        assert len(report.get('posts').batches) == 1
        report = _engine(source_adapter, target_adapter, batch_size=1).transfer(['posts'])
        assert len(report.get('posts').batches) == 2

    def test_rerun_keeps_row_count(self, source_adapter, target_adapter):
        _engine(source_adapter, target_adapter).transfer(['users', 'posts'])
        second = _engine(source_adapter, target_adapter).transfer(['users', 'posts'])

        assert target_adapter.row_count('users') == 250
        assert target_adapter.row_count('posts') == 2
        assert second.total_migrated == 0
        assert second.get('users').skipped_rows == 250
        assert second.get('users').status == TransferStatus.COMPLETED

    def test_insert_statement_shape(self, source_adapter, target_adapter):
        _engine(source_adapter, target_adapter).transfer(['posts'])
        sql = _inserts(target_adapter)[0]
        assert sql == ('INSERT INTO "public"."posts" ("id", "author_id", "parent_id", "score") VALUES\n'
                       "('1', '1', NULL, '1.5'),\n"
                       "('2', '2', '1', '0')\n"
                       'ON CONFLICT DO NOTHING')

    def test_values_encoded_per_column(self, source_adapter, target_adapter):
        _engine(source_adapter, target_adapter).transfer(['users'])
        first = _inserts(target_adapter)[0].split('\n')[1]
        assert first == ("('1', 'user1@example.com', 'member', NULL, ARRAY['a','b']::text[], "
                         "'{\"theme\": \"dark\"}'::jsonb),")

    def test_empty_table(self, source_adapter, target_adapter):
        report = _engine(source_adapter, target_adapter).transfer(['comments'])
        comments = report.get('comments')
        assert comments.status == TransferStatus.EMPTY
        assert comments.migrated_rows == 0
        assert _inserts(target_adapter) == []
        assert target_adapter.sessions_opened == 0

    def test_missing_target_table(self, source_adapter):
        target = FakeTargetAdapter({})
        report = _engine(source_adapter, target).transfer(['posts'])
        assert report.get('posts').status == TransferStatus.MISSING_IN_TARGET
        assert report.missing_tables == ['posts']
        assert _inserts(target) == []

    def test_source_read_failure(self, target_adapter):
        source = FakeSourceAdapter({'posts': [{'id': 1}]}, failing=('posts',))
        report = _engine(source, target_adapter).transfer(['posts'])
        assert report.get('posts').status == TransferStatus.FAILED
        assert report.failed_tables == ['posts']

    def test_columns_missing_in_target_dropped(self, source_adapter):
        columns = [c for c in TARGET_COLUMNS['users'] if c[0] != 'tags']
        target = FakeTargetAdapter({'users': columns})
        report = _engine(source_adapter, target).transfer(['users'])
        users = report.get('users')
        assert users.dropped_columns == ['tags']
        assert users.migrated_rows == 250
        assert all('"tags"' not in sql for sql in _inserts(target))

    def test_no_shared_columns(self, source_adapter):
        target = FakeTargetAdapter({'posts': [('other', 'text', 'text')]})
        report = _engine(source_adapter, target).transfer(['posts'])
        assert report.get('posts').status == TransferStatus.FAILED

    def test_failing_batch_continues(self, source_adapter, target_adapter):
        target_adapter.failing_batches = {2}
        report = _engine(source_adapter, target_adapter).transfer(['users', 'posts'])
        users = report.get('users')
        assert users.status == TransferStatus.PARTIAL
        assert [b.index for b in users.failed_batches] == [1]
        assert users.migrated_rows == 150
        assert target_adapter.row_count('users') == 150
        assert report.get('posts').status == TransferStatus.COMPLETED
        assert report.failed_tables == ['users']

    def test_enum_array_in_other_schema(self):
        source = FakeSourceAdapter({'moods': [{'id': 1, 'history': ['happy', 'sad']}]})
        target = FakeTargetAdapter({'moods': [('id', 'integer', 'int4', 'pg_catalog'),
                                              ('history', 'ARRAY', '_mood', 'app')]})
        report = DataTransferEngine(source, target, schema='app').transfer(['moods'])
        assert report.get('moods').migrated_rows == 1
        assert _inserts(target)[0].split('\n')[1] == "('1', ARRAY['happy','sad']::\"app\".\"mood\"[])"

    def test_invalid_batch_size(self, source_adapter, target_adapter):
        with pytest.raises(ValueError):
            _engine(source_adapter, target_adapter, batch_size=0)


class TestConstraintSuspension:

    def test_each_table_suspended_and_restored(self, source_adapter, target_adapter):
        _engine(source_adapter, target_adapter).transfer(['users', 'posts'])
        assert target_adapter.role_history == ['replica', 'origin', 'replica', 'origin']
        assert target_adapter.replication_role == 'origin'

    def test_batches_run_inside_suspension(self, source_adapter, target_adapter):
        _engine(source_adapter, target_adapter).transfer(['users'])
        log = target_adapter.session_log
        assert log[0] == 'SET session_replication_role = replica'
        assert log[-1] == 'SET session_replication_role = DEFAULT'
        assert len(log) == 5

    def test_disabled_suspension(self, source_adapter, target_adapter):
        _engine(source_adapter, target_adapter, suspend_constraints=False).transfer(['users'])
        assert target_adapter.role_history == []

    def test_cyclic_tables_always_suspended(self, source_adapter, target_adapter):
        engine = _engine(source_adapter, target_adapter, suspend_constraints=False)
        report = engine.transfer(['users', 'posts'], cyclic=['posts'])
        assert target_adapter.role_history == ['replica', 'origin']
        assert report.cyclic_tables == ['posts']

    def test_restored_when_batch_raises(self, source_adapter, target_adapter):
        target_adapter.raise_on_insert = ConnectionFailure("Connection lost")
        with pytest.raises(ConnectionFailure):
            _engine(source_adapter, target_adapter).transfer(['users'])
        assert target_adapter.replication_role == 'origin'
        assert target_adapter.session_log[-1] == 'SET session_replication_role = DEFAULT'

    def test_permission_denied_still_loads(self, source_adapter, target_adapter, caplog):
        target_adapter.deny_replication_role = True
        with caplog.at_level(logging.WARNING):
            report = _engine(source_adapter, target_adapter).transfer(['posts'])
        assert report.get('posts').migrated_rows == 2
        assert 'session_replication_role' in caplog.text


class TestIdentifierRemap:

    @pytest.fixture
    def members(self):
        source = FakeSourceAdapter({'members': [
            {'id': 1, 'user_telegram_id': 111, 'chat_telegram_id': '111'},
            {'id': 2, 'user_telegram_id': 999, 'chat_telegram_id': None},
        ]})
        target = FakeTargetAdapter({'members': MEMBER_COLUMNS})
        return source, target

    def test_value_matching(self, members):
        source, target = members
        remap = IdentifierRemap('111', '222')
        _engine(source, target, remap=remap).transfer(['members'])
        lines = _inserts(target)[0].split('\n')
        assert lines[1] == "('1', '222', '222'),"
        assert lines[2] == "('2', '999', NULL)"

    def test_unconditional(self, members):
        source, target = members
        remap = IdentifierRemap('111', '222', unconditional=True)
        _engine(source, target, remap=remap).transfer(['members'])
        lines = _inserts(target)[0].split('\n')
        assert lines[1] == "('1', '222', '222'),"
        assert lines[2] == "('2', '222', '222')"

    def test_variants_differ(self):
        matching = IdentifierRemap(111, 222)
        unconditional = IdentifierRemap(111, 222, unconditional=True)
        assert matching.apply('user_telegram_id', 999) == 999
        assert unconditional.apply('user_telegram_id', 999) == 222
        assert matching.apply('user_telegram_id', None) is None
        assert unconditional.apply('user_telegram_id', None) == 222

    def test_integer_column_gets_integer(self):
        remap = IdentifierRemap('111', '222')
        assert remap.apply('user_telegram_id', 111, TypeInfo('bigint', 'int8')) == 222
        assert remap.apply('chat_telegram_id', '111', TypeInfo('text', 'text')) == '222'

    def test_other_columns_untouched(self):
        remap = IdentifierRemap(111, 222, unconditional=True)
        assert remap.apply('id', 111) == 111
        assert DEFAULT_REMAP_COLUMNS == frozenset({'user_telegram_id', 'chat_telegram_id'})

    def test_custom_columns(self):
        remap = IdentifierRemap('a', 'b', columns=frozenset({'owner'}))
        assert remap.apply('owner', 'a') == 'b'
        assert remap.apply('user_telegram_id', 'a') == 'a'
