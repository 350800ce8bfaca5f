#!/usr/bin/env python3
"""
Migration configuration tests: environment loading and validation.
"""

from pathlib import Path

import pytest

from config.migration_config import MigrationConfig


class TestDefaults:

    def test_defaults(self, clean_env):
        config = MigrationConfig()
        assert config.source_url is None
        assert config.schema == 'public'
        assert config.batch_size == 100
        assert config.include_data is False
        assert config.suspend_constraints is True
        assert config.remap_unconditional is False
        assert config.prepare_schemas == ('public',)
        assert config.statement_timeout == 0
        assert config.log_level == 'INFO'
        assert config.report_dir == Path('.')
        assert not config.remap_enabled


class TestEnvironment:

    def test_values_from_environment(self, clean_env):
        clean_env.setenv('PGRELOCATE_SOURCE_URL', 'postgresql://a:b@src/db')
        clean_env.setenv('PGRELOCATE_TARGET_URL', 'postgresql://a:b@dst/db')
        clean_env.setenv('PGRELOCATE_SCHEMA', 'app')
        clean_env.setenv('PGRELOCATE_BATCH_SIZE', '500')
        clean_env.setenv('PGRELOCATE_INCLUDE_DATA', 'true')
        clean_env.setenv('PGRELOCATE_SUSPEND_CONSTRAINTS', 'no')
        clean_env.setenv('PGRELOCATE_PREPARE_SCHEMAS', 'app, extensions')
        clean_env.setenv('PGRELOCATE_STATEMENT_TIMEOUT', '30')

        config = MigrationConfig()
        assert config.source_url == 'postgresql://a:b@src/db'
        assert config.target_url == 'postgresql://a:b@dst/db'
        assert config.schema == 'app'
        assert config.batch_size == 500
        assert config.include_data is True
        assert config.suspend_constraints is False
        assert config.prepare_schemas == ('app', 'extensions')
        assert config.statement_timeout == 30

    def test_explicit_arguments_win(self, clean_env):
        clean_env.setenv('PGRELOCATE_SCHEMA', 'app')
        clean_env.setenv('PGRELOCATE_BATCH_SIZE', '500')
        config = MigrationConfig(schema='billing', batch_size=10)
        assert config.schema == 'billing'
        assert config.batch_size == 10
        assert config.prepare_schemas == ('billing',)

    def test_invalid_integer(self, clean_env):
        clean_env.setenv('PGRELOCATE_BATCH_SIZE', 'lots')
        with pytest.raises(ValueError, match='PGRELOCATE_BATCH_SIZE'):
            MigrationConfig()

    def test_non_positive_batch_size(self, clean_env):
        with pytest.raises(ValueError):
            MigrationConfig(batch_size=0)

    def test_remap_from_environment(self, clean_env):
        clean_env.setenv('PGRELOCATE_REMAP_FROM', '111')
        clean_env.setenv('PGRELOCATE_REMAP_TO', '222')
        config = MigrationConfig()
        assert config.remap_enabled
        assert (config.remap_from, config.remap_to) == ('111', '222')


class TestValidation:

    def test_missing_urls(self, clean_env):
        issues = MigrationConfig().validate()
        assert len(issues) == 2
        assert any('PGRELOCATE_SOURCE_URL' in i for i in issues)

    def test_remap_without_replacement(self, clean_env):
        config = MigrationConfig(source_url='postgresql://s/db', target_url='postgresql://t/db', remap_from='1')
        assert config.validate() == ["Remap source value given without a replacement value"]

    def test_unconditional_remap_needs_only_replacement(self, clean_env):
        config = MigrationConfig(remap_to='222', remap_unconditional=True)
        assert config.remap_enabled
