#!/usr/bin/env python3
"""
pgrelocate Test Configuration - PyTest Configuration and Fixtures

Shared fixtures: a canned SchemaModel and the in-memory fake adapters from
tests/fakes.py standing in for the source and target databases.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.schema_ir import SchemaModel
from tests.fakes import (
    FakeSourceAdapter, FakeTargetAdapter, TARGET_COLUMNS, build_sample_model, build_source_rows,
)


@pytest.fixture
def sample_model() -> SchemaModel:
    """Three related tables plus sequence, types, view and extensions"""
    return build_sample_model()


@pytest.fixture
def source_adapter() -> FakeSourceAdapter:
    return FakeSourceAdapter(build_source_rows())


@pytest.fixture
def target_adapter() -> FakeTargetAdapter:
    return FakeTargetAdapter({name: list(cols) for name, cols in TARGET_COLUMNS.items()})


@pytest.fixture
def clean_env(monkeypatch):
    """Remove PGRELOCATE_* variables from the environment"""
    for key in list(os.environ):
        if key.startswith('PGRELOCATE_'):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that test component interaction"
    )
    config.addinivalue_line(
        "markers", "database: Tests that need a live PostgreSQL server"
    )
