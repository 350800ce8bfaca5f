#!/usr/bin/env python3
"""
pgrelocate Error Hierarchy
Canonical exception classes for the migration engine.
"""

from enum import Enum


class ErrorCode(Enum):
    UNKNOWN = "UNKNOWN_ERROR"
    INTROSPECTION_FAILED = "INTROSPECTION_FAILED"
    DDL_FAILED = "DDL_FAILED"
    TARGET_TABLE_MISSING = "TARGET_TABLE_MISSING"
    ROW_ENCODING_FAILED = "ROW_ENCODING_FAILED"
    CONNECTION_FAILED = "CONNECTION_FAILED"


class MigrationError(Exception):
    """Base class for all pgrelocate exceptions"""
    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class IntrospectionError(MigrationError):
    """Raised when a catalog query for one object fails"""
    def __init__(self, message: str, object_name: str = None, details: dict = None):
        details = dict(details or {}, object=object_name)
        super().__init__(message, ErrorCode.INTROSPECTION_FAILED, details)
        self.object_name = object_name


class DDLApplicationError(MigrationError):
    """Raised when a single DDL statement fails on the target"""
    def __init__(self, message: str, statement: str = None, details: dict = None):
        details = dict(details or {}, statement=(statement or '')[:100])
        super().__init__(message, ErrorCode.DDL_FAILED, details)


class TargetTableMissing(MigrationError):
    """Raised when a source table has no counterpart in the target"""
    def __init__(self, table: str):
        super().__init__(f"Table {table} does not exist in target",
                         ErrorCode.TARGET_TABLE_MISSING, {'table': table})
        self.table = table


class RowEncodingError(MigrationError):
    """Raised when a source value cannot be rendered as a SQL literal"""
    def __init__(self, message: str, column: str = None, details: dict = None):
        details = dict(details or {}, column=column)
        super().__init__(message, ErrorCode.ROW_ENCODING_FAILED, details)
        self.column = column


class ConnectionFailure(MigrationError):
    """Raised when a source or target connection cannot be used. Fatal."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.CONNECTION_FAILED, details)


class DependencyCycleWarning(UserWarning):
    """Issued when foreign keys form a cycle and a fallback order is used"""
