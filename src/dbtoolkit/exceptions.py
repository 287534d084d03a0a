"""
Toolkit exception classes.

Errors raised by the drivers themselves are never wrapped. The tuples at the
bottom of this module group the sqlite3 and psycopg errors for callers that
want to catch a family of driver errors regardless of which of the two raised
it; pyodbc errors are caught through `pyodbc.Error`.
"""
import sqlite3

import psycopg


class DatabaseError(Exception):
    """Base class for all toolkit errors.
    """


class ConfigurationError(DatabaseError):
    """Invalid static configuration, e.g. an unsupported provider name.
    """


class ProviderError(DatabaseError):
    """A provider failed to allocate a connection or a parameter.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


class ParameterNotFoundError(ValidationError):
    """A command has no parameter with the requested name.
    """


class TypeConversionError(DatabaseError):
    """Error converting a value to the requested Python type.
    """


class MappingError(DatabaseError):
    """A result row cannot be mapped onto the requested result type.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    psycopg.DatabaseError,
    sqlite3.ProgrammingError,
    sqlite3.DatabaseError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    sqlite3.IntegrityError,
    )
