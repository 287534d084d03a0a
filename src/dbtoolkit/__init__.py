"""
Provider-neutral database access with support for SQLite, PostgreSQL, and SQL Server.

Commands are described with `DbCommand` (text, command type and named
parameters, including output parameters) and executed by a `DbContext`,
which maps result rows onto Python objects:

    context = dbtoolkit.connect({'provider_name': 'sqlite', 'connection_string': 'app.db'})
    command = context.create_command('SELECT * FROM Users WHERE IsActive = @Active',
                                     CommandType.TEXT)
    command.add_parameter('@Active', True)
    users = await context.execute_query_async(command, User)
"""
__version__ = '0.1.0'

from dataclasses import fields
from typing import Any

from dbtoolkit.command import DbCommand, OutputParameter, Parameter
from dbtoolkit.connection import ConnectionFactory, ConnectionWrapper
from dbtoolkit.connection import dispose_all_engines
from dbtoolkit.context import DbContext
from dbtoolkit.exceptions import ConfigurationError, DatabaseError
from dbtoolkit.exceptions import DbConnectionError, IntegrityError, MappingError
from dbtoolkit.exceptions import OperationalError, ParameterNotFoundError
from dbtoolkit.exceptions import ProgrammingError, ProviderError
from dbtoolkit.exceptions import TypeConversionError, UniqueViolation
from dbtoolkit.exceptions import ValidationError
from dbtoolkit.logservice import LogService, get_log_service
from dbtoolkit.mapper import DataMapper, MapperRegistry, ReflectionDataMapper
from dbtoolkit.mapper import register_mapper
from dbtoolkit.providers import get_available_providers, get_provider
from dbtoolkit.providers import register_provider
from dbtoolkit.row import Column, Row
from dbtoolkit.settings import DatabaseSettings
from dbtoolkit.types import CommandType, DbType, ParameterDirection

from libb import load_options


@load_options(cls=DatabaseSettings)
def connect(options: DatabaseSettings | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> DbContext:
    """Create a DbContext for a configured database

    Args:
        options: Can be:
                - DatabaseSettings object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        DbContext executing commands against the database

    Raises
        ConfigurationError: If the provider name is not supported
    """
    if isinstance(options, DatabaseSettings):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseSettings)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return DbContext(ConnectionFactory(options))


__all__ = [
    'connect',
    'DbContext',
    'DbCommand',
    'Parameter',
    'OutputParameter',
    'ConnectionFactory',
    'ConnectionWrapper',
    'dispose_all_engines',
    'DatabaseSettings',
    'CommandType',
    'DbType',
    'ParameterDirection',
    'Column',
    'Row',
    'DataMapper',
    'ReflectionDataMapper',
    'MapperRegistry',
    'register_mapper',
    'get_provider',
    'get_available_providers',
    'register_provider',
    'LogService',
    'get_log_service',
    'DatabaseError',
    'ConfigurationError',
    'ProviderError',
    'ValidationError',
    'ParameterNotFoundError',
    'TypeConversionError',
    'MappingError',
    'DbConnectionError',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
    'UniqueViolation',
]
