"""
Base provider interface.

A provider adapts the provider-neutral `DbCommand` to one database driver:
it builds the SQLAlchemy URL and engine arguments from a connection string,
translates command text, command type and parameters into the driver's SQL
and argument style, enforces the command timeout, writes output parameter
values back after execution and aborts an in-flight statement on
cancellation.

Providers also carry the administrative operations the test database helper
needs (create, drop, clear, run scripts). Those run on a separate engine in
autocommit mode against the server's maintenance database.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbtoolkit.command import DbCommand, Parameter
from dbtoolkit.exceptions import ValidationError
from dbtoolkit.sql import bind_parameters, quote_identifier, referenced_parameters
from dbtoolkit.types import CommandType, DbType, ParameterDirection
from sqlalchemy.pool import NullPool

if TYPE_CHECKING:
    from dbtoolkit.connection import ConnectionWrapper
    from dbtoolkit.settings import DatabaseSettings

logger = logging.getLogger(__name__)

# Registry of provider name -> provider class
# Defined here to avoid circular imports (concrete providers import from base)
_PROVIDER_REGISTRY: dict[str, type['Provider']] = {}


def register_provider(*names: str):
    """Decorator to register a provider class under one or more names.

    Usage:
        @register_provider('postgresql', 'postgres')
        class PostgresProvider(Provider):
            ...
    """
    def decorator(cls: type['Provider']) -> type['Provider']:
        for name in names:
            _PROVIDER_REGISTRY[name.lower()] = cls
        return cls
    return decorator


@dataclass
class NativeCommand:
    """Driver-ready form of a DbCommand.

    `outputs` are the command's own Parameter objects whose values are
    written back after execution.
    """
    sql: str
    args: dict[str, Any] | tuple | None = None
    outputs: list[Parameter] = field(default_factory=list)


class Provider(ABC):
    """Base class for database-specific command handling.
    """

    #: DB-API paramstyle the command text is rewritten to
    paramstyle: str = 'named'

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    def __repr__(self) -> str:
        return f'{type(self).__name__}()'

    # Connection setup

    def create_url(self, connection_string: str) -> sa.URL:
        """Build the SQLAlchemy URL for a connection string.

        Args:
            connection_string: SQLAlchemy URL or provider-native string

        Returns
            sqlalchemy.URL for the engine
        """
        return sa.make_url(connection_string)

    def get_engine_kwargs(self, settings: 'DatabaseSettings') -> dict[str, Any]:
        """Return provider-specific create_engine kwargs.

        Args:
            settings: DatabaseSettings containing connection parameters

        Returns
            Dictionary of keyword arguments for create_engine
        """
        return {}

    def configure_connection(self, cn: 'ConnectionWrapper') -> None:
        """Configure a freshly opened connection.

        Args:
            cn: The opened connection wrapper
        """

    @abstractmethod
    def apply_command_timeout(self, cn: 'ConnectionWrapper', cursor: Any,
                              seconds: int) -> None:
        """Limit the duration of the next statement run on the cursor.

        Args:
            cn: Connection the cursor belongs to
            cursor: DB-API cursor about to execute
            seconds: Timeout in seconds, 0 for no limit
        """

    @abstractmethod
    def cancel(self, cn: 'ConnectionWrapper', cursor: Any | None) -> None:
        """Abort the statement currently running on a connection.

        Called from a thread other than the one executing the statement.
        """

    # Commands

    def create_parameter(self, name: str, value: Any, db_type: DbType,
                         direction: ParameterDirection) -> Parameter:
        """Allocate a parameter object for a command."""
        return Parameter(name=name, value=value, db_type=db_type, direction=direction)

    def build_command(self, command: DbCommand, *, query: bool) -> NativeCommand:
        """Translate a command for the driver.

        Args:
            command: The command to translate
            query: True when rows are expected

        Raises
            ValidationError: If the command cannot run on this provider
        """
        if command.command_type is CommandType.TABLE_DIRECT:
            return self._build_table_direct(command, query=query)
        if command.command_type is CommandType.STORED_PROCEDURE:
            return self._build_procedure(command, query=query)
        return self._build_text(command, query=query)

    def _build_text(self, command: DbCommand, *, query: bool) -> NativeCommand:
        self._reject_outputs(command, 'text commands')
        referenced = referenced_parameters(command.command_text)
        unused = [p.name for p in command.parameters if p.bare_name.casefold() not in referenced]
        if unused:
            logger.warning(f'Parameters not referenced by the command text: {", ".join(unused)}')
        sql, args = bind_parameters(command.command_text, command.parameters, self.paramstyle)
        return NativeCommand(sql, args)

    def _build_table_direct(self, command: DbCommand, *, query: bool) -> NativeCommand:
        if not query:
            raise ValidationError(
                f'Table-direct command {command.command_text!r} can only be executed as a query.')
        if command.parameters:
            raise ValidationError('Table-direct commands do not take parameters.')
        return NativeCommand(f'SELECT * FROM {self.quote_identifier(command.command_text)}')

    def _build_procedure(self, command: DbCommand, *, query: bool) -> NativeCommand:
        raise ValidationError(
            f'{type(self).__name__} does not support stored procedures '
            f'({command.command_text!r}).')

    def _reject_outputs(self, command: DbCommand, what: str) -> None:
        outputs = [p.name for p in command.parameters if p.direction.is_output]
        if outputs:
            raise ValidationError(
                f'{type(self).__name__} cannot return output parameters for {what}: '
                f"{', '.join(outputs)}.")

    def execute(self, cursor: Any, native: NativeCommand) -> None:
        """Run a native command on a cursor."""
        if native.args is None:
            cursor.execute(native.sql)
        else:
            cursor.execute(native.sql, native.args)

    def advance_to_rows(self, cursor: Any) -> None:
        """Position the cursor on the first result set that returns rows."""

    def fetch(self, cursor: Any, size: int) -> list:
        """Fetch the next chunk of rows of the current result set.

        Returns an empty list once the command's rows are exhausted.
        """
        if cursor.description is None:
            return []
        return cursor.fetchmany(size)

    def finish_non_query(self, cursor: Any, native: NativeCommand) -> int:
        """Collect the affected-row count after a non-query.

        Returns
            Rows affected, -1 when the driver does not report a count
        """
        return cursor.rowcount

    def finish_query(self, cursor: Any, native: NativeCommand) -> None:
        """Harvest output values after all rows have been read."""

    def quote_identifier(self, identifier: str) -> str:
        """Quote a table or procedure name for this provider."""
        return quote_identifier(identifier, self.dialect_name)

    # Administration (test database helper)

    def database_name(self, url: sa.URL) -> str:
        """Return the database a URL points at."""
        return url.database

    def admin_url(self, url: sa.URL) -> sa.URL:
        """Return the URL of the maintenance database on the same server."""
        return url

    def _admin_engine(self, url: sa.URL) -> sa.Engine:
        return sa.create_engine(self.admin_url(url), poolclass=NullPool,
                                isolation_level='AUTOCOMMIT')

    def _admin_scalar(self, url: sa.URL, sql: str, params: Any = None) -> Any:
        engine = self._admin_engine(url)
        try:
            with engine.connect() as conn:
                return conn.exec_driver_sql(sql, params).scalar()
        finally:
            engine.dispose()

    def _admin_execute(self, url: sa.URL, *statements: str, params: Any = None) -> None:
        engine = self._admin_engine(url)
        try:
            with engine.connect() as conn:
                for sql in statements:
                    logger.debug(f'Admin: {sql}')
                    conn.exec_driver_sql(sql, params)
        finally:
            engine.dispose()

    @abstractmethod
    def database_exists(self, url: sa.URL) -> bool:
        """Check whether the database of the URL exists."""

    @abstractmethod
    def create_database(self, url: sa.URL) -> None:
        """Create the database of the URL."""

    @abstractmethod
    def drop_database(self, url: sa.URL) -> None:
        """Drop the database of the URL if it exists, closing other sessions."""

    def prepare_drop(self, url: sa.URL) -> None:
        """Best-effort preparation before dropping, such as closing sessions."""

    def split_script(self, script: str) -> list[str]:
        """Split a SQL script into the batches executed one at a time."""
        return [script] if script.strip() else []

    def execute_script(self, cn: 'ConnectionWrapper', script: str,
                       timeout: int = 120) -> None:
        """Run a multi-statement script on an open connection and commit.
        """
        cursor = cn.cursor()
        try:
            for batch in self.split_script(script):
                self.apply_command_timeout(cn, cursor, timeout)
                cursor.execute(batch)
            cn.commit()
        except Exception:
            cn.rollback()
            raise
        finally:
            cursor.close()

    @abstractmethod
    def clear_all_data(self, cn: 'ConnectionWrapper') -> None:
        """Delete all rows from all user tables, keeping the schema."""

