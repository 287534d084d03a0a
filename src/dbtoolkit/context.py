"""
Command execution.

`DbContext` is the entry point for running commands: it creates `DbCommand`
objects bound to the configured provider and executes them, each call on its
own connection from the `ConnectionFactory`:

    DbCommand → Provider.build_command → open → execute → fetch/map → commit → close

Every execution commits on success and rolls back on failure; the cursor and
the connection are released on all paths. The `*_async` variants run the
blocking driver calls on worker threads and honor task cancellation at
connection open, statement execution and between fetched chunks of rows.
Rows accumulated before a cancellation are discarded.
"""
import asyncio
import logging
import time
from functools import wraps
from typing import Any, TypeVar

from dbtoolkit.command import DbCommand
from dbtoolkit.connection import ConnectionFactory, ConnectionWrapper
from dbtoolkit.mapper import DataMapper, MapperRegistry, default_registry
from dbtoolkit.providers import NativeCommand
from dbtoolkit.row import Row, columns_from_cursor_description
from dbtoolkit.settings import DatabaseSettings
from dbtoolkit.types import CommandType

__all__ = ['DbContext']

logger = logging.getLogger(__name__)

T = TypeVar('T')


def dumpsql(func):
    """Decorator for logging and timing native command execution."""
    @wraps(func)
    def wrapper(self, cn: ConnectionWrapper, cursor: Any, native: NativeCommand):
        start = time.time()
        logger.debug(f'SQL:\n{native.sql}\nargs: {native.args}')
        try:
            return func(self, cn, cursor, native)
        except Exception:
            logger.error(f'Error with command:\nSQL:\n{native.sql}\nargs: {native.args}')
            raise
        finally:
            elapsed = time.time() - start
            cn.addcall(elapsed)
            logger.debug(f'Command time: {elapsed:.4f}s')
    return wrapper


class DbContext:
    """Creates and executes commands against the configured database.

    Stateless after construction and safe to share between tasks and
    threads; a single DbCommand must not be executed concurrently.

    Args:
        connection_factory: Factory for the connections each call uses
        settings: Execution settings, defaults to the factory's settings
        mappers: Mapper registry for query result types, defaults to the
            module-wide registry
    """

    def __init__(self, connection_factory: ConnectionFactory,
                 settings: DatabaseSettings | None = None,
                 mappers: MapperRegistry | None = None) -> None:
        self._factory = connection_factory
        self._provider = connection_factory.get_provider()
        self._settings = settings or connection_factory.settings
        self._mappers = mappers or default_registry

    def __repr__(self) -> str:
        return f'DbContext({self._factory!r})'

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def connection_factory(self) -> ConnectionFactory:
        return self._factory

    @property
    def mappers(self) -> MapperRegistry:
        return self._mappers

    def close(self) -> None:
        """Release the context.

        The context owns no connection between calls, so there is nothing to
        release; closing twice is harmless and the context stays usable.
        """

    def create_command(self, text: str,
                       command_type: CommandType = CommandType.STORED_PROCEDURE) -> DbCommand:
        """Create a command for this context's provider.

        Args:
            text: Command text, stored procedure name or table name
            command_type: Kind of command, a stored procedure by default
        """
        return DbCommand(text, command_type, self._provider)

    # Mapping

    def _resolve_mapper(self, result_type: type[T] | None) -> Any:
        if result_type is None:
            return Row.to_attrdict
        mapper: DataMapper = self._mappers.resolve(
            result_type, reflection=self._settings.reflection_mapping)
        return mapper.map

    # Execution steps, run on the calling or a worker thread

    @dumpsql
    def _execute(self, cn: ConnectionWrapper, cursor: Any, native: NativeCommand) -> None:
        self._provider.apply_command_timeout(cn, cursor, self._settings.command_timeout_seconds)
        self._provider.execute(cursor, native)

    def _run_non_query(self, cn: ConnectionWrapper, native: NativeCommand) -> int:
        cursor = cn.cursor()
        try:
            self._execute(cn, cursor, native)
            count = self._provider.finish_non_query(cursor, native)
            cn.commit()
            return count
        finally:
            cursor.close()

    def _start_query(self, cn: ConnectionWrapper, native: NativeCommand) -> Any:
        cursor = cn.cursor()
        try:
            self._execute(cn, cursor, native)
            self._provider.advance_to_rows(cursor)
        except BaseException:
            cursor.close()
            raise
        return cursor

    def _fetch(self, cursor: Any) -> list:
        return self._provider.fetch(cursor, self._settings.fetch_size)

    def _end_query(self, cn: ConnectionWrapper, cursor: Any, native: NativeCommand) -> None:
        self._provider.finish_query(cursor, native)
        cn.commit()

    def _abort(self, cn: ConnectionWrapper, command: DbCommand, exc: BaseException) -> None:
        if isinstance(exc, asyncio.CancelledError):
            logger.info(f'Cancelled: {command.command_text}')
        if cn.is_open:
            try:
                cn.rollback()
            except Exception as e:
                logger.debug(f'Rollback failed: {e}')

    def _log_start(self, kind: str, command: DbCommand) -> None:
        logger.info(f'Executing {kind}: {command.command_text}')

    # Synchronous API

    def execute_non_query(self, command: DbCommand) -> int:
        """Execute a command that returns no rows.

        Returns
            Number of rows affected, -1 when the database does not report one

        Output and input/output parameter values are written back onto the
        command's parameters.
        """
        self._log_start('non-query', command)
        native = self._provider.build_command(command, query=False)
        with self._factory.create_connection().open() as cn:
            try:
                return self._run_non_query(cn, native)
            except BaseException as exc:
                self._abort(cn, command, exc)
                raise

    def execute_query(self, command: DbCommand, result_type: type[T] | None = None) -> list[T]:
        """Execute a command and map every row of its result.

        Args:
            command: The command to execute
            result_type: Type each row is mapped onto; None returns attrdict rows

        Returns
            The mapped rows in result order
        """
        self._log_start('query', command)
        mapper = self._resolve_mapper(result_type)
        native = self._provider.build_command(command, query=True)
        with self._factory.create_connection().open() as cn:
            cursor = None
            try:
                cursor = self._start_query(cn, native)
                columns = columns_from_cursor_description(cursor)
                results = []
                while True:
                    rows = self._fetch(cursor)
                    if not rows:
                        break
                    results.extend(mapper(Row(columns, row)) for row in rows)
                self._end_query(cn, cursor, native)
                logger.debug(f'Fetched {len(results)} rows')
                return results
            except BaseException as exc:
                self._abort(cn, command, exc)
                raise
            finally:
                if cursor is not None:
                    cursor.close()

    # Asynchronous API

    def _release(self, cn: ConnectionWrapper, cursor: Any = None,
                 command: DbCommand | None = None, exc: BaseException | None = None) -> None:
        try:
            if exc is not None:
                self._abort(cn, command, exc)
            if cursor is not None:
                cursor.close()
        finally:
            cn.close()

    async def _release_async(self, cn: ConnectionWrapper, cursor: Any = None,
                             command: DbCommand | None = None,
                             exc: BaseException | None = None) -> None:
        """Roll back on failure and close the cursor and connection on a worker thread."""
        await asyncio.shield(asyncio.to_thread(self._release, cn, cursor, command, exc))

    async def execute_non_query_async(self, command: DbCommand) -> int:
        """Execute a command that returns no rows.

        Same as `execute_non_query`, with the driver calls on worker threads.
        Cancelling the awaiting task aborts the running statement and raises
        asyncio.CancelledError.
        """
        self._log_start('non-query', command)
        native = self._provider.build_command(command, query=False)
        cn = await self._factory.create_connection_async()
        try:
            count = await cn.run(self._run_non_query, cn, native)
        except BaseException as exc:
            await self._release_async(cn, command=command, exc=exc)
            raise
        await self._release_async(cn)
        return count

    async def execute_query_async(self, command: DbCommand,
                                  result_type: type[T] | None = None) -> list[T]:
        """Execute a command and map every row of its result.

        Same as `execute_query`, with the driver calls on worker threads.
        Rows are fetched in chunks of `fetch_size`; cancellation is checked
        between chunks.
        """
        self._log_start('query', command)
        mapper = self._resolve_mapper(result_type)
        native = self._provider.build_command(command, query=True)
        cn = await self._factory.create_connection_async()
        cursor = None
        try:
            cursor = await cn.run(self._start_query, cn, native)
            columns = columns_from_cursor_description(cursor)
            results = []
            while True:
                rows = await cn.run(self._fetch, cursor)
                if not rows:
                    break
                results.extend(mapper(Row(columns, row)) for row in rows)
            await cn.run(self._end_query, cn, cursor, native)
        except BaseException as exc:
            await self._release_async(cn, cursor, command, exc)
            raise
        await self._release_async(cn, cursor)
        logger.debug(f'Fetched {len(results)} rows')
        return results
