"""
Database connection handling with SQLAlchemy.

This module provides:
1. `ConnectionFactory`, which resolves the provider once and hands out
   connection handles for the configured data source
2. `ConnectionWrapper`, a handle around a SQLAlchemy connection that tracks
   call statistics and runs blocking driver calls on worker threads
3. A thread-safe engine registry, disposed at interpreter exit

SQLAlchemy is used for connection management and pooling only; statements
run directly on the DBAPI connection. Engines are shared between factories
with identical URL and pool settings.
"""
import asyncio
import atexit
import dataclasses
import functools
import logging
import threading
from typing import Any, Self

import sqlalchemy as sa
from dbtoolkit.exceptions import ProviderError
from dbtoolkit.providers import Provider, get_provider
from dbtoolkit.settings import DatabaseSettings
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'ConnectionFactory',
    'ConnectionWrapper',
    'get_engine',
    'dispose_engines',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

# Thread-safe engine registry
_engine_registry: dict[tuple, Engine] = {}
_engine_registry_lock = threading.RLock()

_CANCEL_RETRY_SECONDS = 1.0


def get_engine(url: sa.URL, provider: Provider, settings: DatabaseSettings,
               engine_factory=sa.create_engine, **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for a URL and pool settings.

    Args:
        url: SQLAlchemy URL built by the provider
        provider: Provider supplying dialect-specific engine kwargs
        settings: DatabaseSettings with the pooling options
        engine_factory: Function to create engines (defaults to sqlalchemy.create_engine)
        **kwargs: Additional arguments passed to engine factory

    Returns
        sqlalchemy.engine.Engine: SQLAlchemy engine
    """
    key = (url.render_as_string(hide_password=False), settings.use_pool,
           settings.pool_max_connections, settings.pool_max_idle_time,
           settings.pool_wait_timeout)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {provider.dialect_name}')
            return _engine_registry[key]

        engine_kwargs = {'echo': False}

        # Configure pooling based on use_pool parameter
        if not settings.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = settings.pool_max_connections
            engine_kwargs['pool_recycle'] = settings.pool_max_idle_time
            engine_kwargs['pool_timeout'] = settings.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(provider.get_engine_kwargs(settings))
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {provider.dialect_name}')

        return engine


def dispose_engines(url: sa.URL) -> None:
    """Dispose the engines for a URL, closing their pooled connections."""
    rendered = url.render_as_string(hide_password=False)
    with _engine_registry_lock:
        for key in [k for k in _engine_registry if k[0] == rendered]:
            _engine_registry.pop(key).dispose()


def dispose_all_engines() -> None:
    """Dispose all engines in the registry."""
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


# Register cleanup function to run at program exit
atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Handle on one database connection.

    Created unopened; `open()` checks a connection out of the engine and
    `close()` returns it. The wrapper tracks the number of statements run and
    their total time, and offloads blocking driver calls to worker threads
    through `run()`.

    One wrapper serves one caller at a time.
    """

    def __init__(self, engine: Engine, provider: Provider,
                 connection_string: str | None = None) -> None:
        """Initialize an unopened connection wrapper

        Args:
            engine: SQLAlchemy engine to check the connection out of
            provider: Provider of the engine's database
            connection_string: The connection string the engine was built from
        """
        self.engine = engine
        self.provider = provider
        self.connection_string = connection_string
        self.sa_connection: sa.engine.Connection | None = None
        self.dbapi_connection = None
        self.calls = 0
        self.time = 0
        self._cursor = None

    def __repr__(self) -> str:
        state = 'open' if self.is_open else 'closed'
        return f'ConnectionWrapper({self.provider.dialect_name}, {state})'

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Return the connection to the pool when exiting the context manager
        """
        try:
            self.close()
            logger.debug('Closed connection via context manager')
        except Exception as e:
            logger.debug(f'Error closing connection in __exit__: {e}')

    @property
    def is_open(self) -> bool:
        return self.sa_connection is not None and not self.sa_connection.closed

    @property
    def driver_connection(self) -> Any:
        """The driver's own connection object (sqlite3, psycopg, pyodbc)."""
        if self.dbapi_connection is None:
            return None
        return self.dbapi_connection.driver_connection

    @property
    def is_pooled(self) -> bool:
        """Check if this connection is using SQLAlchemy's connection pooling
        """
        return not isinstance(self.engine.pool, NullPool)

    def open(self) -> Self:
        """Open the connection. Opening an open connection does nothing."""
        if self.is_open:
            return self
        self.sa_connection = self.engine.connect()
        self.dbapi_connection = self.sa_connection.connection
        self.provider.configure_connection(self)
        logger.debug(f'Opened {self.provider.dialect_name} connection')
        return self

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise ProviderError('Connection is not open.')

    def cursor(self) -> Any:
        """Create a DBAPI cursor on the open connection.
        """
        self._ensure_open()
        self._cursor = self.dbapi_connection.cursor()
        return self._cursor

    def commit(self) -> None:
        self._ensure_open()
        self.dbapi_connection.commit()

    def rollback(self) -> None:
        self._ensure_open()
        self.dbapi_connection.rollback()

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics

        Args:
            elapsed: Time in seconds that the statement took to execute
        """
        self.time += elapsed
        self.calls += 1

    def close(self) -> None:
        """Close the connection. Closing a closed connection does nothing.
        """
        if not self.is_open:
            return
        self.sa_connection.close()
        self._cursor = None
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')

    def cancel(self) -> None:
        """Ask the database to abort the statement currently running."""
        if self.dbapi_connection is None:
            return
        self.provider.cancel(self, self._cursor)

    async def run(self, func, *args: Any) -> Any:
        """Run a blocking call on a worker thread.

        If the awaiting task is cancelled, the running statement is aborted
        through the provider, the worker is waited for, and CancelledError
        is raised.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, functools.partial(func, *args))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if not future.done():
                logger.debug('Cancellation requested, aborting running statement')
            # a cancel sent before the statement starts is lost, so repeat it
            while not future.done():
                try:
                    self.cancel()
                except Exception as e:
                    logger.warning(f'Cancel request failed: {e}')
                await asyncio.wait([future], timeout=_CANCEL_RETRY_SECONDS)
            if not future.cancelled() and future.exception() is not None:
                logger.debug(f'Cancelled call ended with: {future.exception()!r}')
            raise


class ConnectionFactory:
    """Creates connections for one configured data source.

    The provider is resolved when the factory is built; an unknown provider
    name fails here with ConfigurationError, before any connection attempt.
    The settings are copied, so later changes to the caller's object have no
    effect. The engine is created on first use.
    """

    def __init__(self, settings: DatabaseSettings | dict[str, Any]) -> None:
        if isinstance(settings, dict):
            settings = DatabaseSettings(**settings)
        self._settings = dataclasses.replace(settings)
        self._provider = get_provider(settings.provider_name)
        self._url = self._provider.create_url(settings.connection_string)
        self._engine: Engine | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f'ConnectionFactory({self._provider.dialect_name}, {self._url!r})'

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def url(self) -> sa.URL:
        return self._url

    def get_provider(self) -> Provider:
        """Return the provider resolved at construction."""
        return self._provider

    def _get_engine(self) -> Engine:
        with self._lock:
            if self._engine is None:
                try:
                    self._engine = get_engine(self._url, self._provider, self._settings)
                except (ImportError, sa.exc.ArgumentError) as exc:
                    raise ProviderError(
                        f'Could not create a {self._provider.dialect_name} engine: {exc}') from exc
            return self._engine

    def create_connection(self) -> ConnectionWrapper:
        """Create a new, unopened connection.
        """
        return ConnectionWrapper(self._get_engine(), self._provider,
                                 self._settings.connection_string)

    async def create_connection_async(self) -> ConnectionWrapper:
        """Create and open a new connection.

        The open runs on a worker thread and honors task cancellation; a
        connection opened after cancellation was requested is closed.
        """
        cn = self.create_connection()
        try:
            await cn.run(cn.open)
        except BaseException:
            await asyncio.shield(asyncio.to_thread(cn.close))
            raise
        return cn
