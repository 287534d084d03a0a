"""
SQLite provider.

SQLite has no stored procedures and no output parameters; commands of those
kinds are rejected before reaching the driver. Command text is rewritten to
the `:name` style of the sqlite3 module. The command timeout is enforced with
a progress handler that aborts the statement once its deadline has passed,
and cancellation uses `Connection.interrupt()`, which is safe to call from
another thread.

Connection strings are SQLAlchemy URLs (`sqlite:///path`), `Data Source=path`
style strings, or a bare file path.
"""
import json
import logging
import pathlib
import sqlite3
import time
from typing import TYPE_CHECKING, Any

import dateutil.parser
import sqlalchemy as sa
from dbtoolkit.command import DbCommand
from dbtoolkit.providers.base import NativeCommand, Provider, register_provider

if TYPE_CHECKING:
    from dbtoolkit.connection import ConnectionWrapper
    from dbtoolkit.settings import DatabaseSettings

logger = logging.getLogger(__name__)

_DATA_SOURCE_KEYS = ('data source', 'datasource', 'filename', 'database')

# sqlite3 opcodes between deadline checks
_PROGRESS_STEPS = 1000


def convert_date(val: bytes):
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes):
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


@register_provider('sqlite')
class SQLiteProvider(Provider):
    """SQLite-specific command handling.
    """

    paramstyle = 'named'

    @property
    def dialect_name(self) -> str:
        return 'sqlite'

    def create_url(self, connection_string: str) -> sa.URL:
        """Build the SQLAlchemy URL for SQLite.

        Accepts `sqlite:///path`, `Data Source=path;...` or a bare path.
        """
        text = connection_string.strip()
        if text.lower().startswith('sqlite'):
            return sa.make_url(text)
        database = text
        if '=' in text:
            pairs = dict(part.split('=', 1) for part in text.split(';') if '=' in part)
            pairs = {k.strip().lower(): v.strip() for k, v in pairs.items()}
            database = next((pairs[k] for k in _DATA_SOURCE_KEYS if k in pairs), '')
        return sa.URL.create('sqlite', database=database or None)

    def get_engine_kwargs(self, settings: 'DatabaseSettings') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        Connections are opened, used and cancelled from different worker
        threads, so the sqlite3 same-thread check is disabled.
        """
        return {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                'check_same_thread': False,
            }
        }

    def configure_connection(self, cn: 'ConnectionWrapper') -> None:
        """Enable foreign keys and register date converters.
        """
        conn = cn.driver_connection
        # a pooled connection may still carry the last command's deadline
        conn.set_progress_handler(None, 0)
        conn.execute('PRAGMA foreign_keys = ON')

        # Adapters (Python -> SQLite)
        sqlite3.register_adapter(dict, json.dumps)
        sqlite3.register_adapter(list, json.dumps)

        # Converters (SQLite -> Python)
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)

    def apply_command_timeout(self, cn: 'ConnectionWrapper', cursor: Any,
                              seconds: int) -> None:
        conn = cn.driver_connection
        if not seconds:
            conn.set_progress_handler(None, 0)
            return
        deadline = time.monotonic() + seconds
        conn.set_progress_handler(lambda: time.monotonic() > deadline, _PROGRESS_STEPS)

    def cancel(self, cn: 'ConnectionWrapper', cursor: Any | None) -> None:
        cn.driver_connection.interrupt()

    def build_command(self, command: DbCommand, *, query: bool) -> NativeCommand:
        self._reject_outputs(command, 'any command')
        return super().build_command(command, query=query)

    # Administration

    def database_name(self, url: sa.URL) -> str:
        if not url.database or url.database == ':memory:':
            return ':memory:'
        return pathlib.Path(url.database).stem

    def _path(self, url: sa.URL) -> pathlib.Path | None:
        if not url.database or url.database == ':memory:':
            return None
        return pathlib.Path(url.database)

    def database_exists(self, url: sa.URL) -> bool:
        path = self._path(url)
        return path is None or path.exists()

    def create_database(self, url: sa.URL) -> None:
        path = self._path(url)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        sqlite3.connect(path).close()
        logger.info(f'Created SQLite database {path}')

    def drop_database(self, url: sa.URL) -> None:
        path = self._path(url)
        if path is None:
            return
        for suffix in ('', '-journal', '-wal', '-shm'):
            path.with_name(path.name + suffix).unlink(missing_ok=True)
        logger.info(f'Dropped SQLite database {path}')

    def execute_script(self, cn: 'ConnectionWrapper', script: str,
                       timeout: int = 120) -> None:
        """Run a script with `executescript`, which commits pending work first.
        """
        cn.commit()
        self.apply_command_timeout(cn, None, timeout)
        try:
            cn.driver_connection.executescript(script)
        finally:
            self.apply_command_timeout(cn, None, 0)

    def clear_all_data(self, cn: 'ConnectionWrapper') -> None:
        """Delete all rows from every user table with foreign keys suspended."""
        conn = cn.driver_connection
        cn.commit()
        tables = [row[0] for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'")]
        conn.execute('PRAGMA foreign_keys = OFF')
        try:
            for table in tables:
                conn.execute(f'DELETE FROM {self.quote_identifier(table)}')
            cn.commit()
        except Exception:
            cn.rollback()
            raise
        finally:
            conn.execute('PRAGMA foreign_keys = ON')
        logger.debug(f'Cleared {len(tables)} tables')
