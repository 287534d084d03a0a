"""
PostgreSQL provider (psycopg 3).

Command text is rewritten to psycopg's `%(name)s` style. Stored procedures
are called with named notation:

- non-query: `CALL proc(p => %(p)s, ...)`. OUT and INOUT arguments come back
  as the single row CALL returns and are written onto the command's
  parameters by column name.
- query: `SELECT * FROM func(p => %(p)s, ...)`.

The command timeout is the session `statement_timeout`; cancellation sends a
cancel request on the libpq connection.

Connection strings are SQLAlchemy URLs (`postgresql://...`, driver forced to
psycopg) or libpq `key=value` strings.
"""
import logging
import re
from typing import TYPE_CHECKING, Any

import psycopg
import sqlalchemy as sa
from dbtoolkit.command import DbCommand
from dbtoolkit.exceptions import ConfigurationError
from dbtoolkit.providers.base import NativeCommand, Provider, register_provider
from psycopg.conninfo import conninfo_to_dict

if TYPE_CHECKING:
    from dbtoolkit.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

_PLAIN_NAME = re.compile(r'^[A-Za-z_][\w$]*(\.[A-Za-z_][\w$]*)?$')
_LIBPQ_URL_KEYS = {'user': 'username', 'password': 'password', 'host': 'host',
                   'port': 'port', 'dbname': 'database'}


@register_provider('postgresql', 'postgres')
class PostgresProvider(Provider):
    """PostgreSQL-specific command handling.
    """

    paramstyle = 'pyformat'

    @property
    def dialect_name(self) -> str:
        return 'postgresql'

    def create_url(self, connection_string: str) -> sa.URL:
        """Build the SQLAlchemy URL for PostgreSQL with the psycopg driver."""
        text = connection_string.strip()
        if '://' in text:
            url = sa.make_url(text)
            if url.get_backend_name() not in {'postgresql', 'postgres'}:
                raise ConfigurationError(f'Not a PostgreSQL URL: {url.render_as_string()}')
            return url.set(drivername='postgresql+psycopg')

        try:
            params = conninfo_to_dict(text)
        except psycopg.ProgrammingError as exc:
            raise ConfigurationError(f'Invalid PostgreSQL connection string: {exc}') from exc
        kwargs: dict[str, Any] = {}
        for key, attr in _LIBPQ_URL_KEYS.items():
            if key in params:
                kwargs[attr] = params.pop(key)
        if 'port' in kwargs:
            kwargs['port'] = int(kwargs['port'])
        return sa.URL.create('postgresql+psycopg',
                             query={k: str(v) for k, v in params.items()},
                             **kwargs)

    def apply_command_timeout(self, cn: 'ConnectionWrapper', cursor: Any,
                              seconds: int) -> None:
        cursor.execute("SELECT set_config('statement_timeout', %s, false)",
                       (str(int(seconds) * 1000),))

    def cancel(self, cn: 'ConnectionWrapper', cursor: Any | None) -> None:
        cn.driver_connection.cancel()

    def _procedure_name(self, name: str) -> str:
        if _PLAIN_NAME.match(name):
            return name
        return self.quote_identifier(name)

    def _build_procedure(self, command: DbCommand, *, query: bool) -> NativeCommand:
        params = command.parameters
        if query:
            self._reject_outputs(command, 'set-returning functions')
        args = ', '.join(f'{p.bare_name} => %({p.bare_name})s' for p in params)
        name = self._procedure_name(command.command_text)
        if query:
            sql = f'SELECT * FROM {name}({args})'
        else:
            sql = f'CALL {name}({args})'
        outputs = [p for p in params if p.direction.is_output]
        return NativeCommand(sql, {p.bare_name: p.value for p in params} or None, outputs)

    def finish_non_query(self, cursor: Any, native: NativeCommand) -> int:
        if not native.outputs:
            return cursor.rowcount
        row = cursor.fetchone() if cursor.description is not None else None
        if row is not None:
            values = {col[0].casefold(): value
                      for col, value in zip(cursor.description, row)}
            for param in native.outputs:
                param.value = values.get(param.bare_name.casefold(), param.value)
        # CALL does not report an affected-row count
        return -1

    # Administration

    def admin_url(self, url: sa.URL) -> sa.URL:
        return url.set(database='postgres')

    def database_exists(self, url: sa.URL) -> bool:
        sql = 'SELECT 1 FROM pg_database WHERE datname = %(name)s'
        return self._admin_scalar(url, sql, {'name': url.database}) is not None

    def create_database(self, url: sa.URL) -> None:
        self._admin_execute(url, f'CREATE DATABASE {self.quote_identifier(url.database)}')
        logger.info(f'Created database {url.database}')

    def prepare_drop(self, url: sa.URL) -> None:
        sql = """
SELECT pg_terminate_backend(pid) FROM pg_stat_activity
WHERE datname = %(name)s AND pid <> pg_backend_pid()
"""
        self._admin_execute(url, sql, params={'name': url.database})

    def drop_database(self, url: sa.URL) -> None:
        self._admin_execute(url, f'DROP DATABASE IF EXISTS {self.quote_identifier(url.database)}')
        logger.info(f'Dropped database {url.database}')

    def clear_all_data(self, cn: 'ConnectionWrapper') -> None:
        """Truncate every user table in one statement, cascading to dependents."""
        cursor = cn.cursor()
        try:
            cursor.execute("""
SELECT quote_ident(schemaname) || '.' || quote_ident(tablename)
FROM pg_tables WHERE schemaname NOT IN ('pg_catalog', 'information_schema')
""")
            tables = [row[0] for row in cursor.fetchall()]
            if tables:
                cursor.execute(f"TRUNCATE TABLE {', '.join(tables)} CASCADE")
            cn.commit()
        except Exception:
            cn.rollback()
            raise
        finally:
            cursor.close()
        logger.debug(f'Cleared {len(tables)} tables')

