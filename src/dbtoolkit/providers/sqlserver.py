"""
SQL Server provider (pyodbc).

Command text is rewritten to the `?` style of pyodbc, one argument per
reference. Stored procedures run as `EXEC [proc] @p = ?, ...`.

pyodbc cannot bind output parameters, so a stored procedure with OUTPUT or
INPUT/OUTPUT parameters is wrapped in a batch that declares one T-SQL
variable per output parameter, passes it with `OUTPUT`, and finally selects
`@@ROWCOUNT` and the variables:

    SET NOCOUNT ON;
    DECLARE @__p0 INT = NULL;
    EXEC [dbo].[sp_CreateUser] @Username = ?, @NewId = @__p0 OUTPUT;
    SELECT @@ROWCOUNT AS [__rowcount], @__p0 AS [NewId];

The last result set of the batch is read back onto the command's
parameters and is never returned as query rows; its `__rowcount` column
marks it. The variable types come from the parameter's DbType.

Connection strings are SQLAlchemy URLs (`mssql+pyodbc://...`) or ODBC /
ADO.NET style `key=value;` strings, which are passed through `odbc_connect`.
"""
import logging
import re
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbtoolkit.command import DbCommand, Parameter
from dbtoolkit.exceptions import ConfigurationError
from dbtoolkit.providers.base import NativeCommand, Provider, register_provider
from dbtoolkit.sql import split_batches
from dbtoolkit.types import DbType, ParameterDirection

if TYPE_CHECKING:
    from dbtoolkit.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = 'ODBC Driver 18 for SQL Server'

_CONNECTION_PAIR = re.compile(r'\s*(?P<key>[^=;]+?)\s*=\s*(?P<value>\{(?:[^}]|\}\})*\}|[^;]*)\s*(?:;|$)')

# ADO.NET keywords -> ODBC keywords
_ADO_TO_ODBC = {
    'data source': 'Server',
    'addr': 'Server',
    'address': 'Server',
    'initial catalog': 'Database',
    'user id': 'UID',
    'user': 'UID',
    'password': 'PWD',
    'integrated security': 'Trusted_Connection',
    'trustservercertificate': 'TrustServerCertificate',
    'encrypt': 'Encrypt',
    'connect timeout': 'Connection Timeout',
    'application name': 'APP',
}

_TSQL_TYPES = {
    DbType.ANSI_STRING: 'VARCHAR',
    DbType.ANSI_STRING_FIXED_LENGTH: 'CHAR',
    DbType.BINARY: 'VARBINARY',
    DbType.BOOLEAN: 'BIT',
    DbType.BYTE: 'TINYINT',
    DbType.CURRENCY: 'MONEY',
    DbType.DATE: 'DATE',
    DbType.DATETIME: 'DATETIME',
    DbType.DATETIME2: 'DATETIME2',
    DbType.DATETIME_OFFSET: 'DATETIMEOFFSET',
    DbType.DOUBLE: 'FLOAT',
    DbType.GUID: 'UNIQUEIDENTIFIER',
    DbType.INT16: 'SMALLINT',
    DbType.INT32: 'INT',
    DbType.INT64: 'BIGINT',
    DbType.OBJECT: 'SQL_VARIANT',
    DbType.SBYTE: 'SMALLINT',
    DbType.SINGLE: 'REAL',
    DbType.STRING: 'NVARCHAR',
    DbType.STRING_FIXED_LENGTH: 'NCHAR',
    DbType.TIME: 'TIME',
    DbType.UINT16: 'INT',
    DbType.UINT32: 'BIGINT',
    DbType.UINT64: 'DECIMAL(20, 0)',
    DbType.XML: 'XML',
}

_SIZED_TYPES = {DbType.ANSI_STRING, DbType.STRING, DbType.BINARY}
_FIXED_TYPES = {DbType.ANSI_STRING_FIXED_LENGTH, DbType.STRING_FIXED_LENGTH}
_DECIMAL_TYPES = {DbType.DECIMAL, DbType.VAR_NUMERIC}

# first column of the select that returns output values
_OUTPUT_MARKER = '__rowcount'


def parse_connection_string(text: str) -> dict[str, str]:
    """Split a `key=value;` connection string, keeping key order and case.

    Braced values (`{...}`) may contain `;` and are returned with braces.
    """
    return {m.group('key'): m.group('value') for m in _CONNECTION_PAIR.finditer(text)
            if m.group('key').strip()}


def to_odbc_connection_string(text: str) -> str:
    """Normalize an ODBC or ADO.NET connection string for pyodbc.

    ADO.NET keywords are renamed, boolean `true`/`false` become `yes`/`no`
    and a driver is added when none is given.
    """
    pairs: dict[str, str] = {}
    for key, value in parse_connection_string(text).items():
        odbc_key = _ADO_TO_ODBC.get(key.lower(), key)
        if value.lower() in {'true', 'sspi'}:
            value = 'yes'
        elif value.lower() == 'false':
            value = 'no'
        pairs[odbc_key] = value
    if not any(k.lower() == 'driver' for k in pairs):
        pairs = {'Driver': f'{{{DEFAULT_ODBC_DRIVER}}}'} | pairs
    return ';'.join(f'{k}={v}' for k, v in pairs.items()) + ';'


def _is_output_select(cursor: Any) -> bool:
    description = cursor.description
    return bool(description) and description[0][0] == _OUTPUT_MARKER


def tsql_type(param: Parameter) -> str:
    """Return the T-SQL type declaration for a parameter."""
    if param.db_type in _DECIMAL_TYPES:
        return f'DECIMAL({param.precision or 38}, {param.scale if param.scale is not None else 10})'
    base = _TSQL_TYPES[param.db_type]
    if param.db_type in _SIZED_TYPES:
        return f'{base}({param.size})' if param.size and param.size > 0 else f'{base}(MAX)'
    if param.db_type in _FIXED_TYPES:
        return f'{base}({param.size or 1})'
    return base


@register_provider('mssql', 'sqlserver')
class SQLServerProvider(Provider):
    """SQL Server-specific command handling.
    """

    paramstyle = 'qmark'

    @property
    def dialect_name(self) -> str:
        return 'mssql'

    def create_url(self, connection_string: str) -> sa.URL:
        """Build the SQLAlchemy URL for SQL Server with the pyodbc driver."""
        text = connection_string.strip()
        if '://' in text:
            url = sa.make_url(text)
            if url.get_backend_name() != 'mssql':
                raise ConfigurationError(f'Not a SQL Server URL: {url.render_as_string()}')
            return url.set(drivername='mssql+pyodbc')
        if '=' not in text:
            raise ConfigurationError('Invalid SQL Server connection string')
        return sa.URL.create('mssql+pyodbc', query={'odbc_connect': to_odbc_connection_string(text)})

    def apply_command_timeout(self, cn: 'ConnectionWrapper', cursor: Any,
                              seconds: int) -> None:
        cn.driver_connection.timeout = int(seconds)

    def cancel(self, cn: 'ConnectionWrapper', cursor: Any | None) -> None:
        if cursor is not None:
            cursor.cancel()

    def _build_procedure(self, command: DbCommand, *, query: bool) -> NativeCommand:
        proc = self.quote_identifier(command.command_text)
        params = command.parameters
        outputs = [p for p in params if p.direction.is_output]

        if not outputs:
            assigns = ', '.join(f'@{p.bare_name} = ?' for p in params)
            sql = f'EXEC {proc} {assigns}'.rstrip()
            return NativeCommand(sql, tuple(p.value for p in params) or None)

        lines = ['SET NOCOUNT ON;']
        args: list[Any] = []
        variables: dict[int, str] = {}
        for i, param in enumerate(outputs):
            var = f'@__p{i}'
            variables[id(param)] = var
            if param.direction is ParameterDirection.INPUT_OUTPUT:
                lines.append(f'DECLARE {var} {tsql_type(param)} = ?;')
                args.append(param.value)
            else:
                lines.append(f'DECLARE {var} {tsql_type(param)} = NULL;')

        assigns = []
        for param in params:
            if id(param) in variables:
                assigns.append(f'@{param.bare_name} = {variables[id(param)]} OUTPUT')
            else:
                assigns.append(f'@{param.bare_name} = ?')
                args.append(param.value)
        lines.append(f"EXEC {proc} {', '.join(assigns)};")

        selected = ', '.join(f'{variables[id(p)]} AS [{p.bare_name}]' for p in outputs)
        lines.append(f'SELECT @@ROWCOUNT AS [{_OUTPUT_MARKER}], {selected};')
        return NativeCommand('\n'.join(lines), tuple(args), outputs)

    def advance_to_rows(self, cursor: Any) -> None:
        """Skip row-count results that precede the first row set."""
        while cursor.description is None and cursor.nextset():
            pass

    def fetch(self, cursor: Any, size: int) -> list:
        """Fetch rows, stopping before the select of output values."""
        if cursor.description is None or _is_output_select(cursor):
            return []
        return cursor.fetchmany(size)

    def _read_last_row(self, cursor: Any) -> tuple | None:
        last = None
        while True:
            if cursor.description is not None:
                rows = cursor.fetchall()
                if rows:
                    last = rows[-1]
            if not cursor.nextset():
                return last

    def _harvest(self, row: tuple | None, native: NativeCommand) -> int:
        if row is None:
            return -1
        for param, value in zip(native.outputs, row[1:]):
            param.value = value
        return row[0]

    def finish_non_query(self, cursor: Any, native: NativeCommand) -> int:
        """Sum row counts across all statements, or read the output batch."""
        if native.outputs:
            return self._harvest(self._read_last_row(cursor), native)

        total = -1
        while True:
            if cursor.description is None and cursor.rowcount != -1:
                total = max(total, 0) + cursor.rowcount
            if not cursor.nextset():
                return total

    def finish_query(self, cursor: Any, native: NativeCommand) -> None:
        """Harvest outputs once the rows are read.

        A procedure that returns no row set leaves the cursor on the output
        select itself.
        """
        if not native.outputs:
            return
        if _is_output_select(cursor) or cursor.nextset():
            self._harvest(self._read_last_row(cursor), native)

    # Administration

    def _odbc_pairs(self, url: sa.URL) -> dict[str, str] | None:
        odbc = url.query.get('odbc_connect')
        return parse_connection_string(odbc) if odbc else None

    def database_name(self, url: sa.URL) -> str:
        pairs = self._odbc_pairs(url)
        if pairs is None:
            return url.database
        return next((v.strip('{}') for k, v in pairs.items() if k.lower() == 'database'), None)

    def admin_url(self, url: sa.URL) -> sa.URL:
        pairs = self._odbc_pairs(url)
        if pairs is None:
            return url.set(database='master')
        pairs = {k: v for k, v in pairs.items() if k.lower() != 'database'} | {'Database': 'master'}
        odbc = ';'.join(f'{k}={v}' for k, v in pairs.items()) + ';'
        return url.update_query_dict({'odbc_connect': odbc})

    def database_exists(self, url: sa.URL) -> bool:
        sql = 'SELECT database_id FROM sys.databases WHERE name = ?'
        return self._admin_scalar(url, sql, (self.database_name(url),)) is not None

    def create_database(self, url: sa.URL) -> None:
        name = self.database_name(url)
        self._admin_execute(url, f'CREATE DATABASE {self.quote_identifier(name)}')
        logger.info(f'Created database {name}')

    def prepare_drop(self, url: sa.URL) -> None:
        """Bring the database online and force it to single-user mode."""
        sql = """
DECLARE @DatabaseName sysname = ?;
IF EXISTS (SELECT database_id FROM sys.databases WHERE name = @DatabaseName)
BEGIN
    IF EXISTS (SELECT 1 FROM sys.databases WHERE name = @DatabaseName AND state_desc <> 'ONLINE')
    BEGIN
        DECLARE @onlineSql nvarchar(max) = N'ALTER DATABASE ' + QUOTENAME(@DatabaseName) + N' SET ONLINE';
        EXEC (@onlineSql);
    END

    DECLARE @singleUserSql nvarchar(max) = N'ALTER DATABASE ' + QUOTENAME(@DatabaseName) + N' SET SINGLE_USER WITH ROLLBACK IMMEDIATE';
    EXEC (@singleUserSql);
END
"""
        self._admin_execute(url, sql, params=(self.database_name(url),))

    def drop_database(self, url: sa.URL) -> None:
        name = self.database_name(url)
        sql = """
DECLARE @DatabaseName sysname = ?;
IF EXISTS (SELECT database_id FROM sys.databases WHERE name = @DatabaseName)
BEGIN
    DECLARE @dropSql nvarchar(max) = N'DROP DATABASE ' + QUOTENAME(@DatabaseName);
    EXEC (@dropSql);
END
"""
        self._admin_execute(url, sql, params=(name,))
        logger.info(f'Dropped database {name}')

    def split_script(self, script: str) -> list[str]:
        return split_batches(script)

    def clear_all_data(self, cn: 'ConnectionWrapper') -> None:
        """Delete all rows with constraints disabled for the duration."""
        cursor = cn.cursor()
        try:
            cursor.execute("EXEC sp_MSforeachtable 'ALTER TABLE ? NOCHECK CONSTRAINT ALL'")
            cursor.execute("EXEC sp_MSforeachtable 'DELETE FROM ?'")
            cursor.execute("EXEC sp_MSforeachtable 'ALTER TABLE ? CHECK CONSTRAINT ALL'")
            cn.commit()
        except Exception:
            cn.rollback()
            raise
        finally:
            cursor.close()
