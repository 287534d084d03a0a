"""
Disposable databases for integration tests.

`TestDatabaseHelper` creates, seeds, clears and drops the database named by a
`DatabaseSettings` connection string, through the administrative operations
of the settings' provider:

    helper = TestDatabaseHelper(settings)
    await helper.ensure_database_exists_async()
    await helper.initialize_database_async('scripts/init.sql')
    ...
    await helper.cleanup_database_async()

Each `*_async` operation has a blocking counterpart of the same name without
the suffix, for use from synchronous test fixtures.

Scripts are split into batches on `GO` lines for SQL Server and run with a
120 second timeout per batch.
"""
import asyncio
import logging
import pathlib

from dbtoolkit.connection import ConnectionFactory, ConnectionWrapper
from dbtoolkit.connection import dispose_engines
from dbtoolkit.settings import DatabaseSettings

__all__ = ['TestDatabaseHelper', 'SCRIPT_TIMEOUT_SECONDS']

logger = logging.getLogger(__name__)

SCRIPT_TIMEOUT_SECONDS = 120


class TestDatabaseHelper:
    """Provision and tear down the database of a connection string.

    Args:
        settings: Settings whose connection string names the test database
        base_dir: Directory relative script paths resolve against, the
            working directory by default
    """

    __test__ = False  # not a pytest test class

    def __init__(self, settings: DatabaseSettings,
                 base_dir: str | pathlib.Path | None = None) -> None:
        self._factory = ConnectionFactory(settings)
        self._provider = self._factory.get_provider()
        self._url = self._factory.url
        self._base_dir = pathlib.Path(base_dir) if base_dir else pathlib.Path.cwd()

    def __repr__(self) -> str:
        return f'TestDatabaseHelper({self.database_name!r})'

    @property
    def database_name(self) -> str:
        return self._provider.database_name(self._url)

    @property
    def connection_string(self) -> str:
        return self._factory.settings.connection_string

    @property
    def connection_factory(self) -> ConnectionFactory:
        return self._factory

    def ensure_database_exists(self) -> None:
        """Create the test database unless it already exists."""
        if self._provider.database_exists(self._url):
            logger.debug(f'Database {self.database_name} exists')
            return
        self._provider.create_database(self._url)

    async def ensure_database_exists_async(self) -> None:
        await asyncio.to_thread(self.ensure_database_exists)

    def _resolve_script(self, script_path: str | pathlib.Path) -> pathlib.Path:
        path = pathlib.Path(script_path)
        if not path.is_absolute():
            path = self._base_dir / path
        if not path.is_file():
            raise FileNotFoundError(f'Database initialization script not found at: {path}')
        return path

    def initialize_database(self, script_path: str | pathlib.Path) -> None:
        """Run an initialization script file against the test database.

        Raises
            FileNotFoundError: If the script does not exist
        """
        path = self._resolve_script(script_path)
        logger.info(f'Initializing {self.database_name} from {path.name}')
        self.execute_script(path.read_text(encoding='utf-8'))

    async def initialize_database_async(self, script_path: str | pathlib.Path) -> None:
        path = self._resolve_script(script_path)
        await asyncio.to_thread(self.initialize_database, path)

    def execute_script(self, script: str) -> None:
        """Run a SQL script against the test database."""
        with self._factory.create_connection().open() as cn:
            self._provider.execute_script(cn, script, timeout=SCRIPT_TIMEOUT_SECONDS)

    async def execute_script_async(self, script: str) -> None:
        await asyncio.to_thread(self.execute_script, script)

    def reset_database(self, script_path: str | pathlib.Path) -> None:
        """Re-run the initialization script to restore the initial state."""
        self.initialize_database(script_path)

    async def reset_database_async(self, script_path: str | pathlib.Path) -> None:
        await self.initialize_database_async(script_path)

    def clear_all_data(self) -> None:
        """Delete all rows from all tables, keeping the schema."""
        with self._factory.create_connection().open() as cn:
            self._provider.clear_all_data(cn)

    async def clear_all_data_async(self) -> None:
        await asyncio.to_thread(self.clear_all_data)

    def cleanup_database(self) -> None:
        """Drop the test database if it exists."""
        # pooled connections would keep the database in use
        dispose_engines(self._url)
        try:
            self._provider.prepare_drop(self._url)
        except Exception as e:
            logger.warning(f'Could not prepare {self.database_name} for drop: {e}')
        self._provider.drop_database(self._url)

    async def cleanup_database_async(self) -> None:
        await asyncio.to_thread(self.cleanup_database)

    def create_connection(self) -> ConnectionWrapper:
        """Create an unopened connection to the test database."""
        return self._factory.create_connection()

    async def create_connection_async(self) -> ConnectionWrapper:
        """Create and open a connection to the test database."""
        return await self._factory.create_connection_async()
