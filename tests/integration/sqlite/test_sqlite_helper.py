import pathlib

import pytest
from dbtoolkit import CommandType, DatabaseSettings, DbContext
from dbtoolkit.testing import SCRIPT_TIMEOUT_SECONDS, TestDatabaseHelper

pytestmark = pytest.mark.sqlite


def count(context, table):
    command = context.create_command(f'SELECT COUNT(*) AS Total FROM {table}', CommandType.TEXT)
    return context.execute_query(command)[0].Total


@pytest.fixture
def new_helper(tmp_path, scripts_dir):
    """Helper for a database file that does not exist yet."""
    settings = DatabaseSettings(provider_name='sqlite',
                                connection_string=f'Data Source={tmp_path / "nested" / "helper.db"}')
    return TestDatabaseHelper(settings, base_dir=scripts_dir)


@pytest.mark.asyncio
async def test_ensure_database_exists(new_helper, tmp_path):
    """Test the database file is created once"""
    path = tmp_path / 'nested' / 'helper.db'
    assert not path.exists()
    await new_helper.ensure_database_exists_async()
    assert path.exists()
    await new_helper.ensure_database_exists_async()
    assert path.exists()


@pytest.mark.asyncio
async def test_initialize_and_cleanup(new_helper, tmp_path):
    """Test a database is seeded from a script and dropped again"""
    await new_helper.ensure_database_exists_async()
    await new_helper.initialize_database_async('sqlite_init.sql')

    context = DbContext(new_helper.connection_factory)
    assert count(context, 'Users') == 3
    assert count(context, 'Products') == 8

    await new_helper.cleanup_database_async()
    assert not (tmp_path / 'nested' / 'helper.db').exists()


@pytest.mark.asyncio
async def test_missing_script(new_helper, scripts_dir):
    """Test a missing script raises FileNotFoundError with its path"""
    await new_helper.ensure_database_exists_async()
    with pytest.raises(FileNotFoundError, match='Database initialization script not found at: .*missing.sql'):
        await new_helper.initialize_database_async('missing.sql')


@pytest.mark.asyncio
async def test_absolute_script_path(new_helper, scripts_dir):
    """Test absolute script paths are used as given"""
    await new_helper.ensure_database_exists_async()
    await new_helper.initialize_database_async(pathlib.Path(scripts_dir, 'sqlite_init.sql').resolve())
    assert count(DbContext(new_helper.connection_factory), 'Categories') == 4


@pytest.mark.asyncio
async def test_clear_and_reset(sqlite_helper, sqlite_context):
    """Test clearing removes all rows and resetting restores the seed data"""
    await sqlite_helper.clear_all_data_async()
    for table in ('Users', 'Categories', 'Products', 'Orders', 'OrderItems'):
        assert count(sqlite_context, table) == 0

    await sqlite_helper.reset_database_async('sqlite_init.sql')
    assert count(sqlite_context, 'Users') == 3
    assert count(sqlite_context, 'Categories') == 4


@pytest.mark.asyncio
async def test_execute_script(sqlite_helper, sqlite_context):
    """Test an ad hoc script runs and commits"""
    await sqlite_helper.execute_script_async("""
INSERT INTO Categories (CategoryName) VALUES ('Toys');
INSERT INTO Categories (CategoryName) VALUES ('Sports');
""")
    assert count(sqlite_context, 'Categories') == 6


@pytest.mark.asyncio
async def test_connections(sqlite_helper):
    """Test connections created by the helper"""
    cn = sqlite_helper.create_connection()
    assert not cn.is_open

    cn = await sqlite_helper.create_connection_async()
    try:
        assert cn.is_open
    finally:
        cn.close()


def test_properties(sqlite_helper, sqlite_settings):
    """Test helper properties describe the database"""
    assert sqlite_helper.database_name == 'toolkit_test'
    assert sqlite_helper.connection_string == sqlite_settings.connection_string
    assert SCRIPT_TIMEOUT_SECONDS == 120


def test_blocking_clear_and_reset(sqlite_helper, sqlite_context):
    """Test the blocking helper operations used by synchronous fixtures"""
    sqlite_helper.clear_all_data()
    assert count(sqlite_context, 'Users') == 0

    sqlite_helper.reset_database('sqlite_init.sql')
    assert count(sqlite_context, 'Users') == 3
