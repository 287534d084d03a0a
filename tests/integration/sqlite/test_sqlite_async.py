import asyncio
import sqlite3
import threading

import pytest
from dbtoolkit import CommandType, DbContext
from dbtoolkit.connection import ConnectionWrapper
from tests.fixtures.models import UserDto

pytestmark = [pytest.mark.sqlite, pytest.mark.asyncio]

INFINITE_QUERY = ('WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) '
                  'SELECT count(*) FROM c')


async def count_users(context):
    command = context.create_command('SELECT COUNT(*) AS Total FROM Users', CommandType.TEXT)
    rows = await context.execute_query_async(command)
    return rows[0].Total


async def test_query_async(sqlite_context, seeded_usernames):
    """Test asynchronous query mapping"""
    command = sqlite_context.create_command('SELECT * FROM Users ORDER BY Username', CommandType.TEXT)
    users = await sqlite_context.execute_query_async(command, UserDto)
    assert [u.Username for u in users] == seeded_usernames


async def test_non_query_async(sqlite_context):
    """Test asynchronous non-query commits"""
    command = sqlite_context.create_command(
        'UPDATE Users SET IsActive = 0 WHERE UserId = @UserId', CommandType.TEXT)
    command.add_parameter('@UserId', 2)
    assert await sqlite_context.execute_non_query_async(command) == 1

    command = sqlite_context.create_command(
        'SELECT * FROM Users WHERE IsActive = 1 ORDER BY UserId', CommandType.TEXT)
    users = await sqlite_context.execute_query_async(command, UserDto)
    assert [u.UserId for u in users] == [1, 3]


async def test_async_context_manager(sqlite_factory):
    """Test DbContext as an async context manager"""
    async with DbContext(sqlite_factory) as context:
        assert await count_users(context) == 3


async def test_concurrent_queries(sqlite_context):
    """Test independent calls may run concurrently on separate connections"""
    results = await asyncio.gather(*(count_users(sqlite_context) for _ in range(5)))
    assert results == [3] * 5


async def test_failed_non_query_async(sqlite_context):
    """Test driver errors propagate from worker threads"""
    command = sqlite_context.create_command(
        "INSERT INTO Products (ProductName, CategoryId, Price) VALUES ('Bad', 99, 1)",
        CommandType.TEXT)
    with pytest.raises(sqlite3.IntegrityError):
        await sqlite_context.execute_non_query_async(command)


async def test_cancel_query(sqlite_context):
    """Test cancelling a running query aborts it and raises CancelledError"""
    command = sqlite_context.create_command(INFINITE_QUERY, CommandType.TEXT)
    task = asyncio.create_task(sqlite_context.execute_query_async(command))
    await asyncio.sleep(0.3)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=10)

    assert await count_users(sqlite_context) == 3


async def test_cancel_non_query(sqlite_context):
    """Test cancelling a running non-query leaves no changes behind"""
    command = sqlite_context.create_command(
        'INSERT INTO Categories (CategoryName) '
        'SELECT CAST(x AS TEXT) FROM (' + INFINITE_QUERY.replace('count(*)', 'x') + ')',
        CommandType.TEXT)
    task = asyncio.create_task(sqlite_context.execute_non_query_async(command))
    await asyncio.sleep(0.3)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=10)

    rows = await sqlite_context.execute_query_async(
        sqlite_context.create_command('SELECT COUNT(*) AS Total FROM Categories', CommandType.TEXT))
    assert rows[0].Total == 4


async def test_cancel_before_start(sqlite_context):
    """Test a command cancelled before it runs raises CancelledError"""
    command = sqlite_context.create_command('SELECT * FROM Users', CommandType.TEXT)
    task = asyncio.create_task(sqlite_context.execute_query_async(command, UserDto))
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


async def test_timeout_async(sqlite_context_factory):
    """Test the command timeout applies to asynchronous execution"""
    context = sqlite_context_factory(command_timeout_seconds=1)
    command = context.create_command(INFINITE_QUERY, CommandType.TEXT)
    with pytest.raises(sqlite3.OperationalError, match='interrupted'):
        await context.execute_query_async(command)


async def test_release_runs_off_event_loop(sqlite_context, monkeypatch):
    """Test rollback and close run on worker threads, on success and failure"""
    threads = []
    close, rollback = ConnectionWrapper.close, ConnectionWrapper.rollback

    def recording_close(self):
        threads.append(('close', threading.get_ident()))
        close(self)

    def recording_rollback(self):
        threads.append(('rollback', threading.get_ident()))
        rollback(self)

    monkeypatch.setattr(ConnectionWrapper, 'close', recording_close)
    monkeypatch.setattr(ConnectionWrapper, 'rollback', recording_rollback)

    assert await count_users(sqlite_context) == 3
    command = sqlite_context.create_command('SELECT * FROM Missing', CommandType.TEXT)
    with pytest.raises(sqlite3.OperationalError):
        await sqlite_context.execute_query_async(command)
    command = sqlite_context.create_command('DELETE FROM Missing', CommandType.TEXT)
    with pytest.raises(sqlite3.OperationalError):
        await sqlite_context.execute_non_query_async(command)

    assert [kind for kind, _ in threads] == ['close', 'rollback', 'close', 'rollback', 'close']
    assert threading.get_ident() not in {ident for _, ident in threads}
