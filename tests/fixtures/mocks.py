"""
Mock driver objects for provider and connection tests.

Provides a scripted DB-API cursor and a recording engine factory so provider
result handling and the engine registry can be tested without a database.

Usage:
    def test_rowcount(fake_cursor):
        cursor = fake_cursor([(None, [], 2), (['Id'], [(1,)], -1)])
"""
from unittest import mock

import pytest


class FakeCursor:
    """DB-API cursor replaying a list of result sets.

    Each result set is `(column names or None, rows, rowcount)`.
    """

    def __init__(self, results=None):
        self._results = list(results or [(None, [], -1)])
        self._index = 0
        self._position = 0
        self.executed = []
        self.cancelled = False
        self.closed = False

    @property
    def _current(self):
        return self._results[self._index]

    @property
    def description(self):
        names = self._current[0]
        if names is None:
            return None
        return [(name, None, None, None, None, None, None) for name in names]

    @property
    def rowcount(self):
        return self._current[2]

    def execute(self, sql, args=None):
        self.executed.append((sql, args))

    def fetchone(self):
        rows = self._current[1]
        if self._position >= len(rows):
            return None
        self._position += 1
        return rows[self._position - 1]

    def fetchmany(self, size):
        rows = self._current[1][self._position:self._position + size]
        self._position += len(rows)
        return rows

    def fetchall(self):
        rows = self._current[1][self._position:]
        self._position = len(self._current[1])
        return rows

    def nextset(self):
        if self._index + 1 >= len(self._results):
            return False
        self._index += 1
        self._position = 0
        return True

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_cursor():
    """Factory for scripted cursors."""
    def factory(results=None):
        return FakeCursor(results)
    return factory


@pytest.fixture
def recording_engine_factory():
    """Engine factory that records its calls and returns mock engines."""
    calls = []

    def factory(url, **kwargs):
        calls.append((url, kwargs))
        return mock.MagicMock(name=f'Engine({url})')

    factory.calls = calls
    return factory
