import pathlib
import site

import pytest
from dbtoolkit.connection import dispose_all_engines
from dbtoolkit.mapper import MapperRegistry

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)

SCRIPTS = HERE / 'fixtures' / 'scripts'


@pytest.fixture(autouse=True)
def dispose_engines_after_test():
    """Dispose all engines after each test so no pooled connection outlives it."""
    yield
    dispose_all_engines()


@pytest.fixture
def mapper_registry():
    """An empty mapper registry, isolated from the module-wide one."""
    return MapperRegistry()


@pytest.fixture
def scripts_dir():
    return SCRIPTS


pytest_plugins = [
    'tests.fixtures.models',
    'tests.fixtures.mocks',
    'tests.fixtures.sqlite',
    'tests.fixtures.postgres',
    'tests.fixtures.sqlserver',
]
