"""
Fixtures for tests against a real duckdb shell.
"""
import shutil

import config
import dbsession as db
import pytest
from dbsession.options import resolve_options


def pytest_collection_modifyitems(items):
    for item in items:
        if 'integration/duckdb' in str(item.fspath).replace('\\', '/'):
            item.add_marker(pytest.mark.duckdb)
            if shutil.which('duckdb') is None:
                item.add_marker(pytest.mark.skip(reason='duckdb binary not found on PATH'))


@pytest.fixture
def duckdb_options():
    return resolve_options('duckdb', config=config)


@pytest.fixture
def duckdb_session(duckdb_options):
    session = db.start_session('duck', duckdb_options)
    yield session
    db.kill_session('duck')
