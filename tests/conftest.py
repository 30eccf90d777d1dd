import pathlib
import site

import pytest
from dbsession.session import kill_all_sessions

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def kill_sessions():
    """Kill every registered session after each test to ensure test isolation."""
    yield
    kill_all_sessions()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.sessions',
]
