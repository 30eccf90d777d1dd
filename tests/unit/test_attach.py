import pytest
from dbsession.attach import ATTACH_TIMEOUT, attach, derive_alias, detach


@pytest.fixture
def session(mocker):
    """Stand-in session on private storage `/work/test.duckdb`."""
    session = mocker.Mock()
    session.name = 'test'
    session.database = '/work/test.duckdb'
    return session


@pytest.mark.parametrize(('path', 'alias'), [
    ('/data/sales.duckdb', 'sales'),
    ('/data/sales-2024.duckdb', 'sales_2024'),
    ('relative/my store.db', 'my_store'),
    ('/data/2024.duckdb', '_2024'),
])
def test_derive_alias(path, alias):
    assert derive_alias(path) == alias


def test_attach_readonly_by_default(mocker, session):
    execute = mocker.patch('dbsession.attach.execute', return_value='')
    assert attach(session, '/data/sales-2024.duckdb') == 'sales_2024'
    execute.assert_called_once_with(
        session, 'ATTACH \'/data/sales-2024.duckdb\' AS "sales_2024" (READ_ONLY)',
        timeout=ATTACH_TIMEOUT, transfer='pipe')


def test_attach_writable_with_alias(mocker, session):
    execute = mocker.patch('dbsession.attach.execute', return_value='')
    assert attach(session, "/data/o'neil.duckdb", alias='oneil', readonly=False) == 'oneil'
    assert execute.call_args.args[1] == 'ATTACH \'/data/o\'\'neil.duckdb\' AS "oneil"'


def test_detach(mocker, session):
    execute = mocker.patch('dbsession.attach.execute', return_value='')
    detach(session, 'sales_2024')
    execute.assert_called_once_with(session, 'DETACH "sales_2024"',
                                    timeout=ATTACH_TIMEOUT, transfer='pipe')


def test_derived_alias_collides_with_own_catalog(mocker, session):
    execute = mocker.patch('dbsession.attach.execute', return_value='')
    with pytest.raises(ValueError, match="collides with the catalog of session 'test'"):
        attach(session, '/elsewhere/test.duckdb')
    with pytest.raises(ValueError, match='collides'):
        attach(session, '/data/sales.duckdb', alias='TEST')
    execute.assert_not_called()


def test_explicit_alias_avoids_collision(mocker, session):
    execute = mocker.patch('dbsession.attach.execute', return_value='')
    assert attach(session, '/elsewhere/test.duckdb', alias='other_test') == 'other_test'
    execute.assert_called_once()


@pytest.mark.parametrize('alias', ['memory', 'system', 'Temp'])
def test_reserved_alias(mocker, session, alias):
    execute = mocker.patch('dbsession.attach.execute', return_value='')
    with pytest.raises(ValueError, match='reserved'):
        attach(session, '/data/sales.duckdb', alias=alias)
    execute.assert_not_called()


if __name__ == '__main__':
    __import__('pytest').main([__file__])
