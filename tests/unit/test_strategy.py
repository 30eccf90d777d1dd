import pathlib

import pytest
from dbsession.exceptions import EngineError, ProcessDead, QueryTimeout
from dbsession.session import SessionStatus
from dbsession.strategy import FileTransferStrategy, PipeTransferStrategy
from dbsession.strategy import get_available_transfers, get_strategy
from dbsession.strategy import is_supported_transfer, select_strategy
from dbsession.strategy.base import clean_output, make_marker
from fixtures.mocks import export_reply


class TestStrategyRegistry:

    def test_available(self):
        assert set(get_available_transfers()) == {'file', 'pipe'}
        assert is_supported_transfer('pipe')
        assert not is_supported_transfer('auto')

    def test_cached(self):
        assert get_strategy('file') is get_strategy('file')
        assert isinstance(get_strategy('file'), FileTransferStrategy)
        assert isinstance(get_strategy('pipe'), PipeTransferStrategy)

    def test_unknown(self):
        with pytest.raises(ValueError, match='Unsupported transfer'):
            get_strategy('socket')

    @pytest.mark.parametrize(('query', 'name'), [
        ('SELECT 42 AS x', 'file'),
        ('WITH a AS (SELECT 1) SELECT * FROM a', 'file'),
        ('CREATE TABLE t AS SELECT 42 AS x', 'pipe'),
        ('INSERT INTO t VALUES (1)', 'pipe'),
        ('PRAGMA table_info(t)', 'pipe'),
        ('SELECT 1; SELECT 2', 'pipe'),
        ('.tables', 'pipe'),
    ])
    def test_auto_selection(self, query, name):
        assert select_strategy(query).name == name
        assert select_strategy(query, None).name == name

    def test_explicit_selection(self):
        assert select_strategy('SELECT 1', 'pipe').name == 'pipe'
        assert select_strategy('CREATE TABLE t (x INT)', 'file').name == 'file'


class TestMarker:

    def test_marker_shape(self):
        marker = make_marker('my session-1')
        assert marker.startswith('__DBSESSION_DONE_my_session_1_')
        assert marker.endswith('__')
        assert ' ' not in marker

    def test_markers_unique(self):
        assert len({make_marker('s') for _ in range(50)}) == 50

    def test_clean_output(self):
        raw = 'D \x1b[1m\x1b[31mBinder Error: x\x1b[0m\r\n'
        assert clean_output(raw, 'D ') == 'Binder Error: x\n'


class TestFileTransfer:

    def test_returns_exported_rows(self, scripted_session):
        session = scripted_session(reply=export_reply([{'x': 42}]))
        result = get_strategy('file').run(session, 'SELECT 42 AS x', 1)
        assert result == '[{"x": 42}]'
        assert session.scripts[0].startswith('COPY (\nSELECT 42 AS x\n) TO ')

    def test_commands_sent(self, scripted_session):
        session = scripted_session(reply=export_reply([]))
        get_strategy('file').run(session, 'SELECT 1', 1)
        assert session.sent[0].startswith(".read '")
        assert session.sent[1].startswith('.print __DBSESSION_DONE_scripted_')

    def test_empty_result_file(self, scripted_session):
        session = scripted_session(reply=export_reply([]))
        assert get_strategy('file').run(session, 'SELECT 1 WHERE false', 1) == '[]'

    def test_missing_result_file(self, scripted_session):
        session = scripted_session(reply=lambda script: '')
        assert get_strategy('file').run(session, 'SELECT 1', 1) == ''

    def test_temp_files_removed(self, scripted_session, tmp_path):
        session = scripted_session(reply=export_reply([{'x': 1}]))
        get_strategy('file').run(session, 'SELECT 1 AS x', 1)
        assert list(tmp_path.iterdir()) == []

    def test_temp_files_removed_on_error(self, scripted_session, tmp_path):
        session = scripted_session(reply=lambda script: 'Parser Error: syntax error at or near "CREATE"\n')
        with pytest.raises(EngineError):
            get_strategy('file').run(session, 'CREATE TABLE t (x INT)', 1)
        assert list(tmp_path.iterdir()) == []

    def test_error_in_output(self, scripted_session):
        reply = lambda script: '\x1b[31mCatalog Error: Table with name t does not exist!\x1b[0m\r\n'
        session = scripted_session(reply=reply)
        with pytest.raises(EngineError) as exc:
            get_strategy('file').run(session, 'SELECT * FROM t', 1)
        assert exc.value.message == 'Catalog Error: Table with name t does not exist!'


class TestPipeTransfer:

    def test_returns_output(self, scripted_session):
        session = scripted_session(reply=lambda script: 'D [{"x": 42}]\r\n')
        assert get_strategy('pipe').run(session, 'SELECT 42 AS x', 1) == '[{"x": 42}]'

    def test_query_sent_verbatim(self, scripted_session):
        session = scripted_session()
        get_strategy('pipe').run(session, 'CREATE TABLE t AS SELECT 42 AS x', 1)
        assert session.scripts == ['CREATE TABLE t AS SELECT 42 AS x\n;\n']

    def test_no_rows(self, scripted_session):
        session = scripted_session()
        assert get_strategy('pipe').run(session, 'CREATE TABLE t (x INT)', 1) == ''

    def test_error_in_output(self, scripted_session):
        session = scripted_session(reply=lambda script: 'Parser Error: syntax error at or near "SELEC"\n')
        with pytest.raises(EngineError, match='Parser Error'):
            get_strategy('pipe').run(session, 'SELEC 1', 1)

    def test_lowercase_error_in_data(self, scripted_session):
        session = scripted_session(reply=lambda script: '[{"status": "error"}]\n')
        assert get_strategy('pipe').run(session, "SELECT 'error' AS status", 1) == '[{"status": "error"}]'

    def test_temp_files_removed(self, scripted_session, tmp_path):
        session = scripted_session()
        get_strategy('pipe').run(session, 'SELECT 1', 1)
        assert list(tmp_path.iterdir()) == []


class TestExchange:

    def test_stale_output_cleared(self, scripted_session):
        """Output from an earlier query never leaks into the next one"""
        session = scripted_session(reply=lambda script: '[{"n": 2}]\n')
        session.append_output('[{"n": 1}]\n__DBSESSION_DONE_scripted_1__\n')
        assert get_strategy('pipe').run(session, 'SELECT 2 AS n', 1) == '[{"n": 2}]'

    def test_timeout(self, scripted_session):
        session = scripted_session(complete=False)
        with pytest.raises(QueryTimeout):
            get_strategy('pipe').run(session, 'SELECT 1', 0.05)
        assert session.status == SessionStatus.ERROR

    def test_zero_timeout(self, scripted_session):
        session = scripted_session(complete=False)
        with pytest.raises(QueryTimeout):
            get_strategy('pipe').run(session, 'SELECT 1', 0)
        assert session.status == SessionStatus.ERROR

    def test_dead_process(self, scripted_session):
        session = scripted_session(alive=False)
        with pytest.raises(ProcessDead):
            get_strategy('pipe').run(session, 'SELECT 1', 1)
        assert session.sent == []

    def test_process_dies_while_waiting(self, scripted_session):
        session = scripted_session(complete=False)

        def reply(script):
            session.alive = False
            return 'Segmentation fault\n'

        session.reply = reply
        with pytest.raises(ProcessDead, match='Segmentation fault'):
            get_strategy('pipe').run(session, 'SELECT 1', 1)
        assert session.status == SessionStatus.ERROR

    def test_script_path_quoted(self, scripted_session):
        session = scripted_session()
        get_strategy('pipe').run(session, 'SELECT 1', 1)
        path = session.sent[0][len('.read '):].strip("'")
        assert pathlib.Path(path).parent == pathlib.Path(session.workdir)


if __name__ == '__main__':
    __import__('pytest').main([__file__])
