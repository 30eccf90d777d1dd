"""
Scripted session stand-ins for strategy and protocol tests.

Provides an in-process object that behaves like a live session without
spawning an engine: every `.read` command runs the script text through a
reply function whose return value lands in the output buffer, and every
`.print` command appends the printed text.

Usage:
    def test_pipe_output(scripted_session):
        session = scripted_session(reply=lambda script: '[{"x": 1}]\n')
        assert get_strategy('pipe').run(session, 'SELECT 1 AS x', 1) == '[{"x": 1}]'
"""
import json
import pathlib
import re
import shlex

import pytest
from dbsession.options import SessionOptions
from dbsession.session import SessionStatus

EXPORT_PATH_REGEX = re.compile(r"TO '((?:[^']|'')*)' \(FORMAT JSON")


class ScriptedSession:
    """Duck-typed session whose engine is a Python function.

    Args:
        workdir: Directory for script and result files
        reply: Callable taking the script text and returning engine output
        alive: Initial liveness of the fake process
        complete: When False, `.print` is swallowed so no marker ever shows up
    """

    def __init__(self, workdir, reply=None, alive=True, complete=True, **options):
        options.setdefault('engine', 'fake-engine')
        options.setdefault('poll_interval', 0.0005)
        options.setdefault('timeout', 1)
        self.name = 'scripted'
        self.options = SessionOptions(**options)
        self.workdir = workdir
        self.reply = reply or (lambda script: '')
        self.alive = alive
        self.complete = complete
        self.status = SessionStatus.ACTIVE
        self.query_count = 0
        self.sent = []
        self.scripts = []
        self._buffer = []

    def is_alive(self):
        return self.alive

    def send(self, line):
        self.sent.append(line)
        if line.startswith('.read '):
            script = pathlib.Path(shlex.split(line[len('.read '):])[0]).read_text()
            self.scripts.append(script)
            self._buffer.append(self.reply(script))
        elif line.startswith('.print ') and self.complete:
            self._buffer.append(line[len('.print '):] + '\r\n')

    def append_output(self, text):
        self._buffer.append(text)

    def clear_buffer(self):
        self._buffer.clear()

    def buffer_text(self):
        return ''.join(self._buffer)

    def touch(self):
        self.query_count += 1

    def mark_error(self):
        self.status = SessionStatus.ERROR


def export_reply(rows):
    """Reply function that writes rows to the export target of a COPY script."""
    def reply(script):
        match = EXPORT_PATH_REGEX.search(script)
        if match is None:
            return "Parser Error: syntax error at or near \"CREATE\"\n"
        path = match.group(1).replace("''", "'")
        pathlib.Path(path).write_text(json.dumps(rows))
        return ''
    return reply


@pytest.fixture
def scripted_session(tmp_path):
    """
    Fixture that provides a factory for scripted sessions rooted in tmp_path.

    Example usage:
        def test_timeout(scripted_session):
            session = scripted_session(complete=False)
    """
    def factory(reply=None, **kw):
        return ScriptedSession(str(tmp_path), reply, **kw)

    return factory
