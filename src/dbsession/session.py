"""
Named engine sessions and their process-wide registry.

This module provides:
1. The `Session` handle: one long-lived engine process bound to a storage file
2. The `SessionRegistry`: a thread-safe table of live sessions keyed by name
3. Module-level lifecycle functions (`start_session`, `kill_session`, ...) on a
   single process-wide registry, torn down at interpreter exit

Sessions are not internally serialized: a caller must not run two queries
against the same session at once, because each query clears and scans the
shared output buffer.
"""
import atexit
import datetime
import logging
import os
import shutil
import tempfile
import threading
from enum import Enum
from typing import Any

from dbsession.exceptions import SessionExistsError, SessionNotFoundError
from dbsession.options import SessionOptions, resolve_options
from dbsession.process import EngineProcess
from dbsession.protocol import execute
from dbsession.sql import sanitize_identifier

from libb import attrdict

__all__ = [
    'Session',
    'SessionStatus',
    'SessionRegistry',
    'get_registry',
    'start_session',
    'get_session',
    'require_session',
    'kill_session',
    'kill_all_sessions',
    'list_sessions',
    'register_owner',
    'unregister_owner',
]

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    INITIALIZING = 'initializing'
    ACTIVE = 'active'
    ERROR = 'error'


class Session:
    """Handle to one named, long-lived engine process.

    Owns a private working directory holding the backing storage file (unless
    the options name an existing database) and the per-query temporary files.
    """

    def __init__(self, name: str, options: SessionOptions) -> None:
        self.name = name
        self.options = options
        self.workdir = tempfile.mkdtemp(prefix=f'dbsession-{sanitize_identifier(name)}-',
                                        dir=options.tempdir)
        self.owns_database = options.database is None
        self.database = options.database or os.path.join(
            self.workdir, f'{sanitize_identifier(name)}.duckdb')
        self.process: EngineProcess | None = None
        self.status = SessionStatus.INITIALIZING
        self.created_at = datetime.datetime.now()
        self.last_used = self.created_at
        self.query_count = 0
        self.owners: set[Any] = set()
        self._buffer: list[str] = []
        self._buffer_lock = threading.Lock()

    def __repr__(self) -> str:
        return (f'Session(name={self.name!r}, status={self.status.value!r}, '
                f'queries={self.query_count})')

    @property
    def command(self) -> list[str]:
        """Command line binding the engine to this session's storage."""
        command = self.options.engine_command
        if self.options.readonly:
            command.append('-readonly')
        command.append(self.database)
        return command

    def spawn(self) -> None:
        self.process = EngineProcess(self.command, self.append_output,
                                     use_pty=self.options.use_pty, cwd=self.workdir)
        self.process.start()

    def append_output(self, text: str) -> None:
        with self._buffer_lock:
            self._buffer.append(text)

    def clear_buffer(self) -> None:
        with self._buffer_lock:
            self._buffer.clear()

    def buffer_text(self) -> str:
        with self._buffer_lock:
            if len(self._buffer) > 1:
                self._buffer[:] = [''.join(self._buffer)]
            return self._buffer[0] if self._buffer else ''

    def is_alive(self) -> bool:
        return self.process is not None and self.process.is_alive()

    def send(self, line: str) -> None:
        self.process.send(line)

    def touch(self) -> None:
        """Record a query execution."""
        self.query_count += 1
        self.last_used = datetime.datetime.now()

    def mark_error(self) -> None:
        self.status = SessionStatus.ERROR

    def has_owners(self) -> bool:
        return bool(self.owners)

    def close(self) -> None:
        """Stop the process and delete the working directory.

        A caller-supplied database file is left in place.
        """
        if self.process is not None:
            try:
                self.process.terminate()
            except OSError as e:
                logger.debug(f'Error stopping process for session {self.name!r}: {e}')
        shutil.rmtree(self.workdir, ignore_errors=True)

    def info(self) -> attrdict:
        """Diagnostic snapshot of the session."""
        return attrdict(
            name=self.name,
            status=self.status.value,
            pid=self.process.pid if self.process else None,
            alive=self.is_alive(),
            database=self.database,
            private=self.owns_database,
            created_at=self.created_at,
            last_used=self.last_used,
            query_count=self.query_count,
            owners=len(self.owners),
        )


class SessionRegistry:
    """Thread-safe table of named sessions.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def start(self, name: str, options: SessionOptions) -> Session:
        """Spawn and initialize a new named session.

        The session is registered before the process starts. If the process
        cannot start or an initialization statement fails, the session stays
        registered in error status and the failure propagates; the caller
        decides whether to kill it.
        """
        if not name:
            raise ValueError('Session name must not be empty')

        with self._lock:
            if name in self._sessions:
                raise SessionExistsError(f'Session {name!r} already exists')
            session = Session(name, options)
            self._sessions[name] = session

        try:
            session.spawn()
            for statement in options.init_statements:
                execute(session, statement, timeout=options.timeout, transfer='pipe')
        except Exception as e:
            session.mark_error()
            logger.error(f'Session {name!r} failed to initialize: {e}')
            raise

        session.status = SessionStatus.ACTIVE
        logger.debug(f'Started session {name!r} (pid {session.process.pid}) on {session.database}')
        return session

    def get(self, name: str) -> Session | None:
        with self._lock:
            return self._sessions.get(name)

    def require(self, name: str) -> Session:
        session = self.get(name)
        if session is None:
            raise SessionNotFoundError(f'No session named {name!r}')
        return session

    def kill(self, name: str) -> None:
        """Stop a session and delete its backing storage.

        Idempotent: unknown names and dead processes are not errors. Owners
        are advisory, a session with owners is still killed.
        """
        with self._lock:
            session = self._sessions.pop(name, None)
        if session is None:
            logger.debug(f'Kill requested for unknown session {name!r}')
            return
        if session.has_owners():
            logger.warning(f'Killing session {name!r} with {len(session.owners)} registered owner(s)')
        session.close()
        logger.debug(f'Killed session {name!r} after {session.query_count} queries')

    def kill_all(self) -> None:
        with self._lock:
            names = list(self._sessions)
        for name in names:
            self.kill(name)

    def list(self) -> list[attrdict]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.info() for session in sessions]

    def register_owner(self, name: str, context: Any) -> None:
        self.require(name).owners.add(context)

    def unregister_owner(self, name: str, context: Any) -> None:
        """Drop an owner. Unknown sessions are ignored, since a killed session
        has no owners left to release."""
        session = self.get(name)
        if session is not None:
            session.owners.discard(context)


_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    """Return the process-wide session registry."""
    return _registry


def start_session(name: str, options: SessionOptions | dict[str, Any] | str | None = None,
                  config: Any | None = None, **kw: Any) -> Session:
    """Start a named session.

    Args:
        name: Unique session name
        options: Can be:
                - SessionOptions object
                - String path to configuration
                - Dictionary of options
                - None, with options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Raises
        SessionExistsError: A session with this name is already registered
    """
    return _registry.start(name, resolve_options(options, config, **kw))


def get_session(name: str) -> Session | None:
    return _registry.get(name)


def require_session(name: str) -> Session:
    return _registry.require(name)


def kill_session(name: str) -> None:
    _registry.kill(name)


def kill_all_sessions() -> None:
    """Kill every registered session.
    """
    _registry.kill_all()
    logger.debug('All sessions killed')


def list_sessions() -> list[attrdict]:
    return _registry.list()


def register_owner(name: str, context: Any) -> None:
    _registry.register_owner(name, context)


def unregister_owner(name: str, context: Any) -> None:
    _registry.unregister_owner(name, context)


atexit.register(kill_all_sessions)
