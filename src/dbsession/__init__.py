"""
Analytical SQL over a persistent engine shell process.

Queries run either in a fresh engine process per call (one-shot) or on a
named session that keeps one engine process alive across calls:

- Module functions: dbsession.query(sql, executor='session:work')
- Session scope: with dbsession.session_scope('work') as s: s.query(sql)

Raw engine output is converted by a data loader into records, columns,
a display table or a DataFrame.
"""
__version__ = '0.1.0'

from typing import Any

from dbsession.attach import attach as _attach
from dbsession.attach import derive_alias
from dbsession.attach import detach as _detach
from dbsession.exceptions import DatabaseError, EngineError, ExecutionFailed
from dbsession.exceptions import ProcessDead, QueryTimeout, ResultConversionError
from dbsession.exceptions import SessionError, SessionExistsError
from dbsession.exceptions import SessionNotFoundError, UnknownExecutor
from dbsession.executor import CallableExecutor, OneShotExecutor, SessionExecutor
from dbsession.executor import dispatch
from dbsession.options import ExecutionParams, SessionOptions
from dbsession.protocol import execute as _execute
from dbsession.query import SessionContext, query, query_column, query_row
from dbsession.query import query_row_or_none, query_scalar, query_scalar_or_none
from dbsession.query import session_scope
from dbsession.session import Session, SessionStatus, get_session, kill_all_sessions
from dbsession.session import kill_session, list_sessions, register_owner
from dbsession.session import require_session, start_session, unregister_owner


def execute(name: str, sql: str, timeout: float | None = None,
            transfer: str | None = None) -> str:
    """Run SQL on a named session and return the raw output text.
    """
    return _execute(require_session(name), sql, timeout=timeout, transfer=transfer)


def attach(name: str, path: str, alias: str | None = None,
           readonly: bool = True) -> str:
    """Attach a storage file to a named session and return the alias used.
    """
    return _attach(require_session(name), path, alias, readonly)


def detach(name: str, alias: str) -> None:
    """Detach an alias from a named session.
    """
    _detach(require_session(name), alias)


def start(name: str, options: SessionOptions | dict[str, Any] | str | None = None,
          **kw: Any) -> Session:
    """Start a named session.
    """
    return start_session(name, options, **kw)


kill = kill_session


__all__ = [
    'start',
    'start_session',
    'kill',
    'kill_session',
    'kill_all_sessions',
    'get_session',
    'require_session',
    'list_sessions',
    'register_owner',
    'unregister_owner',
    'execute',
    'attach',
    'detach',
    'derive_alias',
    'dispatch',
    'query',
    'query_row',
    'query_row_or_none',
    'query_scalar',
    'query_scalar_or_none',
    'query_column',
    'session_scope',
    'SessionContext',
    'Session',
    'SessionStatus',
    'SessionOptions',
    'ExecutionParams',
    'OneShotExecutor',
    'SessionExecutor',
    'CallableExecutor',
    'DatabaseError',
    'SessionError',
    'SessionExistsError',
    'SessionNotFoundError',
    'QueryTimeout',
    'ProcessDead',
    'EngineError',
    'ExecutionFailed',
    'UnknownExecutor',
    'ResultConversionError',
]
