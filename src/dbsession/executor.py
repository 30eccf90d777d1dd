"""
Executor dispatch: one entry point from query text to raw output text.

Executors are a closed set of variants, one dataclass per kind:

- OneShotExecutor: spawn the engine once per query
- SessionExecutor: run on a named, persistent session
- CallableExecutor: call a caller-supplied function with (query, params)

Add a kind by adding a variant and a branch in `dispatch`.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dbsession.exceptions import SessionNotFoundError, UnknownExecutor
from dbsession.oneshot import run_oneshot
from dbsession.options import ExecutionParams, SessionOptions
from dbsession.protocol import execute
from dbsession.session import require_session

__all__ = [
    'OneShotExecutor',
    'SessionExecutor',
    'CallableExecutor',
    'Executor',
    'resolve_executor',
    'dispatch',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OneShotExecutor:
    options: SessionOptions | None = None


@dataclass(frozen=True)
class SessionExecutor:
    """Run on a named session; with no name, `params.session` is used."""
    name: str | None = None


@dataclass(frozen=True)
class CallableExecutor:
    func: Callable[[str, ExecutionParams], str]


Executor = OneShotExecutor | SessionExecutor | CallableExecutor


def resolve_executor(executor: Any) -> Executor:
    """Resolve an executor tag to its variant.

    Accepts a variant instance, None or `'oneshot'`, `'session'`,
    `'session:<name>'`, or any callable.
    """
    if isinstance(executor, OneShotExecutor | SessionExecutor | CallableExecutor):
        return executor
    if executor is None or executor == 'oneshot':
        return OneShotExecutor()
    if isinstance(executor, str):
        kind, _, name = executor.partition(':')
        if kind == 'session':
            return SessionExecutor(name or None)
        raise UnknownExecutor(f'Unknown executor: {executor!r}')
    if callable(executor):
        return CallableExecutor(executor)
    raise UnknownExecutor(f'Unknown executor: {executor!r}')


def dispatch(executor: Any, query: str, params: ExecutionParams | None = None) -> str:
    """Run a query through an executor and return the raw output text.

    Session and one-shot failures propagate unchanged, and so does anything
    raised by a custom callable.
    """
    executor = resolve_executor(executor)
    params = params or ExecutionParams()

    if isinstance(executor, OneShotExecutor):
        logger.debug('Dispatching to one-shot executor')
        return run_oneshot(query, params, executor.options)

    if isinstance(executor, SessionExecutor):
        name = executor.name or params.session
        if not name:
            raise SessionNotFoundError('No session name given to the session executor')
        logger.debug(f'Dispatching to session {name!r}')
        return execute(require_session(name), query, timeout=params.timeout,
                       transfer=params.transfer)

    if isinstance(executor, CallableExecutor):
        logger.debug(f'Dispatching to custom executor {getattr(executor.func, "__name__", executor.func)!r}')
        return executor.func(query, params)

    raise UnknownExecutor(f'Unknown executor: {executor!r}')
