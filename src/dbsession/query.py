"""
Query facade: SQL in, structured value out.

This module provides:
1. `query()`: resolves data references, decides on nested-column wrapping,
   dispatches to an executor and converts the raw output with a data loader
2. The `query_row` / `query_scalar` / `query_column` shortcuts
3. `SessionContext`: threads one named session through a block of calls and
   holds ownership of it for the duration
"""
import json
import logging
import pathlib
from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any, Self

import pandas as pd
from dbsession.attach import attach as attach_storage
from dbsession.attach import detach as detach_storage
from dbsession.executor import OneShotExecutor, SessionExecutor
from dbsession.executor import dispatch, resolve_executor
from dbsession.options import ExecutionParams, SessionOptions, get_data_loader
from dbsession.options import use_records_data_loader
from dbsession.protocol import execute
from dbsession.results import load_records
from dbsession.session import Session, get_session, kill_session, register_owner
from dbsession.session import require_session, start_session, unregister_owner
from dbsession.sql import find_references, is_result_set_query, quote_literal
from dbsession.sql import substitute_references, wrap_nested
from dbsession.utils import make_temp_path, remove_quietly

from libb import attrdict, is_null

__all__ = [
    'query',
    'query_row',
    'query_row_or_none',
    'query_scalar',
    'query_scalar_or_none',
    'query_column',
    'SessionContext',
    'session_scope',
]

logger = logging.getLogger(__name__)


def _write_input(name: str, value: Any, directory: str | None) -> tuple[str, str]:
    """Write caller data to a temporary file and return (path, reader SQL).
    """
    if isinstance(value, pd.DataFrame):
        path = make_temp_path(suffix=f'-{name}.parquet', directory=directory)
        value.to_parquet(path, index=False)
        return path, f'read_parquet({quote_literal(path)})'
    if isinstance(value, list | tuple) and all(isinstance(row, Mapping) for row in value):
        path = make_temp_path(suffix=f'-{name}.json', directory=directory)
        pathlib.Path(path).write_text(json.dumps([dict(row) for row in value], default=str),
                                      encoding='utf-8')
        return path, f'read_json_auto({quote_literal(path)})'
    raise TypeError(f'Data for {name!r} must be a DataFrame or a sequence of mappings, '
                    f'got {type(value).__name__}')


@contextmanager
def prepared_inputs(sql: str, data: Mapping[str, Any] | None = None,
                    directory: str | None = None):
    """Replace `{{name}}` references with readers over temporary input files.

    Yields the resolved SQL; the files are removed on exit.
    """
    names = find_references(sql)
    if not names:
        yield sql
        return

    data = data or {}
    paths: list[str] = []
    try:
        readers = {}
        for name in names:
            if name not in data:
                raise ValueError(f'No data supplied for reference {name!r}')
            path, readers[name] = _write_input(name, data[name], directory)
            paths.append(path)
            logger.debug(f'Wrote data for {name!r} to {path}')
        yield substitute_references(sql, readers)
    finally:
        remove_quietly(*paths)


def _effective_transfer(executor: SessionExecutor, params: ExecutionParams) -> str:
    if params.transfer:
        return params.transfer
    name = executor.name or params.session
    session = get_session(name) if name else None
    return session.options.transfer if session else 'auto'


def should_wrap_nested(sql: str, executor: Any, params: ExecutionParams,
                       wrap: bool | str = 'auto') -> bool:
    """Decide whether rows must be serialized to JSON inside the query.

    File-mediated export writes composite values natively; display output
    (one-shot and pipe-mediated transfer) flattens them to text, so result
    set queries on those paths are wrapped. Custom executors are only wrapped
    on request.
    """
    if wrap is False or not is_result_set_query(sql):
        return False
    if wrap is True:
        return True
    if isinstance(executor, OneShotExecutor):
        return params.output_mode == 'json'
    if isinstance(executor, SessionExecutor):
        return _effective_transfer(executor, params) == 'pipe'
    return False


def _default_loader(executor: Any, params: ExecutionParams):
    if isinstance(executor, OneShotExecutor) and executor.options is not None:
        return executor.options.data_loader
    if isinstance(executor, SessionExecutor):
        name = executor.name or params.session
        session = get_session(name) if name else None
        if session is not None:
            return session.options.data_loader
    return get_data_loader(None)


def query(sql: str, executor: Any = 'oneshot', params: ExecutionParams | None = None,
          data: Mapping[str, Any] | None = None, data_loader: Any = None,
          wrap: bool | str = 'auto', raw: bool = False, parse_dates: bool = False,
          **kw: Any) -> Any:
    """Run SQL and convert the output to a structured value.

    Args:
        sql: Query text, optionally holding `{{name}}` data references
        executor: `'oneshot'`, `'session'`, `'session:<name>'`, a callable
            taking (query, params), or an executor variant
        params: Execution parameters; keyword arguments matching its fields
            (session, timeout, transfer, database, readonly, output_mode)
            override them
        data: Values for the data references, DataFrames or lists of dicts
        data_loader: Loader name (`records`, `columns`, `table`, `pandas`,
            `arrow`) or callable; defaults to the session's or pandas
        wrap: Serialize rows to JSON inside the query (`'auto'`, True, False)
        raw: Return the raw output text instead of converting it
        parse_dates: Convert ISO-8601 strings to date/datetime

    Returns
        The loader's output, or the raw text when raw=True
    """
    executor = resolve_executor(executor)
    params = (params or ExecutionParams()).merge(**kw)

    with prepared_inputs(sql, data) as resolved:
        if should_wrap_nested(resolved, executor, params, wrap):
            logger.debug('Wrapping query for nested column serialization')
            resolved = wrap_nested(resolved)
        text = dispatch(executor, resolved, params)

    if raw:
        return text
    loader = get_data_loader(data_loader) if data_loader is not None else _default_loader(executor, params)
    return load_records(text, loader, parse_dates=parse_dates)


@use_records_data_loader
def query_column(sql: str, **kw: Any) -> list[Any]:
    """Run a query and return its first column as a list.
    """
    data = query(sql, **kw)
    return [next(iter(row.values())) for row in data]


@use_records_data_loader
def query_row(sql: str, **kw: Any) -> attrdict:
    """Run a query and return a single row as an attribute dictionary.

    Raises AssertionError if the query returns zero or multiple rows.
    """
    data = query(sql, **kw)
    assert len(data) == 1, f'Expected one row, got {len(data)}'
    return attrdict(data[0])


@use_records_data_loader
def query_row_or_none(sql: str, **kw: Any) -> attrdict | None:
    """Run a query and return a single row or None if no rows found.
    """
    data = query(sql, **kw)
    if len(data) == 1:
        return attrdict(data[0])
    return None


def query_scalar(sql: str, **kw: Any) -> Any:
    """Run a query and return a single scalar value.

    Raises AssertionError if the query returns zero or multiple rows.
    """
    row = query_row(sql, **kw)
    return next(iter(row.values()))


def query_scalar_or_none(sql: str, **kw: Any) -> Any | None:
    """Run a query and return a single scalar value or None if no rows found.
    """
    try:
        val = query_scalar(sql, **kw)
        if not is_null(val):
            return val
        return None
    except AssertionError:
        return None


class SessionContext:
    """Thread one named session through a block of calls.

    Entering starts the session unless it already exists and registers this
    context as an owner; exiting releases ownership and, with kill_on_exit,
    kills the session.

    Usage:
        with session_scope('analysis') as s:
            s.execute('CREATE TABLE t AS SELECT 42 AS x')
            df = s.query('SELECT * FROM t')
    """

    def __init__(self, name: str, options: SessionOptions | dict[str, Any] | str | None = None,
                 config: Any | None = None, kill_on_exit: bool = False, **kw: Any) -> None:
        self.name = name
        self.options = options
        self.config = config
        self.kill_on_exit = kill_on_exit
        self.kw = kw

    def __enter__(self) -> Self:
        if get_session(self.name) is None:
            start_session(self.name, self.options, self.config, **self.kw)
        register_owner(self.name, self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        unregister_owner(self.name, self)
        if self.kill_on_exit:
            kill_session(self.name)

    @property
    def session(self) -> Session:
        return require_session(self.name)

    def execute(self, sql: str, timeout: float | None = None,
                transfer: str | None = None) -> str:
        """Run SQL on the session and return the raw output text."""
        return execute(self.session, sql, timeout=timeout, transfer=transfer)

    def query(self, sql: str, **kw: Any) -> Any:
        kw.setdefault('executor', SessionExecutor(self.name))
        return query(sql, **kw)

    def attach(self, path: str, alias: str | None = None, readonly: bool = True) -> str:
        return attach_storage(self.session, path, alias, readonly)

    def detach(self, alias: str) -> None:
        detach_storage(self.session, alias)


session_scope = SessionContext
