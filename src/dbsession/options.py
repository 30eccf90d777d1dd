import os
import shlex
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from functools import wraps
from typing import Any

import pandas as pd
import pyarrow as pa
from dbsession.results import Column
from dbsession.strategy import get_available_transfers, is_supported_transfer

from libb import ConfigOptions, load_options

__all__ = [
    'SessionOptions',
    'ExecutionParams',
    'records_data_loader',
    'columns_data_loader',
    'table_data_loader',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'use_records_data_loader',
    'get_data_loader',
    'resolve_options',
]

OUTPUT_MODES = ('json', 'jsonlines', 'csv', 'list', 'line', 'markdown', 'box')


def use_records_data_loader(func):
    """Temporarily use the records loader over the user-specified loader"""

    @wraps(func)
    def inner(*args, **kwargs):
        kwargs['data_loader'] = records_data_loader
        return func(*args, **kwargs)

    return inner


def records_data_loader(data, columns, **kwargs) -> list[dict]:
    """Row-oriented loader: one dict per row.

    Accepts additional keyword arguments for compatibility with other data
    loaders, but doesn't use them.
    """
    if not data:
        return []
    return list(data)


def columns_data_loader(data, columns, **kwargs) -> dict[str, list]:
    """Column-oriented loader: one list of values per column name.
    """
    names = Column.get_names(columns)
    return {name: [row.get(name) for row in data] for name in names}


def table_data_loader(data, columns, **kwargs) -> list[list]:
    """Display-table loader: a header row followed by one list per row.

    Pass `header=False` to drop the header row.
    """
    names = Column.get_names(columns)
    rows = [[row.get(name) for name in names] for row in data]
    if kwargs.get('header', True) and names:
        return [names, *rows]
    return rows


def _empty_dataframe(columns) -> pd.DataFrame:
    """DataFrame with no rows carrying the column names and types."""
    df = pd.DataFrame(columns=Column.get_names(columns))
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Default loader: a NumPy-backed DataFrame built from the records.

    Empty results still give a DataFrame, with whatever column names are
    known. Inferred column types are kept in `df.attrs['column_types']`.
    """
    if not data:
        return _empty_dataframe(columns)

    df = pd.DataFrame.from_records(list(data), columns=Column.get_names(columns))
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """DataFrame loader with Arrow-backed dtypes, built column by column.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = Column.get_names(columns)
    columns_data = [[row.get(col) for row in data] for col in column_names]
    df = pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


_DATA_LOADERS: dict[str, Callable[..., Any]] = {
    'records': records_data_loader,
    'columns': columns_data_loader,
    'table': table_data_loader,
    'pandas': pandas_numpy_data_loader,
    'arrow': pandas_pyarrow_data_loader,
}


def get_data_loader(loader: str | Callable[..., Any] | None) -> Callable[..., Any]:
    """Resolve a loader name or callable, defaulting to the pandas loader.
    """
    if loader is None:
        return pandas_numpy_data_loader
    if callable(loader):
        return loader
    if loader not in _DATA_LOADERS:
        raise ValueError(f'data_loader must be one of: {list(_DATA_LOADERS)}')
    return _DATA_LOADERS[loader]


@dataclass
class SessionOptions(ConfigOptions):
    """Options

    Engine options:
    - engine: command used to launch the engine shell, as a string or a list
    - database: storage file to bind; None allocates a private one per session
    - readonly: open the storage read-only (default: False)

    Protocol options:
    - timeout: seconds to wait for a query's completion marker (default: 30)
    - poll_interval: seconds between output buffer scans (default: 0.001)
    - transfer: output transfer strategy, `auto`, `file` or `pipe`
    - init_statements: statements run once after the process starts
    - use_pty: attach the process output to a pseudo-terminal so the engine
      flushes line by line (default: True on POSIX)
    - prompt: prompt string stripped from pipe-mediated output
    """
    engine: str | list[str] = 'duckdb'
    database: str = None
    readonly: bool = False
    timeout: float = 30
    poll_interval: float = 0.001
    transfer: str = 'auto'
    init_statements: list[str] = field(default_factory=lambda: ['.mode json'])
    use_pty: bool = os.name == 'posix'
    prompt: str = 'D '
    tempdir: str = None
    data_loader: Callable[..., Any] | None = None

    def __post_init__(self):
        if self.transfer != 'auto' and not is_supported_transfer(self.transfer):
            available = ['auto', *get_available_transfers()]
            raise ValueError(f'transfer must be one of: {available}')
        if self.timeout is None or self.timeout <= 0:
            raise ValueError('timeout must be a positive number of seconds')
        if not self.poll_interval or self.poll_interval <= 0:
            raise ValueError('poll_interval must be positive')
        if not self.engine_command:
            raise ValueError('engine command must not be empty')
        self.data_loader = get_data_loader(self.data_loader)

    @property
    def engine_command(self) -> list[str]:
        """The engine command split into arguments."""
        if isinstance(self.engine, str):
            return shlex.split(self.engine)
        return list(self.engine or [])


@dataclass
class ExecutionParams:
    """Per-call execution parameters.

    Unset values (None) fall back to the session or engine defaults.
    """
    database: str | None = None
    readonly: bool = False
    timeout: float | None = None
    transfer: str | None = None
    output_mode: str = 'json'
    session: str | None = None

    def __post_init__(self):
        if self.transfer not in {None, 'auto'} and not is_supported_transfer(self.transfer):
            available = ['auto', *get_available_transfers()]
            raise ValueError(f'transfer must be one of: {available}')
        if self.output_mode not in OUTPUT_MODES:
            raise ValueError(f'output_mode must be one of: {list(OUTPUT_MODES)}')
        if self.timeout is not None and self.timeout < 0:
            raise ValueError('timeout must be a non-negative number of seconds')

    def merge(self, **kw: Any) -> 'ExecutionParams':
        """Return a copy with the non-None keyword values applied."""
        return replace(self, **{k: v for k, v in kw.items() if v is not None})


def resolve_options(options: 'SessionOptions | dict[str, Any] | str | None' = None,
                    config: Any | None = None, **kw: Any) -> SessionOptions:
    """Build SessionOptions from an instance, a dict, a config name or keywords.

    Keyword arguments override the values carried by `options`.
    """
    if options is None:
        return SessionOptions(**kw)
    if isinstance(options, SessionOptions):
        return replace(options, **kw) if kw else options
    options_func = load_options(cls=SessionOptions)(lambda o, c: o)
    return options_func(options, config, **kw)
