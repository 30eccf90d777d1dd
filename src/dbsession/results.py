"""
Decoding of raw engine output into records.

This module provides:
- parse_output: Decode serialized result sets (one or more JSON arrays)
- Column: Column metadata inferred from decoded records
- coerce_value: Optional ISO-8601 date/timestamp coercion
"""
import json
import logging
import re
from typing import Any, Self

import dateutil.parser
from dbsession.exceptions import ResultConversionError

logger = logging.getLogger(__name__)

# Column name used by the nested serialization wrapper
NESTED_COLUMN = '__json'

_ISO_DATE_REGEX = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_ISO_DATETIME_REGEX = re.compile(
    r'^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?([+-]\d{2}(:?\d{2})?|Z)?$'
)


def coerce_value(value: Any) -> Any:
    """Convert ISO-8601 date and timestamp strings to date/datetime.

    Anything that is not strictly ISO formatted is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    if _ISO_DATE_REGEX.match(value):
        try:
            return dateutil.parser.isoparse(value).date()
        except ValueError:
            return value
    if _ISO_DATETIME_REGEX.match(value):
        try:
            return dateutil.parser.isoparse(value.replace(' ', 'T', 1))
        except ValueError:
            return value
    return value


def _decode_arrays(text: str) -> list[Any]:
    """Decode one or more concatenated JSON documents.

    Pipe-mediated output of a multi-statement script holds one array per
    statement that returned rows.
    """
    decoder = json.JSONDecoder()
    values = []
    idx = 0
    end = len(text)
    while idx < end:
        while idx < end and text[idx].isspace():
            idx += 1
        if idx >= end:
            break
        try:
            value, idx = decoder.raw_decode(text, idx)
        except json.JSONDecodeError as e:
            raise ResultConversionError(f'Could not decode engine output: {text.strip()[:200]}') from e
        values.append(value)
    return values


def _unwrap_nested(row: dict) -> dict:
    """Expand a row produced by the nested serialization wrapper."""
    if len(row) == 1 and NESTED_COLUMN in row:
        value = row[NESTED_COLUMN]
        return json.loads(value) if isinstance(value, str) else value
    return row


def parse_output(text: str, parse_dates: bool = False) -> list[dict]:
    """Decode raw engine output into a list of row dicts.

    Empty output (a statement with no result set) decodes to an empty list.
    """
    if not text or not text.strip():
        return []

    records: list[dict] = []
    for value in _decode_arrays(text):
        rows = value if isinstance(value, list) else [value]
        for row in rows:
            if not isinstance(row, dict):
                raise ResultConversionError(f'Expected row objects, got {type(row).__name__}')
            row = _unwrap_nested(row)
            if parse_dates:
                row = {k: coerce_value(v) for k, v in row.items()}
            records.append(row)

    logger.debug(f'Decoded {len(records)} rows from engine output')
    return records


class Column:
    """Column metadata inferred from decoded records."""

    def __init__(self, name: str, python_type: type | None = None) -> None:
        self.name = name
        self.python_type = python_type

    def __repr__(self) -> str:
        return (f'Column(name={self.name!r}, '
                f'python_type={self.python_type.__name__ if self.python_type else None})')

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Column):
            return NotImplemented
        return self.name == other.name and self.python_type == other.python_type

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'python_type': self.python_type.__name__ if self.python_type else None,
        }

    @classmethod
    def from_records(cls, records: list[dict]) -> list[Self]:
        """Infer columns from records, typed by the first non-null value."""
        names: list[str] = []
        seen: set[str] = set()
        for row in records:
            for name in row:
                if name not in seen:
                    seen.add(name)
                    names.append(name)

        columns = []
        for name in names:
            python_type = None
            for row in records:
                value = row.get(name)
                if value is not None:
                    python_type = type(value)
                    break
            columns.append(cls(name, python_type))
        return columns

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}

    @staticmethod
    def get_types(columns: list[Self]) -> list[type | None]:
        return [col.python_type for col in columns]


def load_records(text: str, data_loader, parse_dates: bool = False, **kwargs: Any) -> Any:
    """Decode raw output and hand the records to a data loader.
    """
    records = parse_output(text, parse_dates=parse_dates)
    columns = Column.from_records(records)
    return data_loader(records, columns, **kwargs)
