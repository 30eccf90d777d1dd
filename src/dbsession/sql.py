"""
SQL text helpers for the protocol and the query facade.

Nothing here parses SQL: statements are classified by their leading keyword
and statement separators are found with a small scanner that understands
quoted strings, quoted identifiers and comments.
"""
import logging
import re
from collections.abc import Mapping

logger = logging.getLogger(__name__)

# Leading keywords of statements that yield a result set and can be wrapped
# in a bulk export statement
RESULT_SET_KEYWORDS = {'SELECT', 'WITH', 'FROM', 'VALUES', 'TABLE'}

REFERENCE_REGEX = re.compile(r'\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}')

_WORD_REGEX = re.compile(r'[A-Za-z_]+')


def _skip_space_and_comments(sql: str, idx: int) -> int:
    """Advance past whitespace, line comments and block comments."""
    end = len(sql)
    while idx < end:
        if sql[idx].isspace():
            idx += 1
        elif sql.startswith('--', idx):
            nl = sql.find('\n', idx)
            idx = end if nl == -1 else nl + 1
        elif sql.startswith('/*', idx):
            close = sql.find('*/', idx + 2)
            idx = end if close == -1 else close + 2
        else:
            break
    return idx


def _has_code(sql: str) -> bool:
    return _skip_space_and_comments(sql, 0) < len(sql)


def split_statements(sql: str) -> list[str]:
    """Split SQL text on statement separators outside quotes and comments.

    Empty and comment-only statements are dropped. Dot commands are not
    recognized; callers classify them before splitting.
    """
    statements = []
    current = []
    idx = 0
    end = len(sql)
    while idx < end:
        ch = sql[idx]
        if ch in {"'", '"'}:
            close = idx + 1
            while close < end:
                if sql[close] == ch:
                    if close + 1 < end and sql[close + 1] == ch:
                        close += 2
                        continue
                    break
                close += 1
            current.append(sql[idx:close + 1])
            idx = close + 1
        elif sql.startswith('--', idx) or sql.startswith('/*', idx):
            nxt = _skip_space_and_comments(sql, idx)
            current.append(sql[idx:nxt])
            idx = nxt
        elif ch == ';':
            statement = ''.join(current).strip()
            if _has_code(statement):
                statements.append(statement)
            current = []
            idx += 1
        else:
            current.append(ch)
            idx += 1
    statement = ''.join(current).strip()
    if _has_code(statement):
        statements.append(statement)
    return statements


def leading_keyword(sql: str) -> str:
    """Return the upper-cased first keyword of a statement, or ''.

    Leading comments and opening parentheses are skipped.
    """
    idx = _skip_space_and_comments(sql, 0)
    while idx < len(sql) and sql[idx] == '(':
        idx = _skip_space_and_comments(sql, idx + 1)
    match = _WORD_REGEX.match(sql, idx)
    return match.group(0).upper() if match else ''


def is_dot_command(sql: str) -> bool:
    """Check if text starts with a shell dot command such as `.tables`."""
    idx = _skip_space_and_comments(sql, 0)
    return sql.startswith('.', idx)


def is_result_set_query(sql: str) -> bool:
    """Check if a query looks like a single statement producing a result set.

    Such queries can be wrapped in a bulk export statement; everything else
    (definitions, mutations, introspection, scripts) cannot.
    """
    if not sql or is_dot_command(sql):
        return False
    statements = split_statements(sql)
    if len(statements) != 1:
        return False
    return leading_keyword(statements[0]) in RESULT_SET_KEYWORDS


def strip_terminator(sql: str) -> str:
    """Remove trailing statement separators along with any comments after them."""
    text = sql.rstrip()
    while True:
        idx = text.rfind(';')
        if idx == -1 or _has_code(text[idx + 1:]):
            return text
        text = text[:idx].rstrip()


def quote_literal(value: str) -> str:
    """Quote a string as a SQL literal, doubling embedded quotes."""
    return "'" + str(value).replace("'", "''") + "'"


def quote_identifier(identifier: str) -> str:
    """Quote an identifier with double quotes, doubling embedded quotes."""
    if not identifier:
        raise ValueError('Identifier must not be empty')
    return '"' + identifier.replace('"', '""') + '"'


def sanitize_identifier(name: str) -> str:
    """Make a safe bare identifier by replacing non-alphanumeric characters.

    Identifiers starting with a digit get a leading underscore.
    """
    safe = re.sub(r'[^A-Za-z0-9_]', '_', name or '')
    if not safe:
        raise ValueError(f'Cannot derive an identifier from {name!r}')
    if safe[0].isdigit():
        safe = f'_{safe}'
    return safe


def wrap_export(query: str, result_path: str) -> str:
    """Wrap a result-set query so its rows are exported as one JSON array.

    The query keeps a line of its own so a trailing `--` comment cannot
    swallow the closing paren.
    """
    return (f'COPY (\n{strip_terminator(query)}\n) TO {quote_literal(result_path)} '
            f'(FORMAT JSON, ARRAY true);\n')


def wrap_nested(query: str, column: str = '__json') -> str:
    """Serialize each row to JSON so composite columns survive display output."""
    return f'SELECT to_json(_q) AS {column} FROM (\n{strip_terminator(query)}\n) AS _q'


def terminate_script(query: str) -> str:
    """Append a statement separator unless the query already ends with one."""
    text = query.rstrip()
    if text.endswith(';'):
        return f'{text}\n'
    return f'{text}\n;\n'


def find_references(sql: str) -> list[str]:
    """Return the distinct `{{name}}` references in order of appearance."""
    names: list[str] = []
    for match in REFERENCE_REGEX.finditer(sql):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def substitute_references(sql: str, readers: Mapping[str, str]) -> str:
    """Replace `{{name}}` references with the given reader expressions.

    Raises ValueError for a reference with no reader.
    """
    missing = [name for name in find_references(sql) if name not in readers]
    if missing:
        raise ValueError(f'No data supplied for references: {missing}')
    return REFERENCE_REGEX.sub(lambda m: readers[m.group(1)], sql)
