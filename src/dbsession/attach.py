"""
Cross-database attachment for sessions.

Attaching binds an alias to an external storage file inside a session's
process. The set of attached aliases is otherwise invisible session state,
so these helpers return the alias they used for the caller to detach later.
"""
import logging
import pathlib
from typing import TYPE_CHECKING

from dbsession.protocol import execute
from dbsession.sql import quote_identifier, quote_literal, sanitize_identifier

if TYPE_CHECKING:
    from dbsession.session import Session

__all__ = ['derive_alias', 'attach', 'detach']

logger = logging.getLogger(__name__)

ATTACH_TIMEOUT = 10

# Catalog names the engine reserves for itself
RESERVED_ALIASES = {'memory', 'system', 'temp'}


def derive_alias(path: str) -> str:
    """Derive a safe alias from a storage file's base name.

    `/data/sales-2024.duckdb` becomes `sales_2024`.
    """
    return sanitize_identifier(pathlib.Path(path).stem)


def _check_alias(session: 'Session', alias: str) -> None:
    """Reject aliases that would shadow a catalog the session already has.

    The session's own storage is cataloged under its file's base name, so
    attaching `/other/sales.duckdb` to a session on `sales.duckdb` needs an
    explicit alias.
    """
    own = pathlib.Path(session.database).stem
    if alias.lower() == own.lower():
        raise ValueError(f'Alias {alias!r} collides with the catalog of session '
                         f'{session.name!r}; pass a different alias')
    if alias.lower() in RESERVED_ALIASES:
        raise ValueError(f'Alias {alias!r} is reserved by the engine; pass a different alias')


def attach(session: 'Session', path: str, alias: str | None = None,
           readonly: bool = True) -> str:
    """Attach a storage file to the session and return the alias used.

    Raises
        ValueError: The alias names the session's own catalog or a reserved one
    """
    alias = alias or derive_alias(path)
    _check_alias(session, alias)
    sql = f'ATTACH {quote_literal(path)} AS {quote_identifier(alias)}'
    if readonly:
        sql += ' (READ_ONLY)'
    execute(session, sql, timeout=ATTACH_TIMEOUT, transfer='pipe')
    logger.debug(f'Attached {path} as {alias} on session {session.name!r}')
    return alias


def detach(session: 'Session', alias: str) -> None:
    """Detach an alias from the session."""
    execute(session, f'DETACH {quote_identifier(alias)}', timeout=ATTACH_TIMEOUT,
            transfer='pipe')
    logger.debug(f'Detached {alias} from session {session.name!r}')
