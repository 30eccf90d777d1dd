"""
Session execution protocol.

Drives one persistent engine process through query/response cycles. Each
query goes through a transfer strategy (see dbsession.strategy); this module
picks the strategy, keeps the session bookkeeping, and applies the single
local recovery the protocol allows: a query that fails under file-mediated
transfer is retried once under pipe-mediated transfer, since definitions,
mutations and introspection statements can never be wrapped in an export.
The reverse direction is never retried.
"""
import logging
import time
from typing import TYPE_CHECKING

from dbsession.exceptions import EngineError, ProcessDead
from dbsession.strategy import get_strategy, select_strategy

if TYPE_CHECKING:
    from dbsession.session import Session

__all__ = ['execute']

logger = logging.getLogger(__name__)


def execute(session: 'Session', query: str, timeout: float | None = None,
            transfer: str | None = None) -> str:
    """Execute a query on a live session and return its raw output.

    Args:
        session: Session handle from the registry
        query: Fully resolved query text
        timeout: Seconds to wait for completion once the query is sent,
            defaulting to the session's timeout option
        transfer: `auto`, `file` or `pipe`, defaulting to the session's
            transfer option

    Returns
        str: A JSON array of row objects, the engine's own output under pipe
            transfer, or '' for statements that return no rows

    Raises
        ProcessDead: The engine process is not running
        QueryTimeout: No completion marker arrived within the timeout
        EngineError: The engine reported an error
    """
    if not session.is_alive():
        raise ProcessDead(f'Engine process for session {session.name!r} is not running')

    timeout = session.options.timeout if timeout is None else timeout
    strategy = select_strategy(query, transfer or session.options.transfer)
    session.touch()
    logger.debug(f'Query {session.query_count} on session {session.name!r} via {strategy.name} transfer')

    start = time.time()
    try:
        if strategy.name != 'file':
            return strategy.run(session, query, timeout)
        try:
            return strategy.run(session, query, timeout)
        except EngineError as err:
            logger.warning(f'Export failed on session {session.name!r}, retrying via pipe: '
                           f'{err.message.splitlines()[0] if err.message else err}')
            return get_strategy('pipe').run(session, query, timeout)
    finally:
        logger.debug(f'Query time on session {session.name!r}: {time.time() - start:.4f}s')
