"""
File-mediated transfer strategy.

The query is wrapped in a bulk export statement that writes its rows to a
private result file as a single JSON array. This is the fast path for large
result sets, but only applies to statements that yield rows: definitions,
mutations and introspection statements cannot be wrapped and fail with a
parser error instead.
"""
import logging
from typing import TYPE_CHECKING

from dbsession.sql import wrap_export
from dbsession.strategy.base import TransferStrategy, register_strategy
from dbsession.utils import make_temp_file, make_temp_path, read_text
from dbsession.utils import remove_quietly

if TYPE_CHECKING:
    from dbsession.session import Session

logger = logging.getLogger(__name__)


@register_strategy('file')
class FileTransferStrategy(TransferStrategy):
    """Export the result set to a private JSON file.
    """

    @property
    def name(self) -> str:
        return 'file'

    def run(self, session: 'Session', query: str, timeout: float) -> str:
        script_path = result_path = None
        try:
            result_path = make_temp_path(suffix='.json', directory=session.workdir)
            script_path = make_temp_file(suffix='.sql', directory=session.workdir,
                                         content=wrap_export(query, result_path))
            output = self._exchange(session, script_path, timeout)
            self._raise_for_errors(output)
            result = read_text(result_path)
            logger.debug(f'Read {len(result)} bytes from {result_path}')
            return result if result.strip() else ''
        finally:
            remove_quietly(script_path, result_path)
