"""
Pipe-mediated transfer strategy.

The query runs verbatim and its output is taken from the session's output
buffer. Works for every statement class; statements that return no rows
legitimately produce empty output.
"""
import logging
from typing import TYPE_CHECKING

from dbsession.sql import terminate_script
from dbsession.strategy.base import TransferStrategy, register_strategy
from dbsession.utils import make_temp_file, remove_quietly

if TYPE_CHECKING:
    from dbsession.session import Session

logger = logging.getLogger(__name__)


@register_strategy('pipe')
class PipeTransferStrategy(TransferStrategy):
    """Read the query output from the accumulated process output.
    """

    @property
    def name(self) -> str:
        return 'pipe'

    def run(self, session: 'Session', query: str, timeout: float) -> str:
        script_path = None
        try:
            script_path = make_temp_file(suffix='.sql', directory=session.workdir,
                                         content=terminate_script(query))
            output = self._exchange(session, script_path, timeout)
            self._raise_for_errors(output)
            return output.rstrip('\n')
        finally:
            remove_quietly(script_path)
