"""
Base strategy interface for output transfer.

Defines the abstract base class that all transfer strategies must inherit from.
A transfer strategy decides how a query's output travels from the engine process
back to the caller. Every strategy talks to the process the same way: it writes
a script file, asks the process to read it, asks it to print a completion marker,
and waits for the marker to show up in the session's output buffer.

The process exposes no message framing, so the marker is the only completion
signal and the buffer text the only error channel.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from dbsession.exceptions import EngineError, ProcessDead, QueryTimeout
from dbsession.exceptions import is_engine_error
from dbsession.sql import quote_literal, sanitize_identifier
from dbsession.utils import strip_control_sequences, strip_prompt

if TYPE_CHECKING:
    from dbsession.session import Session

logger = logging.getLogger(__name__)

# Registry of transfer name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['TransferStrategy']] = {}


def register_strategy(name: str):
    """Decorator to register a strategy class for a transfer name.

    Usage:
        @register_strategy('file')
        class FileTransferStrategy(TransferStrategy):
            ...
    """
    def decorator(cls: type['TransferStrategy']) -> type['TransferStrategy']:
        _STRATEGY_REGISTRY[name] = cls
        return cls
    return decorator


def make_marker(session_name: str) -> str:
    """Build a completion marker from the session identity and current time.

    The marker holds only letters, digits and underscores, so it needs no
    escaping on the command line.
    """
    return f'__DBSESSION_DONE_{sanitize_identifier(session_name)}_{time.time_ns()}__'


def clean_output(text: str, prompt: str | None = None) -> str:
    """Strip control sequences and a single leading prompt from buffer text.
    """
    return strip_prompt(strip_control_sequences(text), prompt)


class TransferStrategy(ABC):
    """Base class for output transfer strategies.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the transfer identifier (e.g., 'file', 'pipe')."""

    @abstractmethod
    def run(self, session: 'Session', query: str, timeout: float) -> str:
        """Execute a query on the session and return its raw output.

        Args:
            session: Live session owning the engine process
            query: Fully resolved query text
            timeout: Seconds to wait for the completion marker once sent

        Returns
            str: Serialized result set, or '' for statements without rows

        Raises
            ProcessDead: The process exited before the commands were sent
            QueryTimeout: No completion marker within the timeout
            EngineError: The engine reported an error
        """

    def _exchange(self, session: 'Session', script_path: str, timeout: float) -> str:
        """Run a script file on the session and return the output before the marker.

        Clears the output buffer, sends the read-script and print-marker
        commands, then polls the buffer until the marker appears. The timeout
        starts when the commands are sent. A timeout leaves the session in
        error status.
        """
        if not session.is_alive():
            raise ProcessDead(f'Engine process for session {session.name!r} is not running')

        marker = make_marker(session.name)
        poll_interval = session.options.poll_interval

        session.clear_buffer()
        session.send(f'.read {quote_literal(script_path)}')
        session.send(f'.print {marker}')
        start = time.monotonic()
        deadline = start + timeout
        logger.debug(f'Sent script {script_path} to session {session.name!r}, waiting for {marker}')

        while True:
            text = session.buffer_text()
            idx = text.find(marker)
            if idx != -1:
                logger.debug(f'Marker found on session {session.name!r} after {time.monotonic() - start:.4f}s')
                return clean_output(text[:idx], session.options.prompt)
            if time.monotonic() >= deadline:
                session.mark_error()
                logger.error(f'Query on session {session.name!r} timed out after {timeout}s')
                raise QueryTimeout(f'No completion marker from session {session.name!r} within {timeout}s')
            if not session.is_alive():
                # give the reader a last chance to drain what the process wrote
                time.sleep(poll_interval)
                if marker in session.buffer_text():
                    continue
                session.mark_error()
                logger.error(f'Engine process for session {session.name!r} exited while waiting')
                raise ProcessDead(f'Engine process for session {session.name!r} exited: '
                                  f'{clean_output(session.buffer_text()).strip()}')
            time.sleep(poll_interval)

    def _raise_for_errors(self, output: str) -> None:
        """Raise EngineError if cleaned output carries an error signature.
        """
        if is_engine_error(output):
            raise EngineError(output.strip())
