"""
One-shot execution: spawn the engine once per query and capture its output.

No protocol state is kept between calls. Used whenever no session is in
scope.
"""
import logging
import subprocess
import time

from dbsession.exceptions import ExecutionFailed, QueryTimeout
from dbsession.options import ExecutionParams, SessionOptions
from dbsession.utils import strip_control_sequences

__all__ = ['build_command', 'run_oneshot']

logger = logging.getLogger(__name__)


def build_command(query: str, params: ExecutionParams, options: SessionOptions) -> list[str]:
    """Build the one-time engine command line.

    The storage path comes from the params, then the options; with neither
    the engine runs against transient in-memory storage.
    """
    command = options.engine_command
    command.append(f'-{params.output_mode}')
    if params.readonly or options.readonly:
        command.append('-readonly')
    database = params.database or options.database
    if database:
        command.append(database)
    command.extend(['-c', query])
    return command


def run_oneshot(query: str, params: ExecutionParams | None = None,
                options: SessionOptions | None = None) -> str:
    """Run a query in a fresh engine process and return its standard output.

    Raises
        ExecutionFailed: The engine exited with a non-zero status
        QueryTimeout: The engine did not exit within the timeout
    """
    params = params or ExecutionParams()
    options = options or SessionOptions()
    command = build_command(query, params, options)
    timeout = options.timeout if params.timeout is None else params.timeout

    start = time.time()
    logger.debug(f'One-shot SQL:\n{query}')
    try:
        completed = subprocess.run(command, capture_output=True, text=True,
                                   timeout=timeout or None)
    except subprocess.TimeoutExpired as e:
        logger.error(f'One-shot query timed out after {timeout}s')
        raise QueryTimeout(f'Engine did not finish within {timeout}s') from e
    finally:
        logger.debug(f'One-shot query time: {time.time() - start:.4f}s')

    if completed.returncode != 0:
        message = strip_control_sequences(completed.stderr or completed.stdout).strip()
        logger.error(f'Error with one-shot query (status {completed.returncode}):\n{message}')
        raise ExecutionFailed(completed.returncode, message)

    return strip_control_sequences(completed.stdout).strip()
