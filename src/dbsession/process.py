"""
Spawned engine process with an output-accumulating reader.

The engine reads commands from a pipe on its standard input. Its standard
output and standard error go either to a pseudo-terminal, so the engine's
stdio stays line buffered and output arrives as soon as it is printed, or
to a plain pipe where no pseudo-terminal is available. A daemon thread reads
the output side and hands every decoded chunk to a callback.
"""
import codecs
import logging
import os
import subprocess
import threading
from collections.abc import Callable
from typing import Self

from dbsession.exceptions import ProcessDead

logger = logging.getLogger(__name__)

READ_SIZE = 65536


class EngineProcess:
    """Long-lived engine process driven over standard input.

    The on_output callback runs on the reader thread.
    """

    def __init__(self, command: list[str], on_output: Callable[[str], None],
                 use_pty: bool = True, cwd: str | None = None) -> None:
        self.command = list(command)
        self.on_output = on_output
        self.use_pty = use_pty and os.name == 'posix'
        self.cwd = cwd
        self.popen: subprocess.Popen | None = None
        self._reader: threading.Thread | None = None
        self._output_fd: int | None = None

    def __enter__(self) -> Self:
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.terminate()

    @property
    def pid(self) -> int | None:
        return self.popen.pid if self.popen else None

    @property
    def returncode(self) -> int | None:
        return self.popen.poll() if self.popen else None

    def start(self) -> Self:
        """Spawn the process and start the reader thread.

        Raises FileNotFoundError if the engine command does not exist.
        """
        if self.use_pty:
            import pty
            master_fd, slave_fd = pty.openpty()
            try:
                self.popen = subprocess.Popen(
                    self.command, stdin=subprocess.PIPE, stdout=slave_fd,
                    stderr=slave_fd, cwd=self.cwd, close_fds=True,
                    start_new_session=True)
            except Exception:
                os.close(master_fd)
                raise
            finally:
                os.close(slave_fd)
            self._output_fd = master_fd
        else:
            self.popen = subprocess.Popen(
                self.command, stdin=subprocess.PIPE, stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT, cwd=self.cwd)
            self._output_fd = self.popen.stdout.fileno()

        self._reader = threading.Thread(target=self._read_output,
                                        name=f'engine-reader-{self.popen.pid}',
                                        daemon=True)
        self._reader.start()
        logger.debug(f'Started engine process {self.popen.pid}: {self.command}')
        return self

    def _read_output(self) -> None:
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        fd = self._output_fd
        try:
            while True:
                try:
                    chunk = os.read(fd, READ_SIZE)
                except OSError:
                    # EIO once the last pseudo-terminal writer has gone
                    break
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    self.on_output(text)
            tail = decoder.decode(b'', final=True)
            if tail:
                self.on_output(tail)
        finally:
            if self.use_pty:
                try:
                    os.close(fd)
                except OSError:
                    pass
            logger.debug(f'Output reader for process {self.pid} finished')

    def is_alive(self) -> bool:
        return self.popen is not None and self.popen.poll() is None

    def send(self, line: str) -> None:
        """Write one command line to the process's standard input.
        """
        if not self.is_alive():
            raise ProcessDead(f'Engine process {self.pid} is not running')
        try:
            self.popen.stdin.write(f'{line}\n'.encode())
            self.popen.stdin.flush()
        except (BrokenPipeError, ValueError) as e:
            raise ProcessDead(f'Engine process {self.pid} closed its input: {e}') from e

    def terminate(self, timeout: float = 2) -> None:
        """Stop the process, escalating to kill, and wait for the reader.

        Safe to call on a process that already exited.
        """
        if self.popen is None:
            return
        if self.popen.stdin and not self.popen.stdin.closed:
            try:
                self.popen.stdin.close()
            except OSError as e:
                logger.debug(f'Could not close stdin of process {self.pid}: {e}')
        if self.popen.poll() is None:
            self.popen.terminate()
            try:
                self.popen.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.debug(f'Process {self.pid} ignored terminate, killing')
                self.popen.kill()
                self.popen.wait(timeout=timeout)
        if self._reader is not None:
            self._reader.join(timeout=timeout)
        if not self.use_pty and self.popen.stdout and not self.popen.stdout.closed:
            self.popen.stdout.close()
        logger.debug(f'Engine process {self.pid} stopped with status {self.popen.returncode}')
