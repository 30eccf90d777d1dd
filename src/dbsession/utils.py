"""Low-level text and file utilities with no internal dependencies.

These helpers are shared by the protocol, the strategies and the one-shot
executor, and import nothing from other dbsession modules, making them safe
to import without circular dependency concerns.
"""
import logging
import os
import pathlib
import re
import tempfile

logger = logging.getLogger(__name__)

# CSI sequences (colors, cursor movement), OSC sequences and lone escapes
_CONTROL_SEQUENCE_REGEX = re.compile(
    r'\x1b\[[0-?]*[ -/]*[@-~]'
    r'|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)'
    r'|\x1b[@-Z\\-_]'
)


def strip_control_sequences(text: str) -> str:
    """Remove terminal control sequences and carriage returns from text.

    Terminal line discipline turns `\\n` into `\\r\\n`, so carriage returns
    are dropped together with the color codes.
    """
    if not text:
        return ''
    return _CONTROL_SEQUENCE_REGEX.sub('', text).replace('\r', '')


def strip_prompt(text: str, prompt: str | None) -> str:
    """Strip a single leading prompt from text if present.
    """
    if prompt and text.startswith(prompt):
        return text[len(prompt):]
    return text


def make_temp_file(suffix: str = '', prefix: str = 'dbsession-',
                   directory: str | None = None, content: str | None = None) -> str:
    """Create a private temporary file and return its path.

    When content is given it is written to the file, otherwise the file is
    left empty. The caller owns the file and must remove it.
    """
    fd, path = tempfile.mkstemp(suffix=suffix, prefix=prefix, dir=directory)
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        if content is not None:
            f.write(content)
    return path


def make_temp_path(suffix: str = '', prefix: str = 'dbsession-',
                   directory: str | None = None) -> str:
    """Reserve a private temporary path that does not exist yet.

    Used for files the engine must create itself (export targets,
    storage files), which some engines refuse to overwrite when empty.
    """
    path = make_temp_file(suffix=suffix, prefix=prefix, directory=directory)
    pathlib.Path(path).unlink()
    return path


def read_text(path: str) -> str:
    """Read a file written by the engine, returning '' when it is missing.
    """
    p = pathlib.Path(path)
    if not p.exists():
        return ''
    return p.read_text(encoding='utf-8')


def remove_quietly(*paths: str | None) -> None:
    """Remove files, ignoring ones that are already gone.
    """
    for path in paths:
        if not path:
            continue
        try:
            pathlib.Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f'Could not remove {path}: {e}')
