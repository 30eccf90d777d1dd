"""
Session and engine exception classes.
"""
import re

ENGINE_ERROR_PATTERNS = [
    # Engine error classes
    r'Syntax Error',
    r'Catalog Error',
    r'Binder Error',
    r'Parser Error',
    # Generic prefixes at line start
    r'^Error\b',
    r'^[A-Z][A-Za-z]*(?: [A-Za-z]+)* Error:',
    r'^\w*Exception\b',
]

_ENGINE_ERROR_REGEX = re.compile('|'.join(ENGINE_ERROR_PATTERNS), re.MULTILINE)


def is_engine_error(text: str) -> bool:
    """Check if engine output carries a known error signature.

    Matching is case-sensitive, so lowercase words such as `error` inside
    result values do not trigger it. Callers are expected to strip terminal
    control sequences first.

    :param text: Output text captured from the engine process.
    :returns: True if the text matches one of the error signatures.
    """
    return bool(_ENGINE_ERROR_REGEX.search(text or ''))


class DatabaseError(Exception):
    """Base class for all dbsession errors.
    """


class SessionError(DatabaseError):
    """Misuse of the session registry.
    """


class SessionExistsError(SessionError):
    """A session with the requested name is already registered.
    """


class SessionNotFoundError(SessionError):
    """No session is registered under the requested name.
    """


class QueryTimeout(DatabaseError, TimeoutError):
    """No completion marker arrived within the timeout.

    The session is left in error status and should be killed.
    """


class ProcessDead(DatabaseError):
    """The engine process exited before the query was sent.
    """


class EngineError(DatabaseError):
    """The engine reported an error for the query.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ExecutionFailed(DatabaseError):
    """The one-shot engine process exited with a non-zero status.
    """

    def __init__(self, exit_code: int, message: str) -> None:
        super().__init__(f'Engine exited with status {exit_code}: {message}')
        self.exit_code = exit_code
        self.message = message


class UnknownExecutor(DatabaseError):
    """The executor could not be resolved to a known kind.
    """


class ResultConversionError(DatabaseError):
    """Raw engine output could not be decoded into records.
    """
