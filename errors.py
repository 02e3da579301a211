# errors.py — failure kinds of the update/restart cycle
import traceback


class SelfUpdateError(Exception):
    """Base class for every failure the update cycle knows how to contain."""
    kind = "self_update"


class ConfigurationError(SelfUpdateError):
    kind = "configuration"


class TransportError(SelfUpdateError):
    """A single failed HTTP attempt (network error or non-2xx status)."""
    kind = "transport"


class RemoteCallError(SelfUpdateError):
    """The remote call exhausted its retry budget."""
    kind = "transport"


class ResponseShapeError(SelfUpdateError):
    kind = "response_shape"


class IntegrityError(SelfUpdateError):
    kind = "integrity"

    def __init__(self, message: str, missing=None):
        super().__init__(message)
        self.missing = list(missing or [])


class ReplaceError(SelfUpdateError):
    """Filesystem failure while writing, backing up or committing."""
    kind = "filesystem"


class RestartExhaustedError(SelfUpdateError):
    kind = "restart_exhausted"


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, SelfUpdateError):
        return exc.kind
    if isinstance(exc, OSError):
        return "filesystem"
    return type(exc).__name__


def describe_error(exc: BaseException) -> str:
    """
    Render an exception as "Name: message" followed by its full traceback,
    including any chained causes, so a single log line carries the whole chain.
    """
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"{type(exc).__name__}: {exc}\n{trace.rstrip() or 'No stack trace'}"
