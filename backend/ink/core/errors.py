"""Error handling framework for Ink.

Provides custom exception types and decorators for standardized error handling
across the pipeline.
"""

import inspect
import logging
from functools import wraps

logger = logging.getLogger(__name__)


# Custom Exception Hierarchy
class InkError(Exception):
    """Base exception for all Ink-specific errors."""

    pass


class DriveError(InkError):
    """Drive hardware or IO failure.

    Raised when drive status cannot be read or a drive cannot be listed.
    """

    pass


class DiscIdentificationError(InkError):
    """Disc could not be mounted or fingerprinted."""

    pass


class MakeMKVError(InkError):
    """MakeMKV operation failed.

    Raised when MakeMKV CLI operations fail (scanning, drive mapping, extraction).
    """

    pass


class TranscodeError(InkError):
    """ffmpeg exited with a failure or produced no output."""

    pass


class CopyError(InkError):
    """Remote copy to the SMB target failed."""

    pass


class PlanError(InkError):
    """Plan or metadata file is malformed or inconsistent.

    Usually a partial write; the disc is skipped for the current cycle.
    """

    pass


class MarkerNotFoundError(InkError):
    """A marker payload was requested for a marker that is absent."""

    pass


class ConfigurationError(InkError):
    """Configuration validation failed.

    Raised when a setting (e.g. SMB_TARGET) cannot be interpreted.
    """

    pass


def _report(exc: BaseException, message: str, log_level: str, wrap_as: type[InkError] | None) -> None:
    """Log ``exc`` under ``message``; raise it as ``wrap_as`` when given."""
    getattr(logger, log_level)(f"{message}: {exc}", exc_info=(log_level == "error"))
    if wrap_as is not None:
        raise wrap_as(f"{message}: {exc}") from exc


def handle_errors(
    *,
    error_types: tuple[type[Exception], ...],
    default_message: str,
    log_level: str = "error",
    reraise: bool = True,
    wrap_as: type[InkError] | None = None,
):
    """Log (and optionally wrap) selected exceptions raised by a sync or async function.

    With ``reraise=False`` and no ``wrap_as`` the exception is logged and the
    function returns None.

    Example:
        @handle_errors(
            error_types=(OSError,),
            default_message="Could not list drives",
            wrap_as=DriveError,
        )
        def list_drives(): ...
    """

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except error_types as e:
                    _report(e, default_message, log_level, wrap_as)
                    if reraise:
                        raise
                    return None

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except error_types as e:
                _report(e, default_message, log_level, wrap_as)
                if reraise:
                    raise
                return None

        return sync_wrapper

    return decorator


class error_context:
    """Same as ``handle_errors`` for a block; never suppresses the exception.

    Example:
        with error_context(
            error_types=(ValueError,),
            default_message="Malformed plan file",
            wrap_as=PlanError,
        ):
            plan = BackupPlan.model_validate_json(content)
    """

    def __init__(
        self,
        *,
        error_types: tuple[type[Exception], ...],
        default_message: str,
        log_level: str = "error",
        wrap_as: type[InkError] | None = None,
    ):
        self.error_types = error_types
        self.default_message = default_message
        self.log_level = log_level
        self.wrap_as = wrap_as

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, self.error_types):
            _report(exc_val, self.default_message, self.log_level, self.wrap_as)
        return False
