"""Module defining custom exceptions for the Boxy engine."""

from __future__ import annotations

from typing import Any, Self

# Exit Codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


class BoxyError(Exception):
    """Base exception class with context propagation.

    All exceptions raised by Boxy inherit from this class.
    Context is a dictionary that accumulates relevant information
    as the exception propagates up the call stack.

    Example:
        raise BoxyError("An error occurred", context={"manager": "npm"})

        # Or with context propagation
        try:
            ...
        except BoxyError as e:
            raise e.with_context(job_id=job_id)
    """
    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def with_context(self, **new_context: Any) -> Self:
        """Merge additional context into the exception.

        Args:
            **new_context: Additional context to add to the exception.

        Returns:
            The same exception instance with merged context.
        """
        self.context.update(new_context)
        return self

    def __str__(self) -> str:
        """String representation of the exception including context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class TransientError(BoxyError):
    """Errors caused by temporary conditions.

    Command failures, timeouts and network issues land here. Retrying
    may succeed.
    """
    pass


class UserError(BoxyError):
    """Errors caused by user actions or inputs.

    These should not be retried without correcting the input.
    """
    pass


class SystemError(BoxyError):
    """Errors due to the host environment.

    Missing tools, unreadable output, cache and file system problems.
    """
    pass


def _merge(context: dict[str, Any] | None, **values: Any) -> dict[str, Any]:
    ctx = dict(context or {})
    ctx.update({k: v for k, v in values.items() if v is not None})
    return ctx


## User errors ##

class ManagerNotFoundError(UserError):
    """No adapter is registered under the requested name."""
    def __init__(
        self,
        message: str | None = None,
        name: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"Package manager '{name or 'unknown'}' not found"
        super().__init__(message, context=_merge(context, manager=name))


class PackageNotFoundError(UserError):
    """Requested package was not found by the manager.

    This is a UserError - do not retry without changing the package name.
    """
    def __init__(
        self,
        message: str | None = None,
        package: str | None = None,
        manager: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"Package '{manager + '/' if manager else ''}{package or 'unknown'}' not found"
        super().__init__(message, context=_merge(context, package=package, manager=manager))


class UnsupportedOperationError(UserError):
    """The manager does not implement the requested operation."""
    def __init__(
        self,
        message: str | None = None,
        manager: str | None = None,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"Operation '{operation or 'unknown'}' is not supported by {manager or 'this manager'}"
        super().__init__(message, context=_merge(context, manager=manager, operation=operation))


class DependencyConflictError(UserError):
    """The manager refused the change because of conflicting dependencies."""
    pass


class InvalidScopeError(UserError):
    """The requested scope or directory cannot be used."""
    pass


class JobNotFoundError(UserError):
    """No job is tracked under the given id."""
    def __init__(self, job_id: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"Job '{job_id}' not found", context=_merge(context, job_id=job_id))


class JobInUseError(UserError):
    """The job is still running and cannot be removed."""
    def __init__(self, job_id: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            f"Job '{job_id}' is still running", context=_merge(context, job_id=job_id)
        )


## Transient errors ##

class CommandFailedError(TransientError):
    """A manager command returned a non-zero exit code."""
    def __init__(
        self,
        message: str | None = None,
        manager: str | None = None,
        command: str | None = None,
        exit_code: int | None = None,
        error: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.exit_code = exit_code
        if message is None:
            message = f"Command failed with exit code {exit_code if exit_code is not None else 'unknown'}"
        super().__init__(
            message,
            context=_merge(
                context, manager=manager, command=command, exit_code=exit_code, error=error or None
            ),
        )


class CommandTimeoutError(TransientError):
    """A manager command exceeded its time box."""
    def __init__(
        self,
        message: str | None = None,
        command: str | None = None,
        timeout: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"Command timed out after {timeout if timeout is not None else 'unknown'}s"
        super().__init__(message, context=_merge(context, command=command, timeout=timeout))


class CommandInterruptedError(TransientError):
    """A manager command was killed by a signal."""
    pass


class NetworkError(TransientError):
    """The manager could not reach its registry."""
    pass


## System errors ##

class ManagerUnavailableError(SystemError):
    """The manager's executable is missing or unusable."""
    def __init__(
        self,
        message: str | None = None,
        name: str | None = None,
        reason: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"Package manager '{name or 'unknown'}' is unavailable"
        super().__init__(message, context=_merge(context, manager=name, reason=reason))


class ParseError(SystemError):
    """Manager output could not be parsed."""
    pass


class SerializationError(SystemError):
    """A value could not be encoded for storage."""
    pass


class DeserializationError(SerializationError):
    """A stored payload could not be decoded."""
    pass


class CacheError(SystemError):
    """Errors related to cache access.

    Typically file system permission issues, disk space exhaustion or a
    read-only file system.
    """
    def __init__(
        self,
        message: str | None = None,
        key: str | None = None,
        path: str | None = None,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"Cache {operation + ' ' if operation else ''}operation failed"
        super().__init__(
            message, context=_merge(context, key=key, path=path, operation=operation)
        )


class FileIOError(SystemError):
    """File system access failed outside the cache."""
    pass


# CLI Error Message Templates

ERROR_TEMPLATES = {
    PackageNotFoundError: (
        "❌ Package Not Found: {package}\n"
        "   Suggestion: Try 'boxy search {package}' to find similar packages"
    ),
    ManagerNotFoundError: (
        "❌ Unknown package manager: {manager}"
    ),
    ManagerUnavailableError: (
        "⚠️ Package manager '{manager}' is not available on this system"
    ),
    CommandTimeoutError: (
        "⚠️ Command timed out after {timeout}s\n"
        "   The operation took too long - this may be due to network issues"
    ),
    CommandFailedError: (
        "⚠️ {manager} command failed: {command}\n"
        "   Exit Code: {exit_code}"
    ),
    CacheError: (
        "⚠️ Cache error: {message}\n"
        "   Fix: Check file permissions or clear the cache with 'boxy cache clean'"
    ),
    TransientError: (
        "⚠️ Temporary failure: {message}\n"
        "   This may resolve itself - try again in a moment"
    ),
    UserError: (
        "❌ {message}"
    ),
    SystemError: (
        "⚠️ System error: {message}\n"
        "   Please check your system configuration and try again"
    ),
    BoxyError: (
        "❌ {message}"
    ),
}


def format_error_message(error: BoxyError) -> str:
    """Format an error message for CLI display based on the error type.

    The closest template along the class hierarchy wins.

    Args:
        error: The BoxyError instance to format.

    Returns:
        A formatted string message for CLI display.
    """
    template = ERROR_TEMPLATES[BoxyError]
    for klass in type(error).__mro__:
        if klass in ERROR_TEMPLATES:
            template = ERROR_TEMPLATES[klass]
            break
    try:
        return template.format(**{**error.context, "message": error.message})
    except KeyError:
        return f"❌ {error.message}"


def suggest_search(package_name: str) -> str:
    """Suggest a search command for a missing package.

    Args:
        package_name: The name of the missing package.

    Returns:
        Formatted search suggestion string.
    """
    return (
        f"\n💡 Suggestions:\n"
        f"   • Try 'boxy search {package_name}'\n"
        "   • Check for spelling and try again\n"
        "   • Pass --manager to look in one package manager only\n"
    )
