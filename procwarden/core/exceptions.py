"""
Exception classes for procwarden.

This module defines the failure outcomes of a process run so callers can
tell a launch problem, a deadline expiry and a caller cancellation apart.
Every error carries the fields that identify the run it belongs to, so it
can be rendered as JSON by the CLI without knowing the concrete type.
"""

from typing import Any, Dict, Optional


class ProcwardenError(Exception):
    """Base exception class for all procwarden errors.

    ``error_code`` is fixed per subclass; keyword arguments become the
    ``context`` reported next to the message.
    """

    error_code: Optional[str] = None

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Flat, JSON-serialisable view: type, code, message and context."""
        return {
            "error": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            **self.context,
        }


class ConfigError(ProcwardenError):
    """Exception raised for configuration-related errors."""

    error_code = "config"


class ProcessLaunchError(ProcwardenError):
    """The process could not be started (bad path, permissions, bad cwd)."""

    error_code = "launch_failed"

    def __init__(
        self, message: str, working_directory: str, process: str, arguments: str
    ) -> None:
        super().__init__(
            message,
            working_directory=working_directory,
            process=process,
            arguments=arguments,
        )
        self.working_directory = working_directory
        self.process = process
        self.arguments = arguments


class ProcessRunError(ProcwardenError):
    """
    A started process did not produce a result.

    Carries whatever standard output and standard error had been captured
    when the run was abandoned.
    """

    def __init__(
        self,
        message: str,
        working_directory: str,
        process: str,
        arguments: str,
        standard_output: str = "",
        standard_error: str = "",
    ) -> None:
        super().__init__(
            message,
            working_directory=working_directory,
            process=process,
            arguments=arguments,
            standard_output=standard_output,
            standard_error=standard_error,
        )
        self.working_directory = working_directory
        self.process = process
        self.arguments = arguments
        self.standard_output = standard_output
        self.standard_error = standard_error


class ProcessTimeoutError(ProcessRunError):
    """The deadline elapsed before the process exited."""

    error_code = "timeout"


class ProcessCancelledError(ProcessRunError):
    """The caller's cancellation signal fired before the process exited."""

    error_code = "cancelled"
