"""Core components of procwarden."""

from procwarden.core.exceptions import (
    ConfigError,
    ProcessCancelledError,
    ProcessLaunchError,
    ProcessRunError,
    ProcessTimeoutError,
    ProcwardenError,
)
from procwarden.core.models import ChildProcess, ProcessResult, RunOutcome, RunRequest
from procwarden.core.output import OutputAggregator, StreamBuffer
from procwarden.core.reaper import (
    ProcessDirectory,
    ProcessTreeReaper,
    PsutilProcessDirectory,
    ReapReport,
)
from procwarden.core.runner import BaseProcessRunner, ProcessRunner, run_process

__all__ = [
    "BaseProcessRunner",
    "ChildProcess",
    "ConfigError",
    "OutputAggregator",
    "ProcessCancelledError",
    "ProcessDirectory",
    "ProcessLaunchError",
    "ProcessResult",
    "ProcessRunError",
    "ProcessRunner",
    "ProcessTimeoutError",
    "ProcessTreeReaper",
    "ProcwardenError",
    "PsutilProcessDirectory",
    "ReapReport",
    "RunOutcome",
    "RunRequest",
    "StreamBuffer",
    "run_process",
]
