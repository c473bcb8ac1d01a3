"""
procwarden - run external processes under a deadline without leaking children.

Core Components:
- ProcessRunner: starts a process, captures stdout/stderr line by line and
  races its exit against a deadline and an optional cancellation event
- ProcessTreeReaper: kills a timed-out process's descendants, leaves first,
  skipping processes whose pid was recycled
- OutputAggregator: per-stream output buffers with end-of-stream tracking

Architecture:
- Async-First Design: one asyncio task per run, no polling
- Pluggable process directory: enumeration and killing go through a narrow
  interface, psutil by default
"""

from procwarden.core.config import Config
from procwarden.core.exceptions import (
    ProcessCancelledError,
    ProcessLaunchError,
    ProcessTimeoutError,
    ProcwardenError,
)
from procwarden.core.models import ProcessResult, RunRequest
from procwarden.core.reaper import ProcessTreeReaper
from procwarden.core.runner import BaseProcessRunner, ProcessRunner, run_process
from procwarden.utils.arguments import format_arguments

__version__ = "0.1.0"
__description__ = (
    "Asynchronous process runner with deadline enforcement and process tree reaping"
)

__all__ = [
    "BaseProcessRunner",
    "Config",
    "ProcessCancelledError",
    "ProcessLaunchError",
    "ProcessResult",
    "ProcessRunner",
    "ProcessTimeoutError",
    "ProcessTreeReaper",
    "ProcwardenError",
    "RunRequest",
    "format_arguments",
    "run_process",
]
