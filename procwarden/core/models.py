"""
Data model for process runs.

RunRequest describes one invocation, ProcessResult is what a natural exit
produces, and ChildProcess identifies a descendant during a tree sweep.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunOutcome(Enum):
    """How the wait for a running process concluded."""

    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class RunRequest(BaseModel):
    """A single process invocation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    working_directory: Path = Field(..., description="Directory the process starts in")
    process: str = Field(..., description="Executable name or path")
    arguments: str = Field("", description="Argument string, split with shell-word rules")
    timeout: timedelta = Field(..., description="Deadline measured from spawn")
    cancellation: Optional[asyncio.Event] = Field(
        None, exclude=True, description="Caller-supplied cancellation signal"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError(f"Invalid timeout: {v}. Must be greater than 0")
        return v

    @field_validator("process")
    @classmethod
    def validate_process(cls, v: str) -> str:
        if not v:
            raise ValueError("process must be a non-empty string")
        return v


class ProcessResult(BaseModel):
    """Outcome of a process that exited on its own before the deadline."""

    model_config = ConfigDict(frozen=True)

    working_directory: str = Field(..., description="Directory the process ran in")
    process: str = Field(..., description="Executable name or path")
    arguments: str = Field(..., description="Argument string as given")
    exit_code: int = Field(..., description="Process exit code")
    standard_output: str = Field("", description="Captured standard output")
    standard_error: str = Field("", description="Captured standard error")
    duration: timedelta = Field(..., description="Time from spawn to confirmed exit")

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ChildProcess:
    """A live descendant seen during one tree sweep."""

    pid: int
    start_time: float
