"""
Asynchronous process runner.

ProcessRunner starts one process, captures its standard output and
standard error line by line, and waits for the first of three events:
the process exits, the deadline elapses, or the caller's cancellation
signal fires.

- Natural exit: both streams are drained to end of stream and the exit is
  confirmed before the exit code and output are read.
- Deadline: every descendant started by the process is killed, leaves
  first, including any it orphaned into its process group. Then
  ProcessTimeoutError is raised with the output captured so far.
- Cancellation: ProcessCancelledError is raised. Descendants are not reaped
  on this path.

Whatever the outcome, the root process is killed if it is still alive.
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from procwarden.core.config import RunnerConfig, get_config
from procwarden.core.exceptions import (
    ProcessCancelledError,
    ProcessLaunchError,
    ProcessTimeoutError,
)
from procwarden.core.models import ProcessResult, RunOutcome, RunRequest
from procwarden.core.observability import get_logger, get_metrics_collector
from procwarden.core.output import OutputAggregator, pump_lines
from procwarden.core.reaper import (
    ProcessDirectory,
    ProcessTreeReaper,
    PsutilProcessDirectory,
)
from procwarden.core.redact import redact_text
from procwarden.utils.arguments import split_arguments

Timeout = Union[timedelta, float, int]

# Minimum time allowed to drain output once an exit has been observed
EXIT_CONFIRM_GRACE = 0.25


class BaseProcessRunner(ABC):
    """
    Abstract base class for process runners.

    Callers depend on this interface so that a runner can be swapped for a
    fake in their own tests.
    """

    @abstractmethod
    async def run(
        self,
        working_directory: Union[str, Path],
        process: str,
        arguments: str = "",
        timeout: Optional[Timeout] = None,
        cancellation: Optional[asyncio.Event] = None,
    ) -> ProcessResult:
        """
        Run a process and wait for it to exit.

        Args:
            working_directory: Directory the process starts in
            process: Executable name or path
            arguments: Argument string, split with shell-word rules
            timeout: Deadline measured from spawn (seconds or timedelta)
            cancellation: Optional event; setting it abandons the run

        Returns:
            ProcessResult of the natural exit

        Raises:
            ProcessLaunchError: If the process could not be started
            ProcessTimeoutError: If the deadline elapsed first
            ProcessCancelledError: If the cancellation event was set first
        """
        pass


class ProcessRunner(BaseProcessRunner):
    """Runs processes with asyncio, psutil-backed tree reaping on timeout."""

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        directory: Optional[ProcessDirectory] = None,
    ) -> None:
        self.config = config or get_config().runner
        self.directory = directory or PsutilProcessDirectory()
        self.reaper = ProcessTreeReaper(
            self.directory, max_depth=self.config.max_reap_depth
        )
        self.logger = get_logger(__name__)

    async def run(
        self,
        working_directory: Union[str, Path],
        process: str,
        arguments: str = "",
        timeout: Optional[Timeout] = None,
        cancellation: Optional[asyncio.Event] = None,
    ) -> ProcessResult:
        if timeout is None:
            timeout = self.config.default_timeout
        request = RunRequest(
            working_directory=working_directory,
            process=str(process),
            arguments=arguments,
            timeout=timeout,
            cancellation=cancellation,
        )
        return await self.execute(request)

    async def execute(self, request: RunRequest) -> ProcessResult:
        """Run the process described by ``request``."""
        run_id = uuid.uuid4().hex[:12]
        metrics = get_metrics_collector()
        output = OutputAggregator()

        wall_start = time.time()
        started = time.monotonic()
        proc = await self._spawn(request, run_id)

        pid = proc.pid
        start_time = self._start_time(pid, wall_start)
        self.logger.debug(
            "Process started",
            run_id=run_id,
            metadata={"pid": pid, **self._describe(request)},
        )

        pumps = [
            asyncio.ensure_future(
                pump_lines(
                    proc.stdout,
                    output.stdout,
                    self.config.encoding,
                    self.config.decode_errors,
                )
            ),
            asyncio.ensure_future(
                pump_lines(
                    proc.stderr,
                    output.stderr,
                    self.config.encoding,
                    self.config.decode_errors,
                )
            ),
        ]
        deadline = started + request.timeout.total_seconds()
        outcome = "failed"

        try:
            conclusion = await self._wait_for_completion(
                proc, request, pumps, deadline
            )
            if conclusion is RunOutcome.EXITED:
                conclusion = await self._confirm_exit(proc, pumps, deadline)

            if conclusion is RunOutcome.EXITED:
                duration = time.monotonic() - started
                result = ProcessResult(
                    working_directory=str(request.working_directory),
                    process=request.process,
                    arguments=request.arguments,
                    exit_code=proc.returncode,
                    standard_output=output.stdout.read(),
                    standard_error=output.stderr.read(),
                    duration=timedelta(seconds=duration),
                )
                outcome = "exited"
                self.logger.info(
                    "Process exited",
                    run_id=run_id,
                    duration_ms=duration * 1000,
                    metadata={"pid": pid, "exit_code": proc.returncode},
                )
                return result

            for pump in pumps:
                pump.cancel()

            cancellation = request.cancellation
            if conclusion is RunOutcome.CANCELLED or (
                cancellation is not None and cancellation.is_set()
            ):
                outcome = "cancelled"
                self.logger.info(
                    "Process run cancelled",
                    run_id=run_id,
                    metadata={"pid": pid},
                )
                raise ProcessCancelledError(
                    f"Process {request.process} ( {request.arguments} ) was cancelled",
                    working_directory=str(request.working_directory),
                    process=request.process,
                    arguments=request.arguments,
                    standard_output=output.stdout.read(),
                    standard_error=output.stderr.read(),
                )

            outcome = "timed_out"
            self.logger.warning(
                "Process timed out; reaping process tree",
                run_id=run_id,
                metadata={
                    "pid": pid,
                    "timeout_s": request.timeout.total_seconds(),
                },
            )
            loop = asyncio.get_running_loop()
            # The root leads its own session, so descendants it orphaned are still
            # found through its process group
            await loop.run_in_executor(None, self.reaper.reap, pid, start_time, pid)

            raise ProcessTimeoutError(
                f"Timed out waiting for process {request.process} ( {request.arguments} ) to exit",
                working_directory=str(request.working_directory),
                process=request.process,
                arguments=request.arguments,
                standard_output=output.stdout.read(),
                standard_error=output.stderr.read(),
            )
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        finally:
            await self._finalize(proc, pumps, run_id)
            metrics.record_run(outcome, time.monotonic() - started)

    async def _spawn(
        self, request: RunRequest, run_id: str
    ) -> asyncio.subprocess.Process:
        """Start the process; any failure to do so is a ProcessLaunchError."""
        try:
            argv = [request.process, *split_arguments(request.arguments)]
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(request.working_directory),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.config.stream_limit,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            get_metrics_collector().record_run("launch_failed", 0.0)
            self.logger.error(
                "Process failed to start",
                error=e,
                run_id=run_id,
                metadata=self._describe(request),
            )
            raise ProcessLaunchError(
                f"Failed to start process {request.process}: {e}",
                working_directory=str(request.working_directory),
                process=request.process,
                arguments=request.arguments,
            ) from e

    def _start_time(self, pid: int, fallback: float) -> float:
        """Start time of the root as the process directory reports it."""
        try:
            return self.directory.start_time_of(pid)
        except Exception:
            # Already gone; the wall clock taken before spawning is a lower bound
            return fallback

    async def _wait_for_completion(
        self,
        proc: asyncio.subprocess.Process,
        request: RunRequest,
        pumps: List["asyncio.Future[None]"],
        deadline: float,
    ) -> RunOutcome:
        """Race process exit against the deadline and the cancellation event.

        A pump that fails stops draining its pipe, so its exception is raised
        here instead of waiting for the deadline.
        """
        waiters = {
            asyncio.ensure_future(proc.wait()): RunOutcome.EXITED,
            asyncio.ensure_future(
                asyncio.sleep(max(deadline - time.monotonic(), 0))
            ): RunOutcome.TIMED_OUT,
        }
        if request.cancellation is not None:
            waiters[asyncio.ensure_future(request.cancellation.wait())] = (
                RunOutcome.CANCELLED
            )

        pending = set(waiters) | set(pumps)
        fired = set()
        try:
            while not fired:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for pump in pumps:
                    if pump in done and not pump.cancelled() and pump.exception():
                        raise pump.exception()
                fired = {waiters[waiter] for waiter in done if waiter in waiters}
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        # Several sources can complete in the same loop iteration
        for outcome in (RunOutcome.EXITED, RunOutcome.CANCELLED, RunOutcome.TIMED_OUT):
            if outcome in fired:
                return outcome
        raise RuntimeError("no completion source fired")

    async def _confirm_exit(
        self,
        proc: asyncio.subprocess.Process,
        pumps: List["asyncio.Future[None]"],
        deadline: float,
    ) -> RunOutcome:
        """Wait for both streams to reach end of stream and for the exit to be final.

        The exit notification can arrive before the last lines of output
        have been delivered, so the result is only read after this returns.
        """

        if proc.returncode is not None and all(pump.done() for pump in pumps):
            for pump in pumps:
                pump.result()
            return RunOutcome.EXITED

        async def drain() -> None:
            await asyncio.gather(*pumps)
            await proc.wait()

        remaining = max(deadline - time.monotonic(), EXIT_CONFIRM_GRACE)
        try:
            await asyncio.wait_for(drain(), timeout=remaining)
        except asyncio.TimeoutError:
            return RunOutcome.TIMED_OUT
        return RunOutcome.EXITED

    async def _finalize(
        self,
        proc: asyncio.subprocess.Process,
        pumps: List["asyncio.Future[None]"],
        run_id: str,
    ) -> None:
        """Kill the root process if it is still alive and release the pumps."""
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            else:
                self.logger.warning(
                    "Killed lingering root process",
                    run_id=run_id,
                    metadata={"pid": proc.pid},
                )

        try:
            await asyncio.wait_for(proc.wait(), timeout=self.config.kill_wait_timeout)
        except asyncio.TimeoutError:
            # Output pipes are still held open by a descendant
            self.logger.warning(
                "Root process not confirmed exited after kill",
                run_id=run_id,
                metadata={"pid": proc.pid},
            )

        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)

        # asyncio has no public handle on the subprocess transport; closing
        # it releases pipes still held open by descendants. Idempotent.
        proc._transport.close()

    def _describe(self, request: RunRequest) -> Dict[str, Any]:
        return {
            "working_directory": str(request.working_directory),
            "process": request.process,
            "arguments": redact_text(request.arguments),
        }


async def run_process(
    working_directory: Union[str, Path],
    process: str,
    arguments: str = "",
    timeout: Optional[Timeout] = None,
    cancellation: Optional[asyncio.Event] = None,
) -> ProcessResult:
    """Run a process with a default ProcessRunner."""
    return await ProcessRunner().run(
        working_directory, process, arguments, timeout, cancellation
    )
