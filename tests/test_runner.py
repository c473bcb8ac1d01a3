"""
Tests for ProcessRunner with short-lived processes.

Covers natural exit, output capture, launch failures, cancellation and the
metrics recorded for each outcome.
"""

import asyncio
import os
import time
from datetime import timedelta

import pytest

from procwarden.core.config import RunnerConfig
from procwarden.core.exceptions import (
    ProcessCancelledError,
    ProcessLaunchError,
    ProcessTimeoutError,
)
from procwarden.core.models import RunOutcome, RunRequest
from procwarden.core.runner import BaseProcessRunner, ProcessRunner, run_process
from procwarden.utils.arguments import format_arguments
from tests.fixtures.test_data import (
    HANGING_PROCESS,
    PYTHON,
    SIXTY_SECONDS,
    is_running,
    python_code,
    read_pids,
    wait_until_stopped,
)

pytestmark = pytest.mark.asyncio


class TestNaturalExit:
    async def test_standard_output(self, runner):
        result = await runner.run(os.getcwd(), PYTHON, python_code("print('hello world')"), 10)

        assert result.exit_code == 0
        assert result.standard_output.strip() == "hello world"
        assert result.standard_error == ""

    async def test_standard_error(self, runner):
        code = "import sys; sys.stderr.write('path not found\\n'); sys.exit(1)"
        result = await runner.run(os.getcwd(), PYTHON, python_code(code), 10)

        assert result.exit_code == 1
        assert result.standard_output == ""
        assert result.standard_error.strip() == "path not found"

    async def test_result_identifies_the_run(self, runner, tmp_path):
        arguments = python_code("pass")
        result = await runner.run(tmp_path, PYTHON, arguments, timedelta(seconds=10))

        assert result.working_directory == str(tmp_path)
        assert result.process == PYTHON
        assert result.arguments == arguments
        assert result.duration > timedelta(0)
        assert result.success

    async def test_runs_in_working_directory(self, runner, tmp_path):
        result = await runner.run(
            tmp_path, PYTHON, python_code("import os; print(os.getcwd())"), 10
        )
        assert os.path.realpath(result.standard_output.strip()) == os.path.realpath(
            tmp_path
        )

    async def test_all_output_is_captured_before_returning(self, runner):
        code = "import sys\nfor i in range(2000):\n    print(i)\n    print(i, file=sys.stderr)"
        result = await runner.run(os.getcwd(), PYTHON, python_code(code), 20)

        expected = "".join(f"{i}\n" for i in range(2000))
        assert result.standard_output == expected
        assert result.standard_error == expected

    async def test_empty_lines_are_not_captured(self, runner):
        result = await runner.run(
            os.getcwd(), PYTHON, python_code("print('a'); print(); print('b')"), 10
        )
        assert result.standard_output == "a\nb\n"

    async def test_arguments_with_spaces_reach_the_process(self, runner):
        arguments = format_arguments(
            "-c", "import sys; print(sys.argv[1:])", "two words", "it's"
        )
        result = await runner.run(os.getcwd(), PYTHON, arguments, 10)
        assert result.standard_output.strip() == "['two words', \"it's\"]"

    async def test_repeated_runs_are_identical(self, runner):
        arguments = python_code("import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)")
        first = await runner.run(os.getcwd(), PYTHON, arguments, 10)
        second = await runner.run(os.getcwd(), PYTHON, arguments, 10)

        assert (first.exit_code, first.standard_output, first.standard_error) == (
            second.exit_code,
            second.standard_output,
            second.standard_error,
        )

    async def test_execute_accepts_a_request(self, runner):
        request = RunRequest(
            working_directory=os.getcwd(),
            process=PYTHON,
            arguments=python_code("print(42)"),
            timeout=10,
        )
        result = await runner.execute(request)
        assert result.standard_output == "42\n"

    async def test_run_process_helper(self):
        result = await run_process(os.getcwd(), PYTHON, python_code("print('ok')"), 10)
        assert result.standard_output == "ok\n"

    async def test_exit_is_recorded_in_metrics(self, runner, metrics):
        await runner.run(os.getcwd(), PYTHON, python_code("pass"), 10)
        assert metrics.get_sample("procwarden_runs_total", {"outcome": "exited"}) == 1


class TestLongOutput:
    async def test_line_longer_than_reader_buffer(self, directory):
        runner = ProcessRunner(
            RunnerConfig(stream_limit=1024, kill_wait_timeout=2.0), directory=directory
        )
        code = "import sys; sys.stdout.write('x' * 300000 + '\\n'); print('tail')"

        started = time.monotonic()
        result = await runner.run(os.getcwd(), PYTHON, python_code(code), 20)

        assert time.monotonic() - started < 10
        assert result.exit_code == 0
        assert result.standard_output == "x" * 300000 + "\ntail\n"

    async def test_final_line_without_newline(self, runner):
        result = await runner.run(
            os.getcwd(), PYTHON, python_code("import sys; sys.stdout.write('no newline')"), 10
        )
        assert result.standard_output == "no newline\n"


class TestUnexpectedFault:
    async def test_decode_failure_surfaces_before_deadline(self, directory, metrics):
        runner = ProcessRunner(
            RunnerConfig(decode_errors="strict", kill_wait_timeout=2.0),
            directory=directory,
        )
        code = (
            "import sys, time\n"
            "sys.stdout.buffer.write(b'\\xff\\n')\n"
            "sys.stdout.flush()\n"
            "time.sleep(60)\n"
        )

        started = time.monotonic()
        with pytest.raises(UnicodeDecodeError):
            await runner.run(os.getcwd(), PYTHON, python_code(code), 30)

        assert time.monotonic() - started < 10
        assert wait_until_stopped(directory.roots) == []
        assert metrics.get_sample("procwarden_runs_total", {"outcome": "failed"}) == 1
        assert metrics.get_sample("procwarden_runs_total", {"outcome": "timed_out"}) == 0


class FinishedProcess:
    """Stands in for an asyncio process whose exit was already observed."""

    returncode = 0

    async def wait(self):
        return self.returncode


class TestExitConfirmation:
    async def test_drained_exit_at_deadline_is_an_exit(self, runner):
        pump = asyncio.get_running_loop().create_future()
        pump.set_result(None)
        deadline = time.monotonic() - 1

        outcome = await runner._confirm_exit(FinishedProcess(), [pump], deadline)

        assert outcome is RunOutcome.EXITED

    async def test_drain_finishing_just_after_deadline_is_an_exit(self, runner):
        pump = asyncio.ensure_future(asyncio.sleep(0.01))
        deadline = time.monotonic()

        outcome = await runner._confirm_exit(FinishedProcess(), [pump], deadline)

        assert outcome is RunOutcome.EXITED

    async def test_drain_that_never_finishes_is_a_timeout(self, runner):
        pump = asyncio.ensure_future(asyncio.sleep(60))
        try:
            outcome = await runner._confirm_exit(
                FinishedProcess(), [pump], time.monotonic()
            )
        finally:
            pump.cancel()

        assert outcome is RunOutcome.TIMED_OUT

    async def test_failed_pump_is_raised(self, runner):
        pump = asyncio.get_running_loop().create_future()
        pump.set_exception(UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"))

        with pytest.raises(UnicodeDecodeError):
            await runner._confirm_exit(FinishedProcess(), [pump], time.monotonic() + 5)


class TestLaunchFailure:
    async def test_missing_executable(self, runner, tmp_path, metrics):
        with pytest.raises(ProcessLaunchError) as exc_info:
            await runner.run(os.getcwd(), str(tmp_path / "does-not-exist"), "", 10)

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert exc_info.value.process == str(tmp_path / "does-not-exist")
        assert metrics.get_sample("procwarden_runs_total", {"outcome": "launch_failed"}) == 1

    async def test_invalid_working_directory(self, runner, tmp_path):
        with pytest.raises(ProcessLaunchError):
            await runner.run(tmp_path / "missing", PYTHON, python_code("pass"), 10)

    async def test_unbalanced_quotes(self, runner):
        with pytest.raises(ProcessLaunchError):
            await runner.run(os.getcwd(), PYTHON, "-c 'print(1)", 10)

    async def test_non_positive_timeout_is_rejected(self, runner):
        with pytest.raises(ValueError):
            await runner.run(os.getcwd(), PYTHON, python_code("pass"), 0)


class TestDeadline:
    async def test_timeout_carries_partial_output(self, runner, directory):
        arguments = format_arguments(HANGING_PROCESS, SIXTY_SECONDS)

        with pytest.raises(ProcessTimeoutError) as exc_info:
            await runner.run(os.getcwd(), PYTHON, arguments, 2)

        error = exc_info.value
        assert error.process == PYTHON
        assert error.arguments == arguments
        assert read_pids(error.standard_output) == directory.roots
        assert "Timed out waiting for process" in str(error)
        assert wait_until_stopped(directory.roots) == []

    async def test_default_timeout_comes_from_config(self, directory):
        runner = ProcessRunner(
            RunnerConfig(default_timeout=1.0, kill_wait_timeout=2.0), directory=directory
        )
        with pytest.raises(ProcessTimeoutError):
            await runner.run(
                os.getcwd(), PYTHON, format_arguments(HANGING_PROCESS, SIXTY_SECONDS)
            )

    async def test_timeout_is_recorded_in_metrics(self, runner, metrics):
        with pytest.raises(ProcessTimeoutError):
            await runner.run(
                os.getcwd(), PYTHON, format_arguments(HANGING_PROCESS, SIXTY_SECONDS), 1
            )
        assert metrics.get_sample("procwarden_runs_total", {"outcome": "timed_out"}) == 1


class TestCancellation:
    async def test_cancellation_before_deadline(self, runner, directory):
        cancellation = asyncio.Event()
        asyncio.get_running_loop().call_later(1.0, cancellation.set)

        with pytest.raises(ProcessCancelledError) as exc_info:
            await runner.run(
                os.getcwd(),
                PYTHON,
                format_arguments(HANGING_PROCESS, SIXTY_SECONDS),
                30,
                cancellation,
            )

        assert not isinstance(exc_info.value, ProcessTimeoutError)
        assert read_pids(exc_info.value.standard_output) == directory.roots
        # the root process is still killed on this path
        assert wait_until_stopped(directory.roots) == []

    async def test_cancellation_already_set(self, runner, directory, metrics):
        cancellation = asyncio.Event()
        cancellation.set()

        with pytest.raises(ProcessCancelledError):
            await runner.run(
                os.getcwd(),
                PYTHON,
                format_arguments(HANGING_PROCESS, SIXTY_SECONDS),
                30,
                cancellation,
            )

        assert wait_until_stopped(directory.roots) == []
        assert metrics.get_sample("procwarden_runs_total", {"outcome": "cancelled"}) == 1

    async def test_exit_before_cancellation_returns_result(self, runner):
        cancellation = asyncio.Event()
        result = await runner.run(
            os.getcwd(), PYTHON, python_code("print('done')"), 10, cancellation
        )
        cancellation.set()
        assert result.exit_code == 0

    async def test_cancelling_the_task_kills_the_root(self, runner, directory):
        task = asyncio.ensure_future(
            runner.run(
                os.getcwd(), PYTHON, format_arguments(HANGING_PROCESS, SIXTY_SECONDS), 30
            )
        )
        while not directory.roots:
            await asyncio.sleep(0.05)
        root = directory.roots[0]
        assert is_running(root)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert wait_until_stopped([root]) == []


async def test_runner_implements_interface():
    assert isinstance(ProcessRunner(), BaseProcessRunner)
