"""
Process tree reaping.

When a run times out, the root process may have spawned descendants that
would outlive it. ProcessTreeReaper walks the tree below a root and kills
it leaves first, skipping any process that started before the node it was
found under: such a process holds a recycled pid and is not part of the tree.

A descendant whose parent already exited is re-parented and no longer
reachable from the root. When the root leads its own process group, the
sweep also visits the group's remaining members.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Set

import psutil

from procwarden.core.models import ChildProcess
from procwarden.core.observability import get_logger, get_metrics_collector


class ProcessDirectory(ABC):
    """Capability to enumerate and terminate live processes."""

    @abstractmethod
    def children_of(self, pid: int) -> List[ChildProcess]:
        """Return the live processes whose parent pid is ``pid``."""

    @abstractmethod
    def start_time_of(self, pid: int) -> float:
        """Return the start time of ``pid`` as epoch seconds."""

    @abstractmethod
    def kill(self, child: ChildProcess) -> None:
        """Forcibly terminate ``child``.

        Raises if the process is gone, inaccessible, or no longer the
        process that was enumerated.
        """

    def group_members(self, pgid: int) -> List[ChildProcess]:
        """Return the live processes in process group ``pgid``.

        Directories without process groups report none.
        """
        return []


class PsutilProcessDirectory(ProcessDirectory):
    """ProcessDirectory backed by psutil."""

    def children_of(self, pid: int) -> List[ChildProcess]:
        children = []
        for proc in psutil.process_iter(["pid", "ppid", "create_time"]):
            info = proc.info
            if info.get("ppid") != pid or info.get("create_time") is None:
                continue
            children.append(ChildProcess(pid=info["pid"], start_time=info["create_time"]))
        return children

    def group_members(self, pgid: int) -> List[ChildProcess]:
        if not hasattr(os, "getpgid"):
            return []

        members = []
        for proc in psutil.process_iter(["pid", "create_time", "status"]):
            info = proc.info
            if info.get("create_time") is None or info.get("status") == psutil.STATUS_ZOMBIE:
                continue
            try:
                if os.getpgid(info["pid"]) != pgid:
                    continue
            except OSError:
                continue
            members.append(ChildProcess(pid=info["pid"], start_time=info["create_time"]))
        return members

    def start_time_of(self, pid: int) -> float:
        return psutil.Process(pid).create_time()

    def kill(self, child: ChildProcess) -> None:
        proc = psutil.Process(child.pid)
        if proc.create_time() != child.start_time:
            raise psutil.NoSuchProcess(child.pid, msg="pid was reused")
        proc.kill()


@dataclass
class ReapReport:
    """Counts gathered during one sweep."""

    killed: int = 0
    failures: int = 0
    depth_limited: int = 0
    pids: Set[int] = field(default_factory=set)


class ProcessTreeReaper:
    """Best-effort, post-order termination of a process's descendants."""

    def __init__(self, directory: Optional[ProcessDirectory] = None, max_depth: int = 32):
        self.directory = directory or PsutilProcessDirectory()
        self.max_depth = max_depth
        self.logger = get_logger(__name__)

    def reap(
        self,
        root_pid: int,
        root_start_time: float,
        process_group: Optional[int] = None,
    ) -> ReapReport:
        """Kill every descendant of ``root_pid`` started at or after its start time.

        With ``process_group``, members of that group started at or after the
        root are killed as well, each after its own descendants.

        The root itself is left alone. Failures on individual processes are
        logged and skipped; this method never raises for them.
        """
        report = ReapReport()
        if root_pid <= 0:
            return report

        with self.logger.timed_operation("reap", root_pid=root_pid):
            self._reap_children(root_pid, root_start_time, 0, report)
            if process_group is not None:
                self._reap_group(process_group, root_pid, root_start_time, report)

        get_metrics_collector().record_reap(report.killed, report.failures)
        self.logger.info(
            "Process tree reaped",
            metadata={
                "root_pid": root_pid,
                "process_group": process_group,
                "killed": report.killed,
                "failures": report.failures,
                "depth_limited": report.depth_limited,
            },
        )
        return report

    def _reap_group(
        self, pgid: int, root_pid: int, root_start_time: float, report: ReapReport
    ) -> None:
        try:
            members = self.directory.group_members(pgid)
        except Exception as e:
            report.failures += 1
            self.logger.debug(
                "Could not enumerate process group",
                metadata={"pgid": pgid, "error": str(e)},
            )
            return

        for member in members:
            if member.pid == root_pid or member.pid in report.pids:
                continue
            if member.start_time < root_start_time:
                continue
            self._reap_children(member.pid, member.start_time, 1, report)
            self._kill(member, report)

    def _reap_children(
        self, pid: int, start_time: float, depth: int, report: ReapReport
    ) -> None:
        if depth >= self.max_depth:
            report.depth_limited += 1
            self.logger.warning(
                "Process tree deeper than reap limit; subtree skipped",
                metadata={"pid": pid, "max_depth": self.max_depth},
            )
            return

        try:
            children = self.directory.children_of(pid)
        except Exception as e:
            report.failures += 1
            self.logger.debug(
                "Could not enumerate children",
                metadata={"pid": pid, "error": str(e)},
            )
            return

        for child in children:
            # A child older than its parent holds a recycled pid
            if child.start_time < start_time or child.pid in report.pids:
                continue

            self._reap_children(child.pid, child.start_time, depth + 1, report)
            self._kill(child, report)

    def _kill(self, child: ChildProcess, report: ReapReport) -> None:
        try:
            self.directory.kill(child)
        except Exception as e:
            report.failures += 1
            self.logger.debug(
                "Could not kill process",
                metadata={"pid": child.pid, "error": str(e)},
            )
        else:
            report.killed += 1
            report.pids.add(child.pid)
            self.logger.debug("Killed process", metadata={"pid": child.pid})
