"""Job control: tracking process groups started by the shell."""

from __future__ import annotations

import enum
import os
import signal
import sys
import threading
from dataclasses import dataclass, field
from typing import TextIO


class JobStatus(enum.Enum):
    """Overall state of a job."""

    RUNNING = "running"
    STOPPED = "stopped"
    DONE = "done"


@dataclass
class Process:
    """One process belonging to a job."""

    pid: int
    command: str
    status: int = 0
    completed: bool = False
    stopped: bool = False


def _process_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _report(message: str, error: OSError) -> None:
    sys.stderr.write(f"{message}: {error.strerror or error}\n")


@dataclass
class Job:
    """A pipeline of processes sharing one process group."""

    id: int
    command: str
    pgid: int
    terminal_fd: int = -1
    status: JobStatus = JobStatus.RUNNING
    notified: bool = False
    processes: list[Process] = field(default_factory=list)

    def add_process(self, pid: int, command: str) -> Process:
        """Attach a process to this job and return it."""
        process = Process(pid, command)
        self.processes.append(process)
        return process

    @property
    def completed(self) -> bool:
        """True when every process has finished (or there are none)."""
        return all(p.completed for p in self.processes)

    @property
    def stopped(self) -> bool:
        """True when every unfinished process is stopped."""
        return all(p.completed or p.stopped for p in self.processes)

    def _refresh_state(self) -> bool:
        if self.completed:
            self.status = JobStatus.DONE
            return True
        if self.stopped:
            self.status = JobStatus.STOPPED
            return True
        self.status = JobStatus.RUNNING
        return False

    def update_status(self) -> bool:
        """Poll every unfinished process; return whether anything changed."""
        changed = False
        for process in self.processes:
            if process.completed:
                continue
            try:
                pid, status = os.waitpid(process.pid, os.WUNTRACED | os.WNOHANG)
            except ChildProcessError:
                # Not our child (e.g. a daemonised process): alive means running.
                if _process_exists(process.pid):
                    continue
                process.completed = True
                changed = True
                continue
            except OSError:
                process.completed = True
                changed = True
                continue
            if pid == 0:
                continue
            if pid == process.pid:
                process.status = status
                if os.WIFSTOPPED(status):
                    process.stopped = True
                else:
                    process.completed = True
                changed = True
        return self._refresh_state() or changed

    def _continue(self) -> None:
        try:
            os.kill(-self.pgid, signal.SIGCONT)
        except OSError as error:
            _report("kill (SIGCONT)", error)
        for process in self.processes:
            process.stopped = False
        self.status = JobStatus.RUNNING

    def put_in_foreground(self, cont: bool = False) -> int:
        """Give the job the terminal and wait until it finishes or stops.

        Returns the raw wait status of the last process reported.
        """
        if self.terminal_fd >= 0:
            try:
                os.tcsetpgrp(self.terminal_fd, self.pgid)
            except OSError as error:
                _report("tcsetpgrp", error)

        if cont and self.status is JobStatus.STOPPED:
            self._continue()

        status = 0
        waiting = True
        while waiting:
            try:
                child, status = os.waitpid(-self.pgid, os.WUNTRACED)
            except ChildProcessError as error:
                _report("waitpid", error)
                break
            if child == 0:
                break
            for process in self.processes:
                if process.pid == child:
                    process.status = status
                    if os.WIFSTOPPED(status):
                        process.stopped = True
                        waiting = False
                    else:
                        process.completed = True
                    break
            if self.completed or self.stopped:
                waiting = False

        if self.completed:
            self.status = JobStatus.DONE
        elif self.stopped:
            self.status = JobStatus.STOPPED

        if self.terminal_fd >= 0:
            try:
                os.tcsetpgrp(self.terminal_fd, os.getpgrp())
            except OSError as error:
                _report("tcsetpgrp", error)
        return status

    def put_in_background(self, cont: bool = False) -> None:
        """Leave the job running in the background, resuming it if asked."""
        if cont and self.status is JobStatus.STOPPED:
            self._continue()


class JobControl:
    """The shell's table of jobs, keyed by job number."""

    def __init__(self) -> None:
        self.jobs: dict[int, Job] = {}
        self.enabled = False
        self.terminal_fd = -1
        self.shell_pgid = -1
        self.current_job_id: int | None = None
        self._next_id = 1
        self._lock = threading.Lock()
        self._updating = False

    def initialize(self) -> None:
        """Take the controlling terminal and ignore job-control signals."""
        try:
            self.terminal_fd = os.open("/dev/tty", os.O_RDWR)
        except OSError:
            self.enabled = False
            return
        self.shell_pgid = os.getpgrp()
        try:
            os.tcsetpgrp(self.terminal_fd, self.shell_pgid)
        except OSError as error:
            _report("tcsetpgrp", error)
            os.close(self.terminal_fd)
            self.terminal_fd = -1
            self.enabled = False
            return
        for signum in (
            signal.SIGINT,
            signal.SIGQUIT,
            signal.SIGTSTP,
            signal.SIGTTIN,
            signal.SIGTTOU,
        ):
            signal.signal(signum, signal.SIG_IGN)
        self.enabled = True

    def enable(self) -> None:
        """Turn job control on if it is not already."""
        if not self.enabled:
            self.initialize()

    def find_job(self, job_id: int) -> Job | None:
        return self.jobs.get(job_id)

    def _require(self, job_id: int) -> Job:
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def add_job(self, command: str, pgid: int) -> int:
        """Register a new job and return its number."""
        job_id = self._next_id
        self._next_id += 1
        self.jobs[job_id] = Job(job_id, command, pgid, self.terminal_fd)
        return job_id

    def add_process(self, job_id: int, pid: int, command: str) -> None:
        """Attach a process to job *job_id*; raises KeyError if there is none."""
        self._require(job_id).add_process(pid, command)

    def update_status(self, wait_for_pid: int = 0) -> None:
        """Reap changed children and refresh the state of every job."""
        with self._lock:
            if self._updating:
                return
            self._updating = True
            try:
                self._reap(wait_for_pid)
                self._check_running()
            finally:
                self._updating = False

    def _reap(self, wait_for_pid: int) -> None:
        target = wait_for_pid if wait_for_pid > 0 else -1
        while True:
            try:
                pid, status = os.waitpid(target, os.WUNTRACED | os.WNOHANG)
            except ChildProcessError:
                return
            if pid <= 0:
                return
            for job in self.jobs.values():
                process = next((p for p in job.processes if p.pid == pid), None)
                if process is None:
                    continue
                process.status = status
                if os.WIFSTOPPED(status):
                    process.stopped = True
                else:
                    process.completed = True
                job.update_status()
                if job.status in (JobStatus.DONE, JobStatus.STOPPED):
                    job.notified = False
                break

    def _check_running(self) -> None:
        for job in self.jobs.values():
            if job.status is not JobStatus.RUNNING:
                continue
            all_completed = True
            for process in job.processes:
                if process.completed:
                    continue
                if _process_exists(process.pid):
                    all_completed = False
                else:
                    process.completed = True
            if all_completed and job.processes:
                job.update_status()

    def wait_for_job(self, job_id: int) -> int:
        """Block until the job finishes or stops; return the last process status."""
        job = self._require(job_id)
        while not job.completed and not job.stopped:
            job.update_status()
        return job.processes[-1].status if job.processes else 0

    def put_job_in_foreground(self, job_id: int, cont: bool = False) -> int:
        return self._require(job_id).put_in_foreground(cont)

    def put_job_in_background(self, job_id: int, cont: bool = False) -> None:
        self._require(job_id).put_in_background(cont)

    def show_jobs(
        self,
        changed_only: bool = False,
        show_running: bool = True,
        show_stopped: bool = True,
        show_pids: bool = False,
        out: TextIO | None = None,
    ) -> None:
        """Print the job table, then drop finished jobs that have been reported."""
        out = sys.stdout if out is None else out
        for job in self.jobs.values():
            job.update_status()

        current = self.current_job()
        for job in self.jobs.values():
            if changed_only and job.notified:
                continue
            if job.status is JobStatus.RUNNING and not show_running:
                continue
            if job.status is JobStatus.STOPPED and not show_stopped:
                continue

            parts = [f"[{job.id}] ", "+ " if job is current else "  "]
            if show_pids:
                pids = " ".join(str(p.pid) for p in job.processes)
                parts.append(f"({pids}) ")
            if job.status is JobStatus.RUNNING:
                parts.append("运行中")
            elif job.status is JobStatus.STOPPED:
                parts.append("已停止")
            elif job.processes:
                parts.append(f"已完成 PID:{job.processes[0].pid}")
            else:
                parts.append("已完成")
            parts.append(f"\t{job.command}\n")
            out.write("".join(parts))
            job.notified = True

        self.cleanup_jobs()

    def has_stopped_jobs(self) -> bool:
        return any(job.status is JobStatus.STOPPED for job in self.jobs.values())

    def cleanup_jobs(self) -> None:
        """Forget jobs that are done and have been reported."""
        self.jobs = {
            job_id: job
            for job_id, job in self.jobs.items()
            if not (job.status is JobStatus.DONE and job.notified)
        }

    def has_active_jobs(self) -> bool:
        return any(
            job.status in (JobStatus.RUNNING, JobStatus.STOPPED)
            for job in self.jobs.values()
        )

    def current_job(self) -> Job | None:
        """The job marked current, or else the newest job."""
        if self.current_job_id is None:
            if not self.jobs:
                return None
            return self.jobs[max(self.jobs)]
        return self.find_job(self.current_job_id)