"""Background job table: slots, the current-job ordering, waiting and fg/bg."""

from __future__ import annotations

import enum
import os
import re
import signal
import sys
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TextIO

_NO_TTY = "无法访问tty; 作业控制已关闭"
_INITIAL_SLOTS = 4
_GROWTH = 4
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class JobState(enum.IntEnum):
    """Overall state of a background job."""

    RUNNING = 0
    STOPPED = 1
    DONE = 2


class ForkMode(enum.IntEnum):
    """How a forked process relates to the terminal."""

    FG = 0
    BG = 1
    NOJOB = 2


class ShowMode(enum.IntFlag):
    """Options for listing jobs."""

    NONE = 0
    PGID = 1
    PID = 4
    CHANGED = 8


class JobNotFoundError(LookupError):
    """Raised when a job specification matches no usable job."""


class _Placement(enum.Enum):
    DELETE = "delete"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class ProcStat:
    """One process of a job; *status* is a raw wait status, -1 while unknown."""

    pid: int
    status: int = -1
    cmd: str | None = None


@dataclass(eq=False)
class BgJob:
    """A job occupying one slot of the job table."""

    procs: list[ProcStat] = field(default_factory=list)
    state: JobState = JobState.RUNNING
    title: str = ""
    stop_status: int = 0
    changed: bool = True
    waited: bool = False
    notified: bool = False
    jobctl: bool = False
    sigint: bool = False

    @property
    def first_command(self) -> str:
        if self.procs and self.procs[0].cmd:
            return self.procs[0].cmd
        return self.title

    @property
    def command_line(self) -> str:
        """The commands of the pipeline joined by ``" | "``."""
        names = [p.cmd or "" for p in self.procs] or [""]
        names[0] = self.first_command
        return " | ".join(names)


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def _finished(status: int) -> bool:
    return status >= 0 and (os.WIFEXITED(status) or os.WIFSIGNALED(status))


def _is_stopped(status: int) -> bool:
    return status >= 0 and os.WIFSTOPPED(status)


def _signal_name(signum: int) -> str:
    return signal.strsignal(signum) or f"Unknown signal {signum}"


class JobTable:
    """The table of jobs started by the shell.

    Jobs occupy numbered slots (their job numbers); the running order of
    jobs, most current first, is kept separately for ``%+``/``%-`` lookups.
    """

    def __init__(
        self,
        *,
        tty_path: str | None = "/dev/tty",
        waitpid: Callable[[int, int], tuple[int, int]] = os.waitpid,
        kill: Callable[[int, int], None] = os.kill,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self._tty_path = tty_path
        self._waitpid = waitpid
        self._kill = kill
        self._stdout = stdout
        self._stderr = stderr
        self._slots: list[BgJob | None] = [None] * _INITIAL_SLOTS
        self._order: list[BgJob] = []
        self.jobctl = False
        self.job_warning = 0
        self.last_background_pid = 0
        self.initial_pgrp = -1
        self._ttyfd = -1
        if tty_path:
            try:
                self._ttyfd = os.open(tty_path, os.O_RDWR)
                self.initial_pgrp = os.getpgrp()
            except OSError:
                self._ttyfd = -1

    @property
    def _out(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def current(self) -> BgJob | None:
        """The current job (``%+``), if any."""
        return self._order[0] if self._order else None

    def _used(self) -> Iterator[BgJob]:
        return (job for job in self._slots if job is not None)

    def _set_current(self, job: BgJob, placement: _Placement) -> None:
        self._order = [j for j in self._order if j is not job]
        if placement is _Placement.DELETE:
            return
        pos = 0
        if placement is _Placement.RUNNING and self.jobctl:
            while pos < len(self._order) and self._order[pos].state is JobState.STOPPED:
                pos += 1
        self._order.insert(pos, job)

    def _set_tty_pgrp(self, pgrp: int) -> None:
        if self._ttyfd < 0:
            return
        try:
            os.tcsetpgrp(self._ttyfd, pgrp)
        except OSError:
            pass

    def set_job_control(self, on: bool) -> None:
        """Turn job control on; turning it off is not supported and is ignored.

        Raises OSError when no terminal can be used.
        """
        if on == self.jobctl or not on:
            return
        try:
            fd = os.open(self._tty_path or "/dev/tty", os.O_RDWR)
        except OSError:
            candidate = next((c for c in (2, 1, 0) if os.isatty(c)), -1)
            if candidate < 0:
                raise OSError(_NO_TTY) from None
            fd = os.dup(candidate)
        if self._ttyfd >= 0 and self._ttyfd != fd:
            os.close(self._ttyfd)
        self._ttyfd = fd

        while True:
            try:
                pgrp = os.tcgetpgrp(self._ttyfd)
            except OSError:
                os.close(self._ttyfd)
                self._ttyfd = -1
                raise OSError(_NO_TTY) from None
            if pgrp == os.getpgrp():
                break
            os.kill(0, signal.SIGTTIN)
        self.initial_pgrp = pgrp

        for signum in (signal.SIGTSTP, signal.SIGTTOU, signal.SIGTTIN):
            signal.signal(signum, signal.SIG_DFL)
        pid = os.getpid()
        try:
            os.setpgid(0, pid)
        except OSError:
            pass
        self._set_tty_pgrp(pid)
        self.jobctl = True

    def make_job(self, nprocs: int = 1) -> BgJob:
        """Allocate a job in the first free slot, growing the table if full.

        *nprocs* is the number of processes the job is expected to hold.
        """
        if nprocs < 0:
            raise ValueError("nprocs must not be negative")
        try:
            index = self._slots.index(None)
        except ValueError:
            index = len(self._slots)
            self._slots.extend([None] * _GROWTH)
        job = BgJob(jobctl=self.jobctl)
        self._slots[index] = job
        return job

    def job_number(self, job: BgJob) -> int:
        """The job number (slot position, from 1) of *job*."""
        for index, slot in enumerate(self._slots):
            if slot is job:
                return index + 1
        raise JobNotFoundError("job is not in the table")

    def find(self, spec: str, require_control: bool = False) -> BgJob:
        """Resolve a job specification such as ``%1``, ``%+``, ``%-``, ``%cmd`` or a pid."""
        job: BgJob | None
        if spec.startswith("%"):
            rest = spec[1:]
            head = rest[:1]
            if head in ("%", "+"):
                job = self.current
                if job is None:
                    raise JobNotFoundError("没有当前作业")
            elif head == "-":
                job = self._order[1] if len(self._order) > 1 else None
            elif "0" <= head <= "9" and head:
                job = self.by_number(_atoi(rest))
            else:
                job = next(
                    (j for j in self._order if j.first_command.startswith(rest)), None
                )
        else:
            job = self.by_pid(_atoi(spec))
        if job is None or (require_control and not job.jobctl):
            raise JobNotFoundError(f"没有此类作业: {spec}")
        return job

    def by_number(self, number: int) -> BgJob | None:
        if number <= 0 or number > len(self._slots):
            return None
        return self._slots[number - 1]

    def by_pid(self, pid: int) -> BgJob | None:
        return next(
            (j for j in self._order if any(p.pid == pid for p in j.procs)), None
        )

    def status(self, job: BgJob) -> int:
        """The raw wait status of the job's last process, or -1 while running."""
        if job.state is JobState.RUNNING:
            return -1
        return job.procs[-1].status if job.procs else 0

    def free(self, job: BgJob) -> None:
        """Release the job's slot and drop it from the current-job order."""
        job.procs.clear()
        for index, slot in enumerate(self._slots):
            if slot is job:
                self._slots[index] = None
        self._set_current(job, _Placement.DELETE)

    def _dowait(self, block: bool, target: BgJob | None) -> int:
        flags = 0 if block else os.WNOHANG
        if self.jobctl:
            flags |= os.WUNTRACED
        while True:
            try:
                pid, status = self._waitpid(-1, flags)
            except ChildProcessError:
                return 0
            if pid <= 0:
                return 0
            job = None
            for candidate in self._used():
                proc = next((p for p in candidate.procs if p.pid == pid), None)
                if proc is not None:
                    proc.status = status
                    job = candidate
                    break
            if job is None:
                continue
            if _is_stopped(status):
                job.stop_status = status
                job.state = JobState.STOPPED
                job.sigint = False
            else:
                if os.WIFSIGNALED(status) and os.WTERMSIG(status) == signal.SIGINT:
                    job.sigint = True
                if all(p.pid == -1 or _finished(p.status) for p in job.procs):
                    job.state = JobState.DONE
            job.changed = True
            if target is job:
                return pid

    def _describe(self, job: BgJob) -> str:
        if job.state is JobState.STOPPED:
            return f"已停止({_signal_name(os.WSTOPSIG(job.stop_status))})"
        if job.state is JobState.RUNNING:
            return "运行中"
        st = self.status(job)
        first_pid = job.procs[0].pid if job.procs else 0
        if os.WIFEXITED(st):
            code = os.WEXITSTATUS(st)
            if code:
                return f"完成({code}) PID:{first_pid}"
            return f"完成 PID:{first_pid}"
        text = _signal_name(os.WTERMSIG(st))
        if os.WCOREDUMP(st):
            text += " (核心已转储)"
        return text

    def _show_job(self, out: TextIO, job: BgJob, mode: ShowMode) -> None:
        if mode & ShowMode.PGID:
            out.write(f"{job.procs[0].pid if job.procs else 0}\n")
            return
        line = f"[{self.job_number(job)}] {self._describe(job):<20}"
        if mode & ShowMode.PID:
            line += "".join(f"{p.pid} " for p in job.procs)
        out.write(f"{line}{job.command_line}\n")
        job.changed = False
        job.waited = True
        job.notified = True

    def show(self, out: TextIO | None = None, mode: ShowMode = ShowMode.NONE) -> None:
        """Reap finished children, then list jobs, most current first."""
        out = self._out if out is None else out
        mode = ShowMode(mode)
        self._dowait(False, None)
        for job in list(self._order):
            if not (mode & ShowMode.CHANGED) or job.changed:
                self._show_job(out, job, mode)

    def wait_command(self, args: Sequence[str]) -> int:
        """The ``wait`` builtin; *args* includes the command name.

        Returns the last waited job's status, 127 when a pid matched no job,
        and 128 when nothing could be reaped.
        """
        specs = list(args[1:])
        if not specs:
            while True:
                running = None
                for job in self._order:
                    if job.state is JobState.RUNNING:
                        running = job
                        break
                    job.waited = True
                if running is None:
                    return 0
                if not self._dowait(False, None):
                    return 128

        retval = 127
        for spec in specs:
            if not spec.startswith("%"):
                pid = _atoi(spec)
                job = next(
                    (j for j in self._order if j.procs and j.procs[-1].pid == pid),
                    None,
                )
                if job is None:
                    continue
            else:
                job = self.find(spec, False)
            if not self._dowait(False, job):
                return 128
            job.waited = True
            retval = self.status(job)
        return retval

    def _restart(self, job: BgJob, mode: ForkMode) -> int:
        if job.state is JobState.DONE:
            return 0
        job.state = JobState.RUNNING
        if job.procs:
            pgid = job.procs[0].pid
            if mode is ForkMode.FG:
                self._set_tty_pgrp(pgid)
            self._kill(-pgid, signal.SIGCONT)
        for proc in job.procs:
            if _is_stopped(proc.status):
                proc.status = -1
        return self.wait_for_job(job) if mode is ForkMode.FG else 0

    def fg_command(self, args: Sequence[str]) -> int:
        """The ``fg`` and ``bg`` builtins; the mode follows the command name."""
        mode = ForkMode.FG if args[0][:1] == "f" else ForkMode.BG
        if len(args) < 2:
            job = self.current
            if job is None:
                raise JobNotFoundError("当前没有作业")
        else:
            job = self.find(args[1], True)
        out = self._out
        if mode is ForkMode.BG:
            self._set_current(job, _Placement.RUNNING)
            out.write(f"[{self.job_number(job)}] ")
        out.write(f"{job.command_line}\n")
        return self._restart(job, mode)

    def stopped_jobs(self) -> int:
        """Warn once if the current job is stopped; return 1 when warned."""
        if self.job_warning:
            return 0
        job = self.current
        if job is not None and job.state is JobState.STOPPED:
            self._out.write("您有已停止的作业。\n")
            self.job_warning = 2
            return 1
        return 0

    def fork_parent(self, job: BgJob | None, mode: ForkMode) -> int:
        """Fork; in the parent set up process groups and record the child.

        Returns the child's pid in the parent and 0 in the child.
        """
        if self._ttyfd < 0 and self._tty_path:
            try:
                self._ttyfd = os.open(self._tty_path, os.O_RDWR)
            except OSError:
                self._ttyfd = -1
        parent_pgid = os.getpgrp()
        fg_pgid = -1
        if self._ttyfd >= 0:
            try:
                fg_pgid = os.tcgetpgrp(self._ttyfd)
            except OSError:
                fg_pgid = -1

        try:
            pid = os.fork()
        except OSError:
            if job is not None:
                self.free(job)
            raise
        if pid == 0:
            return 0

        if job is not None and mode is not ForkMode.NOJOB and job.jobctl:
            pgrp = job.procs[0].pid if job.procs else pid
            try:
                os.setpgid(pid, pgrp)
            except OSError:
                pass
            if mode is ForkMode.FG and fg_pgid >= 0:
                self._set_tty_pgrp(pgrp)
        elif mode is ForkMode.BG:
            try:
                os.setpgid(pid, pid)
            except OSError:
                pass
            if fg_pgid >= 0 and fg_pgid == parent_pgid:
                self._set_tty_pgrp(parent_pgid)
            self.last_background_pid = pid
            if job is not None:
                self._set_current(job, _Placement.RUNNING)

        if job is not None:
            job.procs.append(ProcStat(pid))
        return pid

    def fork_child(self, job: BgJob, mode: ForkMode) -> None:
        """Set up process group, signals and stdin in a freshly forked child."""
        if mode is not ForkMode.NOJOB and job.jobctl:
            pgrp = job.procs[0].pid if job.procs else os.getpid()
            try:
                os.setpgid(0, pgrp)
            except OSError:
                pass
            if mode is ForkMode.FG:
                self._set_tty_pgrp(pgrp)
            signal.signal(signal.SIGTSTP, signal.SIG_DFL)
            signal.signal(signal.SIGTTOU, signal.SIG_DFL)
        elif mode is ForkMode.BG:
            try:
                os.setpgid(0, 0)
            except OSError:
                pass
            for signum in (
                signal.SIGINT,
                signal.SIGQUIT,
                signal.SIGTSTP,
                signal.SIGTTIN,
                signal.SIGTTOU,
            ):
                signal.signal(signum, signal.SIG_IGN)
            if not job.procs:
                os.close(0)
                fd = os.open(os.devnull, os.O_RDONLY)
                if fd > 0:
                    os.dup2(fd, 0)
                    os.close(fd)
        for signum in (signal.SIGINT, signal.SIGQUIT, signal.SIGTERM):
            signal.signal(signum, signal.SIG_DFL)

    def wait_for_job(self, job: BgJob | None) -> int:
        """Wait for *job* to finish or stop and return its status.

        Finished jobs, and all jobs when job control is off, are freed.
        """
        self._dowait(job is not None, job)
        if job is None:
            return 0
        st = self.status(job)
        if job.jobctl:
            self._set_tty_pgrp(os.getpid())
            if job.sigint:
                signal.raise_signal(signal.SIGINT)
        if not self.jobctl or job.state is JobState.DONE:
            self.free(job)
        return st