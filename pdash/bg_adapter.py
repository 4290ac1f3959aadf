"""Starting commands as foreground or fully detached background jobs."""

from __future__ import annotations

import os
import signal
import struct
import sys
from collections.abc import Sequence
from os import PathLike
from pathlib import Path
from typing import TextIO

from pdash.bg_jobs import BgJob, ForkMode, JobTable, ProcStat, ShowMode
from pdash.job_control import JobControl

_PID_FORMAT = "i"
_PID_SIZE = struct.calcsize(_PID_FORMAT)


def _read_exact(fd: int, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = os.read(fd, size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class BackgroundJobAdapter:
    """Runs commands through a :class:`JobTable`.

    Background commands are detached with a double fork so they are adopted
    by init; their stdout goes to ``output_<pid>.txt`` in *output_dir*.
    When a :class:`JobControl` is given, background jobs are registered with
    it as well.
    """

    def __init__(
        self,
        table: JobTable | None = None,
        job_control: JobControl | None = None,
        *,
        interactive: bool = False,
        output_dir: str | PathLike[str] = ".",
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.table = table if table is not None else JobTable(stdout=stdout, stderr=stderr)
        self.job_control = job_control
        self.interactive = interactive
        self.output_dir = Path(output_dir)
        self.initialized = False
        self._stdout = stdout
        self._stderr = stderr

    @property
    def _out(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def _err(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def initialize(self) -> bool:
        """Enable job control for an interactive shell; safe to call again."""
        if self.initialized:
            return True
        if self.interactive:
            try:
                self.table.set_job_control(True)
            except OSError as error:
                self._err.write(f"{error}\n")
        self.initialized = True
        return True

    def create_job(self, command: str, nprocs: int = 1) -> BgJob:
        """Allocate a new job titled *command*."""
        self.initialize()
        job = self.table.make_job(nprocs)
        job.title = command
        return job

    @staticmethod
    def _claim_terminal() -> None:
        try:
            shell_pgid = os.getpgid(0)
            if os.tcgetpgrp(0) != shell_pgid:
                os.tcsetpgrp(0, shell_pgid)
        except OSError:
            pass

    def _exec_detached(self, job: BgJob, argv: Sequence[str]) -> None:
        """Body of the grandchild process; never returns."""
        try:
            self.table.fork_child(job, ForkMode.BG)
            try:
                os.setsid()
            except OSError:
                pass
            try:
                null_fd = os.open(os.devnull, os.O_RDONLY)
                os.dup2(null_fd, 0)
                os.close(null_fd)
            except OSError:
                pass
            output = self.output_dir / f"output_{os.getpid()}.txt"
            try:
                out_fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
                os.dup2(out_fd, 1)
                os.close(out_fd)
            except OSError:
                pass
            os.execvp(argv[0], list(argv))
        except BaseException:
            pass
        os._exit(127)

    def run_in_background(
        self, job: BgJob, command: str, argv: Sequence[str]
    ) -> int | None:
        """Start *argv* fully detached from the shell.

        Prints ``[job] pid`` and returns the pid of the detached process, or
        None when it could not be learned.
        """
        if job is None:
            raise ValueError("no job given")
        if not argv:
            raise ValueError("empty command")
        self.initialize()
        self._claim_terminal()

        try:
            old_sigchld = signal.signal(signal.SIGCHLD, signal.SIG_IGN)
        except ValueError:
            old_sigchld = None
        try:
            read_fd, write_fd = os.pipe()
            sys.stdout.flush()
            sys.stderr.flush()
            try:
                pid = os.fork()
            except OSError:
                os.close(read_fd)
                os.close(write_fd)
                raise

            if pid == 0:
                try:
                    os.close(read_fd)
                    try:
                        os.setpgid(0, 0)
                    except OSError:
                        pass
                    try:
                        grandchild = os.fork()
                    except OSError:
                        os._exit(1)
                    if grandchild == 0:
                        os.close(write_fd)
                        self._exec_detached(job, argv)
                    try:
                        os.write(write_fd, struct.pack(_PID_FORMAT, grandchild))
                    except OSError:
                        pass
                    os.close(write_fd)
                except BaseException:
                    os._exit(1)
                os._exit(0)

            os.close(write_fd)
            data = _read_exact(read_fd, _PID_SIZE)
            os.close(read_fd)

            child_pid: int | None = None
            job_id = 1
            if len(data) == _PID_SIZE:
                child_pid = struct.unpack(_PID_FORMAT, data)[0]
                if job.procs:
                    job.procs[0].pid = child_pid
                else:
                    job.procs.append(ProcStat(child_pid, cmd=command))
                if self.job_control is not None:
                    job_id = self.job_control.add_job(command, child_pid)
                    self.job_control.add_process(job_id, child_pid, command)
                    self.job_control.current_job_id = job_id

            try:
                os.waitpid(pid, 0)
            except ChildProcessError:
                pass
        finally:
            if old_sigchld is not None:
                signal.signal(signal.SIGCHLD, old_sigchld)

        out = self._out
        if child_pid is not None and child_pid > 0:
            out.write(f"[{job_id}] {child_pid}\n")
        else:
            out.write(f"[{job_id}] ？\n")
            child_pid = None
        out.flush()
        return child_pid

    def run_in_foreground(self, job: BgJob, command: str, argv: Sequence[str]) -> int:
        """Run *argv* in the foreground and return its raw wait status."""
        if job is None:
            raise ValueError("no job given")
        if not argv:
            raise ValueError("empty command")
        sys.stdout.flush()
        sys.stderr.flush()
        pid = self.table.fork_parent(job, ForkMode.FG)
        if pid == 0:
            try:
                self.table.fork_child(job, ForkMode.FG)
                os.execvp(argv[0], list(argv))
            except OSError as error:
                message = f"{argv[0]}: {error.strerror or error}\n"
                try:
                    os.write(2, message.encode(errors="replace"))
                except OSError:
                    pass
            except BaseException:
                pass
            os._exit(127)
        return self.wait_for_job(job)

    def wait_for_job(self, job: BgJob | None) -> int:
        return self.table.wait_for_job(job)

    def fg_command(self, args: Sequence[str]) -> int:
        """The ``fg`` builtin; *args* includes the command name."""
        return self.table.fg_command(args)

    def bg_command(self, args: Sequence[str]) -> int:
        """The ``bg`` builtin; *args* includes the command name."""
        return self.table.fg_command(args)

    def show_jobs(
        self,
        show_running: bool = True,
        show_stopped: bool = True,
        show_pids: bool = False,
        show_changed: bool = False,
    ) -> None:
        """List jobs; running and stopped jobs are always included."""
        mode = ShowMode.NONE
        if show_pids:
            mode |= ShowMode.PID
        if show_changed:
            mode |= ShowMode.CHANGED
        self.table.show(self._out, mode)

    def job_status(self, job: BgJob) -> int:
        return self.table.status(job)

    def has_stopped_jobs(self) -> bool:
        return self.table.stopped_jobs() > 0

    def job_by_number(self, number: int) -> BgJob | None:
        return self.table.by_number(number)

    def job_by_pid(self, pid: int) -> BgJob | None:
        return self.table.by_pid(pid)