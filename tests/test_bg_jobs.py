import io
import os
import signal

import pytest

from pdash.bg_jobs import (
    BgJob,
    ForkMode,
    JobNotFoundError,
    JobState,
    JobTable,
    ProcStat,
    ShowMode,
)


class FakeWait:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    def __call__(self, pid, flags):
        self.calls.append((pid, flags))
        if not self.results:
            raise ChildProcessError
        return self.results.pop(0)


def exited(code):
    return code << 8


def stopped(signum):
    return (signum << 8) | 0x7F


def make_table(results=()):
    kills = []
    table = JobTable(
        tty_path=None,
        waitpid=FakeWait(results),
        kill=lambda pid, sig: kills.append((pid, sig)),
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )
    return table, kills


def background(table, procs):
    job = table.make_job(len(procs))
    job.jobctl = True
    job.procs.extend(ProcStat(pid, -1, cmd) for pid, cmd in procs)
    table.fg_command(["bg", f"%{table.job_number(job)}"])
    return job


def test_job_numbers_start_at_one_and_slots_are_reused():
    table, _ = make_table()
    first = table.make_job(1)
    second = table.make_job(1)
    assert table.job_number(first) == 1
    assert table.job_number(second) == 2
    table.free(first)
    again = table.make_job(1)
    assert table.job_number(again) == 1


def test_table_grows_past_initial_slots():
    table, _ = make_table()
    jobs = [table.make_job(1) for _ in range(6)]
    assert [table.job_number(j) for j in jobs] == list(range(1, 7))
    assert table.by_number(6) is jobs[5]


def test_by_number_out_of_range_and_freed():
    table, _ = make_table()
    job = table.make_job(1)
    assert table.by_number(0) is None
    assert table.by_number(100) is None
    table.free(job)
    assert table.by_number(1) is None
    with pytest.raises(JobNotFoundError):
        table.job_number(job)


def test_status_of_running_job_is_minus_one():
    table, _ = make_table()
    job = table.make_job(1)
    assert job.state is JobState.RUNNING
    assert table.status(job) == -1


def test_bg_command_makes_job_current_and_sends_sigcont():
    table, kills = make_table()
    job = background(table, [(100, "sleep 1")])
    assert table.current is job
    assert kills == [(-100, signal.SIGCONT)]
    assert table._out.getvalue() == "[1] sleep 1\n"


def test_find_specs():
    table, _ = make_table()
    older = background(table, [(100, "sleep 1")])
    newer = background(table, [(200, "cat file")])
    assert table.find("%%") is newer
    assert table.find("%+") is newer
    assert table.find("%-") is older
    assert table.find("%1") is older
    assert table.find("%sle") is older
    assert table.find("200") is newer
    assert table.by_pid(100) is older


@pytest.mark.parametrize("spec", ["%7", "%zzz", "999", "%-"])
def test_find_unknown_raises(spec):
    table, _ = make_table()
    background(table, [(100, "sleep 1")])
    with pytest.raises(JobNotFoundError):
        table.find(spec)


def test_find_current_without_jobs_raises():
    table, _ = make_table()
    with pytest.raises(JobNotFoundError):
        table.find("%+")


def test_find_requires_job_control():
    table, _ = make_table()
    job = table.make_job(1)
    assert job.jobctl is False
    assert table.find("%1") is job
    with pytest.raises(JobNotFoundError):
        table.find("%1", True)


def test_fg_command_without_current_raises():
    table, _ = make_table()
    with pytest.raises(JobNotFoundError):
        table.fg_command(["fg"])


def test_show_reports_finished_job():
    table, _ = make_table([(100, exited(0))])
    job = background(table, [(100, "sleep 1")])
    out = io.StringIO()
    table.show(out)
    text = out.getvalue()
    assert text.startswith("[1] 完成 PID:100")
    assert text.endswith("sleep 1\n")
    assert job.state is JobState.DONE
    assert job.notified is True


def test_show_nonzero_exit_and_status():
    table, _ = make_table([(100, exited(3))])
    job = background(table, [(100, "false")])
    out = io.StringIO()
    table.show(out)
    assert "完成(3) PID:100" in out.getvalue()
    assert os.WEXITSTATUS(table.status(job)) == 3


def test_show_pgid_mode():
    table, _ = make_table()
    background(table, [(100, "sleep 1")])
    out = io.StringIO()
    table.show(out, ShowMode.PGID)
    assert out.getvalue() == "100\n"


def test_show_changed_only_once():
    table, _ = make_table()
    background(table, [(100, "sleep 1")])
    first = io.StringIO()
    table.show(first, ShowMode.CHANGED)
    second = io.StringIO()
    table.show(second, ShowMode.CHANGED)
    assert "sleep 1" in first.getvalue()
    assert second.getvalue() == ""


def test_show_pids_and_pipeline():
    table, _ = make_table()
    job = background(table, [(100, "a"), (101, "b"), (102, "c")])
    assert job.command_line == "a | b | c"
    out = io.StringIO()
    table.show(out, ShowMode.PID)
    assert "100 101 102 a | b | c\n" in out.getvalue()


def test_stopped_job_and_warning():
    status = stopped(signal.SIGTSTP)
    table, _ = make_table([(100, status)])
    job = background(table, [(100, "vim")])
    out = io.StringIO()
    table.show(out)
    assert job.state is JobState.STOPPED
    assert f"已停止({signal.strsignal(signal.SIGTSTP)})" in out.getvalue()
    assert table.stopped_jobs() == 1
    assert "您有已停止的作业。" in table._out.getvalue()
    assert table.stopped_jobs() == 0


def test_wait_command_without_jobs_returns_zero():
    table, _ = make_table()
    assert table.wait_command(["wait"]) == 0


def test_wait_command_with_running_job_and_nothing_reaped():
    table, _ = make_table()
    background(table, [(100, "sleep 1")])
    assert table.wait_command(["wait"]) == 128


def test_wait_command_unknown_pid():
    table, _ = make_table()
    background(table, [(100, "sleep 1")])
    assert table.wait_command(["wait", "555"]) == 127


def test_wait_command_for_pid():
    table, _ = make_table([(100, exited(7))])
    job = background(table, [(100, "sleep 1")])
    result = table.wait_command(["wait", "100"])
    assert os.WEXITSTATUS(result) == 7
    assert job.waited is True


def test_wait_command_unknown_spec_raises():
    table, _ = make_table()
    with pytest.raises(JobNotFoundError):
        table.wait_command(["wait", "%9"])


def test_wait_for_job_frees_finished_job():
    table, _ = make_table([(100, exited(2))])
    job = table.make_job(1)
    job.procs.append(ProcStat(100))
    result = table.wait_for_job(job)
    assert os.WEXITSTATUS(result) == 2
    assert table.by_number(1) is None


def test_wait_for_no_job_returns_zero():
    table, _ = make_table()
    assert table.wait_for_job(None) == 0


def test_fg_command_on_done_job_returns_zero():
    table, kills = make_table([(100, exited(0))])
    background(table, [(100, "sleep 1")])
    table.show(io.StringIO())
    assert table.fg_command(["fg", "%1"]) == 0
    assert kills == [(-100, signal.SIGCONT)]


def test_free_removes_from_current():
    table, _ = make_table()
    job = background(table, [(100, "sleep 1")])
    table.free(job)
    assert table.current is None
    assert table.by_pid(100) is None


def test_set_job_control_off_is_noop():
    table, _ = make_table()
    table.set_job_control(False)
    assert table.jobctl is False


def test_command_line_falls_back_to_title():
    job = BgJob(title="make all")
    assert job.command_line == "make all"


def test_fork_parent_and_wait_real_child():
    table = JobTable(tty_path=None, stdout=io.StringIO())
    job = table.make_job(1)
    pid = table.fork_parent(job, ForkMode.NOJOB)
    if pid == 0:
        os.execv("/bin/sh", ["sh", "-c", "exit 3"])
    assert job.procs[0].pid == pid
    result = table.wait_for_job(job)
    assert os.WEXITSTATUS(result) == 3
    assert table.by_number(1) is None