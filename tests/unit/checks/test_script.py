"""Tests for running script checks through invoke."""

import asyncio
import time

import psutil
import pytest

from guardian.checks.script import ScriptRunner, truncate
from guardian.core.result import ScriptStatus


def finished(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


@pytest.fixture
def runner(tmp_path):
    return ScriptRunner(tmp_path, max_output_bytes=1024)


def test_passing_command(runner):
    result = runner.run("echo hello", timeout=10)

    assert result.status == ScriptStatus.PASSED
    assert result.exit_code == 0
    assert result.stdout.strip() == "hello"
    assert result.error is None


def test_failing_command_records_exit_code(runner):
    result = runner.run("exit 1", timeout=10)

    assert result.status == ScriptStatus.FAILED
    assert result.exit_code == 1


def test_stderr_captured_separately(runner):
    result = runner.run("echo out; echo err >&2; false", timeout=10)

    assert result.status == ScriptStatus.FAILED
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_timeout_kills_process(runner):
    start = time.monotonic()
    result = runner.run("sleep 30", timeout=0.5)

    assert result.status == ScriptStatus.TIMED_OUT
    assert result.exit_code is None
    assert time.monotonic() - start < 10


def test_timeout_kills_grandchildren(runner):
    """Background children holding the pipes do not outlive the timeout."""
    start = time.monotonic()
    result = runner.run("sleep 30 & sleep 30; wait", timeout=0.5)

    assert result.status == ScriptStatus.TIMED_OUT
    assert time.monotonic() - start < 10


def test_command_not_found_is_errored(runner):
    result = runner.run("definitely-not-a-command-guardian", timeout=10)

    assert result.status == ScriptStatus.ERRORED
    assert result.exit_code == 127
    assert result.error == "command not found"


def test_missing_workdir_is_errored(tmp_path):
    runner = ScriptRunner(tmp_path / "nope")

    result = runner.run("echo hi", timeout=10)

    assert result.status == ScriptStatus.ERRORED
    assert result.exit_code is None
    assert "does not exist" in result.error


def test_commands_run_in_workdir(tmp_path):
    (tmp_path / "marker.txt").write_text("x")

    result = ScriptRunner(tmp_path).run("ls", timeout=10)

    assert "marker.txt" in result.stdout


def test_output_truncated_with_marker(runner):
    result = runner.run("head -c 5000 /dev/zero | tr '\\0' 'a'", timeout=10)

    assert result.status == ScriptStatus.PASSED
    assert result.stdout.startswith("a" * 1024)
    assert result.stdout.endswith("[truncated 3976 bytes]")


def test_truncate_leaves_short_text_alone():
    assert truncate("short", 100) == "short"


def test_truncate_does_not_split_characters():
    text = "é" * 10  # two bytes each

    cut = truncate(text, 5)

    assert cut.startswith("éé\n")
    assert cut.endswith("[truncated 15 bytes]")


def test_run_all_never_stops_early(runner):
    results = runner.run_all(["exit 3", "sleep 30", "echo ok"], timeout=0.5)

    assert [r.status for r in results] == [
        ScriptStatus.FAILED,
        ScriptStatus.TIMED_OUT,
        ScriptStatus.PASSED,
    ]


async def test_arun_all_keeps_command_order(runner):
    results = await runner.arun_all(
        ["sleep 0.3; echo slow", "echo fast"], timeout=10
    )

    assert [r.stdout.strip() for r in results] == ["slow", "fast"]


async def test_cancelling_arun_all_kills_running_scripts(tmp_path):
    runner = ScriptRunner(tmp_path)
    task = asyncio.create_task(
        runner.arun_all(["echo $$ > shell.pid; sleep 30"], timeout=60)
    )
    pid_file = tmp_path / "shell.pid"
    for _ in range(100):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.05)
    pid = int(pid_file.read_text())

    start = time.monotonic()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for _ in range(100):
        if finished(pid):
            break
        await asyncio.sleep(0.05)
    else:
        pytest.fail("script kept running after cancellation")
    assert time.monotonic() - start < 10


async def test_crash_in_one_command_keeps_sibling_results(tmp_path, monkeypatch):
    runner = ScriptRunner(tmp_path)
    original = ScriptRunner.run

    def run(self, command, timeout):
        if command == "boom":
            raise RuntimeError("runner exploded")
        return original(self, command, timeout)

    monkeypatch.setattr(ScriptRunner, "run", run)

    results = await runner.arun_all(["echo ok", "boom", "exit 2"], timeout=10)

    assert [r.status for r in results] == [
        ScriptStatus.PASSED,
        ScriptStatus.ERRORED,
        ScriptStatus.FAILED,
    ]
    assert results[1].error == "internal error: runner exploded"
    assert results[0].stdout.strip() == "ok"


def test_chatty_script_output_is_bounded(runner):
    result = runner.run("yes guardian | head -c 200000", timeout=10)

    assert result.status == ScriptStatus.PASSED
    assert result.stdout.endswith("[truncated 198976 bytes]")
    assert len(result.stdout.encode()) < 1100
