"""Command execution on top of invoke, with process-tree cleanup."""

from __future__ import annotations

import contextlib
import threading
from pathlib import Path

import psutil
from invoke import Config, Context, Result
from invoke.exceptions import CommandTimedOut
from invoke.runners import Local

from guardian.core.log import logger

_active_lock = threading.Lock()
_active: set[ProcessTreeLocal] = set()


def kill_process_tree(pid: int) -> int:
    """Kill a process and every descendant it spawned.

    Descendants are collected first, then the root is killed before
    them so a shell cannot observe its children dying and exit
    normally. Nothing here waits for the processes to go away.

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return 0

    try:
        descendants = root.children(recursive=True)
    except psutil.NoSuchProcess:
        descendants = []

    killed = 0
    for proc in (root, *descendants):
        with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
            proc.kill()
            killed += 1
    return killed


class ProcessTreeLocal(Local):
    """invoke's local runner, killing the whole tree on timeout.

    invoke only signals the shell it started. Shell commands such as
    `make test` leave grandchildren holding the output pipes, which
    keeps invoke's reader threads (and us) waiting past the timeout.

    The timeout is recorded when the timer fires rather than read
    back from the timer thread, so a command that exits while it is
    being killed is still reported as timed out. Captured output is
    bounded by the context's `capture_limit` (bytes per stream); the
    pipes keep draining and the dropped byte counts are reported on
    the result as `dropped`.
    """

    _timeout_fired = False

    def __init__(self, context):
        super().__init__(context)
        self._dropped = {"stdout": 0, "stderr": 0}

    def start(self, command: str, shell: str, env: dict) -> None:
        super().start(command, shell, env)
        with _active_lock:
            _active.add(self)

    def stop(self) -> None:
        with _active_lock:
            _active.discard(self)
        super().stop()

    def start_timer(self, timeout: float) -> None:
        self._timer = threading.Timer(timeout, self._expire)
        self._timer.daemon = True
        self._timer.start()

    def _expire(self) -> None:
        self._timeout_fired = True
        self.kill()

    @property
    def timed_out(self) -> bool:
        return self._timeout_fired

    def kill(self) -> None:
        pid = self.pid if self.using_pty else self.process.pid
        count = kill_process_tree(pid)
        logger.spew("Killed process tree", pid=pid, processes=count)

    def read_proc_output(self, reader):
        limit = getattr(self.context, "capture_limit", None)
        if not limit:
            yield from super().read_proc_output(reader)
            return

        stream = "stderr" if reader == self.read_proc_stderr else "stdout"
        kept = 0
        for data in super().read_proc_output(reader):
            size = len(data.encode("utf-8", errors="replace"))
            if kept + size <= limit:
                kept += size
                yield data
                continue
            head = ""
            if kept < limit:
                head = data.encode("utf-8", errors="replace")[
                    : limit - kept
                ].decode("utf-8", errors="ignore")
            kept = limit
            self._dropped[stream] += size - len(head.encode("utf-8"))
            if head:
                yield head

    def generate_result(self, **kwargs) -> Result:
        result = super().generate_result(**kwargs)
        result.dropped = dict(self._dropped)
        return result


def terminate_all() -> int:
    """Kill every command still running; used on interrupt.

    Returns:
        Number of commands whose process trees were killed
    """
    with _active_lock:
        running = list(_active)
    for local in running:
        local.kill()
    return len(running)


class Runner(Context):
    """invoke Context configured with ProcessTreeLocal."""

    # Per-stream byte limit on captured output; None keeps everything
    capture_limit: int | None = None

    def __init__(self, config: Config | None = None):
        if config is None:
            config = Config(overrides={"runners": {"local": ProcessTreeLocal}})
        super().__init__(config=config)

    def execute(
        self,
        command: str,
        cwd: Path | None = None,
        timeout: float | None = None,
        check: bool = True,
        env: dict[str, str] | None = None,
        capture_limit: int | None = None,
    ) -> Result:
        """Run a shell command and capture its output.

        Args:
            command: Shell command line
            cwd: Working directory for the command
            timeout: Seconds before the process tree is killed
            check: Raise invoke.UnexpectedExit on non-zero exit
            env: Extra environment variables (merged into os.environ)
            capture_limit: Bytes kept per output stream; the rest is
                read and counted in `result.dropped`

        Returns:
            invoke.Result. After a timeout `exited` is None and the
            output captured so far is kept.

        Raises:
            invoke.UnexpectedExit: check=True and a non-zero exit
        """
        kwargs = {
            "hide": True,
            "warn": not check,
            "in_stream": False,
        }
        if timeout:
            kwargs["timeout"] = timeout
        if env:
            kwargs["env"] = env
        self.capture_limit = capture_limit

        logger.spew("Executing command", command=command, cwd=str(cwd or ""))
        try:
            if cwd:
                with self.cd(str(cwd)):
                    result = self.run(command, **kwargs)
            else:
                result = self.run(command, **kwargs)
        except CommandTimedOut as e:
            result = e.result
            result.exited = None

        return result
