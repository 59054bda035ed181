"""Subprocess execution with timeout, line streaming and cooperative cancellation."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 0.2


@dataclass(frozen=True)
class ExitResult:
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled


def terminate_subprocess(proc: subprocess.Popen, *, grace_sec: float = 3.0) -> None:
    """Terminate ``proc``, escalating to kill when it ignores SIGTERM."""
    if proc is None or proc.poll() is not None:
        return
    try:
        proc.terminate()
    except OSError:
        logger.debug("terminate failed pid=%s", proc.pid, exc_info=True)
    deadline = time.monotonic() + grace_sec
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            return
        time.sleep(0.05)
    try:
        proc.kill()
    except OSError:
        logger.debug("kill failed pid=%s", proc.pid, exc_info=True)
    proc.wait()


class ProcessRunner:
    """Runs external tools for handlers, the archive unpacker and thumbnails.

    ``run`` never raises for a non-zero exit; callers inspect the returned
    :class:`ExitResult`. ``OSError`` (missing executable) propagates.
    """

    def __init__(self, *, poll_interval: float = POLL_INTERVAL_SEC, kill_grace_sec: float = 3.0):
        self.poll_interval = poll_interval
        self.kill_grace_sec = kill_grace_sec

    def run(self, args, *, timeout=None, on_output_line=None, cancel_check=None, cwd=None) -> ExitResult:
        stdout_lines = []
        stderr_lines = []
        proc = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
            cwd=cwd,
            errors="replace",
        )

        def _pump(stream, sink, notify):
            if stream is None:
                return
            for raw_line in iter(stream.readline, ""):
                sink.append(raw_line)
                if notify is not None:
                    try:
                        notify(raw_line.rstrip("\r\n"))
                    except Exception:
                        logger.exception("process_output_callback_failed")
            stream.close()

        readers = [
            threading.Thread(
                target=_pump, args=(proc.stdout, stdout_lines, on_output_line),
                name="process-stdout-reader", daemon=True,
            ),
            threading.Thread(
                target=_pump, args=(proc.stderr, stderr_lines, None),
                name="process-stderr-reader", daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        deadline = time.monotonic() + timeout if timeout else None
        timed_out = False
        cancelled = False
        while proc.poll() is None:
            if callable(cancel_check) and cancel_check():
                cancelled = True
                break
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                break
            time.sleep(self.poll_interval)

        if timed_out or cancelled:
            logger.warning(
                "Stopping subprocess pid=%s reason=%s cmd=%s",
                proc.pid,
                "timeout" if timed_out else "cancelled",
                args[0] if args else "",
            )
            terminate_subprocess(proc, grace_sec=self.kill_grace_sec)

        returncode = proc.wait()
        for reader in readers:
            reader.join(timeout=1)
        return ExitResult(
            returncode=None if (timed_out or cancelled) else returncode,
            stdout="".join(stdout_lines),
            stderr="".join(stderr_lines).strip(),
            timed_out=timed_out,
            cancelled=cancelled,
        )
