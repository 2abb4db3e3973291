# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, List, Mapping, Optional

from .cancel import CancelToken
from .config import EngineConfig
from .model import CapturedOutput, Cause, Status, Step, StepResult, cause_of

_POSIX = os.name == "posix"
_CHUNK = 64 * 1024


class OutputBuffer:
    """
    Bounded capture of one output stream.

    Bytes past `cap` are dropped (the pipe keeps draining so the child
    never blocks on a full pipe) and `truncated` is set.
    """

    def __init__(self, cap: int):
        self.cap = cap
        self.truncated = False
        self._buf = bytearray()

    def feed(self, chunk: bytes) -> None:
        room = self.cap - len(self._buf)
        if room > 0:
            self._buf += chunk[:room]
        if len(chunk) > room:
            self.truncated = True

    def snapshot(self) -> CapturedOutput:
        return CapturedOutput(data=bytes(self._buf), truncated=self.truncated)


def _drain(stream: IO[bytes], buf: OutputBuffer) -> None:
    try:
        while True:
            chunk = stream.read1(_CHUNK)
            if not chunk:
                break
            buf.feed(chunk)
    except (OSError, ValueError):
        # pipe closed underneath us during forced teardown
        pass
    finally:
        stream.close()


class StepExecutor:
    """
    Runs one step as a child process.

    Holds configuration only; every call to `execute` is independent.
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(
        self,
        step: Step,
        workdir: str | Path = ".",
        token: CancelToken | None = None,
        env: Mapping[str, str] | None = None,
    ) -> StepResult:
        token = token or CancelToken()
        started = time.monotonic()

        if token.cancelled:
            return StepResult(name=step.name, status=Status.CANCELLED, cause=cause_of(token))

        cwd = Path(workdir) / step.cwd if step.cwd else Path(workdir)
        full_env = dict(os.environ)
        full_env.update(env or {})
        full_env.update(step.env)

        try:
            proc = subprocess.Popen(
                step.argv,
                cwd=str(cwd),
                env=full_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,  # own process group, killed as a unit
            )
        except OSError as e:
            return StepResult(
                name=step.name,
                status=Status.FAILURE,
                cause=Cause.LAUNCH_ERROR,
                duration=time.monotonic() - started,
                error=f"{type(e).__name__}: {e}",
            )

        out = OutputBuffer(self.config.max_output_bytes)
        err = OutputBuffer(self.config.max_output_bytes)
        readers = [
            threading.Thread(target=_drain, args=(proc.stdout, out), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, err), daemon=True),
        ]
        for t in readers:
            t.start()

        timeout = step.timeout if step.timeout is not None else self.config.step_timeout
        deadline = started + timeout if timeout is not None else None

        stop: Optional[Cause] = None
        try:
            stop = self._supervise(proc, token, deadline)
            if stop is not None:
                self._terminate(proc)
        finally:
            if proc.poll() is None:
                self._signal(proc, signal.SIGKILL if _POSIX else None)
                proc.wait()
            if stop is not None:
                # leftovers in the group (e.g. children that ignored SIGTERM)
                self._signal(proc, signal.SIGKILL if _POSIX else None)
            self._join(proc, readers)

        duration = time.monotonic() - started
        if stop is not None:
            return StepResult(
                name=step.name,
                status=Status.CANCELLED,
                exit_code=proc.returncode,
                cause=stop,
                stdout=out.snapshot(),
                stderr=err.snapshot(),
                duration=duration,
            )

        code = proc.returncode
        return StepResult(
            name=step.name,
            status=Status.SUCCESS if code == 0 else Status.FAILURE,
            exit_code=code,
            cause=None if code == 0 else Cause.NONZERO_EXIT,
            stdout=out.snapshot(),
            stderr=err.snapshot(),
            duration=duration,
        )

    # ------------------------------------------------------------------
    # Process supervision
    # ------------------------------------------------------------------

    def _supervise(self, proc: subprocess.Popen, token: CancelToken, deadline: float | None) -> Optional[Cause]:
        """Wait for exit. Returns the reason supervision stopped early, or None."""
        while True:
            try:
                proc.wait(timeout=self.config.poll_interval)
                return None
            except subprocess.TimeoutExpired:
                pass
            if token.cancelled:
                return cause_of(token)
            if deadline is not None and time.monotonic() >= deadline:
                return Cause.TIMEOUT

    def _terminate(self, proc: subprocess.Popen) -> None:
        """SIGTERM the process group, SIGKILL after the grace period."""
        self._signal(proc, signal.SIGTERM if _POSIX else None)
        try:
            proc.wait(timeout=self.config.kill_grace)
        except subprocess.TimeoutExpired:
            self._signal(proc, signal.SIGKILL if _POSIX else None, force=True)
            proc.wait()

    @staticmethod
    def _signal(proc: subprocess.Popen, sig, force: bool = False) -> None:
        if _POSIX:
            try:
                os.killpg(proc.pid, sig)
            except (ProcessLookupError, PermissionError):
                pass
        elif proc.poll() is None:
            if force:
                proc.kill()
            else:
                proc.terminate()

    def _join(self, proc: subprocess.Popen, readers: List[threading.Thread]) -> None:
        for t in readers:
            t.join(self.config.kill_grace)
        if any(t.is_alive() for t in readers):
            # a background descendant still holds the pipes open
            self._signal(proc, signal.SIGKILL if _POSIX else None, force=True)
            for t in readers:
                t.join(self.config.kill_grace)
