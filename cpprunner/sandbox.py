from __future__ import annotations

import codecs
import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, List, Optional, Tuple

try:
    import resource  # POSIX only
except ImportError:  # pragma: no cover
    resource = None  # type: ignore

from .config import RunnerSettings
from .models import (
    CompileResult,
    ExecutionOutcome,
    KilledBySignal,
    NonZeroExit,
    SpawnError,
    Success,
    TimedOut,
    Truncated,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
DISPLAY_SOURCE_NAME = "main.cpp"
DISPLAY_BINARY_NAME = "program"


POLL_INTERVAL = 0.01
JOIN_TIMEOUT = 1.0


@dataclass
class RunLimits:
    wall_time_seconds: float = 5.0
    cpu_time_seconds: Optional[int] = None
    memory_megabytes: Optional[int] = None
    file_size_megabytes: Optional[int] = None


@dataclass
class RunOutcome:
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    was_killed_by_timeout: bool


class BoundedBuffer:
    """Accumulates stream chunks up to ``limit`` bytes and drops the rest."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.total = 0
        self.truncated = False
        self._chunks: List[bytes] = []
        self._size = 0

    def write(self, chunk: bytes) -> bool:
        """Store what fits; return False once the cap has been hit."""
        self.total += len(chunk)
        room = self.limit - self._size
        if len(chunk) > room:
            self.truncated = True
            chunk = chunk[:room]
        if chunk:
            self._chunks.append(chunk)
            self._size += len(chunk)
        return not self.truncated

    def __len__(self) -> int:
        return self._size

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)

    def text(self) -> str:
        # A cut stream may end inside a multi-byte character; leave it out.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        return decoder.decode(self.getvalue(), final=not self.truncated)


def _wanted_limits(limits: RunLimits) -> List[Tuple[int, int]]:
    if resource is None:
        return []
    wanted = []
    if limits.cpu_time_seconds is not None:
        wanted.append((resource.RLIMIT_CPU, limits.cpu_time_seconds))
    if limits.memory_megabytes is not None:
        wanted.append((resource.RLIMIT_AS, limits.memory_megabytes * 1024 * 1024))
    if limits.file_size_megabytes is not None:
        wanted.append((resource.RLIMIT_FSIZE, limits.file_size_megabytes * 1024 * 1024))
    return wanted


def _set_resource_limits(limits: RunLimits) -> None:
    for which, value in _wanted_limits(limits):
        # Best-effort: a host hard limit below ours is left as is.
        try:
            resource.setrlimit(which, (value, value))
        except (ValueError, OSError):
            pass


def _has_prlimit() -> bool:
    return resource is not None and hasattr(resource, "prlimit")


def _preexec_for(limits: RunLimits):
    # Fallback for hosts without prlimit; preexec_fn runs between fork and exec.
    if resource is None or os.name != "posix" or _has_prlimit():
        return None
    return lambda: _set_resource_limits(limits)


def _apply_limits(proc: subprocess.Popen, limits: RunLimits) -> None:
    """Set the rlimits of an already running child (Linux ``prlimit``)."""
    if not _has_prlimit():
        return
    for which, value in _wanted_limits(limits):
        try:
            resource.prlimit(proc.pid, which, (value, value))
        except (ValueError, OSError) as e:
            logger.debug("Could not set limit %d on process %d: %s", which, proc.pid, e)


def _child_env() -> dict:
    env = dict(os.environ)
    if os.name == "posix":
        env.update({"LANG": "C", "LC_ALL": "C"})
    return env


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        if os.name == "posix":
            os.killpg(proc.pid, sig)
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


def _exited_within(proc: subprocess.Popen, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds for ``proc`` to exit without reaping it.

    An unreaped leader keeps its process group id reserved, so the group can
    still be signalled afterwards without hitting a recycled id.
    """
    if not hasattr(os, "waitid"):
        try:
            proc.wait(timeout=timeout)
            return True
        except subprocess.TimeoutExpired:
            return False

    deadline = time.monotonic() + timeout
    while True:
        try:
            if os.waitid(os.P_PID, proc.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT) is not None:
                return True
        except ChildProcessError:
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        time.sleep(min(POLL_INTERVAL, remaining))


def format_seconds(ms: int) -> str:
    return f"{ms / 1000:g}s"


def run_command(
    argv: List[str],
    working_directory: Optional[str] = None,
    limits: Optional[RunLimits] = None,
) -> RunOutcome:
    """Run ``argv`` to completion, capturing both streams in full."""
    if limits is None:
        limits = RunLimits()

    start = time.monotonic()
    was_killed_by_timeout = False

    proc = subprocess.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=working_directory,
        text=True,
        errors="replace",
        preexec_fn=_preexec_for(limits),
        start_new_session=True,
        env=_child_env(),
    )
    try:
        _apply_limits(proc, limits)
        stdout, stderr = proc.communicate(timeout=limits.wall_time_seconds)
    except subprocess.TimeoutExpired:
        was_killed_by_timeout = True
        _signal_group(proc, signal.SIGKILL)
        stdout, stderr = proc.communicate()
    except BaseException:
        _signal_group(proc, signal.SIGKILL)
        proc.communicate()
        raise
    end = time.monotonic()

    return RunOutcome(
        stdout=stdout or "",
        stderr=stderr or "",
        exit_code=proc.returncode if proc.returncode is not None else -1,
        duration_ms=int((end - start) * 1000),
        was_killed_by_timeout=was_killed_by_timeout,
    )


def compile_source(source_path: str, binary_path: str, settings: RunnerSettings) -> CompileResult:
    """Compile one translation unit; OSError propagates if the compiler cannot start."""
    cmd = [settings.compiler, source_path, *settings.compile_flags, "-o", binary_path]
    limits = RunLimits(
        wall_time_seconds=settings.timeout_seconds,
        cpu_time_seconds=settings.compile_cpu_seconds,
        memory_megabytes=settings.compile_memory_megabytes,
    )
    outcome = run_command(cmd, working_directory=os.path.dirname(source_path) or None, limits=limits)
    logger.debug("Compiler exited with %d after %dms", outcome.exit_code, outcome.duration_ms)

    if outcome.was_killed_by_timeout:
        logger.warning("Compiler exceeded %s for %s", format_seconds(settings.timeout_ms), source_path)
        return CompileResult(
            ok=False,
            stderr=f"Compilation exceeded the time limit ({format_seconds(settings.timeout_ms)}).",
            exit_code=outcome.exit_code,
        )

    # The source path contains the binary path, so it is replaced first.
    stderr = outcome.stderr.replace(source_path, DISPLAY_SOURCE_NAME).replace(binary_path, DISPLAY_BINARY_NAME)
    return CompileResult(
        ok=outcome.exit_code == 0,
        stderr=stderr,
        exit_code=outcome.exit_code,
    )


def _pump(stream: IO[bytes], buffer: BoundedBuffer, name: str) -> None:
    # Keep draining past the cap so the child never blocks on a full pipe.
    capped = False
    with stream:
        for chunk in iter(lambda: stream.read1(CHUNK_SIZE), b""):
            if not buffer.write(chunk) and not capped:
                capped = True
                logger.debug("%s reached %d bytes, discarding the rest", name, buffer.limit)


def _feed(stream: IO[bytes], data: Optional[str]) -> None:
    # BrokenPipeError: the child exited without reading its input.
    try:
        if data:
            stream.write(data.encode("utf-8") + b"\n")
    except BrokenPipeError:
        pass
    finally:
        try:
            stream.close()
        except BrokenPipeError:
            pass


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


def execute_binary(binary_path: str, stdin: Optional[str], settings: RunnerSettings) -> ExecutionOutcome:
    """Run a compiled program under the output cap and the wall-clock deadline."""
    limits = RunLimits(
        wall_time_seconds=settings.timeout_seconds,
        cpu_time_seconds=settings.run_cpu_seconds,
        memory_megabytes=settings.run_memory_megabytes,
        file_size_megabytes=settings.run_file_size_megabytes,
    )
    stdout_buf = BoundedBuffer(settings.max_output_bytes)
    stderr_buf = BoundedBuffer(settings.max_output_bytes)

    try:
        proc = subprocess.Popen(
            [binary_path],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=os.path.dirname(binary_path) or None,
            preexec_fn=_preexec_for(limits),
            start_new_session=True,
            env=_child_env(),
        )
    except OSError as e:
        logger.warning("Could not start %s: %s", binary_path, e)
        return SpawnError(message=e.strerror or e.__class__.__name__)
    except subprocess.SubprocessError as e:
        logger.warning("Could not start %s: %s", binary_path, e)
        return SpawnError(message=str(e))

    workers = [
        (threading.Thread(target=_pump, args=(proc.stdout, stdout_buf, "stdout"), name="stdout reader"), proc.stdout),
        (threading.Thread(target=_pump, args=(proc.stderr, stderr_buf, "stderr"), name="stderr reader"), proc.stderr),
        (threading.Thread(target=_feed, args=(proc.stdin, stdin), name="stdin feeder"), proc.stdin),
    ]
    for worker, _ in workers:
        worker.daemon = True

    timed_out = False
    try:
        _apply_limits(proc, limits)
        for worker, _ in workers:
            worker.start()

        if not _exited_within(proc, limits.wall_time_seconds):
            timed_out = True
            _signal_group(proc, signal.SIGTERM)
            if not _exited_within(proc, settings.kill_grace_ms / 1000):
                logger.info("Process %d ignored SIGTERM, sending SIGKILL", proc.pid)
    finally:
        # Sent before reaping, so the group id still belongs to this run.
        # Also stops anything the program left running in its session.
        _signal_group(proc, signal.SIGKILL)
        returncode = proc.wait()
        # Started workers close their own pipe.
        for worker, stream in workers:
            if worker.ident is None:
                stream.close()

    for worker, _ in workers:
        worker.join(timeout=JOIN_TIMEOUT)
        if worker.is_alive():
            logger.warning(
                "%s for process %d still running after %gs; a detached descendant may hold its pipe",
                worker.name,
                proc.pid,
                JOIN_TIMEOUT,
            )

    stdout = stdout_buf.text()
    stderr = stderr_buf.text()
    truncated = stdout_buf.truncated or stderr_buf.truncated
    if truncated:
        logger.info(
            "Process %d output capped at %d bytes (stdout %d, stderr %d bytes produced)",
            proc.pid,
            settings.max_output_bytes,
            stdout_buf.total,
            stderr_buf.total,
        )

    if timed_out:
        return TimedOut(stdout=stdout, stderr=stderr, truncated=truncated)
    if returncode < 0:
        return KilledBySignal(stdout=stdout, stderr=stderr, truncated=truncated, signal=_signal_name(-returncode))
    if returncode != 0:
        return NonZeroExit(stdout=stdout, stderr=stderr, truncated=truncated, code=returncode)
    if truncated:
        return Truncated(stdout=stdout, stderr=stderr)
    return Success(stdout=stdout, stderr=stderr)
