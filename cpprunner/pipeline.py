"""Compile-and-run pipeline for a single submission.

Received -> Compiling -> Executing -> Done. Every path ends in ``Done`` with
one :class:`~cpprunner.models.ExecutionOutcome`, and the run's temp files are
deleted before the outcome is rendered.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from .config import RunnerSettings, get_settings
from .diagnostics import classify, format_diagnostic
from .models import (
    CompileError,
    CompileRequest,
    ExecutionOutcome,
    InternalError,
    InvalidInput,
    KilledBySignal,
    NonZeroExit,
    PipelineRun,
    ProgramOutcome,
    SpawnError,
    TimedOut,
)
from .sandbox import compile_source, execute_binary, format_seconds
from .utils import ensure_scratch_dir, pipeline_run

logger = logging.getLogger(__name__)

INVALID_INPUT_TEXT = "Invalid code."
NO_OUTPUT_TEXT = "The program produced no output."
INTERNAL_ERROR_TEXT = "Internal error while processing the program. Please try again."
STDERR_LABEL = "\n[stderr]\n"


class State(str, enum.Enum):
    RECEIVED = "received"
    COMPILING = "compiling"
    EXECUTING = "executing"
    DONE = "done"


@dataclass
class PipelineResult:
    outcome: ExecutionOutcome
    output: str
    run_id: Optional[str] = None


class Pipeline:
    def __init__(self, settings: Optional[RunnerSettings] = None) -> None:
        self.settings = settings or get_settings()
        ensure_scratch_dir(self.settings.scratch_dir)
        self.state = State.RECEIVED

    def run(self, code: Any, stdin: Any = None) -> PipelineResult:
        start = time.monotonic()
        self.state = State.RECEIVED
        run_id = None

        try:
            request = CompileRequest.model_validate({"code": code, "input": stdin})
        except ValidationError as e:
            logger.info("Rejected submission: %d validation error(s)", e.error_count())
            return self._finish(InvalidInput(reason=e.errors()[0]["msg"]), None, start)

        try:
            with pipeline_run(self.settings.scratch_dir, request.source) as run:
                run_id = run.run_id
                outcome = self._compile_and_execute(run, request.stdin)
        except Exception as e:
            logger.exception("Run %s failed unexpectedly", run_id)
            outcome = InternalError(message=str(e))

        return self._finish(outcome, run_id, start)

    def _compile_and_execute(self, run: PipelineRun, stdin: Optional[str]) -> ExecutionOutcome:
        self.state = State.COMPILING
        compiled = compile_source(run.source_path, run.binary_path, self.settings)
        if not compiled.ok:
            logger.info("Run %s did not compile (exit code %d)", run.run_id, compiled.exit_code)
            return CompileError(
                raw_stderr=compiled.stderr,
                classified=classify(compiled.stderr, run.source_lines),
            )

        self.state = State.EXECUTING
        return execute_binary(run.binary_path, stdin, self.settings)

    def _finish(self, outcome: ExecutionOutcome, run_id: Optional[str], start: float) -> PipelineResult:
        self.state = State.DONE
        kind = type(outcome).__name__
        if isinstance(outcome, InvalidInput):
            kind = f"{kind} ({outcome.reason})"
        logger.info(
            "Run %s finished: %s in %dms",
            run_id or "-",
            kind,
            int((time.monotonic() - start) * 1000),
        )
        return PipelineResult(outcome=outcome, output=render_outcome(outcome, self.settings), run_id=run_id)


def _clip(text: str, limit: int) -> str:
    """Cut ``text`` to at most ``limit`` UTF-8 bytes without splitting a character."""
    if limit <= 0:
        return ""
    data = text.encode("utf-8")
    if len(data) <= limit:
        return text
    return data[:limit].decode("utf-8", errors="ignore")


def render_outcome(outcome: ExecutionOutcome, settings: RunnerSettings) -> str:
    """Turn an outcome into the single text block returned to the user."""
    if isinstance(outcome, InvalidInput):
        return INVALID_INPUT_TEXT
    if isinstance(outcome, SpawnError):
        return f"Error running the program: {outcome.message}"
    if isinstance(outcome, InternalError):
        return INTERNAL_ERROR_TEXT
    if isinstance(outcome, CompileError):
        if outcome.classified is not None:
            return f"{format_diagnostic(outcome.classified)}\n\nCompiler output:\n{outcome.raw_stderr.strip()}"
        return f"Compilation error\n\n{outcome.raw_stderr.strip()}"
    if not isinstance(outcome, ProgramOutcome):
        raise TypeError(f"Unknown outcome {outcome!r}")

    text = outcome.stdout
    truncated = outcome.truncated
    if outcome.stderr:
        # stdout and the stderr block share one output budget.
        room = settings.max_output_bytes - len(text.encode("utf-8")) - len(STDERR_LABEL)
        stderr = _clip(outcome.stderr, room)
        if stderr != outcome.stderr:
            truncated = True
        if stderr:
            text += STDERR_LABEL + stderr
    if truncated:
        text += f"\n\nOutput truncated (more than {settings.max_output_bytes // 1024} KB)"

    if isinstance(outcome, TimedOut):
        text += f"\n\nProcess stopped for exceeding the time limit ({format_seconds(settings.timeout_ms)})"
    elif isinstance(outcome, KilledBySignal):
        text += f"\n\nProcess terminated by signal: {outcome.signal}"
    elif isinstance(outcome, NonZeroExit):
        text += f"\n\nRuntime error (exit code {outcome.code})"

    if not text.strip():
        return NO_OUTPUT_TEXT
    return text


def run_pipeline(code: Any, stdin: Any = None, settings: Optional[RunnerSettings] = None) -> str:
    return Pipeline(settings).run(code, stdin).output
