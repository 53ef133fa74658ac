from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator


class CompileRequest(BaseModel):
    """Validated submission; built before any file is touched."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: StrictStr = Field(..., alias="code", description="C++ source code")
    stdin: Optional[StrictStr] = Field(default=None, alias="input", description="Program standard input")

    @field_validator("source")
    @classmethod
    def source_not_blank(cls, v: str) -> str:
        if v.strip() == "":
            raise ValueError("'code' must be a non-empty string")
        return v


class CompileRunResponse(BaseModel):
    output: str


@dataclass(frozen=True)
class ClassifiedDiagnostic:
    message: str
    line_number: Optional[int] = None
    source_line: Optional[str] = None
    hint: Optional[str] = None


@dataclass
class PipelineRun:
    run_id: str
    source_path: str
    binary_path: str
    source_lines: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompileResult:
    ok: bool
    stderr: str = ""
    exit_code: int = 0


# Execution outcomes. Exactly one is produced per pipeline run.


@dataclass(frozen=True)
class ExecutionOutcome:
    pass


@dataclass(frozen=True)
class ProgramOutcome(ExecutionOutcome):
    """Outcome of a binary that was actually started."""

    stdout: str = ""
    stderr: str = ""
    truncated: bool = False


@dataclass(frozen=True)
class Success(ProgramOutcome):
    pass


@dataclass(frozen=True)
class Truncated(ProgramOutcome):
    truncated: bool = True


@dataclass(frozen=True)
class TimedOut(ProgramOutcome):
    pass


@dataclass(frozen=True)
class KilledBySignal(ProgramOutcome):
    signal: str = ""


@dataclass(frozen=True)
class NonZeroExit(ProgramOutcome):
    code: int = 1


@dataclass(frozen=True)
class CompileError(ExecutionOutcome):
    raw_stderr: str = ""
    classified: Optional[ClassifiedDiagnostic] = None


@dataclass(frozen=True)
class SpawnError(ExecutionOutcome):
    message: str = ""


@dataclass(frozen=True)
class InvalidInput(ExecutionOutcome):
    reason: str = ""


@dataclass(frozen=True)
class InternalError(ExecutionOutcome):
    message: str = ""
