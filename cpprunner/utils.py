from __future__ import annotations

import logging
import os
import uuid
from contextlib import contextmanager
from typing import Iterator

from .models import PipelineRun

logger = logging.getLogger(__name__)


def ensure_scratch_dir(path: str) -> str:
    os.makedirs(path, exist_ok=True)
    return path


def allocate(scratch_dir: str, prefix: str = "temp") -> PipelineRun:
    """Derive a non-colliding source/binary path pair inside ``scratch_dir``."""
    run_id = uuid.uuid4().hex
    base = os.path.join(scratch_dir, f"{prefix}_{run_id}")
    return PipelineRun(run_id=run_id, source_path=base + ".cpp", binary_path=base)


def write_text_file(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def release(*paths: str) -> None:
    # Missing files are expected, e.g. no binary after a failed compile.
    for path in paths:
        try:
            os.unlink(path)
        except OSError:
            pass


@contextmanager
def pipeline_run(scratch_dir: str, source: str) -> Iterator[PipelineRun]:
    """Allocate the run's artifacts, write the source, and always release them."""
    run = allocate(scratch_dir)
    run.source_lines = source.split("\n")
    logger.debug("Allocated run %s in %s", run.run_id, scratch_dir)
    try:
        write_text_file(run.source_path, source)
        yield run
    finally:
        release(run.source_path, run.binary_path)
        logger.debug("Released artifacts of run %s", run.run_id)
