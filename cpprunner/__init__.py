"""Compile and run C++ submissions with beginner-friendly diagnostics."""

from .pipeline import Pipeline, run_pipeline

__all__ = ["Pipeline", "run_pipeline"]
