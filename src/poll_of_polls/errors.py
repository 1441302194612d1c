"""Exceptions raised by the pipeline stages.

Every error carries the stage that raised it so the CLI can report where a
run stopped.
"""


class PipelineError(Exception):
    """Base class for unrecoverable pipeline errors."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class EmptyInputError(PipelineError):
    """No rows to aggregate, index, fit or summarize."""


class SchemaError(PipelineError):
    """A required column is missing or holds the wrong kind of values."""


class InferenceDivergedError(PipelineError):
    """Sampler diagnostics show the chains did not converge."""

    def __init__(self, stage: str, message: str, diagnostics: dict | None = None):
        super().__init__(stage, message)
        self.diagnostics = diagnostics or {}


class StaleArtifactError(PipelineError):
    """A saved fit does not match the data it is being applied to."""
