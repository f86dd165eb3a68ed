# notes_pipeline/errors.py
"""
Error taxonomy for the notes pipeline.

Two families matter to the engine:
    - ItemError: one item's unit of work failed. Recorded as a failed id,
      the stage keeps going.
    - FatalError: anything outside per-item scope. Halts the stage, is
      recorded via fail_stage and propagates to the caller.
"""


class PipelineError(Exception):
    """Base class for all notes-pipeline errors."""


class ItemError(PipelineError):
    """A single item's unit of work failed."""


class ExhaustedRetries(ItemError):
    """
    An external call kept failing after every retry.

    The last underlying error is chained as __cause__.
    """

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{description} failed after {attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}"
        )


class RequestTooLarge(ItemError):
    """Estimated token cost of one request exceeds the whole per-window budget."""

    def __init__(self, estimated_tokens: int, budget: int) -> None:
        self.estimated_tokens = estimated_tokens
        self.budget = budget
        super().__init__(
            f"Request needs ~{estimated_tokens} tokens but the budget is {budget} per window"
        )


class FatalError(PipelineError):
    """Error outside per-item scope. Never recorded as an item failure."""


class StageFailure(FatalError):
    """A stage was aborted."""

    def __init__(self, message: str, stage: str | None = None) -> None:
        self.stage = stage
        super().__init__(message)


class InvariantViolation(StageFailure):
    """A programming invariant of the engine was violated."""


class CheckpointError(FatalError):
    """The checkpoint document could not be read or persisted."""


class ConfigurationError(FatalError):
    """Invalid configuration or unusable storage location."""


class Cancelled(PipelineError):
    """Shutdown was requested; no new work is issued."""
