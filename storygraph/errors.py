"""Exception hierarchy for the story graph pipeline.

Nearly all fallibility sits at the external-service boundaries. Transient
extraction failures are retried inside the adapter; interruption signals are
expected terminations, not failures.
"""


class StoryGraphError(Exception):
    """Base class for all pipeline errors."""


# --- Extraction service -----------------------------------------------------


class ExtractionError(StoryGraphError):
    """Base class for text-extraction service failures."""


class TransientExtractionError(ExtractionError):
    """A failure the adapter retries with backoff."""


class RateLimitError(TransientExtractionError):
    """The service reported a rate limit or exhausted quota."""


class EmptyResponseError(TransientExtractionError):
    """The service returned no candidates or an empty text."""


class ContentBlockedError(TransientExtractionError):
    """The service refused to answer (safety block)."""

    def __init__(self, reason: str):
        super().__init__(f"Content blocked: {reason}")
        self.reason = reason


class MalformedResponseError(TransientExtractionError):
    """The response text is not parseable JSON."""


class ResponseValidationError(TransientExtractionError):
    """The JSON parsed but violates the task schema or references unknown ids."""


class LLMTimeoutError(TransientExtractionError, TimeoutError):
    """An LLM request exceeded the client's configured timeout."""


class ExtractionFailedError(ExtractionError):
    """Retries exhausted; the current stage aborts and the checkpoint is kept."""

    def __init__(self, task: str, attempts: int):
        super().__init__(f"Extraction task {task!r} failed after {attempts} attempts")
        self.task = task
        self.attempts = attempts


# --- Run control ------------------------------------------------------------


class AnalysisInterrupted(StoryGraphError):
    """Base class for cooperative interruption signals."""


class AnalysisCancelledError(AnalysisInterrupted):
    """The document status was ``cancelling``; the checkpoint has been cleared."""


class AnalysisPausedError(AnalysisInterrupted):
    """The document status was ``paused``; the checkpoint is kept for resume."""


class CheckpointInconsistencyError(StoryGraphError):
    """A stage is marked complete but its cached payload is missing or invalid."""


# --- Graph store ------------------------------------------------------------


class GraphStoreError(StoryGraphError):
    """Base class for graph store write failures."""


class CausalCycleError(GraphStoreError):
    """Inserting the causal edge would create a cycle."""

    def __init__(self, from_id: str, to_id: str):
        super().__init__(f"Edge {from_id} -> {to_id} would create a cycle")
        self.from_id = from_id
        self.to_id = to_id


class UnknownEntityError(GraphStoreError):
    """An edge or record references an entity the store does not hold."""
