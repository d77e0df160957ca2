"""
Pipeline Errors

Fatal failures of a hybrid analysis request. Each error carries a short
machine-readable code that the API layer returns to clients.

Optional-signal failures (measurement, vision) and narrative failures are
not represented here: they degrade the result instead of aborting it.
"""


class PipelineError(RuntimeError):
    """Base class for errors that abort a hybrid analysis request."""

    code = "pipeline_error"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class EmbeddingSignalError(PipelineError):
    """The embedding service failed or returned an unusable vector."""

    code = "embedding_failed"


class ServiceUnavailableError(PipelineError):
    """A health probe reported the embedding service as not ready."""

    code = "service_unavailable"


class DatastoreError(PipelineError):
    """The reference store could not be read or written."""

    code = "datastore_unavailable"


class NoCandidatesError(PipelineError):
    """Vector search produced no candidates for the probe vector."""

    code = "no_candidates"


class NoResolvableMatchesError(PipelineError):
    """Candidates were found but none resolve to a reference entity."""

    code = "no_resolvable_matches"


class NarrativeError(RuntimeError):
    """
    Report text could not be generated.

    Not fatal: the pipeline substitutes a templated narrative.
    """
