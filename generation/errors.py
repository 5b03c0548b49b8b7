"""
Error taxonomy for the quiz pipeline.

Each error is isolated at the smallest unit it belongs to:
  FetchError           → quiz skipped
  RenderError          → cluster skipped, other clusters continue
  GenerationParseError → cluster contributes zero questions
  NoQuestionsError     → quiz skipped, nothing inserted
  WriteError           → quiz marked failed, earlier quizzes unaffected
  CleanupError         → logged only
"""


class QuizPipelineError(Exception):
    """Base class for all pipeline errors."""


class FetchError(QuizPipelineError):
    """The quiz document could not be downloaded or opened."""


class RenderError(QuizPipelineError):
    """A page could not be rasterized."""


class GenerationParseError(QuizPipelineError):
    """The model output is not a JSON array of questions."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class NoQuestionsError(QuizPipelineError):
    """Every cluster of a quiz produced zero questions."""


class WriteError(QuizPipelineError):
    """The question batch could not be persisted."""


class CleanupError(QuizPipelineError):
    """A transient artifact could not be removed."""


class BlobStoreError(Exception):
    """Base class for object storage failures."""


class NotFoundError(BlobStoreError):
    """The requested object does not exist."""


class TransportError(BlobStoreError):
    """The storage service could not be reached or answered with an error."""
