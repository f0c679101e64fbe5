from typing import Optional

from lesson_agent.domain.usage import TokenUsage


class LessonAgentError(Exception):
    """Base class for domain errors raised while generating a lesson plan."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage


class ValidationError(LessonAgentError):
    """Bad input shape or range. Fatal, short-circuits at input analysis."""


class DegradableRetrievalError(LessonAgentError):
    """Embedding or graph-search failure. Logged and degraded, never fatal."""

    def __init__(self, message: str, path: str, stage: Optional[str] = None):
        super().__init__(message, stage=stage)
        self.path = path


class IncompleteGenerationError(LessonAgentError):
    """A stage's required generated output is missing or structurally invalid.

    `usage` carries tokens already spent on the failed generation so the run
    can still account for them.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        usage: Optional[TokenUsage] = None,
    ):
        super().__init__(message, stage=stage)
        self.usage = usage


class IncompleteObjectivesError(IncompleteGenerationError):
    def __init__(self, message: str, missing_fields: tuple[str, ...] = ()):
        super().__init__(message, stage="objectiveDesign")
        self.missing_fields = missing_fields


class StructuredOutputError(IncompleteGenerationError):
    """The model reply could not be parsed into the expected JSON shape."""

    def __init__(self, message: str, raw_text: str = "", usage: Optional[TokenUsage] = None):
        super().__init__(message, usage=usage)
        self.raw_text = raw_text


class AssemblyError(LessonAgentError):
    """Final structural validation of the assembled lesson failed."""

    def __init__(self, message: str):
        super().__init__(message, stage="outputFormat")
