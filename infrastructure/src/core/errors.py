"""
Exception types shared across the pipeline.
"""
from typing import Any, Optional


class PipelineError(Exception):
    """Base class for pipeline failures."""


class ConfigurationError(PipelineError, ValueError):
    """Invalid tunable (threshold, budget, concurrency). Never retried."""


class LLMTimeoutError(PipelineError, TimeoutError):
    """A single backend call exceeded its timeout."""

    def __init__(self, timeout: float, client_name: str = "llm"):
        super().__init__(f"{client_name} timeout after {timeout:.1f}s")
        self.timeout = timeout


class NonJsonLLMError(PipelineError):
    """The backend returned text that could not be parsed into the requested schema."""

    def __init__(self, raw_text: str, usage: Optional[Any] = None,
                 locator: Optional[str] = None, client_name: str = "llm"):
        self.raw_text = raw_text
        self.usage = usage
        self.locator = locator
        self.preview = raw_text[:200].replace('\n', '\\n')
        super().__init__(f'{client_name} returned non-JSON (preview="{self.preview}")')


class TranscriptSourceError(PipelineError):
    """The transcript source could not be fetched."""


class ArticleExistsError(PipelineError):
    """An article with the same id has already been stored."""
