"""
Typed failures raised by the embedding and generation pipelines.

None of these are swallowed internally: they surface to whoever called
``rank()``, ``embed()``, ``generate()`` or inspected a ``LoadState``.
"""

from typing import Optional


class SemanticSearchError(Exception):
    """Base class for every error raised by this package."""


class EncodingError(SemanticSearchError, ValueError):
    """Input text was empty or the tokenizer could not encode it."""


class DuplicateDocumentError(EncodingError):
    """Two documents in one ranking request share an identity."""


class DTypeError(SemanticSearchError, TypeError):
    """The embedding computation produced something other than float32."""


class NotReadyError(SemanticSearchError):
    """A model capability was used before its lifecycle reached Ready."""

    def __init__(self, model_id: str, state: str):
        self.model_id = model_id
        self.state = state
        super().__init__(f"Model '{model_id}' is not ready (state: {state}).")


class ConcurrentGenerationError(SemanticSearchError):
    """A generation was requested while another one is still streaming."""


class LoadError(SemanticSearchError):
    """Download or initialization of a model failed."""

    def __init__(self, model_id: str, cause: Optional[BaseException]):
        self.model_id = model_id
        self.cause = cause
        super().__init__(f"Failed to load '{model_id}': {cause}")
        self.__cause__ = cause
