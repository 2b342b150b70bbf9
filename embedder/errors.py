"""
Exception hierarchy for the embedder.

Every failure raised by the package derives from ``EmbedderError`` so that
callers can catch the whole family at once.  The underlying engine or
tokenizer exception is always chained (``raise ... from exc``).
"""

from typing import List, Optional, Sequence


class EmbedderError(Exception):
    """Base class for all embedder failures."""


class ConfigurationError(EmbedderError):
    """Invalid settings, missing artifacts, or a model whose ports don't fit."""


class TokenizationError(EmbedderError):
    """The tokenizer rejected one of the input texts."""


class InferenceError(EmbedderError):
    """Tensor allocation, engine run, or output shape failure."""


class LifecycleError(EmbedderError):
    """
    Session or runtime environment teardown failed.

    When several teardown steps fail, all of them are kept in ``errors``
    and the message lists each one.
    """

    def __init__(self, message: str, errors: Optional[Sequence[BaseException]] = None):
        self.errors: List[BaseException] = list(errors or [])
        if len(self.errors) > 1:
            details = "; ".join(str(e) for e in self.errors)
            message = f"{message}: {details}"
        super().__init__(message)
