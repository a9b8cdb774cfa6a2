"""Exception taxonomy for the tip pipeline.

Only InvalidArgument is a programming error. Everything else is caught
somewhere inside the agent and degraded to a fallback.
"""


class TipsBotError(Exception):
    """Base class for all tipsbot errors."""


class GenerationError(TipsBotError):
    """LLM backend call failed or returned nothing usable."""


class DuplicateContent(TipsBotError):
    """Normalized text already exists for the category."""


class VerificationError(TipsBotError):
    """Verifier model unreachable or its answer unparseable."""


class PersistenceError(TipsBotError):
    """Saving to the content store failed.

    Carries the accepted tip so the caller can still post it.
    """

    def __init__(self, message: str, tip=None):
        super().__init__(message)
        self.tip = tip


class SelectionError(TipsBotError):
    """Model answer for category/difficulty did not match the closed set."""


class InvalidArgument(TipsBotError, ValueError):
    """Caller passed a value outside a closed set."""
