"""
Exception hierarchy for the recipe cache service.

Cache-internal faults (StorageError, CorruptEntryError) are swallowed by
CacheManager on the hot path; the rest propagate to the HTTP layer.
"""


class RecipeCacheError(Exception):
    """Base class for all service errors."""


class StorageError(RecipeCacheError):
    """The artifact store could not be read or written."""


class CorruptEntryError(RecipeCacheError):
    """A stored record exists but cannot be decoded into a CacheEntry."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Corrupt cache record {key!r}: {reason}")
        self.key = key
        self.reason = reason


class TemplateError(RecipeCacheError):
    """Unknown prompt template or unresolved placeholder."""


class MalformedRecipeError(RecipeCacheError):
    """Generator output is not a valid recipe document."""


class GenerationError(RecipeCacheError):
    """The external generator failed to produce any output."""


class GeneratorUnavailableError(GenerationError):
    """No generator credentials are configured, so a cache miss cannot be served."""
