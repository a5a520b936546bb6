"""
Exception types raised by the section chunking pipeline.
"""


class SectionChunkingError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(SectionChunkingError, ValueError):
    """
    Raised for malformed configuration or malformed chunk/section metadata.

    These errors are not retried; they surface to whoever started the
    ingestion (or handed us the chunks back from storage).
    """
