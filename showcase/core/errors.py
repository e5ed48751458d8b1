"""Error taxonomy for the scrape pipeline."""

from __future__ import annotations


class ShowcaseError(Exception):
    """Base class for pipeline errors."""


class ConfigError(ShowcaseError):
    """Raised when settings fail validation at startup."""


class FetchError(ShowcaseError):
    """Raised when the branch list or a README cannot be fetched."""


class ParseError(ShowcaseError):
    """Raised for an unrecognized week heading or malformed project entry."""


class CaptureError(ShowcaseError):
    """Raised for navigation or timeout failures while rendering a screenshot."""


class PersistenceError(ShowcaseError):
    """Raised when a branch transaction fails and is rolled back."""
