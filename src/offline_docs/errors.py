"""Exceptions raised by the documentation cache."""


class DocsError(Exception):
    """Base class for documentation cache errors."""


class UsageError(DocsError, ValueError):
    """Raised for bad input. Never retryable."""


class EmptyQueryError(UsageError):
    """Raised when a search query has no terms."""


class UnknownDocsetError(UsageError):
    """Raised when a docset name is not in the catalog."""


class DocsetExistsError(UsageError):
    """Raised when fetching an installed docset without force."""


class DocsetNotInstalledError(UsageError):
    """Raised when removing a docset that is not installed."""


class FetchError(DocsError):
    """Raised when a fetch produced nothing worth installing."""

    def __init__(self, docset: str, reason: str) -> None:
        """Initialise fetch error.

        Args:
            docset: Name of the docset that failed.
            reason: Human readable cause.
        """
        super().__init__(f"Failed to fetch {docset}: {reason}")
        self.docset = docset
        self.reason = reason
