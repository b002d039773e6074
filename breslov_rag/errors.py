"""Exception types raised by the Breslov RAG engine."""


class BreslovRagError(Exception):
    """Base class for engine errors."""


class IndexNotLoadedError(BreslovRagError, RuntimeError):
    """Raised when the router is used before any index set was loaded."""


class MissingDataError(BreslovRagError, KeyError):
    """Raised when a chunk referenced by an index is absent from the store."""

    def __str__(self) -> str:
        # KeyError repr-quotes its message; keep it readable in logs.
        return str(self.args[0]) if self.args else ""


class BookValidationError(BreslovRagError, ValueError):
    """Raised when a book file does not describe a valid book."""


class IndexStoreError(BreslovRagError):
    """Raised when persisted indexes are missing or unreadable."""
