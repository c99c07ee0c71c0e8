"""Exceptions raised by knowpack components."""

from __future__ import annotations


class KnowpackError(RuntimeError):
    """Base class for caller-visible knowpack failures."""


class PackNotFound(KnowpackError, LookupError):
    """Raised when the requested pack does not exist in the document store."""

    def __init__(self, pack: str) -> None:
        super().__init__(f"Unknown pack: {pack}")
        self.pack = pack


class DocumentNotFound(KnowpackError, LookupError):
    """Raised when an explicit document id is not held by the store."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Unknown document: {document_id}")
        self.document_id = document_id


class BudgetTooSmall(KnowpackError, ValueError):
    """Raised when a byte budget cannot hold the separator plus a minimal document."""

    def __init__(self, budget_bytes: int, minimum_bytes: int) -> None:
        super().__init__(f"Budget of {budget_bytes} bytes is below the minimum of {minimum_bytes} bytes")
        self.budget_bytes = budget_bytes
        self.minimum_bytes = minimum_bytes


class StoreUnavailable(KnowpackError):
    """Raised when the document store cannot serve a fetch."""


class InvalidPath(KnowpackError, ValueError):
    """Raised when a pack-relative path escapes its pack directory."""
