"""Gateway error taxonomy.

Only genuinely invalid configuration is surfaced as an error; every other
edge case degrades gracefully inside the core.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors raised by the gateway core."""


class EmptyPoolError(GatewayError, ValueError):
    """Raised when a key selection is attempted against an empty pool."""

    def __init__(self, message: str = "Key pool is empty") -> None:
        super().__init__(message)


class NotFoundError(GatewayError, KeyError):
    """Raised when a knowledge document id does not exist."""

    def __init__(self, doc_id: str) -> None:
        self.doc_id = doc_id
        super().__init__(doc_id)

    def __str__(self) -> str:
        return f"Knowledge document not found: {self.doc_id}"


class DuplicateDocumentError(GatewayError, ValueError):
    """Raised when a knowledge document is created with an id already in use."""

    def __init__(self, doc_id: str) -> None:
        self.doc_id = doc_id
        super().__init__(f"Knowledge document already exists: {doc_id}")
