from __future__ import annotations


class SaleError(RuntimeError):
    """Base class for failures surfaced to the command layer."""

    def __init__(self, sale_id: str, message: str | None = None) -> None:
        super().__init__(message or f"{self.__class__.__name__}: {sale_id}")
        self.sale_id = sale_id


class SaleNotFoundError(SaleError):
    """Raised when no sale exists for the requested identifier."""


class SaleNotPermittedError(SaleError):
    """Raised when the acting user neither owns nor manages the sale."""


class SaleFinalizingError(SaleError):
    """Raised when a cancel races a finalize that already holds the sale."""


class SaleAlreadyEndedError(SaleError):
    """Raised when an operation requires an active sale."""


class SaleStoreError(RuntimeError):
    """Raised when a store call fails or exceeds its timeout."""


class ConnectionExhaustedError(RuntimeError):
    """Raised when the reconnect budget is spent and the process must stop."""
