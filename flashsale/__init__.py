"""Timed flash sales with exactly-once winner draws."""

from .errors import (
    ConnectionExhaustedError,
    SaleAlreadyEndedError,
    SaleError,
    SaleFinalizingError,
    SaleNotFoundError,
    SaleNotPermittedError,
    SaleStoreError,
)
from .guard import ProcessingGuard
from .models import (
    Entrant,
    FinalizeOutcome,
    Sale,
    SaleProjection,
    SaleStatistics,
    SaleStatus,
    WinnerRecord,
)
from .projector import StatusProjector, refresh_interval
from .scheduler import LifecycleScheduler
from .selection import secure_randbelow, select_winners
from .storage import DynamoSaleStore, SaleStore
from .supervisor import ConnectionSupervisor
from .validation import (
    InvalidValueError,
    format_time_remaining,
    parse_duration,
    validate_item_label,
    validate_winner_count,
)

__all__ = [
    "ConnectionExhaustedError",
    "SaleAlreadyEndedError",
    "SaleError",
    "SaleFinalizingError",
    "SaleNotFoundError",
    "SaleNotPermittedError",
    "SaleStoreError",
    "ProcessingGuard",
    "Entrant",
    "FinalizeOutcome",
    "Sale",
    "SaleProjection",
    "SaleStatistics",
    "SaleStatus",
    "WinnerRecord",
    "StatusProjector",
    "refresh_interval",
    "LifecycleScheduler",
    "secure_randbelow",
    "select_winners",
    "DynamoSaleStore",
    "SaleStore",
    "ConnectionSupervisor",
    "InvalidValueError",
    "format_time_remaining",
    "parse_duration",
    "validate_item_label",
    "validate_winner_count",
]
