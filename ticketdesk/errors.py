"""Error taxonomy shared by the inventory core, booking flow and API."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(eq=False)
class DeskError(Exception):
    message: str
    status: int = 400
    code: str = "bad_request"
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class NotFound(DeskError):
    status: int = 404
    code: str = "not_found"


@dataclass(eq=False)
class InsufficientInventory(DeskError):
    status: int = 409
    code: str = "insufficient_inventory"


@dataclass(eq=False)
class TransactionConflict(DeskError):
    """The store aborted a transaction because a document it read changed."""

    status: int = 409
    code: str = "conflict"


@dataclass(eq=False)
class ValidationError(DeskError):
    status: int = 400
    code: str = "validation_error"


@dataclass(eq=False)
class DuplicateDocument(DeskError):
    status: int = 409
    code: str = "conflict"


@dataclass(eq=False)
class StoreError(DeskError):
    status: int = 500
    code: str = "db_error"
