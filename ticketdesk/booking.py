"""Operator-facing booking flow: pre-check, simulated payment, commit.

A booking attempt moves PENDING -> COMMITTED | FAILED | ABANDONED and never
leaves a terminal state. The availability check in ``initiate`` reads the
local cache and only short-circuits hopeless requests; the inventory core
re-validates against the store when the booking is confirmed.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from ticketdesk.cache import LocalCache
from ticketdesk.errors import DeskError, InsufficientInventory, NotFound, ValidationError
from ticketdesk.inventory import BookingReceipt, InventoryCore
from ticketdesk.models import Event, require_text, safe_int, to_money, validate_email

logger = logging.getLogger("ticketdesk.booking")


class BookingState(Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class PendingBooking:
    id: str
    event: Event
    quantity: int
    total_price: Decimal
    attendee: str
    email: str
    owner: Optional[str] = None
    created_at: float = 0.0
    state: BookingState = BookingState.PENDING
    receipt: Optional[BookingReceipt] = None
    error: Optional[DeskError] = field(default=None, repr=False)

    def to_public(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "state": self.state.value,
            "event": self.event.to_public(),
            "quantity": self.quantity,
            "total_price": float(self.total_price),
            "attendee": self.attendee,
            "email": self.email,
        }
        if self.receipt:
            out["ticket_id"] = self.receipt.ticket_id
            out["total_price"] = float(self.receipt.total_price)
        if self.state is BookingState.FAILED and self.error:
            out["error"] = {"message": self.error.message, "code": self.error.code}
        return out


class BookingFlow:
    """Holds pending bookings between requests and drives them to a terminal state.

    Every state change happens under ``_lock``. ``_paying`` holds bookings
    inside ``confirm_and_pay``; ``_committing`` is the subset whose payment
    delay is over and whose store transaction is running. Those can no longer
    be abandoned.
    """

    def __init__(
        self,
        core: InventoryCore,
        cache: LocalCache,
        payment_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        pending_ttl: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._core = core
        self._cache = cache
        self._payment_delay = payment_delay
        self._sleep = sleep
        self._pending_ttl = pending_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingBooking] = {}
        self._paying: Set[str] = set()
        self._committing: Set[str] = set()

    def initiate(
        self,
        event_id: str,
        quantity: Any,
        attendee: Any,
        email: Any,
        owner: Optional[str] = None,
    ) -> PendingBooking:
        quantity = safe_int(quantity, "quantity", min_value=1)
        attendee = require_text(attendee, "attendee", "Attendee name")
        email = validate_email(email)

        event = self._cache.find_event(event_id)
        if event is None:
            raise NotFound("Please select a valid event.", details={"event_id": event_id})
        if event.available_seats < quantity:
            raise InsufficientInventory(
                f"Insufficient seats ({event.available_seats} available).",
                details={"available": event.available_seats, "requested": quantity},
            )

        pending = PendingBooking(
            id=uuid.uuid4().hex,
            event=event,
            quantity=quantity,
            total_price=to_money(event.price * quantity),
            attendee=attendee,
            email=email,
            owner=owner,
            created_at=self._clock(),
        )
        with self._lock:
            self._expire_stale()
            self._pending[pending.id] = pending
        return pending

    def lookup(self, pending_id: str, owner: Optional[str] = None) -> PendingBooking:
        with self._lock:
            self._expire_stale()
            pending = self._pending.get(pending_id)
        if pending is None or pending.owner != owner:
            raise NotFound("Pending booking not found.", details={"pending_id": pending_id})
        return pending

    def confirm_and_pay(self, pending: PendingBooking) -> BookingReceipt:
        with self._lock:
            self._expire_stale()
            self._require_pending(pending)
            if pending.id in self._paying:
                raise ValidationError("Payment is already in progress.", details={"pending_id": pending.id})
            self._paying.add(pending.id)

        logger.info("Processing payment for booking %s (%s)", pending.id, pending.total_price)
        self._sleep(self._payment_delay)

        with self._lock:
            if pending.state is not BookingState.PENDING:
                self._forget(pending)
                raise ValidationError("Payment error: booking data lost.", details={"pending_id": pending.id})
            self._committing.add(pending.id)

        try:
            receipt = self._core.book(pending.event.id, pending.quantity, pending.attendee, pending.email)
        except DeskError as err:
            self._finish(pending, BookingState.FAILED, error=err)
            logger.warning("Booking %s failed: %s", pending.id, err)
            raise
        except Exception:
            self._finish(pending, BookingState.FAILED)
            raise

        self._finish(pending, BookingState.COMMITTED, receipt=receipt)
        return receipt

    def abandon(self, pending: PendingBooking) -> None:
        with self._lock:
            self._require_pending(pending)
            if pending.id in self._committing:
                raise ValidationError(
                    "Payment is being processed; the booking can no longer be abandoned.",
                    details={"pending_id": pending.id},
                )
            pending.state = BookingState.ABANDONED
            self._forget(pending)

    def _require_pending(self, pending: PendingBooking) -> None:
        if pending.state is not BookingState.PENDING:
            raise ValidationError(
                f"Booking is already {pending.state.value}.", details={"pending_id": pending.id}
            )

    def _finish(
        self,
        pending: PendingBooking,
        state: BookingState,
        receipt: Optional[BookingReceipt] = None,
        error: Optional[DeskError] = None,
    ) -> None:
        with self._lock:
            pending.state = state
            pending.receipt = receipt
            pending.error = error
            self._forget(pending)

    def _expire_stale(self) -> None:
        # Caller holds _lock.
        cutoff = self._clock() - self._pending_ttl
        stale = [
            p for p in self._pending.values()
            if p.created_at < cutoff and p.id not in self._paying
        ]
        for pending in stale:
            pending.state = BookingState.ABANDONED
            self._pending.pop(pending.id, None)
        if stale:
            logger.info("Expired %d unconfirmed booking(s)", len(stale))

    def _forget(self, pending: PendingBooking) -> None:
        # Caller holds _lock.
        self._pending.pop(pending.id, None)
        self._paying.discard(pending.id)
        self._committing.discard(pending.id)
