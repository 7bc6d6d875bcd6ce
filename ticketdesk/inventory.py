"""Atomic booking and cancellation against event seat inventory.

Both operations run their read-validate-write sequence inside one store
transaction, so the event's ``available_seats`` counter and the existence of
its tickets change together or not at all. The counter write is guarded on
the value just read: if another operator's transaction got there first the
store rejects ours instead of letting two decrements land on one reading.

Authoritative state is always re-read inside the transaction; nothing here
consults the local cache.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from ticketdesk.errors import (
    InsufficientInventory,
    NotFound,
    TransactionConflict,
    ValidationError,
)
from ticketdesk.models import EVENTS, TICKETS, Event, Ticket, require_text, safe_int, to_money
from ticketdesk.store import DocumentStore, Transaction

logger = logging.getLogger("ticketdesk.inventory")

T = TypeVar("T")


@dataclass(frozen=True)
class BookingReceipt:
    ticket_id: str
    event_id: str
    quantity: int
    total_price: Decimal


class InventoryCore:
    def __init__(
        self,
        store: DocumentStore,
        max_retries: int = 0,
        retry_backoff: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._max_retries = max(0, max_retries)
        self._retry_backoff = retry_backoff
        self._sleep = sleep

    def book(self, event_id: str, quantity: int, attendee: str, contact: str) -> BookingReceipt:
        quantity = safe_int(quantity, "quantity", min_value=1)
        attendee = require_text(attendee, "attendee", "Attendee name")
        contact = require_text(contact, "contact", "Attendee contact")

        def body(txn: Transaction) -> BookingReceipt:
            doc = txn.get(EVENTS, event_id)
            if doc is None:
                raise NotFound("Event not found.", details={"event_id": event_id})
            event = Event.from_doc(doc)

            if event.available_seats < quantity:
                raise InsufficientInventory(
                    f"Insufficient seats. Only {event.available_seats} available.",
                    details={"available": event.available_seats, "requested": quantity},
                )

            txn.update(
                EVENTS,
                event_id,
                {"available_seats": event.available_seats - quantity},
                expect={"available_seats": event.available_seats},
            )
            ticket_id = txn.insert(
                TICKETS,
                Ticket.booking_doc(event, attendee, contact, quantity),
                timestamp_field="booking_time",
            )
            return BookingReceipt(
                ticket_id=ticket_id,
                event_id=event_id,
                quantity=quantity,
                total_price=to_money(event.price * quantity),
            )

        receipt = self._run("book", body)
        logger.info(
            "Booked %d seat(s) on event %s as ticket %s (total %s)",
            quantity, event_id, receipt.ticket_id, receipt.total_price,
        )
        return receipt

    def cancel(self, ticket_id: str, event_id: str, quantity: Optional[int] = None) -> None:
        """Delete a ticket and release its seats.

        The seats released are the ticket's recorded quantity, read inside the
        transaction. A caller-supplied ``quantity`` is only checked against it.
        """
        if quantity is not None:
            quantity = safe_int(quantity, "quantity", min_value=1)

        def body(txn: Transaction) -> None:
            ticket_doc = txn.get(TICKETS, ticket_id)
            if ticket_doc is None:
                raise NotFound("Ticket not found.", details={"ticket_id": ticket_id})
            ticket = Ticket.from_doc(ticket_doc)
            if ticket.event_id != event_id:
                raise ValidationError(
                    "Ticket does not belong to this event.",
                    details={"ticket_id": ticket_id, "event_id": event_id},
                )
            if quantity is not None and quantity != ticket.quantity:
                raise ValidationError(
                    f"Ticket holds {ticket.quantity} seat(s), not {quantity}.",
                    details={"field": "quantity", "recorded": ticket.quantity},
                )

            doc = txn.get(EVENTS, event_id)
            if doc is None:
                raise NotFound("Event for ticket refund does not exist.", details={"event_id": event_id})
            event = Event.from_doc(doc)

            released = event.available_seats + ticket.quantity
            if released > event.seats:
                raise ValidationError(
                    "Releasing these seats would exceed the event's capacity.",
                    details={"seats": event.seats, "available": event.available_seats},
                )

            txn.update(
                EVENTS,
                event_id,
                {"available_seats": released},
                expect={"available_seats": event.available_seats},
            )
            txn.delete(TICKETS, ticket_id)

        self._run("cancel", body)
        logger.info("Cancelled ticket %s and released seats on event %s", ticket_id, event_id)

    def _run(self, action: str, body: Callable[[Transaction], T]) -> T:
        attempt = 0
        while True:
            try:
                return self._store.run_transaction(body)
            except TransactionConflict:
                if attempt >= self._max_retries:
                    logger.warning("%s aborted by a concurrent transaction", action)
                    raise
                delay = self._retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "%s conflicted; retry %d/%d in %.2fs", action, attempt, self._max_retries, delay
                )
                self._sleep(delay)
