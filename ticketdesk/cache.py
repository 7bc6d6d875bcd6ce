"""Local read-through copies of the event, ticket and ID card collections.

The cache is filled only by store subscriptions. It is advisory: the booking
pre-check and the presentation layer read it, the inventory core never does.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ticketdesk.models import EVENTS, IDCARDS, TICKETS, Event, IDCard, Ticket
from ticketdesk.store import Doc, DocumentStore, Subscription

logger = logging.getLogger("ticketdesk.cache")

Listener = Callable[[str], None]

# collection -> (order_by, descending)
ORDERING = {
    EVENTS: ("date", False),
    TICKETS: ("booking_time", True),
    IDCARDS: ("issued_date", True),
}


class LocalCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[Event] = []
        self._tickets: List[Ticket] = []
        self._id_cards: List[IDCard] = []
        self._listeners: List[Listener] = []
        self._subscriptions: List[Subscription] = []

    def attach(self, store: DocumentStore) -> None:
        for collection, (order_by, descending) in ORDERING.items():
            sub = store.subscribe(
                collection,
                order_by,
                lambda docs, c=collection: self.apply_snapshot(c, docs),
                descending=descending,
            )
            self._subscriptions.append(sub)

    def detach(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            sub.close()

    def add_listener(self, listener: Listener) -> None:
        """``listener(collection)`` runs after every snapshot is applied."""
        self._listeners.append(listener)

    def apply_snapshot(self, collection: str, docs: List[Doc]) -> None:
        with self._lock:
            if collection == EVENTS:
                self._events = [Event.from_doc(d) for d in docs]
            elif collection == TICKETS:
                self._tickets = [Ticket.from_doc(d) for d in docs]
            elif collection == IDCARDS:
                self._id_cards = [IDCard.from_doc(d) for d in docs]
            else:
                raise ValueError(f"Unknown collection: {collection}")
        logger.debug("Applied %s snapshot (%d documents)", collection, len(docs))
        for listener in list(self._listeners):
            listener(collection)

    @property
    def events(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    @property
    def tickets(self) -> List[Ticket]:
        with self._lock:
            return list(self._tickets)

    @property
    def id_cards(self) -> List[IDCard]:
        with self._lock:
            return list(self._id_cards)

    def find_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return next((e for e in self._events if e.id == event_id), None)
