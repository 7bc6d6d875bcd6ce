"""Administrative writes: creating and deleting events, issuing ID cards."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict

from ticketdesk.errors import NotFound, ValidationError
from ticketdesk.models import (
    EVENTS,
    IDCARDS,
    Event,
    is_iso_datetime,
    money_doc,
    require_text,
    safe_decimal,
    safe_int,
)
from ticketdesk.store import DocumentStore

logger = logging.getLogger("ticketdesk.catalog")


class Catalog:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def create_event(self, data: Dict[str, Any]) -> str:
        name = require_text(data.get("name"), "name", "Event name")
        date = str(data.get("date") or "").strip()
        if not is_iso_datetime(date):
            raise ValidationError(
                "Date must be ISO format (e.g., 2026-01-01).", details={"field": "date"}
            )
        venue = require_text(data.get("venue"), "venue", "Venue")
        seats = safe_int(data.get("seats"), "seats", min_value=0)
        price = safe_decimal(data.get("price"), "price", min_value=Decimal("0"))

        event_id = self._store.insert(
            EVENTS,
            {
                "name": name,
                "date": date,
                "venue": venue,
                "seats": seats,
                "available_seats": seats,
                "price": money_doc(price),
            },
            timestamp_field="created_at",
        )
        logger.info("Created event %s (%s, %d seats)", event_id, name, seats)
        return event_id

    def delete_event(self, event_id: str) -> None:
        # Tickets are left in place; the ledger may reference a deleted event.
        if not self._store.delete(EVENTS, event_id):
            raise NotFound("Event not found.", details={"event_id": event_id})
        logger.warning("Deleted event %s; its tickets were not refunded or removed", event_id)

    def issue_id_card(self, data: Dict[str, Any]) -> str:
        name = require_text(data.get("name"), "name", "Holder name")
        role = require_text(data.get("role"), "role", "Role")
        event_id = require_text(data.get("event_access_id"), "event_access_id", "Event")
        contact = require_text(data.get("contact"), "contact", "Contact")

        doc = self._store.get(EVENTS, event_id)
        if doc is None:
            raise NotFound("Event not found.", details={"event_id": event_id})
        event = Event.from_doc(doc)

        card_id = self._store.insert(
            IDCARDS,
            {
                "name": name,
                "role": role,
                "event_access_id": event.id,
                "event_access": event.name,
                "contact": contact,
            },
            timestamp_field="issued_date",
        )
        logger.info("Issued ID card %s for %s (%s)", card_id, name, role)
        return card_id
