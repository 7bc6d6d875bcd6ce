"""Event, Ticket and ID card records plus the input validators used to build them."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional

from bson.decimal128 import Decimal128

from ticketdesk.errors import ValidationError

EVENTS = "events"
TICKETS = "tickets"
IDCARDS = "idcards"
USERS = "users"

CENT = Decimal("0.01")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def to_money(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    if value is None:
        value = 0
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def money_doc(value: Decimal) -> Decimal128:
    """BSON has no native decimal; prices are stored as Decimal128."""
    return Decimal128(str(to_money(value)))


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# -------------------------
# Validators
# -------------------------
def is_iso_datetime(s: str) -> bool:
    """Accept ISO 8601 date or datetime strings."""
    if not isinstance(s, str) or not s.strip():
        return False
    try:
        datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


def safe_int(value: Any, field: str, min_value: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.", details={"field": field})
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.", details={"field": field})
    if isinstance(value, float) and n != value:
        raise ValidationError(f"{field} must be an integer.", details={"field": field})
    if min_value is not None and n < min_value:
        raise ValidationError(f"{field} must be >= {min_value}.", details={"field": field})
    return n


def safe_decimal(value: Any, field: str, min_value: Optional[Decimal] = None) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number.", details={"field": field})
    try:
        n = to_money(value)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number.", details={"field": field})
    if not n.is_finite():
        raise ValidationError(f"{field} must be a number.", details={"field": field})
    if min_value is not None and n < min_value:
        raise ValidationError(f"{field} must be >= {min_value}.", details={"field": field})
    return n


def require_text(value: Any, field: str, label: Optional[str] = None) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{label or field} is required.", details={"field": field})
    return text


def validate_email(email: Any) -> str:
    email = str(email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required.", details={"field": "email"})
    return email


# -------------------------
# Records
# -------------------------
@dataclass(frozen=True)
class Event:
    id: str
    name: str
    date: str
    venue: str
    seats: int
    available_seats: int
    price: Decimal
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Event":
        return cls(
            id=str(doc["id"]),
            name=doc.get("name", ""),
            date=doc.get("date", ""),
            venue=doc.get("venue", ""),
            seats=int(doc.get("seats", 0)),
            available_seats=int(doc.get("available_seats", 0)),
            price=to_money(doc.get("price")),
            created_at=doc.get("created_at"),
        )

    @property
    def booked_seats(self) -> int:
        return self.seats - self.available_seats

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "date": self.date,
            "venue": self.venue,
            "seats": self.seats,
            "available_seats": self.available_seats,
            "price": float(self.price),
            "created_at": iso(self.created_at),
        }


@dataclass(frozen=True)
class Ticket:
    id: str
    event_id: str
    event_name: str
    event_date: str
    venue: str
    attendee: str
    email: str
    quantity: int
    total_price: Decimal
    booking_time: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Ticket":
        return cls(
            id=str(doc["id"]),
            event_id=str(doc.get("event_id", "")),
            event_name=doc.get("event_name", ""),
            event_date=doc.get("event_date", ""),
            venue=doc.get("venue", ""),
            attendee=doc.get("attendee", ""),
            email=doc.get("email", ""),
            quantity=int(doc.get("quantity", 0)),
            total_price=to_money(doc.get("total_price")),
            booking_time=doc.get("booking_time"),
        )

    @staticmethod
    def booking_doc(event: Event, attendee: str, email: str, quantity: int) -> Dict[str, Any]:
        """Ticket document snapshotting the event as it stands at commit time."""
        return {
            "event_id": event.id,
            "event_name": event.name,
            "event_date": event.date,
            "venue": event.venue,
            "attendee": attendee,
            "email": email,
            "quantity": quantity,
            "total_price": money_doc(event.price * quantity),
        }

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "event_name": self.event_name,
            "event_date": self.event_date,
            "venue": self.venue,
            "attendee": self.attendee,
            "email": self.email,
            "quantity": self.quantity,
            "total_price": float(self.total_price),
            "booking_time": iso(self.booking_time),
        }


@dataclass(frozen=True)
class IDCard:
    id: str
    name: str
    role: str
    event_access_id: str
    event_access: str
    contact: str
    issued_date: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "IDCard":
        return cls(
            id=str(doc["id"]),
            name=doc.get("name", ""),
            role=doc.get("role", ""),
            event_access_id=str(doc.get("event_access_id", "")),
            event_access=doc.get("event_access", ""),
            contact=doc.get("contact", ""),
            issued_date=doc.get("issued_date"),
        )

    @property
    def badge_payload(self) -> str:
        # Text encoded into the printed badge's QR code.
        return f"ID:{self.id}|Role:{self.role}|EventID:{self.event_access_id}"

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "event_access_id": self.event_access_id,
            "event_access": self.event_access,
            "contact": self.contact,
            "issued_date": iso(self.issued_date),
            "badge_payload": self.badge_payload,
        }
