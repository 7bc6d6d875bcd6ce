"""Dashboard figures computed from cached events and tickets."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Sequence

from ticketdesk.models import Event, Ticket, to_money


def total_revenue(tickets: Sequence[Ticket]) -> Decimal:
    return to_money(sum((t.total_price for t in tickets), Decimal("0")))


def dashboard_stats(events: Sequence[Event], tickets: Sequence[Ticket]) -> Dict[str, Any]:
    return {
        "total_events": len(events),
        "total_tickets": len(tickets),
        "total_revenue": float(total_revenue(tickets)),
    }


def booking_summary(
    events: Sequence[Event], tickets: Sequence[Ticket], recent: int = 5
) -> Dict[str, Any]:
    """``tickets`` is expected newest first, as the cache keeps them."""
    total_seats = sum(e.seats for e in events)
    seats_booked = sum(t.quantity for t in tickets)
    rate = round(seats_booked / total_seats * 100, 1) if total_seats > 0 else 0
    return {
        "total_revenue": float(total_revenue(tickets)),
        "total_seats": total_seats,
        "seats_booked": seats_booked,
        "booking_rate": rate,
        "events_with_seats": sum(1 for e in events if e.available_seats > 0),
        "recent_activity": [t.to_public() for t in tickets[:recent]],
    }


def seat_usage(events: Sequence[Event], tickets: Sequence[Ticket]) -> List[Dict[str, Any]]:
    """Per-event seat accounting.

    ``consistent`` holds when seats consumed on the counter equal the sum of
    the event's live ticket quantities.
    """
    booked: Dict[str, int] = {}
    for t in tickets:
        booked[t.event_id] = booked.get(t.event_id, 0) + t.quantity

    rows = []
    for e in events:
        n = booked.get(e.id, 0)
        rows.append(
            {
                "event": e.to_public(),
                "capacity": e.seats,
                "booked": n,
                "remaining": e.available_seats,
                "consistent": e.booked_seats == n and 0 <= e.available_seats <= e.seats,
            }
        )
    return rows
