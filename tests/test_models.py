"""Unit tests for record conversion and input validators."""

from decimal import Decimal

import pytest
from bson.decimal128 import Decimal128

from ticketdesk.errors import ValidationError
from ticketdesk.models import (
    Event,
    Ticket,
    is_iso_datetime,
    money_doc,
    safe_decimal,
    safe_int,
    to_money,
    validate_email,
)


class TestMoney:
    def test_to_money_accepts_decimal128(self):
        assert to_money(Decimal128("50.5")) == Decimal("50.50")

    def test_to_money_rounds_half_up(self):
        assert to_money("0.125") == Decimal("0.13")

    def test_to_money_from_float_is_exact_to_the_cent(self):
        assert to_money(0.1) + to_money(0.2) == Decimal("0.30")

    def test_money_doc_is_decimal128(self):
        assert money_doc(Decimal("19.9")) == Decimal128("19.90")


class TestValidators:
    def test_safe_int_parses_numeric_strings(self):
        assert safe_int("4", "quantity", min_value=1) == 4

    @pytest.mark.parametrize("value", [True, 2.5, "x", None, 0])
    def test_safe_int_rejects(self, value):
        with pytest.raises(ValidationError) as exc:
            safe_int(value, "quantity", min_value=1)
        assert exc.value.details == {"field": "quantity"}

    def test_safe_decimal_minimum(self):
        with pytest.raises(ValidationError):
            safe_decimal("-0.01", "price", min_value=Decimal("0"))

    def test_iso_dates(self):
        assert is_iso_datetime("2026-01-01")
        assert is_iso_datetime("2026-01-01T10:00:00Z")
        assert not is_iso_datetime("01/02/2026")
        assert not is_iso_datetime("")

    def test_validate_email_normalises(self):
        assert validate_email("  Ada@Example.COM ") == "ada@example.com"
        with pytest.raises(ValidationError):
            validate_email("ada@")


class TestRecords:
    def test_event_from_doc(self):
        event = Event.from_doc(
            {"id": "e1", "name": "Gala", "date": "2026-02-02", "venue": "Hall",
             "seats": 10, "available_seats": 4, "price": Decimal128("7.5")}
        )
        assert event.booked_seats == 6
        assert event.to_public()["price"] == 7.5

    def test_booking_doc_snapshots_event(self):
        event = Event(id="e1", name="Gala", date="2026-02-02", venue="Hall",
                      seats=10, available_seats=4, price=Decimal("7.50"))

        doc = Ticket.booking_doc(event, "Ann", "ann@x.com", 3)

        assert doc["event_id"] == "e1"
        assert doc["event_name"] == "Gala"
        assert doc["total_price"] == Decimal128("22.50")
        assert "booking_time" not in doc
