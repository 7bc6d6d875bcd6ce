# ticketdesk/app.py
"""
Ticketdesk operator console API
- Flask JSON API over the inventory core, booking flow and catalog
- Flask-Login authentication (session-based)
- MongoDB via PyMongo; local cache kept current by change streams
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from flask import Flask, Response, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from ticketdesk import analytics
from ticketdesk.auth import authenticate, ensure_default_admin, init_login, register_user
from ticketdesk.booking import BookingFlow
from ticketdesk.cache import LocalCache
from ticketdesk.catalog import Catalog
from ticketdesk.config import Settings, configure_logging
from ticketdesk.errors import DeskError
from ticketdesk.inventory import InventoryCore
from ticketdesk.models import EVENTS, IDCARDS, Event, IDCard, require_text
from ticketdesk.store import DocumentStore, MongoDocumentStore

logger = logging.getLogger("ticketdesk")


@dataclass
class Desk:
    store: DocumentStore
    cache: LocalCache
    core: InventoryCore
    flow: BookingFlow
    catalog: Catalog


def desk() -> Desk:
    return current_app.extensions["ticketdesk"]


# -------------------------
# Response helpers
# -------------------------
def ok(payload: Dict[str, Any] | None = None, status: int = 200) -> Tuple[Response, int]:
    data = {"ok": True}
    if payload:
        data.update(payload)
    return jsonify(data), status


def fail(err: DeskError) -> Tuple[Response, int]:
    data = {"ok": False, "error": err.message, "code": err.code}
    if err.details:
        data["details"] = err.details
    return jsonify(data), err.status


def require_json() -> Dict[str, Any]:
    if not request.is_json:
        raise DeskError("Request must be JSON.", 415, "unsupported_media_type")
    data = request.get_json(silent=True)
    if data is None:
        raise DeskError("Invalid JSON payload.", 400, "invalid_json")
    if not isinstance(data, dict):
        raise DeskError("JSON body must be an object.", 400, "invalid_json")
    return data


# -------------------------
# App Init
# -------------------------
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Flask:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=settings.secret_key,
        SESSION_COOKIE_SECURE=settings.session_cookie_secure,
        SESSION_COOKIE_SAMESITE=settings.session_cookie_samesite,
        SESSION_COOKIE_HTTPONLY=True,
    )

    if store is None:
        store = MongoDocumentStore.connect(settings.mongo_uri, settings.mongo_db)

    cache = LocalCache()
    cache.attach(store)
    core = InventoryCore(
        store,
        max_retries=settings.txn_max_retries,
        retry_backoff=settings.txn_retry_backoff,
        sleep=sleep,
    )
    app.extensions["ticketdesk"] = Desk(
        store=store,
        cache=cache,
        core=core,
        flow=BookingFlow(
            core,
            cache,
            payment_delay=settings.payment_delay_seconds,
            sleep=sleep,
            pending_ttl=settings.pending_booking_ttl_seconds,
        ),
        catalog=Catalog(store),
    )

    init_login(app, store)
    ensure_default_admin(store, settings.default_admin_email, settings.default_admin_password)

    register_hooks(app)
    register_routes(app)
    return app


def register_hooks(app: Flask) -> None:
    # Attach a request id for debugging/traceability.
    @app.before_request
    def attach_request_id():
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.environ["request_id"] = rid

    @app.after_request
    def add_security_headers(resp: Response):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["X-Request-Id"] = request.environ.get("request_id", "")
        return resp

    @app.errorhandler(DeskError)
    def handle_desk_error(err: DeskError):
        return fail(err)

    @app.errorhandler(404)
    def handle_404(_):
        return jsonify({"ok": False, "error": "Not found.", "code": "not_found"}), 404

    @app.errorhandler(405)
    def handle_405(_):
        return jsonify({"ok": False, "error": "Method not allowed.", "code": "method_not_allowed"}), 405

    @app.errorhandler(Exception)
    def handle_exception(e: Exception):
        rid = request.environ.get("request_id", "")
        logger.exception("Unhandled error (request_id=%s): %s", rid, e)
        return (
            jsonify(
                {
                    "ok": False,
                    "error": "Internal server error.",
                    "code": "internal_error",
                    "request_id": rid,
                }
            ),
            500,
        )


def register_routes(app: Flask) -> None:
    @app.get("/api/health")
    def health():
        return ok({"status": "up"})

    # -------------------------
    # Auth APIs
    # -------------------------
    @app.post("/api/register")
    def register():
        data = require_json()
        user = register_user(desk().store, data.get("name"), data.get("email"), data.get("password"))
        login_user(user)
        return ok({"user": user.to_public()}, 201)

    @app.post("/api/login")
    def login():
        data = require_json()
        user = authenticate(desk().store, data.get("email"), data.get("password"))
        login_user(user)
        return ok({"user": user.to_public()})

    @app.post("/api/logout")
    @login_required
    def logout():
        logout_user()
        return ok({})

    @app.get("/api/me")
    def me():
        if not current_user.is_authenticated:
            return ok({"user": None})
        return ok({"user": current_user.to_public()})

    # -------------------------
    # Event APIs
    # -------------------------
    @app.get("/api/events")
    @login_required
    def list_events():
        return ok({"events": [e.to_public() for e in desk().cache.events]})

    @app.post("/api/events")
    @login_required
    def create_event():
        d = desk()
        event_id = d.catalog.create_event(require_json())
        created = Event.from_doc(d.store.get(EVENTS, event_id))
        return ok({"message": "Event created successfully.", "event": created.to_public()}, 201)

    @app.delete("/api/events/<event_id>")
    @login_required
    def delete_event(event_id: str):
        desk().catalog.delete_event(event_id)
        return ok({"message": "Event deleted successfully."})

    # -------------------------
    # Ticket APIs
    # -------------------------
    @app.get("/api/tickets")
    @login_required
    def list_tickets():
        return ok({"tickets": [t.to_public() for t in desk().cache.tickets]})

    @app.delete("/api/tickets/<ticket_id>")
    @login_required
    def cancel_ticket(ticket_id: str):
        data = require_json()
        event_id = require_text(data.get("event_id"), "event_id", "event_id")
        desk().core.cancel(ticket_id, event_id, data.get("quantity"))
        return ok({"message": "Ticket successfully cancelled and seats released."})

    # -------------------------
    # Booking flow APIs
    # -------------------------
    @app.post("/api/bookings")
    @login_required
    def initiate_booking():
        data = require_json()
        pending = desk().flow.initiate(
            str(data.get("event_id") or ""),
            data.get("quantity"),
            data.get("attendee"),
            data.get("email"),
            owner=current_user.id,
        )
        return ok({"booking": pending.to_public()}, 201)

    @app.post("/api/bookings/<pending_id>/confirm")
    @login_required
    def confirm_booking(pending_id: str):
        flow = desk().flow
        pending = flow.lookup(pending_id, current_user.id)
        receipt = flow.confirm_and_pay(pending)
        return ok(
            {
                "message": f"Success! Ticket booked! Total: {receipt.total_price:.2f}",
                "booking": pending.to_public(),
            },
            201,
        )

    @app.delete("/api/bookings/<pending_id>")
    @login_required
    def abandon_booking(pending_id: str):
        flow = desk().flow
        pending = flow.lookup(pending_id, current_user.id)
        flow.abandon(pending)
        return ok({"booking": pending.to_public()})

    # -------------------------
    # ID card APIs
    # -------------------------
    @app.get("/api/idcards")
    @login_required
    def list_id_cards():
        return ok({"idcards": [c.to_public() for c in desk().cache.id_cards]})

    @app.post("/api/idcards")
    @login_required
    def issue_id_card():
        d = desk()
        card_id = d.catalog.issue_id_card(require_json())
        card = IDCard.from_doc(d.store.get(IDCARDS, card_id))
        return ok({"message": "ID card issued successfully.", "idcard": card.to_public()}, 201)

    # -------------------------
    # Dashboard
    # -------------------------
    @app.get("/api/stats")
    @login_required
    def stats():
        cache = desk().cache
        return ok({"stats": analytics.dashboard_stats(cache.events, cache.tickets)})

    @app.get("/api/analytics")
    @login_required
    def booking_analytics():
        cache = desk().cache
        events, tickets = cache.events, cache.tickets
        return ok(
            {
                "summary": analytics.booking_summary(events, tickets),
                "seat_usage": analytics.seat_usage(events, tickets),
            }
        )


if __name__ == "__main__":
    # Production: run behind a WSGI server (gunicorn/uwsgi) and set SECRET_KEY + SESSION_COOKIE_SECURE
    _settings = Settings.from_env()
    create_app(_settings).run(host=_settings.host, port=_settings.port, debug=_settings.debug)
