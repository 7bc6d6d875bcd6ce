"""Environment-driven settings and logging setup."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default) == "1"


@dataclass
class Settings:
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "ticketdesk"

    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    session_cookie_secure: bool = False  # set to 1 behind HTTPS
    session_cookie_samesite: str = "Lax"

    log_level: str = "INFO"

    # Simulated payment settlement before a booking is committed.
    payment_delay_seconds: float = 3.0
    # Unconfirmed bookings older than this are treated as abandoned.
    pending_booking_ttl_seconds: float = 900.0

    # 0 keeps conflicts terminal; >0 enables bounded retry with doubling backoff.
    txn_max_retries: int = 0
    txn_retry_backoff: float = 0.1

    default_admin_email: str = ""
    default_admin_password: str = ""

    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mongo_uri=os.environ.get("MONGO_URI", "mongodb://localhost:27017"),
            mongo_db=os.environ.get("MONGO_DB", "ticketdesk"),
            secret_key=os.environ.get("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION"),
            session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE"),
            session_cookie_samesite=os.environ.get("SESSION_COOKIE_SAMESITE", "Lax"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            payment_delay_seconds=float(os.environ.get("PAYMENT_DELAY_SECONDS", "3")),
            pending_booking_ttl_seconds=float(os.environ.get("PENDING_BOOKING_TTL_SECONDS", "900")),
            txn_max_retries=int(os.environ.get("TXN_MAX_RETRIES", "0")),
            txn_retry_backoff=float(os.environ.get("TXN_RETRY_BACKOFF", "0.1")),
            default_admin_email=os.environ.get("DEFAULT_ADMIN_EMAIL", ""),
            default_admin_password=os.environ.get("DEFAULT_ADMIN_PASSWORD", ""),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "5000")),
            debug=_env_bool("FLASK_DEBUG"),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
