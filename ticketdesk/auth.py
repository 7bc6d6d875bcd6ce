"""Operator accounts and Flask-Login session wiring."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from flask_login import LoginManager, UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from ticketdesk.errors import DeskError, DuplicateDocument, StoreError, ValidationError
from ticketdesk.models import USERS, require_text, validate_email
from ticketdesk.store import DocumentStore

logger = logging.getLogger("ticketdesk.auth")


class User(UserMixin):
    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc
        self.id = str(doc["id"])
        self.email = doc.get("email", "")
        self.name = doc.get("name", "")

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def to_public(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.display_name}


def validate_password(pw: Any) -> str:
    pw = pw or ""
    if not isinstance(pw, str) or len(pw) < 6:
        raise ValidationError("Password must be at least 6 characters.", details={"field": "password"})
    return pw


def init_login(app: Flask, store: DocumentStore) -> LoginManager:
    login_manager = LoginManager()
    login_manager.init_app(app)
    login_manager.session_protection = "strong"

    @login_manager.user_loader
    def load_user(user_id: str) -> Optional[User]:
        try:
            doc = store.get(USERS, user_id)
        except StoreError:
            return None
        return User(doc) if doc else None

    @login_manager.unauthorized_handler
    def unauthorized():
        # JSON only
        return jsonify({"ok": False, "error": "Authentication required.", "code": "unauthorized"}), 401

    return login_manager


def register_user(store: DocumentStore, name: Any, email: Any, password: Any) -> User:
    name = require_text(name, "name", "Name")
    email = validate_email(email)
    password = validate_password(password)

    if store.find_one(USERS, {"email": email}):
        raise DuplicateDocument("Email already registered.", details={"field": "email"})
    try:
        user_id = store.insert(
            USERS,
            {"name": name, "email": email, "password_hash": generate_password_hash(password)},
            timestamp_field="created_at",
        )
    except DuplicateDocument:
        raise DuplicateDocument("Email already registered.", details={"field": "email"})
    return User(store.get(USERS, user_id))


def authenticate(store: DocumentStore, email: Any, password: Any) -> User:
    email = validate_email(email)
    doc = store.find_one(USERS, {"email": email})
    if not doc or not check_password_hash(doc.get("password_hash", ""), password or ""):
        raise DeskError("Invalid credentials.", 401, "unauthorized")
    return User(doc)


def ensure_default_admin(store: DocumentStore, email: str, password: str) -> None:
    if not email or not password:
        return
    try:
        if store.find_one(USERS, {"email": email.lower()}):
            return
        register_user(store, "Administrator", email, password)
        logger.info("Default admin created: %s", email)
    except DeskError:
        logger.exception("Failed to ensure default admin user")
