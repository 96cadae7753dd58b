"""Application factory and public entry points."""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from flask import Flask, g, session
from sqlalchemy import event

from config import enable_sqlite_fks, load_config
from config_models import AppConfig, AuditConfig
from extensions import db
from models import AuditRecord, User
from services.audit import synthesize_audit
from services.audit_format import extract_identity, serialize_values
from services.audit_session import AuditCoordinator, save_changes, save_changes_async
from services.auth import current_user_id, fixed_user, get_current_user
from services.change_tracking import ChangeKind, PendingChange, collect_changes, table_name_for
from services.errors import (
    SaveCancelledError,
    TrackingInconsistencyError,
    UnresolvedSchemaMappingError,
)
from utils import utc_now

load_dotenv()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def load_current_user():
    """Set ``g.current_user`` from the session; inactive users count as anonymous."""
    g.current_user = None
    user_id = session.get("user_id")
    if user_id:
        user = db.session.get(User, user_id)
        if user and user.is_active:
            g.current_user = user
        elif user:
            session.clear()


def create_app():
    """Create and configure the Flask application."""
    app_cfg, audit_cfg, db_uri = load_config()

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.secret_key = app_cfg.secret_key
    app.config["APP_CONFIG"] = app_cfg
    app.config["AUDIT_CONFIG"] = audit_cfg

    db.init_app(app)

    # SQLite foreign key enforcement
    if "sqlite" in db_uri:
        with app.app_context():
            event.listen(db.engine, "connect", enable_sqlite_fks)

    with app.app_context():
        db.create_all()

    app.before_request(load_current_user)

    logger.info(
        "Auditing %s (strict=%s)",
        "enabled" if audit_cfg.enabled else "disabled",
        audit_cfg.strict,
    )
    return app


__all__ = [
    "AppConfig",
    "AuditConfig",
    "AuditCoordinator",
    "AuditRecord",
    "ChangeKind",
    "PendingChange",
    "SaveCancelledError",
    "TrackingInconsistencyError",
    "UnresolvedSchemaMappingError",
    "User",
    "collect_changes",
    "create_app",
    "current_user_id",
    "db",
    "extract_identity",
    "fixed_user",
    "get_current_user",
    "save_changes",
    "save_changes_async",
    "serialize_values",
    "synthesize_audit",
    "table_name_for",
    "utc_now",
]
