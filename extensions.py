"""Shared Flask extension instances."""

from flask_sqlalchemy import SQLAlchemy

from services.audited_session import AuditedSession
from services.auth import current_user_id

db = SQLAlchemy(
    session_options={
        "class_": AuditedSession,
        "user_resolver": current_user_id,
    }
)
