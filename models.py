"""SQLAlchemy models for accounts and the audit trail."""

from __future__ import annotations

import uuid

from extensions import db
from utils import utc_now


def new_audit_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------

class User(db.Model):
    """Account whose id is recorded as the acting user of a change."""
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

class AuditRecord(db.Model):
    """One row-level change, written in the same transaction as the change.

    ``table_name`` + ``identity_json`` point back at the audited row.  There
    is no foreign key: audited rows live in every table of the schema.
    """
    __tablename__ = "audit"
    __audit_exempt__ = True

    id = db.Column(db.String(36), primary_key=True, default=new_audit_id)
    # Plain value, no FK: deleting a user must not touch their history.
    acting_user_id = db.Column(db.String(128))
    change_type = db.Column(db.String(20), nullable=False)
    object_type = db.Column(db.String(255), nullable=False)
    from_json = db.Column(db.Text, nullable=False)
    to_json = db.Column(db.Text, nullable=False)
    table_name = db.Column(db.String(128), nullable=False)
    identity_json = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        db.Index("ix_audit_created_at", "created_at"),
        db.Index("ix_audit_row", "table_name", "identity_json"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditRecord {self.change_type} {self.table_name} "
            f"{self.identity_json} by={self.acting_user_id}>"
        )
