"""Audit record construction."""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from models import AuditRecord, new_audit_id
from services.audit_format import EMPTY_OBJECT, extract_identity, serialize_values
from services.change_tracking import ChangeKind, PendingChange
from services.errors import TrackingInconsistencyError

logger = logging.getLogger(__name__)


def object_type_name(entity_type: type) -> str:
    """Fully-qualified name of *entity_type*, e.g. ``models.User``."""
    return f"{entity_type.__module__}.{entity_type.__qualname__}"


def synthesize_audit(
    change: PendingChange,
    acting_user_id: Optional[str],
    table_name: str,
    created_at: datetime.datetime,
    strict: bool = False,
) -> AuditRecord:
    """Build the :class:`AuditRecord` for *change*.

    Does not touch the session.  A modification whose snapshots are identical
    raises :class:`TrackingInconsistencyError` when *strict*, otherwise it is
    logged and the record is returned anyway.
    """
    if change.kind is ChangeKind.Added:
        from_json = EMPTY_OBJECT
    else:
        from_json = serialize_values(change.before_values)
    if change.kind is ChangeKind.Deleted:
        to_json = EMPTY_OBJECT
    else:
        to_json = serialize_values(change.after_values)

    record = AuditRecord(
        id=new_audit_id(),
        acting_user_id=acting_user_id,
        change_type=change.kind.name,
        object_type=object_type_name(change.entity_type),
        from_json=from_json,
        to_json=to_json,
        table_name=table_name,
        identity_json=extract_identity(change.entity_type, change.identity_values),
        created_at=created_at,
    )

    if change.kind is ChangeKind.Modified and from_json == to_json:
        if strict:
            raise TrackingInconsistencyError(record.change_type, record.object_type)
        logger.warning(
            "%s audit of %s (%s) shows no changes",
            record.change_type,
            record.object_type,
            record.identity_json,
        )
    return record


def build_audits(
    changes: list[PendingChange],
    acting_user_id: Optional[str],
    table_resolver,
    clock,
    strict: bool = False,
) -> list[AuditRecord]:
    """One :class:`AuditRecord` per change, in the order of *changes*."""
    return [
        synthesize_audit(
            change,
            acting_user_id,
            table_resolver(change.entity_type),
            clock(),
            strict=strict,
        )
        for change in changes
    ]
