"""Flask-SQLAlchemy session whose commits write audit records."""

from __future__ import annotations

import logging

from flask import current_app, has_app_context
from flask_sqlalchemy.session import Session
from sqlalchemy import event

from config_models import AuditConfig
from services.change_tracking import JOURNAL_KEY, table_name_for, track_changes
from utils import utc_now

logger = logging.getLogger(__name__)


def _audit_config() -> AuditConfig:
    if has_app_context():
        cfg = current_app.config.get("AUDIT_CONFIG")
        if cfg is not None:
            return cfg
    return AuditConfig()


class AuditedSession(Session):
    """Session that audits every commit.

    Collaborators are injected through ``SQLAlchemy(session_options=...)``::

        db = SQLAlchemy(session_options={
            "class_": AuditedSession,
            "user_resolver": current_user_id,
        })

    ``commit()`` runs the full audited save.  Commits that bypass it, such as
    leaving a ``with session.begin():`` block, get their audit rows appended
    from a ``before_commit`` hook instead.
    """

    def __init__(self, db, user_resolver=None, table_resolver=None, **kwargs):
        super().__init__(db, **kwargs)
        self.user_resolver = user_resolver
        self.table_resolver = table_resolver or table_name_for
        cfg = _audit_config()
        if cfg.enabled:
            track_changes(self, proxy_modules=cfg.proxy_modules)
        event.listen(self, "before_commit", self._append_audits)

    def commit(self) -> None:
        if not _audit_config().enabled:
            logger.debug("Auditing disabled; committing without audit records")
            super().commit()
            return
        self.save_changes()

    def save_changes(self, cancel_event=None) -> int:
        """Audited commit; see :meth:`AuditCoordinator.save` for the count."""
        from services.audit_session import AuditCoordinator

        cfg = _audit_config()
        coordinator = AuditCoordinator(
            self,
            user_resolver=self.user_resolver,
            table_resolver=self.table_resolver,
            strict=cfg.strict,
            proxy_modules=cfg.proxy_modules,
            commit=super().commit,
        )
        return coordinator.save(cancel_event)

    def _acting_user_id(self):
        user_id = self.user_resolver() if self.user_resolver else None
        return None if user_id is None else str(user_id)

    def _append_audits(self, session) -> None:
        journal = self.info.get(JOURNAL_KEY)
        cfg = _audit_config()
        if journal is None or not cfg.enabled:
            return
        self.flush()
        changes = journal.drain()
        if not changes:
            return
        from services.audit import build_audits

        # the commit flushes these before it reaches the database
        self.add_all(
            build_audits(
                changes,
                self._acting_user_id(),
                self.table_resolver,
                utc_now,
                strict=cfg.strict,
            )
        )
