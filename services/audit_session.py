"""Audited saves: base changes and their audit rows commit together or not at all.

A save runs through these states::

    Idle -> ChangesCollected -> BaseSaved -> AuditsAppended -> Committed
                 (any failure or cancellation) -> Failed

Pending changes are collected before anything is flushed, because the
session discards original values once a flush succeeds.  A
:class:`~services.change_tracking.ChangeJournal` does this for every flush
of the transaction, so writes flushed early (explicitly or by autoflush)
are audited at commit too.  The base flush also marks every flushed entity
clean, so audit rows are built in a plain list and only handed to the
session for a second, separate flush.  All flushes share one transaction;
any failure rolls back everything.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable, Iterable, Optional

from models import AuditRecord
from services.audit import build_audits
from services.change_tracking import PendingChange, table_name_for, track_changes
from services.errors import SaveCancelledError
from utils import utc_now

logger = logging.getLogger(__name__)

UserResolver = Callable[[], Optional[object]]
TableResolver = Callable[[type], str]


class AuditSaveState(enum.Enum):
    Idle = "Idle"
    ChangesCollected = "ChangesCollected"
    BaseSaved = "BaseSaved"
    AuditsAppended = "AuditsAppended"
    Committed = "Committed"
    Failed = "Failed"


def _no_user() -> None:
    return None


class AuditCoordinator:
    """Run one audited save against *session*.

    *user_resolver* returns the acting user's id (or ``None``) and
    *table_resolver* maps an entity type to its table name.  *commit* commits
    the session's transaction and defaults to ``session.commit``; a session
    that audits from its own ``commit()`` must pass its base implementation.
    """

    def __init__(
        self,
        session,
        user_resolver: Optional[UserResolver] = None,
        table_resolver: TableResolver = table_name_for,
        strict: bool = False,
        proxy_modules: Iterable[str] = (),
        commit: Optional[Callable[[], None]] = None,
        clock=utc_now,
    ):
        self.session = session
        self.user_resolver = user_resolver or _no_user
        self.table_resolver = table_resolver
        self.strict = strict
        self.proxy_modules = tuple(proxy_modules)
        self._commit = commit or session.commit
        self.clock = clock
        self.state = AuditSaveState.Idle
        self.changes: list[PendingChange] = []
        self.audits: list[AuditRecord] = []

    def save(self, cancel_event=None) -> int:
        """Flush pending changes plus their audit rows and commit.

        *cancel_event* is anything with ``is_set()`` (e.g.
        :class:`threading.Event`); it is checked between steps.

        Returns the number of audited entity changes the transaction wrote,
        counting those flushed before this call.  Audit rows, exempt models
        and relationship-only updates are not counted.
        """
        if self.state is not AuditSaveState.Idle:
            raise RuntimeError(f"Audited save already ran (state {self.state.name})")
        journal = track_changes(
            self.session, ignore=(AuditRecord,), proxy_modules=self.proxy_modules
        )
        try:
            self._check_cancelled(cancel_event)
            journal.capture(self.session)
            self.state = AuditSaveState.ChangesCollected

            self._check_cancelled(cancel_event)
            self.session.flush()
            self.changes = journal.drain()
            self.state = AuditSaveState.BaseSaved

            self._check_cancelled(cancel_event)
            self.audits = build_audits(
                self.changes,
                self._acting_user_id(),
                self.table_resolver,
                self.clock,
                strict=self.strict,
            )
            self.state = AuditSaveState.AuditsAppended

            self._check_cancelled(cancel_event)
            self.session.add_all(self.audits)
            self.session.flush()
            self._check_cancelled(cancel_event)
            self._commit()
        except Exception as exc:
            failed_in = self.state
            self.state = AuditSaveState.Failed
            logger.warning(
                "Audited save failed after %s (%s); rolling back",
                failed_in.name,
                type(exc).__name__,
            )
            journal.clear()
            self.session.rollback()
            raise
        self.state = AuditSaveState.Committed
        if self.audits:
            logger.info("Committed %d change(s) with audit records", len(self.audits))
        return len(self.changes)

    def _check_cancelled(self, cancel_event) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SaveCancelledError(f"Save cancelled after {self.state.name}")

    def _acting_user_id(self) -> Optional[str]:
        user_id = self.user_resolver()
        return None if user_id is None else str(user_id)


def save_changes(
    session,
    user_resolver: Optional[UserResolver] = None,
    cancel_event=None,
    **options,
) -> int:
    """Audited save of *session*; see :class:`AuditCoordinator` for *options*."""
    return AuditCoordinator(session, user_resolver, **options).save(cancel_event)


async def save_changes_async(
    async_session,
    user_resolver: Optional[UserResolver] = None,
    cancel_event=None,
    **options,
) -> int:
    """Audited save of an :class:`~sqlalchemy.ext.asyncio.AsyncSession`.

    Cancelling the awaiting task rolls the session back.
    """

    def _save(sync_session) -> int:
        return AuditCoordinator(sync_session, user_resolver, **options).save(cancel_event)

    try:
        return await async_session.run_sync(_save)
    except asyncio.CancelledError:
        await async_session.rollback()
        raise
