"""Read pending changes out of a SQLAlchemy session before it flushes."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import and_, event, inspect, select
from sqlalchemy.exc import NoInspectionAvailable

from services.errors import UnresolvedSchemaMappingError

logger = logging.getLogger(__name__)


class ChangeKind(enum.Enum):
    Added = "Added"
    Modified = "Modified"
    Deleted = "Deleted"


@dataclass
class PendingChange:
    """A tracked entity with a pending insert, update or delete.

    ``before_values`` is captured before the session flushes; the session
    forgets original values once the flush succeeds.  ``after_values`` is
    captured afterwards so generated keys and column defaults are included.
    """
    kind: ChangeKind
    entity: Any
    entity_type: type
    before_values: dict[str, Any] = field(default_factory=dict)
    after_values: dict[str, Any] = field(default_factory=dict)

    @property
    def identity_values(self) -> dict[str, Any]:
        if self.kind is ChangeKind.Deleted:
            return self.before_values
        return self.after_values

    def capture_after_values(self) -> None:
        if self.kind is not ChangeKind.Deleted:
            self.after_values = snapshot_values(self.entity)


# ---------------------------------------------------------------------------
# Entity metadata
# ---------------------------------------------------------------------------

def _is_proxy(cls: type, proxy_modules: Iterable[str]) -> bool:
    return bool(cls.__dict__.get("__audit_proxy__")) or cls.__module__ in proxy_modules


def logical_type(obj, proxy_modules: Iterable[str] = ()) -> type:
    """Return the declared model class of *obj*, skipping runtime proxy subclasses.

    A class is a proxy when it sets ``__audit_proxy__ = True`` itself or is
    defined in one of *proxy_modules*.
    """
    proxy_modules = tuple(proxy_modules)
    cls = type(obj)
    while _is_proxy(cls, proxy_modules) and cls.__bases__[0] is not object:
        cls = cls.__bases__[0]
    return cls


def table_name_for(entity_type) -> str:
    """Return the table *entity_type* is persisted to."""
    try:
        mapper = inspect(entity_type)
    except NoInspectionAvailable as exc:
        raise UnresolvedSchemaMappingError(entity_type) from exc
    name = getattr(mapper.local_table, "name", None)
    if not name:
        raise UnresolvedSchemaMappingError(entity_type)
    return name


# ---------------------------------------------------------------------------
# Value snapshots
# ---------------------------------------------------------------------------

def snapshot_values(obj) -> dict[str, Any]:
    """Current column values of *obj* in mapper column order."""
    mapper = inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


def _stored_values(session, mapper, identity, keys: list[str]) -> dict[str, Any]:
    columns = [mapper.attrs[key].columns[0].label(key) for key in keys]
    criteria = [column == value for column, value in zip(mapper.primary_key, identity)]
    row = session.execute(select(*columns).where(and_(*criteria))).one_or_none()
    if row is None:
        return {}
    return dict(row._mapping)


def original_values(obj, session=None) -> dict[str, Any]:
    """Column values of *obj* as they are stored, i.e. before pending changes.

    Attributes overwritten before their stored value was loaded (typically
    on instances expired by a previous commit) are read back through
    *session* while the row is still unflushed.
    """
    state = inspect(obj)
    values: dict[str, Any] = {}
    unknown: list[str] = []
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].load_history()
        if history.deleted:
            values[attr.key] = history.deleted[0]
        elif history.unchanged:
            values[attr.key] = history.unchanged[0]
        else:
            values[attr.key] = None
            if history.added:
                unknown.append(attr.key)
    if unknown and session is not None and state.identity is not None:
        values.update(_stored_values(session, state.mapper, state.identity, unknown))
    return values


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

def _pending_entities(session):
    for obj in session.new:
        yield ChangeKind.Added, obj
    for obj in session.dirty:
        if session.is_modified(obj, include_collections=False):
            yield ChangeKind.Modified, obj
    for obj in session.deleted:
        yield ChangeKind.Deleted, obj


def _is_exempt(obj, ignore: tuple) -> bool:
    if getattr(type(obj), "__audit_exempt__", False):
        return True
    return bool(ignore) and isinstance(obj, ignore)


def collect_changes(
    session,
    ignore: Iterable[type] = (),
    proxy_modules: Iterable[str] = (),
) -> list[PendingChange]:
    """Return one :class:`PendingChange` per added, modified or deleted entity.

    Must run before ``session.flush()``.  Instances of *ignore* types and of
    classes setting ``__audit_exempt__ = True`` are skipped.  A modification
    that writes back the stored values is not a change.  Reading original
    values never triggers an autoflush.
    """
    ignore = tuple(ignore)
    proxy_modules = tuple(proxy_modules)
    changes: list[PendingChange] = []
    with session.no_autoflush:
        for kind, obj in _pending_entities(session):
            if _is_exempt(obj, ignore):
                continue
            change = PendingChange(
                kind=kind,
                entity=obj,
                entity_type=logical_type(obj, proxy_modules),
            )
            if kind is not ChangeKind.Added:
                change.before_values = original_values(obj, session)
            if kind is ChangeKind.Modified and change.before_values == snapshot_values(obj):
                continue
            changes.append(change)
    logger.debug("Collected %d pending change(s)", len(changes))
    return changes


# ---------------------------------------------------------------------------
# Transaction journal
# ---------------------------------------------------------------------------

JOURNAL_KEY = "audit_journal"


class ChangeJournal:
    """Changes written by every flush of the session's current transaction.

    Pending changes are captured right before each flush (while original
    values are still known) and receive their after-values once the flush
    has run.  The journal empties when the transaction commits or rolls back.
    """

    def __init__(self, ignore: Iterable[type] = (), proxy_modules: Iterable[str] = ()):
        self.ignore = tuple(ignore)
        self.proxy_modules = tuple(proxy_modules)
        self.changes: list[PendingChange] = []
        self._unflushed: list[PendingChange] = []

    def capture(self, session) -> None:
        """Record pending changes not already captured for the next flush."""
        captured = {id(change.entity) for change in self._unflushed}
        for change in collect_changes(session, self.ignore, self.proxy_modules):
            if id(change.entity) not in captured:
                self._unflushed.append(change)

    def flushed(self, session) -> None:
        with session.no_autoflush:
            for change in self._unflushed:
                change.capture_after_values()
        self.changes.extend(self._unflushed)
        self._unflushed = []

    def drain(self) -> list[PendingChange]:
        """Return the flushed changes and forget them."""
        changes, self.changes = self.changes, []
        return changes

    def clear(self) -> None:
        self.changes = []
        self._unflushed = []

    def _before_flush(self, session, flush_context, instances):
        self.capture(session)

    def _after_flush_postexec(self, session, flush_context):
        self.flushed(session)

    def _after_transaction_end(self, session, transaction):
        if transaction.parent is None:
            self.clear()


def track_changes(session, ignore: Iterable[type] = (), proxy_modules: Iterable[str] = ()):
    """Attach a :class:`ChangeJournal` to *session* (once) and return it.

    Call right after creating a plain session so flushes issued before the
    audited save are journaled too.
    """
    journal = session.info.get(JOURNAL_KEY)
    if journal is None:
        journal = ChangeJournal(ignore, proxy_modules)
        event.listen(session, "before_flush", journal._before_flush)
        event.listen(session, "after_flush_postexec", journal._after_flush_postexec)
        event.listen(session, "after_transaction_end", journal._after_transaction_end)
        session.info[JOURNAL_KEY] = journal
    return journal
