"""Exceptions raised by the audit pipeline."""


class AuditError(Exception):
    """Base class for audit failures."""


class TrackingInconsistencyError(AuditError):
    """Raised when a modified entity serializes identically before and after."""

    def __init__(self, change_type: str, object_type: str):
        super().__init__(
            f"Something went wrong because this {change_type} audit of "
            f"{object_type} shows no changes"
        )
        self.change_type = change_type
        self.object_type = object_type


class UnresolvedSchemaMappingError(AuditError):
    """Raised when an entity type cannot be mapped to a table."""

    def __init__(self, entity_type):
        name = getattr(entity_type, "__qualname__", repr(entity_type))
        super().__init__(f"No mapped table for entity type {name}")
        self.entity_type = entity_type


class SaveCancelledError(AuditError):
    """Raised when a save is cancelled before it commits."""
