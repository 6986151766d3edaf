"""Error kinds and operation results for Scope-Kit.

Expected failures (missing fields, dangling references, stale ids) are
reported as ``Notice`` values on an ``OperationResult``; exceptions are kept
for states the engine cannot reason about, such as a corrupted file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ProjectSnapshot


class NoticeKind:
    VALIDATION = "ValidationError"
    DANGLING_REFERENCE = "DanglingReference"
    NOT_FOUND = "NotFoundError"
    RECOMMENDATION_UNAVAILABLE = "RecommendationUnavailable"
    INFO = "Info"

    FAILURES = (VALIDATION, DANGLING_REFERENCE, NOT_FOUND)


@dataclass(slots=True)
class Notice:
    """A single user-facing message about an operation."""

    kind: str
    message: str
    field: Optional[str] = None
    entity_id: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.kind in NoticeKind.FAILURES

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.field:
            data["field"] = self.field
        if self.entity_id:
            data["entity_id"] = self.entity_id
        return data


def validation_error(message: str, field: Optional[str] = None) -> Notice:
    return Notice(NoticeKind.VALIDATION, message, field=field)


def dangling_reference(message: str, entity_id: Optional[str] = None, field: Optional[str] = None) -> Notice:
    return Notice(NoticeKind.DANGLING_REFERENCE, message, field=field, entity_id=entity_id)


def not_found(message: str, entity_id: Optional[str] = None) -> Notice:
    return Notice(NoticeKind.NOT_FOUND, message, entity_id=entity_id)


def info(message: str) -> Notice:
    return Notice(NoticeKind.INFO, message)


@dataclass
class OperationResult:
    """Next snapshot plus any notices produced while computing it."""

    snapshot: "ProjectSnapshot"
    notices: List[Notice] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(n.is_failure for n in self.notices)

    @property
    def error(self) -> Optional[Notice]:
        return next((n for n in self.notices if n.is_failure), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "notices": [n.to_dict() for n in self.notices],
        }


class ScopeKitError(Exception):
    """Base error for states the engine cannot recover from."""
    pass


class CorruptSnapshotError(ScopeKitError):
    """Persisted or supplied data does not have the expected shape."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class WorkspaceError(ScopeKitError):
    """Workspace directories could not be created or written."""

    def __init__(self, message: str, root: Optional[str] = None):
        super().__init__(message)
        self.root = root
