"""Data models for the Scope-Kit project-structure engine.

This module contains the records that describe an application being scoped:
modules, the user stories that belong to them, and the features/tasks that
implement each story. Field names on the wire (``to_dict``/``from_dict``)
follow the canonical camelCase schema shared with import/export tooling.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

PRIORITY_HIGH = "High"
PRIORITY_MEDIUM = "Medium"
PRIORITY_LOW = "Low"
PRIORITIES = (PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)

STATUS_NOT_STARTED = "Not Started"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"
STATUSES = (STATUS_NOT_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED)


def generate_id(prefix: Optional[str] = None) -> str:
    """Generate a collision-resistant identifier."""
    value = str(uuid.uuid4())
    return f"{prefix}-{value}" if prefix else value


def _common_issues(priority: str, status: str) -> List[str]:
    issues = []
    if priority not in PRIORITIES:
        issues.append(f"Invalid priority: {priority}")
    if status not in STATUSES:
        issues.append(f"Invalid status: {status}")
    return issues


@dataclass(slots=True)
class Module:
    """Top-level functional area of the application being scoped."""

    id: str
    name: str
    description: str = ""
    priority: str = PRIORITY_MEDIUM
    business_impact: str = ""
    dependencies: str = ""
    status: str = STATUS_NOT_STARTED
    user_story_id: Optional[str] = None  # legacy single-story tag

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = {
            "id": self.id,
            "moduleName": self.name,
            "description": self.description,
            "priority": self.priority,
            "businessImpact": self.business_impact,
            "dependencies": self.dependencies,
            "status": self.status,
        }
        if self.user_story_id:
            data["userStoryId"] = self.user_story_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Module":
        """Create from dictionary representation."""
        dependencies = data.get("dependencies", "")
        if isinstance(dependencies, list):
            dependencies = ", ".join(str(item) for item in dependencies)
        return cls(
            id=data["id"],
            name=data.get("moduleName", data.get("name", "")),
            description=data.get("description", ""),
            priority=data.get("priority", PRIORITY_MEDIUM),
            business_impact=data.get("businessImpact", ""),
            dependencies=dependencies or "",
            status=data.get("status", STATUS_NOT_STARTED),
            user_story_id=data.get("userStoryId") or None,
        )

    def validate(self) -> List[str]:
        """Validate the module and return any issues."""
        issues = []
        if not self.id:
            issues.append("Module ID is required")
        if not self.name or not self.name.strip():
            issues.append("Module name is required")
        issues.extend(_common_issues(self.priority, self.status))
        return issues


@dataclass(slots=True)
class UserStory:
    """A role-scoped requirement belonging to exactly one module."""

    id: str
    title: str = ""
    user_role: str = ""
    description: str = ""
    acceptance_criteria: str = ""
    priority: str = PRIORITY_MEDIUM
    status: str = STATUS_NOT_STARTED
    module_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "userRole": self.user_role,
            "description": self.description,
            "acceptanceCriteria": self.acceptance_criteria,
            "priority": self.priority,
            "status": self.status,
            "moduleId": self.module_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserStory":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            user_role=data.get("userRole", ""),
            description=data.get("description", ""),
            acceptance_criteria=data.get("acceptanceCriteria", ""),
            priority=data.get("priority", PRIORITY_MEDIUM),
            status=data.get("status", STATUS_NOT_STARTED),
            module_id=data.get("moduleId") or "",
        )

    def criteria_items(self) -> List[str]:
        """Split bullet-style acceptance criteria into individual items."""
        items = []
        for line in self.acceptance_criteria.splitlines():
            stripped = line.strip().lstrip("-*•").strip()
            if stripped:
                items.append(stripped)
        return items

    def validate(self) -> List[str]:
        """Validate the story and return any issues."""
        issues = []
        if not self.id:
            issues.append("User story ID is required")
        if not self.module_id:
            issues.append("Module is required")
        if not self.title:
            issues.append("Title is required")
        if not self.user_role:
            issues.append("User role is required")
        if not self.description:
            issues.append("Description is required")
        issues.extend(_common_issues(self.priority, self.status))
        return issues


@dataclass(slots=True)
class FeatureTask:
    """Implementation-level unit of work belonging to one user story.

    ``module_id`` is derived from the referenced story every time the feature
    is written through the integrity rules; whatever the caller supplies is
    overwritten.
    """

    id: str
    title: str = ""
    description: str = ""
    user_story_id: str = ""
    module_id: str = ""
    priority: str = PRIORITY_MEDIUM
    status: str = STATUS_NOT_STARTED
    estimated_hours: Optional[float] = None
    assignee: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "userStoryId": self.user_story_id,
            "moduleId": self.module_id,
            "priority": self.priority,
            "status": self.status,
            "estimatedHours": self.estimated_hours,
            "assignee": self.assignee,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureTask":
        """Create from dictionary representation."""
        hours = data.get("estimatedHours")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            user_story_id=data.get("userStoryId") or "",
            module_id=data.get("moduleId") or "",
            priority=data.get("priority", PRIORITY_MEDIUM),
            status=data.get("status", STATUS_NOT_STARTED),
            estimated_hours=float(hours) if hours not in (None, "") else None,
            assignee=data.get("assignee") or "",
        )

    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def validate(self) -> List[str]:
        """Validate the feature and return any issues."""
        issues = []
        if not self.id:
            issues.append("Feature ID is required")
        if not self.title:
            issues.append("Title is required")
        if not self.description:
            issues.append("Description is required")
        if not self.user_story_id:
            issues.append("User story is required")
        if self.estimated_hours is not None and self.estimated_hours < 0:
            issues.append("Estimated hours cannot be negative")
        issues.extend(_common_issues(self.priority, self.status))
        return issues


@dataclass(frozen=True)
class ProjectSnapshot:
    """One committed state of the three entity collections.

    ``issued_ids`` remembers every id that has ever been committed so that
    identifiers are never handed out twice, even after deletion.
    """

    modules: Tuple[Module, ...] = ()
    user_stories: Tuple[UserStory, ...] = ()
    features: Tuple[FeatureTask, ...] = ()
    issued_ids: FrozenSet[str] = frozenset()

    @classmethod
    def build(
        cls,
        modules: Optional[List[Module]] = None,
        user_stories: Optional[List[UserStory]] = None,
        features: Optional[List[FeatureTask]] = None,
        issued_ids: Optional[List[str]] = None,
    ) -> "ProjectSnapshot":
        modules = tuple(modules or ())
        user_stories = tuple(user_stories or ())
        features = tuple(features or ())
        ids = set(issued_ids or ())
        ids.update(m.id for m in modules)
        ids.update(s.id for s in user_stories)
        ids.update(f.id for f in features)
        return cls(modules, user_stories, features, frozenset(ids))

    def evolve(self, **changes: Any) -> "ProjectSnapshot":
        return replace(self, **changes)

    def find_module(self, module_id: str) -> Optional[Module]:
        return next((m for m in self.modules if m.id == module_id), None)

    def find_user_story(self, story_id: str) -> Optional[UserStory]:
        return next((s for s in self.user_stories if s.id == story_id), None)

    def find_feature(self, feature_id: str) -> Optional[FeatureTask]:
        return next((f for f in self.features if f.id == feature_id), None)

    def find_module_by_name(self, name: str) -> Optional[Module]:
        return next((m for m in self.modules if m.name == name), None)

    def stories_for_module(self, module_id: str) -> List[UserStory]:
        return [s for s in self.user_stories if s.module_id == module_id]

    def features_for_story(self, story_id: str) -> List[FeatureTask]:
        return [f for f in self.features if f.user_story_id == story_id]

    def features_for_module(self, module_id: str) -> List[FeatureTask]:
        return [f for f in self.features if f.module_id == module_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modules": [m.to_dict() for m in self.modules],
            "userStories": [s.to_dict() for s in self.user_stories],
            "features": [f.to_dict() for f in self.features],
        }


def create_default_module() -> Module:
    """Blank module used when an "add module" form opens."""
    return Module(id=generate_id("module"), name="")


def create_default_user_story(module_id: str = "") -> UserStory:
    return UserStory(id=generate_id("story"), module_id=module_id)


def create_default_feature_task(user_story_id: str = "") -> FeatureTask:
    return FeatureTask(id=generate_id("feature"), user_story_id=user_story_id)
