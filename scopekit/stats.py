"""Progress rollups over the module → story → feature hierarchy.

Everything here is computed from the snapshot it is given; nothing is
cached, so the numbers are always those of the collections being displayed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import STATUS_COMPLETED, STATUS_IN_PROGRESS, ProjectSnapshot
from .recommendations import FEATURES, RULES, ModuleSelections


def _percent(done: int, total: int) -> float:
    if total == 0:
        return 0.0
    return (done / total) * 100


@dataclass(slots=True)
class StoryStats:
    total_features: int = 0
    completed_features: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_features": self.total_features,
            "completed_features": self.completed_features,
            "completion_rate": self.completion_rate(),
        }

    def completion_rate(self) -> float:
        return _percent(self.completed_features, self.total_features)


@dataclass(slots=True)
class ModuleStats:
    total_stories: int = 0
    completed_stories: int = 0
    total_features: int = 0
    completed_features: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_stories": self.total_stories,
            "completed_stories": self.completed_stories,
            "total_features": self.total_features,
            "completed_features": self.completed_features,
            "completion_rate": self.completion_rate(),
        }

    def completion_rate(self) -> float:
        """Feature completion as a percentage."""
        return _percent(self.completed_features, self.total_features)


def story_stats(snapshot: ProjectSnapshot, story_id: str) -> StoryStats:
    features = snapshot.features_for_story(story_id)
    return StoryStats(
        total_features=len(features),
        completed_features=sum(1 for f in features if f.status == STATUS_COMPLETED),
    )


def module_stats(snapshot: ProjectSnapshot, module_id: str) -> ModuleStats:
    stories = snapshot.stories_for_module(module_id)
    features = snapshot.features_for_module(module_id)
    return ModuleStats(
        total_stories=len(stories),
        completed_stories=sum(1 for s in stories if s.status == STATUS_COMPLETED),
        total_features=len(features),
        completed_features=sum(1 for f in features if f.status == STATUS_COMPLETED),
    )


@dataclass(slots=True)
class ProjectSummary:
    """Project-level totals across every module."""

    project_name: str
    total_modules: int = 0
    completed_modules: int = 0
    total_stories: int = 0
    completed_stories: int = 0
    total_features: int = 0
    completed_features: int = 0
    in_progress_features: int = 0
    estimated_hours_remaining: float = 0.0
    selected_features: int = 0
    selected_rules: int = 0
    modules_without_stories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_name": self.project_name,
            "total_modules": self.total_modules,
            "completed_modules": self.completed_modules,
            "total_stories": self.total_stories,
            "completed_stories": self.completed_stories,
            "total_features": self.total_features,
            "completed_features": self.completed_features,
            "in_progress_features": self.in_progress_features,
            "estimated_hours_remaining": self.estimated_hours_remaining,
            "selected_features": self.selected_features,
            "selected_rules": self.selected_rules,
            "modules_without_stories": list(self.modules_without_stories),
            "feature_completion_rate": self.get_feature_completion_rate(),
            "story_completion_rate": self.get_story_completion_rate(),
        }

    def get_feature_completion_rate(self) -> float:
        return _percent(self.completed_features, self.total_features)

    def get_story_completion_rate(self) -> float:
        return _percent(self.completed_stories, self.total_stories)


def project_summary(
    snapshot: ProjectSnapshot,
    selections: Optional[ModuleSelections] = None,
    project_name: str = "Untitled Project",
) -> ProjectSummary:
    selections = selections or ModuleSelections()
    module_ids = {m.id for m in snapshot.modules}
    story_modules = {s.module_id for s in snapshot.user_stories}

    return ProjectSummary(
        project_name=project_name,
        total_modules=len(snapshot.modules),
        completed_modules=sum(1 for m in snapshot.modules if m.status == STATUS_COMPLETED),
        total_stories=len(snapshot.user_stories),
        completed_stories=sum(1 for s in snapshot.user_stories if s.status == STATUS_COMPLETED),
        total_features=len(snapshot.features),
        completed_features=sum(1 for f in snapshot.features if f.status == STATUS_COMPLETED),
        in_progress_features=sum(1 for f in snapshot.features if f.status == STATUS_IN_PROGRESS),
        estimated_hours_remaining=sum(
            f.estimated_hours or 0 for f in snapshot.features if f.status != STATUS_COMPLETED
        ),
        selected_features=sum(len(v) for k, v in selections.features.items() if k in module_ids),
        selected_rules=sum(len(v) for k, v in selections.rules.items() if k in module_ids),
        modules_without_stories=[m.name for m in snapshot.modules if m.id not in story_modules],
    )


def build_hierarchy(snapshot: ProjectSnapshot, selections: Optional[ModuleSelections] = None) -> List[Dict[str, Any]]:
    """Nested module → story → feature tree with rollups, in collection order."""
    selections = selections or ModuleSelections()
    tree = []
    for module in snapshot.modules:
        stories = []
        for story in snapshot.stories_for_module(module.id):
            stories.append({
                "story": story.to_dict(),
                "stats": story_stats(snapshot, story.id).to_dict(),
                "features": [f.to_dict() for f in snapshot.features_for_story(story.id)],
            })
        tree.append({
            "module": module.to_dict(),
            "stats": module_stats(snapshot, module.id).to_dict(),
            "selected_features": selections.get(module.id, FEATURES),
            "selected_rules": selections.get(module.id, RULES),
            "user_stories": stories,
        })
    return tree
