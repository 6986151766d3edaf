"""Session façade for Scope-Kit.

``ProjectManager`` owns the current snapshot and selection maps for one
project, applies every edit through the integrity rules, persists committed
states through the workspace, and shapes results into the dictionaries the
tool surface returns.
"""

from __future__ import annotations

import logging
import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import integrity
from .errors import Notice, NoticeKind, OperationResult
from .models import FeatureTask, Module, UserStory
from .query import QueryDescriptor, run_query
from .recommendations import (
    FEATURES,
    KINDS,
    RecommendationEngine,
    SuggestionProvider,
    SuggestionTracker,
)
from .scope_logging import log_error_with_context, log_operation, observability_hooks
from .stats import build_hierarchy, module_stats, project_summary, story_stats
from .workspace import Workspace

logger = logging.getLogger("scopekit.workflow")

AI_TOKEN_ENV = "SCOPEKIT_AI_TOKEN"

ENTITY_TYPES = {
    "modules": Module,
    "user_stories": UserStory,
    "features": FeatureTask,
}

SUGGESTIONS_BY_KIND = {
    NoticeKind.VALIDATION: "Fill in the missing field and try again",
    NoticeKind.DANGLING_REFERENCE: "Pick a parent that still exists",
    NoticeKind.NOT_FOUND: "Refresh the list; the item was already removed",
}


def _notices(items: List[Notice]) -> List[Dict[str, Any]]:
    return [n.to_dict() for n in items]


def _apply_changes(entity, changes: Dict[str, Any]):
    allowed = {f.name for f in fields(entity)} - {"id"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown {type(entity).__name__} fields: {', '.join(sorted(unknown))}")
    return replace(entity, **changes)


class ProjectManager:
    """Drives one project through the module → story → feature workflow."""

    def __init__(
        self,
        root: Path | str,
        project_id: str,
        provider: Optional[SuggestionProvider] = None,
        credential: Optional[str] = None,
        autosave: bool = True,
    ):
        self.workspace = Workspace(root)
        self.project_id = project_id
        self.autosave = autosave
        self.snapshot, self.selections, load_notices = self.workspace.load(project_id)
        self.metadata = self.workspace.load_project_metadata(project_id)
        self.load_notices = load_notices
        self.engine = RecommendationEngine(
            provider=provider,
            credential=credential if credential is not None else os.getenv(AI_TOKEN_ENV),
        )
        self.tracker = SuggestionTracker()

    @classmethod
    def create(cls, root: Path | str, name: str, description: str = "", **kwargs) -> "ProjectManager":
        metadata = Workspace(root).create_project(name, description)
        return cls(root, metadata["project_id"], **kwargs)

    # ------------------------------------------------------------------
    # Commit plumbing
    # ------------------------------------------------------------------

    def _commit(self, result: OperationResult) -> None:
        self.snapshot = result.snapshot
        live = {m.id for m in self.snapshot.modules}
        stale = (set(self.selections.features) | set(self.selections.rules)) - live
        if stale:
            self.selections = self.selections.without_modules(stale)
        if self.autosave:
            self.save()

    def save(self) -> Dict[str, Any]:
        path = self.workspace.save(self.project_id, self.snapshot, self.selections)
        return {"project_id": self.project_id, "path": str(path)}

    def _respond(
        self,
        result: OperationResult,
        operation: str,
        message: str = "",
        next_step: Optional[str] = None,
        tip: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not result.ok:
            notice = result.error
            logger.info(f"{operation} rejected: {notice.message}")
            return {
                "error": notice.message,
                "error_kind": notice.kind,
                "field": notice.field,
                "suggestion": SUGGESTIONS_BY_KIND.get(notice.kind, "Review the input and try again"),
                "next_suggested_step": operation,
            }

        with log_operation(operation, project_id=self.project_id):
            self._commit(result)
        response: Dict[str, Any] = {
            "success": True,
            "message": message,
            "notices": _notices(result.notices),
        }
        if next_step:
            response["next_suggested_step"] = next_step
        if tip:
            response["workflow_tip"] = tip
        return response

    def _last_added(self, collection: str):
        return getattr(self.snapshot, collection)[-1]

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def add_module(self, name: str, **values: Any) -> Dict[str, Any]:
        module = _apply_changes(Module(id="", name=name), values)
        result = integrity.add_module(self.snapshot, module)
        response = self._respond(result, "add_module", message="Module added successfully",
                                 next_step="add_user_story",
                                 tip="Next: describe what users need from this module with add_user_story")
        if result.ok:
            response["entity"] = self._last_added("modules").to_dict()
        return response

    def update_module(self, module_id: str, **changes: Any) -> Dict[str, Any]:
        current = self.snapshot.find_module(module_id) or Module(id=module_id, name="")
        result = integrity.update_module(self.snapshot, _apply_changes(current, changes))
        response = self._respond(result, "update_module", message="Module updated successfully")
        if result.ok:
            response["entity"] = self.snapshot.find_module(module_id).to_dict()
        return response

    def delete_module(self, module_id: str, cascade: bool = True) -> Dict[str, Any]:
        result = integrity.delete_module(self.snapshot, module_id, cascade=cascade)
        return self._respond(result, "delete_module", message="Module deleted successfully")

    # ------------------------------------------------------------------
    # User stories
    # ------------------------------------------------------------------

    def add_user_story(self, module_id: str, title: str, user_role: str, description: str,
                       **values: Any) -> Dict[str, Any]:
        story = _apply_changes(
            UserStory(id="", module_id=module_id, title=title, user_role=user_role, description=description),
            values,
        )
        result = integrity.add_user_story(self.snapshot, story)
        response = self._respond(result, "add_user_story", message="User story added successfully",
                                 next_step="add_feature",
                                 tip="Next: break the story into features/tasks with add_feature")
        if result.ok:
            response["entity"] = self._last_added("user_stories").to_dict()
        return response

    def update_user_story(self, story_id: str, **changes: Any) -> Dict[str, Any]:
        current = self.snapshot.find_user_story(story_id) or UserStory(id=story_id)
        result = integrity.update_user_story(self.snapshot, _apply_changes(current, changes))
        response = self._respond(result, "update_user_story", message="User story updated successfully")
        if result.ok:
            response["entity"] = self.snapshot.find_user_story(story_id).to_dict()
        return response

    def delete_user_story(self, story_id: str) -> Dict[str, Any]:
        result = integrity.delete_user_story(self.snapshot, story_id)
        return self._respond(result, "delete_user_story", message="User story deleted successfully")

    # ------------------------------------------------------------------
    # Features / tasks
    # ------------------------------------------------------------------

    def add_feature(self, user_story_id: str, title: str, description: str, **values: Any) -> Dict[str, Any]:
        feature = _apply_changes(
            FeatureTask(id="", user_story_id=user_story_id, title=title, description=description),
            values,
        )
        result = integrity.add_feature(self.snapshot, feature)
        response = self._respond(result, "add_feature", message="Feature/Task added successfully",
                                 next_step="get_recommendations",
                                 tip="Review recommended features and business rules for the module")
        if result.ok:
            response["entity"] = self._last_added("features").to_dict()
        return response

    def update_feature(self, feature_id: str, **changes: Any) -> Dict[str, Any]:
        current = self.snapshot.find_feature(feature_id) or FeatureTask(id=feature_id)
        result = integrity.update_feature(self.snapshot, _apply_changes(current, changes))
        response = self._respond(result, "update_feature", message="Feature/Task updated successfully")
        if result.ok:
            response["entity"] = self.snapshot.find_feature(feature_id).to_dict()
        return response

    def delete_feature(self, feature_id: str) -> Dict[str, Any]:
        result = integrity.delete_feature(self.snapshot, feature_id)
        return self._respond(result, "delete_feature", message="Feature/Task deleted successfully")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def query(self, collection: str, query: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if collection not in ENTITY_TYPES:
            return {"error": f"Unknown collection '{collection}'", "available_collections": list(ENTITY_TYPES)}
        descriptor = QueryDescriptor.from_dict(query)
        try:
            result = run_query(getattr(self.snapshot, collection), descriptor)
        except ValueError as e:
            return {"error": str(e), "suggestion": "Filter and sort on a field the entity has"}
        return {"collection": collection, **result.to_dict(), "filters_applied": descriptor.active_filters()}

    def module_stats(self, module_id: str) -> Dict[str, Any]:
        if not self.snapshot.find_module(module_id):
            return {"error": f"Module '{module_id}' no longer exists", "error_kind": NoticeKind.NOT_FOUND}
        return {"module_id": module_id, **module_stats(self.snapshot, module_id).to_dict()}

    def story_stats(self, story_id: str) -> Dict[str, Any]:
        if not self.snapshot.find_user_story(story_id):
            return {"error": f"User story '{story_id}' no longer exists", "error_kind": NoticeKind.NOT_FOUND}
        return {"user_story_id": story_id, **story_stats(self.snapshot, story_id).to_dict()}

    def summary(self) -> Dict[str, Any]:
        return project_summary(self.snapshot, self.selections, self.metadata.get("name", self.project_id)).to_dict()

    def hierarchy(self) -> List[Dict[str, Any]]:
        return build_hierarchy(self.snapshot, self.selections)

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def _module_or_error(self, module_id: str, kind: Optional[str] = None):
        if kind is not None and kind not in KINDS:
            return None, {
                "error": f"Unknown kind '{kind}'",
                "error_kind": NoticeKind.VALIDATION,
                "field": "kind",
                "available_kinds": list(KINDS),
            }
        module = self.snapshot.find_module(module_id)
        if module is None:
            return None, {"error": f"Module '{module_id}' no longer exists", "error_kind": NoticeKind.NOT_FOUND}
        return module, None

    def _selection_response(self, module_id: str, kind: str, change) -> Dict[str, Any]:
        failed = any(n.kind == NoticeKind.VALIDATION for n in change.notices)
        if not failed and self.autosave:
            self.save()
        return {
            "success": not failed,
            "module_id": module_id,
            "kind": kind,
            "selected": self.selections.get(module_id, kind),
            "added": list(change.added),
            "notices": _notices(change.notices),
        }

    def begin_recommendations(self, module_id: str):
        """Start a suggestion request for a module.

        Hosts that fetch suggestions in the background pass the returned
        request to ``get_recommendations`` once the fetch completes; the
        result is dropped if the user has moved to another module or a newer
        request for the same module has been started in the meantime.
        """
        return self.tracker.begin(module_id)

    def get_recommendations(self, module_id: str, kind: str = FEATURES, request=None) -> Dict[str, Any]:
        """Remaining recommendations for the module plus what is already selected.

        Without ``request`` the lookup is synchronous and always current.
        """
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error

        if request is None:
            request = self.tracker.begin(module_id)
        try:
            available, notices = self.engine.available(self.selections, module, kind)
        except Exception as e:
            log_error_with_context(e, {"operation": "get_recommendations", "module_id": module_id})
            raise
        accepted = self.tracker.accept(request, available)
        return {
            "module_id": module_id,
            "module_name": module.name,
            "kind": kind,
            "available": accepted if accepted is not None else [],
            "stale": accepted is None,
            "selected": self.selections.get(module_id, kind),
            "notices": _notices(notices),
        }

    def focus_module(self, module_id: Optional[str]) -> None:
        """Record which module the user is looking at; older suggestion results become stale."""
        self.tracker.focus(module_id)

    def select_recommendation(self, module_id: str, item: str, kind: str = FEATURES) -> Dict[str, Any]:
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error
        self.selections, change = self.engine.add_recommended(self.selections, module.id, kind, item)
        return self._selection_response(module_id, kind, change)

    def select_all_recommendations(self, module_id: str, kind: str = FEATURES) -> Dict[str, Any]:
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error
        self.selections, change = self.engine.select_all(self.selections, module, kind)
        return self._selection_response(module_id, kind, change)

    def add_custom_selection(self, module_id: str, text: str, kind: str = FEATURES) -> Dict[str, Any]:
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error
        self.selections, change = self.engine.add_custom(self.selections, module.id, kind, text)
        return self._selection_response(module_id, kind, change)

    def remove_selection(self, module_id: str, target, kind: str = FEATURES) -> Dict[str, Any]:
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error
        self.selections, change = self.engine.remove(self.selections, module.id, kind, target)
        return self._selection_response(module_id, kind, change)

    def rename_selection(self, module_id: str, old, new_text: str, kind: str = FEATURES) -> Dict[str, Any]:
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error
        self.selections, change = self.engine.rename(self.selections, module.id, kind, old, new_text)
        return self._selection_response(module_id, kind, change)

    def reset_selections(self, module_id: str, kind: str = FEATURES) -> Dict[str, Any]:
        module, error = self._module_or_error(module_id, kind)
        if error:
            return error
        self.selections, change = self.engine.reset(self.selections, module.id, kind)
        observability_hooks.log_workflow_event("selections_reset", project_id=self.project_id,
                                               module_id=module_id, kind=kind)
        return self._selection_response(module_id, kind, change)
