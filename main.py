"""MCP server exposing the Scope-Kit project scoping tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.resources import TextResource

from scopekit.errors import ScopeKitError
from scopekit.query import ALL, PAGE_SIZE_ALL
from scopekit.recommendations import FEATURES, default_knowledge_base
from scopekit.scope_logging import log_error_with_context, setup_logging
from scopekit.workflow import ProjectManager
from scopekit.workspace import Workspace

mcp = FastMCP("scope-kit")
setup_logging()


PROJECT_MARKER_DIRECTORIES = (".scope-kit",)
SERVER_ROOT = Path(__file__).resolve().parent

_managers: Dict[tuple[Path, str], ProjectManager] = {}


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_workspace_root() -> Optional[Path]:
    for base in _candidate_bases():
        for marker in PROJECT_MARKER_DIRECTORIES:
            if (base / marker).exists():
                return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv("SCOPEKIT_PROJECT_ROOT")
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable SCOPEKIT_PROJECT_ROOT points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        "or set the SCOPEKIT_PROJECT_ROOT environment variable."
    )


def _manager(project_id: str, root: Optional[str]) -> ProjectManager:
    resolved = _resolve_root(root)
    key = (resolved, project_id)
    if key not in _managers:
        _managers[key] = ProjectManager(resolved, project_id)
    return _managers[key]


def _guarded(operation: str, project_id: str, root: Optional[str], call) -> Dict[str, Any]:
    try:
        return call(_manager(project_id, root))
    except ScopeKitError as e:
        log_error_with_context(e, {"operation": operation, "project_id": project_id})
        return {"error": str(e), "suggestion": "Inspect the project files under .scope-kit/projects"}
    except ValueError as e:
        return {"error": str(e), "suggestion": "Check the project id with list_projects"}


def _drop_none(**values: Any) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


# ----------------------------------------------------------------------
# Projects
# ----------------------------------------------------------------------

@mcp.tool()
def create_project(name: str, description: str = "", root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Create a new scoping project. Every other tool works inside a project."""
    try:
        resolved = _resolve_root(root)
    except ValueError:
        if root:
            raise
        resolved = Path.cwd().resolve()

    try:
        manager = ProjectManager.create(resolved, name, description)
    except ValueError as e:
        return {"error": str(e), "suggestion": "Choose a different project name"}

    _managers[(manager.workspace.root, manager.project_id)] = manager
    return {
        "project": manager.metadata,
        "next_suggested_step": "add_module",
        "workflow_tip": "Next: break the product into modules with add_module",
    }


@mcp.tool()
def list_projects(root: Optional[str] = None) -> Dict[str, Any]:
    """List every project in the workspace."""
    workspace = Workspace(_resolve_root(root))
    return {"projects": workspace.list_projects()}


PROJECTS_RESOURCE_URI = "scope-kit://projects"


def _text_resource(text: str) -> TextResource:
    return TextResource(uri=PROJECTS_RESOURCE_URI, name="projects", text=text)


@mcp.resource(PROJECTS_RESOURCE_URI)
def resource_projects():
    """Resource view listing projects with their progress."""
    try:
        workspace = Workspace(_resolve_root(None))
    except ValueError:
        return _text_resource(
            "No project root detected. Launch tools with a 'root' argument or set SCOPEKIT_PROJECT_ROOT."
        )

    projects = workspace.list_projects()
    if not projects:
        return _text_resource("No projects have been created yet.")

    lines = ["Scope-Kit Projects"]
    for project in projects:
        summary = _manager(project["project_id"], str(workspace.root)).summary()
        lines.append("")
        lines.append(f"- {project['project_id']}: {project.get('name', '')}")
        lines.append(
            f"  Modules: {summary['total_modules']}, stories: {summary['total_stories']}, "
            f"features: {summary['completed_features']}/{summary['total_features']} complete"
        )
    return _text_resource("\n".join(lines))


# ----------------------------------------------------------------------
# Modules
# ----------------------------------------------------------------------

@mcp.tool()
def add_module(
    project_id: str,
    name: str,
    description: str = "",
    priority: str = "Medium",
    business_impact: str = "",
    dependencies: str = "",
    status: str = "Not Started",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Add a module (a functional area such as 'Login & Authentication')."""
    return _guarded("add_module", project_id, root, lambda m: m.add_module(
        name, description=description, priority=priority, business_impact=business_impact,
        dependencies=dependencies, status=status,
    ))


@mcp.tool()
def update_module(
    project_id: str,
    module_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    priority: Optional[str] = None,
    business_impact: Optional[str] = None,
    dependencies: Optional[str] = None,
    status: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit a module; only the fields given are changed."""
    changes = _drop_none(name=name, description=description, priority=priority,
                         business_impact=business_impact, dependencies=dependencies, status=status)
    return _guarded("update_module", project_id, root, lambda m: m.update_module(module_id, **changes))


@mcp.tool()
def delete_module(project_id: str, module_id: str, cascade: bool = True, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a module together with its user stories, features and selections."""
    return _guarded("delete_module", project_id, root, lambda m: m.delete_module(module_id, cascade=cascade))


# ----------------------------------------------------------------------
# User stories
# ----------------------------------------------------------------------

@mcp.tool()
def add_user_story(
    project_id: str,
    module_id: str,
    title: str,
    user_role: str,
    description: str,
    acceptance_criteria: str = "",
    priority: str = "Medium",
    status: str = "Not Started",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 3: Add a user story under a module ("As a <role>, I want ...")."""
    return _guarded("add_user_story", project_id, root, lambda m: m.add_user_story(
        module_id, title, user_role, description,
        acceptance_criteria=acceptance_criteria, priority=priority, status=status,
    ))


@mcp.tool()
def update_user_story(
    project_id: str,
    story_id: str,
    module_id: Optional[str] = None,
    title: Optional[str] = None,
    user_role: Optional[str] = None,
    description: Optional[str] = None,
    acceptance_criteria: Optional[str] = None,
    priority: Optional[str] = None,
    status: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit a user story; moving it to another module moves its features too."""
    changes = _drop_none(module_id=module_id, title=title, user_role=user_role, description=description,
                         acceptance_criteria=acceptance_criteria, priority=priority, status=status)
    return _guarded("update_user_story", project_id, root, lambda m: m.update_user_story(story_id, **changes))


@mcp.tool()
def delete_user_story(project_id: str, story_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a user story and its features."""
    return _guarded("delete_user_story", project_id, root, lambda m: m.delete_user_story(story_id))


# ----------------------------------------------------------------------
# Features / tasks
# ----------------------------------------------------------------------

@mcp.tool()
def add_feature(
    project_id: str,
    user_story_id: str,
    title: str,
    description: str,
    priority: str = "Medium",
    status: str = "Not Started",
    estimated_hours: Optional[float] = None,
    assignee: str = "",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 4: Add a feature/task to a user story. Its module is taken from the story."""
    return _guarded("add_feature", project_id, root, lambda m: m.add_feature(
        user_story_id, title, description,
        priority=priority, status=status, estimated_hours=estimated_hours, assignee=assignee,
    ))


@mcp.tool()
def update_feature(
    project_id: str,
    feature_id: str,
    user_story_id: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    priority: Optional[str] = None,
    status: Optional[str] = None,
    estimated_hours: Optional[float] = None,
    assignee: Optional[str] = None,
    clear_estimated_hours: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit a feature/task; only the fields given are changed.

    Pass ``clear_estimated_hours=True`` to remove the estimate and an empty
    ``assignee`` to unassign.
    """
    changes = _drop_none(user_story_id=user_story_id, title=title, description=description, priority=priority,
                         status=status, estimated_hours=estimated_hours, assignee=assignee)
    if clear_estimated_hours:
        changes["estimated_hours"] = None
    return _guarded("update_feature", project_id, root, lambda m: m.update_feature(feature_id, **changes))


@mcp.tool()
def delete_feature(project_id: str, feature_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a feature/task."""
    return _guarded("delete_feature", project_id, root, lambda m: m.delete_feature(feature_id))


# ----------------------------------------------------------------------
# Views
# ----------------------------------------------------------------------

@mcp.tool()
def query_items(
    project_id: str,
    collection: str,
    search_text: str = "",
    filters: Optional[Dict[str, str]] = None,
    sort_field: Optional[str] = None,
    sort_direction: str = "asc",
    page: int = 1,
    page_size: int = PAGE_SIZE_ALL,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Search, filter, sort and paginate 'modules', 'user_stories' or 'features'.

    Filter values of 'all' are ignored. A page size of 999 shows everything.
    """
    query = {
        "searchText": search_text,
        "filters": {k: v for k, v in (filters or {}).items() if v != ALL},
        "sort": {"field": sort_field, "direction": sort_direction} if sort_field else None,
        "page": {"index": page, "size": page_size},
    }
    return _guarded("query_items", project_id, root, lambda m: m.query(collection, query))


@mcp.tool()
def module_stats(project_id: str, module_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Story and feature completion counts for one module."""
    return _guarded("module_stats", project_id, root, lambda m: m.module_stats(module_id))


@mcp.tool()
def story_stats(project_id: str, story_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Feature completion counts for one user story."""
    return _guarded("story_stats", project_id, root, lambda m: m.story_stats(story_id))


@mcp.tool()
def project_summary(project_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Project-wide totals and completion rates."""
    return _guarded("project_summary", project_id, root, lambda m: m.summary())


@mcp.tool()
def project_hierarchy(project_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """The full module → user story → feature tree with rollups and selections."""
    return _guarded("project_hierarchy", project_id, root, lambda m: {"modules": m.hierarchy()})


# ----------------------------------------------------------------------
# Recommendations
# ----------------------------------------------------------------------

@mcp.tool()
def get_recommendations(project_id: str, module_id: str, kind: str = FEATURES,
                        root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 5: Recommended features ('features') or business rules ('rules') not yet selected for a module."""
    return _guarded("get_recommendations", project_id, root, lambda m: m.get_recommendations(module_id, kind))


@mcp.tool()
def select_recommendation(project_id: str, module_id: str, item: str, kind: str = FEATURES,
                          root: Optional[str] = None) -> Dict[str, Any]:
    """Add one recommended item to the module's selection."""
    return _guarded("select_recommendation", project_id, root,
                    lambda m: m.select_recommendation(module_id, item, kind))


@mcp.tool()
def select_all_recommendations(project_id: str, module_id: str, kind: str = FEATURES,
                               root: Optional[str] = None) -> Dict[str, Any]:
    """Add every remaining recommendation to the module's selection."""
    return _guarded("select_all_recommendations", project_id, root,
                    lambda m: m.select_all_recommendations(module_id, kind))


@mcp.tool()
def add_custom_selection(project_id: str, module_id: str, text: str, kind: str = FEATURES,
                         root: Optional[str] = None) -> Dict[str, Any]:
    """Add a custom feature or business rule that is not in the recommendations."""
    return _guarded("add_custom_selection", project_id, root,
                    lambda m: m.add_custom_selection(module_id, text, kind))


@mcp.tool()
def remove_selection(project_id: str, module_id: str, target: Union[int, str], kind: str = FEATURES,
                     root: Optional[str] = None) -> Dict[str, Any]:
    """Remove a selected item by position or text."""
    return _guarded("remove_selection", project_id, root, lambda m: m.remove_selection(module_id, target, kind))


@mcp.tool()
def rename_selection(project_id: str, module_id: str, old: Union[int, str], new_text: str, kind: str = FEATURES,
                     root: Optional[str] = None) -> Dict[str, Any]:
    """Rewrite a selected item in place."""
    return _guarded("rename_selection", project_id, root,
                    lambda m: m.rename_selection(module_id, old, new_text, kind))


@mcp.tool()
def reset_selections(project_id: str, module_id: str, kind: str = FEATURES,
                     root: Optional[str] = None) -> Dict[str, Any]:
    """Clear the module's selected features or business rules."""
    return _guarded("reset_selections", project_id, root, lambda m: m.reset_selections(module_id, kind))


@mcp.tool()
def list_known_modules() -> Dict[str, Any]:
    """Module names that have built-in recommendations."""
    return {"module_names": default_knowledge_base().module_names()}


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Get guidance on the recommended Scope-Kit scoping workflow."""
    return {
        "workflow_overview": "Scope a product from modules down to individual features",
        "steps": [
            {
                "step": 1,
                "tool": "create_project",
                "description": "Create a project to hold the scope",
                "purpose": "Every module, story and feature belongs to a project",
            },
            {
                "step": 2,
                "tool": "add_module",
                "description": "Break the product into functional modules",
                "purpose": "Modules are the top of the hierarchy; use names from list_known_modules for recommendations",
            },
            {
                "step": 3,
                "tool": "add_user_story",
                "description": "Describe what each user role needs from a module",
                "purpose": "Stories capture intent and acceptance criteria",
            },
            {
                "step": 4,
                "tool": "add_feature",
                "description": "Break stories into features/tasks with estimates",
                "purpose": "Features are the units of work that roll up into progress",
            },
            {
                "step": 5,
                "tools": ["get_recommendations", "select_recommendation", "select_all_recommendations",
                          "add_custom_selection"],
                "description": "Pick recommended features and business rules per module",
                "purpose": "Catch commonly forgotten scope",
            },
            {
                "step": 6,
                "tools": ["query_items", "project_summary", "project_hierarchy"],
                "description": "Review progress and completeness",
                "purpose": "Track completion across the hierarchy",
            },
        ],
        "tips": [
            "Deleting a module also deletes its user stories and features",
            "A feature always belongs to the module of its user story",
            "Use filters with 'all' to show everything",
        ],
    }


if __name__ == "__main__":
    mcp.run(transport="stdio")
