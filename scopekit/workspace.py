"""Workspace persistence for Scope-Kit projects.

Each project lives in its own directory under ``<root>/.scope-kit/projects``
with one JSON file per collection. The engine itself never touches disk;
this module is the load/save collaborator the session façade calls.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import CorruptSnapshotError, Notice, WorkspaceError
from .integrity import prune_orphans
from .models import FeatureTask, Module, ProjectSnapshot, UserStory
from .recommendations import ModuleSelections
from .scope_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)

logger = logging.getLogger("scopekit.workspace")

COLLECTION_FILES = {
    "modules": "modules.json",
    "user_stories": "user_stories.json",
    "features": "features.json",
}
SELECTIONS_FILE = "selections.json"
STATE_FILE = "state.json"
PROJECT_FILE = "project.json"


class Workspace:
    """Manage Scope-Kit project files within a repository."""

    STORAGE_DIR_ENV = "SCOPEKIT_STORAGE_DIR"
    DEFAULT_STORAGE_DIR = ".scope-kit"

    def __init__(self, root: Path | str):
        """Initialize workspace with given root directory."""
        self.root = Path(root).resolve()
        storage_name = os.getenv(self.STORAGE_DIR_ENV) or self.DEFAULT_STORAGE_DIR

        self.base_dir = self.root / storage_name
        self.projects_dir = self.base_dir / "projects"

        try:
            self.projects_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise WorkspaceError(f"Could not initialize workspace at {self.root}: {e}", root=str(self.root))

        logger.info(f"Workspace initialized at {self.root}")
        observability_hooks.log_workflow_event("workspace_initialized", root=str(self.root))

    # ------------------------------------------------------------------
    # Project helpers
    # ------------------------------------------------------------------

    def _slugify(self, value: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
        return slug or "project"

    def _next_project_number(self) -> int:
        highest = 0
        for directory in self.projects_dir.glob("*/"):
            match = re.match(r"(\d{3})-", directory.name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1

    def project_dir(self, project_id: str) -> Path:
        return self.projects_dir / project_id

    def project_exists(self, project_id: str) -> bool:
        return (self.project_dir(project_id) / PROJECT_FILE).exists()

    def create_project(self, name: str, description: str = "", project_id: Optional[str] = None) -> Dict[str, Any]:
        """Create an empty project and return its metadata."""
        if not name or not name.strip():
            raise ValueError("Project name cannot be empty")

        if project_id:
            project_id = self._slugify(project_id)
        else:
            project_id = f"{self._next_project_number():03d}-{self._slugify(name)}"
        if self.project_exists(project_id):
            raise ValueError(f"Project '{project_id}' already exists")

        now = datetime.utcnow().isoformat() + "Z"
        metadata = {
            "project_id": project_id,
            "name": name.strip(),
            "description": description,
            "created_at": now,
            "updated_at": now,
        }
        directory = self.project_dir(project_id)
        directory.mkdir(parents=True, exist_ok=True)
        self._write_json(directory / PROJECT_FILE, metadata)
        self.save(project_id, ProjectSnapshot(), ModuleSelections())

        logger.info(f"Created project {project_id}")
        observability_hooks.log_workflow_event("project_created", project_id=project_id, name=metadata["name"])
        return metadata

    def load_project_metadata(self, project_id: str) -> Dict[str, Any]:
        path = self.project_dir(project_id) / PROJECT_FILE
        if not path.exists():
            raise ValueError(f"Project '{project_id}' does not exist")
        return self._read_json(path, default={})

    def list_projects(self) -> List[Dict[str, Any]]:
        """List all projects in the workspace."""
        projects: List[Dict[str, Any]] = []
        for path in sorted(self.projects_dir.glob("*/")):
            if (path / PROJECT_FILE).exists():
                projects.append(self._read_json(path / PROJECT_FILE, default={"project_id": path.name}))
        return projects

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CorruptSnapshotError(f"Could not parse {path.name}: {e}", path=str(path))

    def _write_json(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    def _read_mapping(self, path: Path) -> Dict[str, Any]:
        data = self._read_json(path, default={})
        if not isinstance(data, dict):
            raise CorruptSnapshotError(f"{path.name} must contain an object", path=str(path))
        return data

    @log_performance("load_project")
    def load(self, project_id: str) -> Tuple[ProjectSnapshot, ModuleSelections, List[Notice]]:
        """Load a project's collections, repairing any broken references."""
        if not self.project_exists(project_id):
            raise ValueError(f"Project '{project_id}' does not exist")

        directory = self.project_dir(project_id)
        raw = {name: self._read_json(directory / filename, default=[]) for name, filename in COLLECTION_FILES.items()}
        for name, items in raw.items():
            if not isinstance(items, list):
                raise CorruptSnapshotError(f"{COLLECTION_FILES[name]} must contain a list",
                                           path=str(directory / COLLECTION_FILES[name]))

        state = self._read_mapping(directory / STATE_FILE)
        try:
            snapshot = ProjectSnapshot.build(
                modules=[Module.from_dict(item) for item in raw["modules"]],
                user_stories=[UserStory.from_dict(item) for item in raw["user_stories"]],
                features=[FeatureTask.from_dict(item) for item in raw["features"]],
                issued_ids=state.get("issued_ids", []),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptSnapshotError(f"Project '{project_id}' has malformed records: {e}", path=str(directory))

        repaired = prune_orphans(snapshot)
        selections = ModuleSelections.from_dict(self._read_mapping(directory / SELECTIONS_FILE))
        stale = (set(selections.features) | set(selections.rules)) - {m.id for m in snapshot.modules}
        selections = selections.without_modules(stale)

        logger.info(
            f"Loaded project {project_id}: {len(snapshot.modules)} modules, "
            f"{len(repaired.snapshot.user_stories)} user stories, {len(repaired.snapshot.features)} features"
        )
        return repaired.snapshot, selections, repaired.notices

    @log_performance("save_project")
    def save(self, project_id: str, snapshot: ProjectSnapshot, selections: Optional[ModuleSelections] = None) -> Path:
        """Write every collection of ``snapshot`` (and selections, if given)."""
        directory = self.project_dir(project_id)
        if not directory.exists():
            raise ValueError(f"Project '{project_id}' does not exist")

        with log_operation("save_project", project_id=project_id):
            self._write_json(directory / COLLECTION_FILES["modules"], [m.to_dict() for m in snapshot.modules])
            self._write_json(directory / COLLECTION_FILES["user_stories"], [s.to_dict() for s in snapshot.user_stories])
            self._write_json(directory / COLLECTION_FILES["features"], [f.to_dict() for f in snapshot.features])
            self._write_json(directory / STATE_FILE, {"issued_ids": sorted(snapshot.issued_ids)})
            if selections is not None:
                self._write_json(directory / SELECTIONS_FILE, selections.to_dict())

            metadata_path = directory / PROJECT_FILE
            if metadata_path.exists():
                metadata = self._read_json(metadata_path, default={})
                metadata["updated_at"] = datetime.utcnow().isoformat() + "Z"
                self._write_json(metadata_path, metadata)

        return directory
