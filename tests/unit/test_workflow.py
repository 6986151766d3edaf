"""Unit tests for the Scope-Kit project manager.

This module tests the session façade: response shapes, autosave,
selection cleanup on delete, and the recommendation tools.
"""

import pytest
from pathlib import Path

from scopekit.errors import NoticeKind
from scopekit.recommendations import FEATURES, RULES, SuggestionProvider
from scopekit.workflow import ProjectManager
from scopekit.workspace import Workspace


class FailingProvider(SuggestionProvider):
    @property
    def name(self):
        return "failing"

    def fetch(self, module_name, kind, credential):
        raise ConnectionError("service down")


@pytest.fixture
def manager(tmp_path, monkeypatch):
    monkeypatch.delenv("SCOPEKIT_AI_TOKEN", raising=False)
    return ProjectManager.create(tmp_path, "Shop")


@pytest.fixture
def populated(manager):
    module = manager.add_module("Login & Authentication", priority="High")["entity"]
    story = manager.add_user_story(module["id"], "Sign in", "Customer", "Sign in with email")["entity"]
    manager.add_feature(story["id"], "Login form", "Email and password", estimated_hours=3)
    return manager, module["id"], story["id"]


class TestProjectManagerInitialization:
    """Test cases for ProjectManager creation."""

    def test_create(self, manager, tmp_path):
        """Test creating a project through the manager."""
        assert manager.project_id == "001-shop"
        assert manager.metadata["name"] == "Shop"
        assert manager.snapshot.modules == ()
        assert manager.workspace.root == Path(tmp_path).resolve()

    def test_reopen_existing_project(self, populated, tmp_path):
        """Test that a new manager sees what the previous one saved."""
        manager, module_id, _ = populated
        reopened = ProjectManager(tmp_path, manager.project_id)

        assert reopened.snapshot == manager.snapshot
        assert reopened.snapshot.find_module(module_id).priority == "High"

    def test_open_missing_project(self, tmp_path):
        """Test opening an unknown project."""
        with pytest.raises(ValueError):
            ProjectManager(tmp_path, "404-missing")


class TestEntityResponses:
    """Test cases for CRUD response dictionaries."""

    def test_add_module_response(self, manager):
        """Test the success response shape."""
        result = manager.add_module("Shopping Cart")

        assert result["success"] is True
        assert result["entity"]["moduleName"] == "Shopping Cart"
        assert result["next_suggested_step"] == "add_user_story"
        assert "workflow_tip" in result

    def test_rejected_add_reports_error(self, manager):
        """Test the error response shape."""
        result = manager.add_user_story("nope", "t", "r", "d")

        assert "success" not in result
        assert result["error_kind"] == NoticeKind.VALIDATION
        assert "suggestion" in result
        assert manager.snapshot.user_stories == ()

    def test_unknown_field_raises(self, manager):
        """Test that misspelled fields are programming errors."""
        with pytest.raises(ValueError):
            manager.add_module("Cart", colour="red")

    def test_update_module(self, populated):
        """Test partial updates keep other fields."""
        manager, module_id, _ = populated
        result = manager.update_module(module_id, status="In Progress")

        assert result["entity"]["status"] == "In Progress"
        assert result["entity"]["priority"] == "High"

    def test_update_missing_module(self, manager):
        """Test that updating a deleted module reports NotFound."""
        result = manager.update_module("gone", name="X")

        assert result["error_kind"] == NoticeKind.NOT_FOUND

    def test_update_feature_ignores_caller_module(self, populated):
        """Test that a feature's module always comes from its story."""
        manager, module_id, _ = populated
        feature_id = manager.snapshot.features[0].id
        result = manager.update_feature(feature_id, module_id="elsewhere", status="Completed")

        assert result["entity"]["moduleId"] == module_id
        assert result["entity"]["status"] == "Completed"

    def test_changes_are_saved(self, populated, tmp_path):
        """Test that committed edits are written to disk."""
        manager, _, _ = populated
        snapshot, _, _ = Workspace(tmp_path).load(manager.project_id)

        assert len(snapshot.features) == 1


class TestDeletes:
    """Test cases for deletes through the manager."""

    def test_delete_module_drops_selections(self, populated):
        """Test that a deleted module's selections disappear with it."""
        manager, module_id, _ = populated
        manager.select_all_recommendations(module_id, RULES)
        result = manager.delete_module(module_id)

        assert result["success"] is True
        assert manager.snapshot.user_stories == ()
        assert manager.selections.rules == {}
        assert result["notices"][0]["kind"] == NoticeKind.INFO

    def test_delete_module_without_cascade(self, populated):
        """Test a refused delete."""
        manager, module_id, _ = populated
        result = manager.delete_module(module_id, cascade=False)

        assert result["error_kind"] == NoticeKind.DANGLING_REFERENCE
        assert manager.snapshot.find_module(module_id) is not None

    def test_delete_story(self, populated):
        """Test deleting a story removes its features."""
        manager, _, story_id = populated
        manager.delete_user_story(story_id)

        assert manager.snapshot.features == ()


class TestViews:
    """Test cases for queries and stats."""

    def test_query(self, populated):
        """Test querying a collection."""
        manager, _, _ = populated
        result = manager.query("features", {"searchText": "LOGIN", "filters": {"status": "all"}})

        assert result["total"] == 1
        assert result["items"][0]["title"] == "Login form"
        assert result["filters_applied"] == {}

    def test_query_unknown_collection(self, manager):
        """Test that only the three collections can be queried."""
        assert "error" in manager.query("epics")

    def test_query_unknown_field(self, populated):
        """Test that filtering on an unknown field is reported."""
        manager, _, _ = populated

        assert "error" in manager.query("modules", {"filters": {"colour": "red"}})

    def test_stats(self, populated):
        """Test module, story and project rollups."""
        manager, module_id, story_id = populated

        assert manager.module_stats(module_id)["total_features"] == 1
        assert manager.story_stats(story_id)["completed_features"] == 0
        assert manager.summary()["project_name"] == "Shop"
        assert manager.hierarchy()[0]["module"]["id"] == module_id
        assert manager.module_stats("gone")["error_kind"] == NoticeKind.NOT_FOUND


class TestRecommendations:
    """Test cases for recommendation tools."""

    def test_get_recommendations(self, populated):
        """Test listing recommendations for a known module."""
        manager, module_id, _ = populated
        result = manager.get_recommendations(module_id, FEATURES)

        assert result["module_name"] == "Login & Authentication"
        assert result["available"][0] == "JWT token management"
        assert result["selected"] == []

    def test_select_and_custom(self, populated):
        """Test picking a recommendation and adding a custom item."""
        manager, module_id, _ = populated
        manager.select_recommendation(module_id, "Password reset flow")
        result = manager.add_custom_selection(module_id, "Magic links")

        assert result["selected"] == ["Password reset flow", "Magic links"]
        assert "Password reset flow" not in manager.get_recommendations(module_id)["available"]

    def test_rename_remove_reset(self, populated):
        """Test editing the selection list."""
        manager, module_id, _ = populated
        manager.add_custom_selection(module_id, "A", RULES)
        manager.add_custom_selection(module_id, "B", RULES)
        manager.rename_selection(module_id, 0, "Z", RULES)
        manager.remove_selection(module_id, "B", RULES)
        assert manager.selections.get(module_id, RULES) == ["Z"]

        manager.reset_selections(module_id, RULES)
        assert manager.selections.get(module_id, RULES) == []

    def test_empty_custom_fails(self, populated):
        """Test that blank custom text is reported as failure."""
        manager, module_id, _ = populated
        result = manager.add_custom_selection(module_id, "  ")

        assert result["success"] is False
        assert result["notices"][0]["kind"] == NoticeKind.VALIDATION

    def test_recommendations_for_missing_module(self, manager):
        """Test recommendation tools on a deleted module."""
        assert manager.get_recommendations("gone")["error_kind"] == NoticeKind.NOT_FOUND
        assert manager.select_all_recommendations("gone")["error_kind"] == NoticeKind.NOT_FOUND

    @pytest.mark.parametrize("call", [
        lambda m, mid: m.get_recommendations(mid, "rule"),
        lambda m, mid: m.select_recommendation(mid, "Password reset flow", "rule"),
        lambda m, mid: m.select_all_recommendations(mid, "rule"),
        lambda m, mid: m.add_custom_selection(mid, "Custom", "rule"),
        lambda m, mid: m.remove_selection(mid, 0, "rule"),
        lambda m, mid: m.rename_selection(mid, 0, "New", "rule"),
        lambda m, mid: m.reset_selections(mid, "rule"),
    ])
    def test_unknown_kind_is_reported(self, populated, call):
        """Test that every recommendation tool rejects an unknown kind without raising."""
        manager, module_id, _ = populated
        result = call(manager, module_id)

        assert result["error_kind"] == NoticeKind.VALIDATION
        assert result["field"] == "kind"
        assert result["available_kinds"] == [FEATURES, RULES]
        assert manager.selections.get(module_id, RULES) == []

    def test_late_recommendations_are_discarded(self, populated):
        """Test that a request overtaken by a focus change yields nothing."""
        manager, module_id, _ = populated
        request = manager.begin_recommendations(module_id)
        manager.focus_module("another-module")

        late = manager.get_recommendations(module_id, FEATURES, request=request)

        assert late["stale"] is True
        assert late["available"] == []

    def test_current_request_is_accepted(self, populated):
        """Test that a request still in focus returns its results."""
        manager, module_id, _ = populated
        request = manager.begin_recommendations(module_id)

        result = manager.get_recommendations(module_id, FEATURES, request=request)

        assert result["stale"] is False
        assert len(result["available"]) == 8

    def test_provider_failure_falls_back(self, tmp_path):
        """Test that a failing AI provider still yields static recommendations."""
        manager = ProjectManager.create(tmp_path, "Shop", provider=FailingProvider(), credential="token")
        module_id = manager.add_module("Shopping Cart")["entity"]["id"]
        result = manager.get_recommendations(module_id)

        assert result["available"]
        assert result["notices"][0]["kind"] == NoticeKind.RECOMMENDATION_UNAVAILABLE

    def test_selections_persist(self, populated, tmp_path):
        """Test that selections survive reopening the project."""
        manager, module_id, _ = populated
        manager.select_all_recommendations(module_id, FEATURES)
        reopened = ProjectManager(tmp_path, manager.project_id)

        assert len(reopened.selections.get(module_id, FEATURES)) == 8
