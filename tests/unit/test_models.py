"""Unit tests for Scope-Kit data models.

This module tests the module, user story and feature records, their
camelCase serialization, and the immutable project snapshot.
"""

import pytest
from dataclasses import FrozenInstanceError

from scopekit.models import (
    FeatureTask,
    Module,
    ProjectSnapshot,
    UserStory,
    create_default_feature_task,
    create_default_module,
    create_default_user_story,
    generate_id,
)


class TestModule:
    """Test cases for Module."""

    def test_module_creation(self):
        """Test creating a module with defaults."""
        module = Module(id="m1", name="Login & Authentication")

        assert module.priority == "Medium"
        assert module.status == "Not Started"
        assert module.user_story_id is None

    def test_module_to_dict_uses_wire_names(self):
        """Test that serialization uses moduleName and businessImpact."""
        module = Module(id="m1", name="Payments", business_impact="Revenue", dependencies="Login")
        data = module.to_dict()

        assert data["moduleName"] == "Payments"
        assert data["businessImpact"] == "Revenue"
        assert "userStoryId" not in data

    def test_module_to_dict_includes_legacy_tag(self):
        """Test that a legacy user story tag is serialized when set."""
        module = Module(id="m1", name="Payments", user_story_id="s1")

        assert module.to_dict()["userStoryId"] == "s1"

    def test_module_from_dict_joins_dependency_list(self):
        """Test that list-shaped dependencies are joined to text."""
        module = Module.from_dict({"id": "m1", "moduleName": "Cart", "dependencies": ["Login", "Catalog"]})

        assert module.name == "Cart"
        assert module.dependencies == "Login, Catalog"

    def test_module_validate(self):
        """Test module validation."""
        assert Module(id="m1", name="Cart").validate() == []

        issues = Module(id="m1", name="", priority="Urgent").validate()
        assert "Module name is required" in issues
        assert "Invalid priority: Urgent" in issues


class TestUserStory:
    """Test cases for UserStory."""

    def test_user_story_round_trip(self):
        """Test serializing and deserializing a story."""
        story = UserStory(
            id="s1",
            title="Sign in",
            user_role="Customer",
            description="Sign in with email",
            acceptance_criteria="- valid email\n- wrong password shows error",
            module_id="m1",
        )
        data = story.to_dict()

        assert data["userRole"] == "Customer"
        assert data["moduleId"] == "m1"
        assert UserStory.from_dict(data) == story

    def test_criteria_items(self):
        """Test splitting acceptance criteria into bullet items."""
        story = UserStory(id="s1", acceptance_criteria="- first\n* second\n\n  third  ")

        assert story.criteria_items() == ["first", "second", "third"]

    def test_user_story_validate_missing_fields(self):
        """Test that every missing required field is reported."""
        issues = UserStory(id="s1").validate()

        assert "Module is required" in issues
        assert "Title is required" in issues
        assert "User role is required" in issues
        assert "Description is required" in issues


class TestFeatureTask:
    """Test cases for FeatureTask."""

    def test_feature_from_dict_parses_hours(self):
        """Test that estimated hours are parsed to float and blanks become None."""
        feature = FeatureTask.from_dict({"id": "f1", "userStoryId": "s1", "estimatedHours": "4"})
        blank = FeatureTask.from_dict({"id": "f2", "estimatedHours": ""})

        assert feature.estimated_hours == 4.0
        assert feature.user_story_id == "s1"
        assert blank.estimated_hours is None

    def test_is_completed(self):
        """Test completion check."""
        assert FeatureTask(id="f1", status="Completed").is_completed()
        assert not FeatureTask(id="f1", status="In Progress").is_completed()

    def test_feature_validate_negative_hours(self):
        """Test that negative estimates are flagged."""
        feature = FeatureTask(id="f1", title="t", description="d", user_story_id="s1", estimated_hours=-1)

        assert "Estimated hours cannot be negative" in feature.validate()


class TestProjectSnapshot:
    """Test cases for ProjectSnapshot."""

    @pytest.fixture
    def snapshot(self):
        return ProjectSnapshot.build(
            modules=[Module(id="m1", name="Cart"), Module(id="m2", name="Search")],
            user_stories=[UserStory(id="s1", module_id="m1"), UserStory(id="s2", module_id="m2")],
            features=[
                FeatureTask(id="f1", user_story_id="s1", module_id="m1"),
                FeatureTask(id="f2", user_story_id="s1", module_id="m1"),
            ],
        )

    def test_build_collects_issued_ids(self, snapshot):
        """Test that every committed id is remembered."""
        assert snapshot.issued_ids == {"m1", "m2", "s1", "s2", "f1", "f2"}

    def test_build_keeps_previously_issued_ids(self):
        """Test that ids from deleted entities stay issued."""
        snapshot = ProjectSnapshot.build(issued_ids=["old-id"])

        assert "old-id" in snapshot.issued_ids

    def test_snapshot_is_immutable(self, snapshot):
        """Test that snapshots cannot be modified in place."""
        with pytest.raises(FrozenInstanceError):
            snapshot.modules = ()

    def test_evolve_returns_new_snapshot(self, snapshot):
        """Test that evolve leaves the source snapshot untouched."""
        evolved = snapshot.evolve(modules=snapshot.modules[:1])

        assert len(evolved.modules) == 1
        assert len(snapshot.modules) == 2

    def test_lookups(self, snapshot):
        """Test finder helpers."""
        assert snapshot.find_module("m2").name == "Search"
        assert snapshot.find_module_by_name("Cart").id == "m1"
        assert snapshot.find_user_story("missing") is None
        assert [s.id for s in snapshot.stories_for_module("m1")] == ["s1"]
        assert [f.id for f in snapshot.features_for_story("s1")] == ["f1", "f2"]
        assert snapshot.features_for_module("m2") == []

    def test_to_dict(self, snapshot):
        """Test snapshot serialization."""
        data = snapshot.to_dict()

        assert len(data["modules"]) == 2
        assert len(data["userStories"]) == 2
        assert data["features"][0]["moduleId"] == "m1"


class TestFactories:
    """Test cases for default constructors."""

    def test_generate_id_prefix(self):
        """Test prefixed and unique id generation."""
        assert generate_id("module").startswith("module-")
        assert generate_id() != generate_id()

    def test_default_records(self):
        """Test blank records used by entry forms."""
        module = create_default_module()
        story = create_default_user_story("m1")
        feature = create_default_feature_task("s1")

        assert module.id.startswith("module-")
        assert story.id.startswith("story-")
        assert feature.id.startswith("feature-")
        assert module.name == ""
        assert story.module_id == "m1"
        assert feature.user_story_id == "s1"
        assert feature.estimated_hours is None
