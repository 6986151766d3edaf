"""Referential-integrity rules for the module → story → feature hierarchy.

Every operation takes a ``ProjectSnapshot`` and returns an
``OperationResult``. A rejected operation hands back the input snapshot
untouched together with exactly one failure notice, so the caller can keep
showing the previous lists and render the message inline.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from .errors import (
    Notice,
    OperationResult,
    dangling_reference,
    info,
    not_found,
    validation_error,
)
from .models import (
    PRIORITIES,
    STATUSES,
    FeatureTask,
    Module,
    ProjectSnapshot,
    UserStory,
    generate_id,
)
from .scope_logging import log_cascade_delete, log_entity_event, log_performance

logger = logging.getLogger("scopekit.integrity")

# (attribute, label) pairs in the order messages list them
MODULE_REQUIRED = (("name", "module name"),)
USER_STORY_REQUIRED = (
    ("module_id", "module"),
    ("title", "title"),
    ("user_role", "user role"),
    ("description", "description"),
)
FEATURE_REQUIRED = (
    ("title", "title"),
    ("description", "description"),
    ("user_story_id", "user story"),
)


def _reject(snapshot: ProjectSnapshot, notice: Notice, entity_type: str, entity_id: str) -> OperationResult:
    logger.info(f"Rejected {entity_type} {entity_id or '<new>'}: {notice.message}")
    log_entity_event("rejected", entity_type, entity_id, kind=notice.kind, reason=notice.message)
    return OperationResult(snapshot, [notice])


def _missing_fields(entity, required: Iterable[Tuple[str, str]]) -> Optional[Notice]:
    missing = []
    for attr, label in required:
        value = getattr(entity, attr)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append((attr, label))
    if not missing:
        return None
    labels = ", ".join(label for _, label in missing)
    return validation_error(f"Please fill in all required fields: {labels}", field=missing[0][0])


def _enum_issue(entity) -> Optional[Notice]:
    if entity.priority not in PRIORITIES:
        return validation_error(
            f"Priority must be one of {', '.join(PRIORITIES)}, got '{entity.priority}'", field="priority"
        )
    if entity.status not in STATUSES:
        return validation_error(
            f"Status must be one of {', '.join(STATUSES)}, got '{entity.status}'", field="status"
        )
    return None


def _issue_id(snapshot: ProjectSnapshot, entity, prefix: Optional[str] = None):
    """Give a new entity a fresh id, or refuse one that was already used."""
    if not entity.id:
        new_id = generate_id(prefix)
        while new_id in snapshot.issued_ids:
            new_id = generate_id(prefix)
        return replace(entity, id=new_id), None
    if entity.id in snapshot.issued_ids:
        return entity, validation_error(f"Identifier '{entity.id}' has already been used", field="id")
    return entity, None


def _replace_item(items: Tuple, updated) -> Tuple:
    return tuple(updated if item.id == updated.id else item for item in items)


def _untag_modules(modules: Iterable[Module], story_ids) -> Tuple[Module, ...]:
    """Clear the legacy story tag on modules pointing at any of ``story_ids``."""
    return tuple(
        replace(m, user_story_id=None) if m.user_story_id and m.user_story_id in story_ids else m
        for m in modules
    )


# ----------------------------------------------------------------------
# Modules
# ----------------------------------------------------------------------

@log_performance("add_module")
def add_module(snapshot: ProjectSnapshot, module: Module) -> OperationResult:
    """Commit a new module."""
    module, notice = _issue_id(snapshot, module, prefix="module")
    notice = notice or _missing_fields(module, MODULE_REQUIRED) or _enum_issue(module)
    if notice is None and module.user_story_id and not snapshot.find_user_story(module.user_story_id):
        notice = dangling_reference(
            f"User story '{module.user_story_id}' does not exist", entity_id=module.id, field="user_story_id"
        )
    if notice:
        return _reject(snapshot, notice, "module", module.id)

    module = replace(module, name=module.name.strip())
    next_snapshot = snapshot.evolve(
        modules=snapshot.modules + (module,),
        issued_ids=snapshot.issued_ids | {module.id},
    )
    log_entity_event("added", "module", module.id, name=module.name)
    return OperationResult(next_snapshot)


@log_performance("update_module")
def update_module(snapshot: ProjectSnapshot, module: Module) -> OperationResult:
    """Replace an existing module in place."""
    if not snapshot.find_module(module.id):
        return _reject(snapshot, not_found(f"Module '{module.id}' no longer exists", module.id), "module", module.id)

    notice = _missing_fields(module, MODULE_REQUIRED) or _enum_issue(module)
    if notice is None and module.user_story_id and not snapshot.find_user_story(module.user_story_id):
        notice = dangling_reference(
            f"User story '{module.user_story_id}' does not exist", entity_id=module.id, field="user_story_id"
        )
    if notice:
        return _reject(snapshot, notice, "module", module.id)

    module = replace(module, name=module.name.strip())
    log_entity_event("updated", "module", module.id, name=module.name)
    return OperationResult(snapshot.evolve(modules=_replace_item(snapshot.modules, module)))


@log_performance("delete_module")
def delete_module(snapshot: ProjectSnapshot, module_id: str, cascade: bool = True) -> OperationResult:
    """Delete a module and, with ``cascade``, everything underneath it.

    Without ``cascade`` the delete is refused while stories still point at
    the module; children are never left without an owner.
    """
    if not snapshot.find_module(module_id):
        return _reject(snapshot, not_found(f"Module '{module_id}' no longer exists", module_id), "module", module_id)

    doomed_stories = {s.id for s in snapshot.user_stories if s.module_id == module_id}
    if doomed_stories and not cascade:
        notice = dangling_reference(
            f"Module '{module_id}' still has {len(doomed_stories)} user stories; delete them first or cascade",
            entity_id=module_id,
        )
        return _reject(snapshot, notice, "module", module_id)

    kept_features = tuple(f for f in snapshot.features if f.user_story_id not in doomed_stories)
    removed_features = len(snapshot.features) - len(kept_features)
    next_snapshot = snapshot.evolve(
        modules=_untag_modules((m for m in snapshot.modules if m.id != module_id), doomed_stories),
        user_stories=tuple(s for s in snapshot.user_stories if s.id not in doomed_stories),
        features=kept_features,
    )

    notices: List[Notice] = []
    if doomed_stories:
        notices.append(info(
            f"Removed {len(doomed_stories)} user stories and {removed_features} features with the module"
        ))
        log_cascade_delete(module_id, len(doomed_stories), removed_features)
    log_entity_event("deleted", "module", module_id)
    return OperationResult(next_snapshot, notices)


# ----------------------------------------------------------------------
# User stories
# ----------------------------------------------------------------------

def _story_notice(snapshot: ProjectSnapshot, story: UserStory) -> Optional[Notice]:
    notice = _missing_fields(story, USER_STORY_REQUIRED) or _enum_issue(story)
    if notice is None and not snapshot.find_module(story.module_id):
        notice = dangling_reference(
            f"Module '{story.module_id}' does not exist", entity_id=story.id, field="module_id"
        )
    return notice


@log_performance("add_user_story")
def add_user_story(snapshot: ProjectSnapshot, story: UserStory) -> OperationResult:
    """Commit a new user story under an existing module."""
    if not snapshot.modules:
        return _reject(snapshot, validation_error("Add a module before creating user stories", field="module_id"),
                       "user_story", story.id)

    story, notice = _issue_id(snapshot, story, prefix="story")
    notice = notice or _story_notice(snapshot, story)
    if notice:
        return _reject(snapshot, notice, "user_story", story.id)

    next_snapshot = snapshot.evolve(
        user_stories=snapshot.user_stories + (story,),
        issued_ids=snapshot.issued_ids | {story.id},
    )
    log_entity_event("added", "user_story", story.id, module_id=story.module_id)
    return OperationResult(next_snapshot)


@log_performance("update_user_story")
def update_user_story(snapshot: ProjectSnapshot, story: UserStory) -> OperationResult:
    """Replace a story; features under it follow it if it moves module."""
    previous = snapshot.find_user_story(story.id)
    if previous is None:
        return _reject(snapshot, not_found(f"User story '{story.id}' no longer exists", story.id),
                       "user_story", story.id)

    notice = _story_notice(snapshot, story)
    if notice:
        return _reject(snapshot, notice, "user_story", story.id)

    features = snapshot.features
    notices: List[Notice] = []
    if previous.module_id != story.module_id:
        features = tuple(
            replace(f, module_id=story.module_id) if f.user_story_id == story.id else f
            for f in features
        )
        moved = sum(1 for f in features if f.user_story_id == story.id)
        if moved:
            notices.append(info(f"Moved {moved} features to module '{story.module_id}'"))

    next_snapshot = snapshot.evolve(
        user_stories=_replace_item(snapshot.user_stories, story),
        features=features,
    )
    log_entity_event("updated", "user_story", story.id, module_id=story.module_id)
    return OperationResult(next_snapshot, notices)


@log_performance("delete_user_story")
def delete_user_story(snapshot: ProjectSnapshot, story_id: str) -> OperationResult:
    """Delete a story and every feature that references it."""
    if not snapshot.find_user_story(story_id):
        return _reject(snapshot, not_found(f"User story '{story_id}' no longer exists", story_id),
                       "user_story", story_id)

    kept_features = tuple(f for f in snapshot.features if f.user_story_id != story_id)
    removed = len(snapshot.features) - len(kept_features)
    next_snapshot = snapshot.evolve(
        # modules tagged with this story lose the tag
        modules=_untag_modules(snapshot.modules, {story_id}),
        user_stories=tuple(s for s in snapshot.user_stories if s.id != story_id),
        features=kept_features,
    )
    notices = [info(f"Removed {removed} features with the user story")] if removed else []
    log_entity_event("deleted", "user_story", story_id, removed_features=removed)
    return OperationResult(next_snapshot, notices)


# ----------------------------------------------------------------------
# Features / tasks
# ----------------------------------------------------------------------

def _resolve_feature(snapshot: ProjectSnapshot, feature: FeatureTask) -> Tuple[FeatureTask, Optional[Notice]]:
    """Validate a feature and derive its module from the referenced story."""
    notice = _missing_fields(feature, FEATURE_REQUIRED) or _enum_issue(feature)
    if notice:
        return feature, notice
    if feature.estimated_hours is not None and feature.estimated_hours < 0:
        return feature, validation_error("Estimated hours cannot be negative", field="estimated_hours")

    story = snapshot.find_user_story(feature.user_story_id)
    if story is None:
        return feature, dangling_reference(
            f"User story '{feature.user_story_id}' does not exist", entity_id=feature.id, field="user_story_id"
        )
    if not story.module_id:
        return feature, validation_error("Selected user story must belong to a module", field="user_story_id")
    return replace(feature, module_id=story.module_id), None


@log_performance("add_feature")
def add_feature(snapshot: ProjectSnapshot, feature: FeatureTask) -> OperationResult:
    """Commit a new feature; ``module_id`` is taken from its story."""
    if not snapshot.user_stories:
        return _reject(snapshot, validation_error("Add a user story before creating features", field="user_story_id"),
                       "feature", feature.id)

    feature, notice = _issue_id(snapshot, feature, prefix="feature")
    if notice is None:
        feature, notice = _resolve_feature(snapshot, feature)
    if notice:
        return _reject(snapshot, notice, "feature", feature.id)

    next_snapshot = snapshot.evolve(
        features=snapshot.features + (feature,),
        issued_ids=snapshot.issued_ids | {feature.id},
    )
    log_entity_event("added", "feature", feature.id, user_story_id=feature.user_story_id)
    return OperationResult(next_snapshot)


@log_performance("update_feature")
def update_feature(snapshot: ProjectSnapshot, feature: FeatureTask) -> OperationResult:
    if not snapshot.find_feature(feature.id):
        return _reject(snapshot, not_found(f"Feature '{feature.id}' no longer exists", feature.id),
                       "feature", feature.id)

    feature, notice = _resolve_feature(snapshot, feature)
    if notice:
        return _reject(snapshot, notice, "feature", feature.id)

    log_entity_event("updated", "feature", feature.id, user_story_id=feature.user_story_id)
    return OperationResult(snapshot.evolve(features=_replace_item(snapshot.features, feature)))


@log_performance("delete_feature")
def delete_feature(snapshot: ProjectSnapshot, feature_id: str) -> OperationResult:
    if not snapshot.find_feature(feature_id):
        return _reject(snapshot, not_found(f"Feature '{feature_id}' no longer exists", feature_id),
                       "feature", feature_id)

    log_entity_event("deleted", "feature", feature_id)
    return OperationResult(snapshot.evolve(features=tuple(f for f in snapshot.features if f.id != feature_id)))


# ----------------------------------------------------------------------
# Whole-snapshot checks
# ----------------------------------------------------------------------

def check_integrity(snapshot: ProjectSnapshot) -> List[str]:
    """Return every invariant violation found in ``snapshot``."""
    violations: List[str] = []
    module_ids = {m.id for m in snapshot.modules}
    stories = {s.id: s for s in snapshot.user_stories}

    for label, items in (("module", snapshot.modules), ("user story", snapshot.user_stories),
                         ("feature", snapshot.features)):
        seen = set()
        for item in items:
            if item.id in seen:
                violations.append(f"Duplicate {label} id '{item.id}'")
            seen.add(item.id)

    for module in snapshot.modules:
        if module.user_story_id and module.user_story_id not in stories:
            violations.append(f"Module '{module.id}' is tagged with missing user story '{module.user_story_id}'")

    for story in snapshot.user_stories:
        if story.module_id not in module_ids:
            violations.append(f"User story '{story.id}' references missing module '{story.module_id}'")

    for feature in snapshot.features:
        story = stories.get(feature.user_story_id)
        if story is None:
            violations.append(f"Feature '{feature.id}' references missing user story '{feature.user_story_id}'")
        elif feature.module_id != story.module_id:
            violations.append(
                f"Feature '{feature.id}' records module '{feature.module_id}' "
                f"but its user story belongs to '{story.module_id}'"
            )
    return violations


def prune_orphans(snapshot: ProjectSnapshot) -> OperationResult:
    """Bring a loaded snapshot back in line with the hierarchy invariants.

    Stories without a module and features without a story are dropped;
    features with a stale ``module_id`` are re-derived and module story
    tags that point nowhere are cleared.
    """
    module_ids = {m.id for m in snapshot.modules}
    notices: List[Notice] = []

    stories = []
    for story in snapshot.user_stories:
        if story.module_id in module_ids:
            stories.append(story)
        else:
            notices.append(info(
                f"Dropped user story '{story.title or story.id}' with missing module '{story.module_id}'"
            ))
    story_modules = {s.id: s.module_id for s in stories}

    features = []
    for feature in snapshot.features:
        module_id = story_modules.get(feature.user_story_id)
        if module_id is None:
            notices.append(info(
                f"Dropped feature '{feature.title or feature.id}' with missing user story '{feature.user_story_id}'"
            ))
            continue
        if feature.module_id != module_id:
            feature = replace(feature, module_id=module_id)
            notices.append(info(f"Re-derived module for feature '{feature.id}'"))
        features.append(feature)

    modules = []
    for module in snapshot.modules:
        if module.user_story_id and module.user_story_id not in story_modules:
            notices.append(info(
                f"Cleared missing user story '{module.user_story_id}' from module '{module.name or module.id}'"
            ))
            module = replace(module, user_story_id=None)
        modules.append(module)

    if notices:
        logger.warning(f"Repaired snapshot: {len(notices)} adjustments")
    return OperationResult(
        snapshot.evolve(modules=tuple(modules), user_stories=tuple(stories), features=tuple(features)),
        notices,
    )
