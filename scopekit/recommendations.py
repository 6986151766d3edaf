"""Rule-based feature and business-rule recommendations per module.

A static knowledge base maps a module's exact name to candidate features and
candidate business rules. Selections are kept per module id in explicit maps
that are passed in and returned; nothing here touches the entity
collections.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import Notice, NoticeKind, info, validation_error
from .models import Module
from .scope_logging import log_error_with_context, log_recommendation_event

logger = logging.getLogger("scopekit.recommendations")

FEATURES = "features"
RULES = "rules"
KINDS = (FEATURES, RULES)

SelectionMap = Dict[str, List[str]]

KIND_LABELS = {FEATURES: "feature", RULES: "business rule"}


def _check_kind(kind: str) -> None:
    if kind not in KINDS:
        raise ValueError(f"kind must be one of {KINDS}, got '{kind}'")


def _plural(count: int, label: str) -> str:
    return f"{count} {label}{'' if count == 1 else 's'}"


class KnowledgeBase:
    """Module name → candidate features and business rules."""

    def __init__(self, entries: Dict[str, Dict[str, List[str]]]):
        self._entries: Dict[str, Dict[str, List[str]]] = {}
        for name, entry in entries.items():
            if not isinstance(entry, dict):
                raise ValueError(f"Knowledge base entry for '{name}' must be an object")
            self._entries[name] = {kind: list(entry.get(kind, [])) for kind in KINDS}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "KnowledgeBase":
        return cls(json.loads(Path(path).read_text(encoding="utf-8")))

    @classmethod
    def load_default(cls) -> "KnowledgeBase":
        text = resources.files("scopekit").joinpath("data/knowledge_base.json").read_text(encoding="utf-8")
        return cls(json.loads(text))

    def candidates(self, module_name: str, kind: str = FEATURES) -> List[str]:
        """Candidates for an exact module name; unknown names give an empty list."""
        _check_kind(kind)
        entry = self._entries.get(module_name)
        return list(entry[kind]) if entry else []

    def module_names(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, module_name: str) -> bool:
        return module_name in self._entries


_default_knowledge_base: Optional[KnowledgeBase] = None


def default_knowledge_base() -> KnowledgeBase:
    """Knowledge base bundled with the package, loaded on first use."""
    global _default_knowledge_base
    if _default_knowledge_base is None:
        _default_knowledge_base = KnowledgeBase.load_default()
        logger.debug(f"Loaded knowledge base with {len(_default_knowledge_base.module_names())} modules")
    return _default_knowledge_base


# ----------------------------------------------------------------------
# Pure list operations
# ----------------------------------------------------------------------

@dataclass
class SelectionChange:
    """Result of editing one module's selection list."""

    items: List[str]
    added: List[str] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)


def get_available(
    module_name: str,
    already_selected: Iterable[str],
    kind: str = FEATURES,
    knowledge_base: Optional[KnowledgeBase] = None,
) -> List[str]:
    """Candidates for ``module_name`` not yet selected, in knowledge-base order."""
    kb = knowledge_base or default_knowledge_base()
    selected = set(already_selected)
    return [item for item in kb.candidates(module_name, kind) if item not in selected]


def select_all(
    module_name: str,
    already_selected: List[str],
    kind: str = FEATURES,
    knowledge_base: Optional[KnowledgeBase] = None,
) -> SelectionChange:
    """Append every remaining candidate; report a notice when there is nothing to add."""
    _check_kind(kind)
    new_items = get_available(module_name, already_selected, kind, knowledge_base)
    label = KIND_LABELS[kind]
    if not new_items:
        return SelectionChange(list(already_selected), [], [info(f"All recommended {label}s are already selected")])
    return SelectionChange(
        list(already_selected) + new_items,
        new_items,
        [Notice(NoticeKind.INFO, f"Added {_plural(len(new_items), f'recommended {label}')}")],
    )


def add_item(already_selected: List[str], item: str) -> SelectionChange:
    """Add one recommended item; duplicates are ignored."""
    if item in already_selected:
        return SelectionChange(list(already_selected), [], [info(f"'{item}' is already selected")])
    return SelectionChange(list(already_selected) + [item], [item])


def add_custom(already_selected: List[str], text: str) -> SelectionChange:
    """Add a user-written entry when it is non-empty and not already present."""
    value = (text or "").strip()
    if not value:
        return SelectionChange(list(already_selected), [], [validation_error("Enter some text to add", field="text")])
    return add_item(already_selected, value)


def _index_of(items: List[str], target: Union[int, str]) -> Optional[int]:
    if isinstance(target, int):
        return target if 0 <= target < len(items) else None
    try:
        return items.index(target)
    except ValueError:
        return None


def remove(already_selected: List[str], target: Union[int, str]) -> SelectionChange:
    """Drop the entry at an index (or the first entry equal to ``target``)."""
    index = _index_of(already_selected, target)
    if index is None:
        return SelectionChange(list(already_selected), [], [info(f"'{target}' is not in the selection")])
    return SelectionChange([item for i, item in enumerate(already_selected) if i != index])


def rename(already_selected: List[str], old: Union[int, str], new_text: str) -> SelectionChange:
    """Rewrite one slot in place; every other entry keeps its position."""
    index = _index_of(already_selected, old)
    value = (new_text or "").strip()
    if index is None:
        return SelectionChange(list(already_selected), [], [info(f"'{old}' is not in the selection")])
    if not value:
        return SelectionChange(list(already_selected), [], [validation_error("Text cannot be empty", field="text")])
    if value in already_selected and already_selected.index(value) != index:
        return SelectionChange(list(already_selected), [], [info(f"'{value}' is already selected")])
    items = list(already_selected)
    items[index] = value
    return SelectionChange(items)


# ----------------------------------------------------------------------
# Per-module selection maps
# ----------------------------------------------------------------------

@dataclass
class ModuleSelections:
    """Selected features and business rules, one list per module id."""

    features: SelectionMap = field(default_factory=dict)
    rules: SelectionMap = field(default_factory=dict)

    def _map(self, kind: str) -> SelectionMap:
        _check_kind(kind)
        return self.features if kind == FEATURES else self.rules

    def get(self, module_id: str, kind: str = FEATURES) -> List[str]:
        return list(self._map(kind).get(module_id, []))

    def with_items(self, module_id: str, kind: str, items: List[str]) -> "ModuleSelections":
        """Copy with one module's list replaced; other modules are shared untouched."""
        features = dict(self.features)
        rules = dict(self.rules)
        (features if kind == FEATURES else rules)[module_id] = list(items)
        return ModuleSelections(features, rules)

    def reset(self, module_id: str, kind: str = FEATURES) -> "ModuleSelections":
        return self.with_items(module_id, kind, [])

    def without_modules(self, module_ids: Iterable[str]) -> "ModuleSelections":
        """Drop selections for modules that no longer exist."""
        gone = set(module_ids)
        return ModuleSelections(
            {k: list(v) for k, v in self.features.items() if k not in gone},
            {k: list(v) for k, v in self.rules.items() if k not in gone},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"features": {k: list(v) for k, v in self.features.items()},
                "rules": {k: list(v) for k, v in self.rules.items()}}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ModuleSelections":
        data = data or {}
        return cls(
            {k: list(v) for k, v in (data.get("features") or {}).items()},
            {k: list(v) for k, v in (data.get("rules") or {}).items()},
        )


# ----------------------------------------------------------------------
# Dynamic suggestions
# ----------------------------------------------------------------------

class SuggestionProvider(ABC):
    """Source of AI-generated suggestions for a module."""

    @abstractmethod
    def fetch(self, module_name: str, kind: str, credential: str) -> List[str]:
        """Return suggestions; raise on any transport or service failure."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging."""
        pass


@dataclass(frozen=True)
class SuggestionRequest:
    request_id: int
    module_id: str


class SuggestionTracker:
    """Discards suggestion results that arrive after the user moved on.

    A request is tagged with the module that was active when it started. Its
    result is accepted only if that module is still active and no newer
    request for it has been issued.
    """

    def __init__(self):
        self.active_module_id: Optional[str] = None
        self._sequence = 0
        self._latest: Dict[str, int] = {}

    def focus(self, module_id: Optional[str]) -> None:
        self.active_module_id = module_id

    def begin(self, module_id: str) -> SuggestionRequest:
        self._sequence += 1
        self._latest[module_id] = self._sequence
        self.active_module_id = module_id
        return SuggestionRequest(self._sequence, module_id)

    def is_current(self, request: SuggestionRequest) -> bool:
        return (
            request.module_id == self.active_module_id
            and self._latest.get(request.module_id) == request.request_id
        )

    def accept(self, request: SuggestionRequest, items: List[str]) -> Optional[List[str]]:
        if not self.is_current(request):
            logger.info(f"Discarding late suggestions for module {request.module_id} (request {request.request_id})")
            return None
        return items


class RecommendationEngine:
    """Recommendation operations bound to a knowledge base and optional AI provider."""

    def __init__(
        self,
        knowledge_base: Optional[KnowledgeBase] = None,
        provider: Optional[SuggestionProvider] = None,
        credential: Optional[str] = None,
    ):
        self.knowledge_base = knowledge_base or default_knowledge_base()
        self.provider = provider
        self.credential = credential

    def recommendations(self, module_name: str, kind: str = FEATURES) -> tuple[List[str], List[Notice]]:
        """Static candidates, extended by the provider when a credential is available."""
        static = self.knowledge_base.candidates(module_name, kind)
        if self.provider is None or not self.credential:
            return static, []

        try:
            dynamic = self.provider.fetch(module_name, kind, self.credential)
        except Exception as e:
            log_error_with_context(e, {
                "operation": "fetch_suggestions",
                "provider": self.provider.name,
                "module_name": module_name,
                "kind": kind,
            })
            notice = Notice(
                NoticeKind.RECOMMENDATION_UNAVAILABLE,
                f"AI suggestions are unavailable ({e}); showing built-in recommendations",
            )
            return static, [notice]

        merged = list(static)
        for item in dynamic:
            item = (item or "").strip()
            if item and item not in merged:
                merged.append(item)
        return merged, []

    def available(self, selections: ModuleSelections, module: Module, kind: str = FEATURES) -> tuple[List[str], List[Notice]]:
        candidates, notices = self.recommendations(module.name, kind)
        selected = set(selections.get(module.id, kind))
        return [item for item in candidates if item not in selected], notices

    def _commit(self, selections: ModuleSelections, module_id: str, kind: str, change: SelectionChange,
                event: str) -> tuple[ModuleSelections, SelectionChange]:
        if change.items == selections.get(module_id, kind):
            return selections, change
        log_recommendation_event(event, module_id, kind, count=len(change.items), added=len(change.added))
        return selections.with_items(module_id, kind, change.items), change

    def select_all(self, selections: ModuleSelections, module: Module, kind: str = FEATURES):
        _check_kind(kind)
        candidates, notices = self.recommendations(module.name, kind)
        current = selections.get(module.id, kind)
        new_items = [item for item in candidates if item not in set(current)]
        label = KIND_LABELS[kind]
        if not new_items:
            change = SelectionChange(current, [], notices + [info(f"All recommended {label}s are already selected")])
            return selections, change
        change = SelectionChange(
            current + new_items, new_items,
            notices + [info(f"Added {_plural(len(new_items), f'recommended {label}')}")],
        )
        return self._commit(selections, module.id, kind, change, "select_all")

    def add_recommended(self, selections: ModuleSelections, module_id: str, kind: str, item: str):
        return self._commit(selections, module_id, kind, add_item(selections.get(module_id, kind), item), "added")

    def add_custom(self, selections: ModuleSelections, module_id: str, kind: str, text: str):
        return self._commit(selections, module_id, kind, add_custom(selections.get(module_id, kind), text), "custom_added")

    def remove(self, selections: ModuleSelections, module_id: str, kind: str, target: Union[int, str]):
        return self._commit(selections, module_id, kind, remove(selections.get(module_id, kind), target), "removed")

    def rename(self, selections: ModuleSelections, module_id: str, kind: str, old: Union[int, str], new_text: str):
        return self._commit(selections, module_id, kind, rename(selections.get(module_id, kind), old, new_text), "renamed")

    def reset(self, selections: ModuleSelections, module_id: str, kind: str = FEATURES):
        _check_kind(kind)
        log_recommendation_event("reset", module_id, kind)
        label = KIND_LABELS[kind]
        return selections.reset(module_id, kind), SelectionChange([], [], [info(f"All {label}s cleared")])
