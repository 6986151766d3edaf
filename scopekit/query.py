"""Search, filter, sort and pagination shared by the module, story and feature views.

The engine is keyed purely by field name, so the same ``QueryDescriptor``
shape drives all three tables. Both attribute names (``user_story_id``) and
wire names (``userStoryId``) are accepted.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Dict, List, Optional, Sequence

from .models import PRIORITY_HIGH, PRIORITY_LOW, PRIORITY_MEDIUM, FeatureTask, Module, UserStory
from .scope_logging import log_performance

logger = logging.getLogger("scopekit.query")

ALL = "all"
ASCENDING = "asc"
DESCENDING = "desc"
PAGE_SIZE_ALL = 999
DEFAULT_PAGE_SIZE = 6

# Pseudo-field ordering priorities High → Medium → Low instead of alphabetically
PRIORITY_RANK_FIELD = "priority_rank"
PRIORITY_RANK = {PRIORITY_HIGH: 0, PRIORITY_MEDIUM: 1, PRIORITY_LOW: 2}

SEARCH_FIELDS = {
    Module: ("name", "description", "dependencies", "business_impact"),
    UserStory: ("title", "user_role", "description"),
    FeatureTask: ("title", "description"),
}

FIELD_ALIASES = {
    "moduleName": "name",
    "businessImpact": "business_impact",
    "userStoryId": "user_story_id",
    "moduleId": "module_id",
    "userRole": "user_role",
    "acceptanceCriteria": "acceptance_criteria",
    "estimatedHours": "estimated_hours",
    "priorityRank": PRIORITY_RANK_FIELD,
}


@dataclass
class SortSpec:
    field: str = "title"
    direction: str = ASCENDING

    def toggled(self, field_name: str) -> "SortSpec":
        """Clicking the active column flips direction; a new column starts ascending."""
        if _attribute(field_name) == _attribute(self.field):
            return SortSpec(self.field, DESCENDING if self.direction == ASCENDING else ASCENDING)
        return SortSpec(field_name, ASCENDING)


@dataclass
class PageSpec:
    index: int = 1
    size: int = PAGE_SIZE_ALL


@dataclass
class QueryDescriptor:
    """Everything a table view needs to turn a collection into rows."""

    search_text: str = ""
    filters: Dict[str, Optional[str]] = field(default_factory=dict)
    sort: Optional[SortSpec] = None
    page: PageSpec = field(default_factory=PageSpec)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QueryDescriptor":
        data = data or {}
        sort = data.get("sort")
        page = data.get("page") or {}
        return cls(
            search_text=data.get("searchText", data.get("search_text", "")) or "",
            filters=dict(data.get("filters") or {}),
            sort=SortSpec(sort.get("field", "title"), sort.get("direction", ASCENDING)) if sort else None,
            page=PageSpec(int(page.get("index", 1)), int(page.get("size", PAGE_SIZE_ALL))),
        )

    def active_filters(self) -> Dict[str, str]:
        return {k: v for k, v in self.filters.items() if v is not None and v != ALL}

    def cleared(self) -> "QueryDescriptor":
        """Same query with every filter reset to ``all`` and back on page one."""
        return QueryDescriptor(
            search_text=self.search_text,
            filters={k: ALL for k in self.filters},
            sort=self.sort,
            page=PageSpec(1, self.page.size),
        )


@dataclass
class QueryResult:
    items: List[Any]
    total: int
    page: int
    page_size: int
    total_pages: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


def _attribute(name: str) -> str:
    return FIELD_ALIASES.get(name, name)


def _value(item: Any, name: str) -> Any:
    attr = _attribute(name)
    if attr == PRIORITY_RANK_FIELD:
        return PRIORITY_RANK.get(getattr(item, "priority", None), len(PRIORITY_RANK))
    if not hasattr(item, attr):
        raise ValueError(f"Unknown field '{name}' for {type(item).__name__}")
    return getattr(item, attr)


def search_fields_for(item: Any) -> Sequence[str]:
    for entity_type, fields in SEARCH_FIELDS.items():
        if isinstance(item, entity_type):
            return fields
    raise TypeError(f"No search fields defined for {type(item).__name__}")


def apply_filters(items: Sequence[Any], filters: Dict[str, Optional[str]]) -> List[Any]:
    """Keep items whose field equals the filter value, ignoring ``all``."""
    active = {k: v for k, v in filters.items() if v is not None and v != ALL}
    if not active:
        return list(items)
    return [item for item in items if all(_value(item, name) == value for name, value in active.items())]


def apply_search(items: Sequence[Any], search_text: str) -> List[Any]:
    """Case-insensitive substring match over the entity's text fields."""
    needle = (search_text or "").lower()
    if not needle:
        return list(items)
    matched = []
    for item in items:
        for name in search_fields_for(item):
            value = getattr(item, name) or ""
            if needle in str(value).lower():
                matched.append(item)
                break
    return matched


def _compare(a: Any, b: Any) -> int:
    # missing values compare as the empty string
    a = "" if a is None else a
    b = "" if b is None else b
    try:
        if a < b:
            return -1
        if a > b:
            return 1
    except TypeError:
        a, b = str(a), str(b)
        if a < b:
            return -1
        if a > b:
            return 1
    return 0


def apply_sort(items: Sequence[Any], sort: Optional[SortSpec]) -> List[Any]:
    """Stable sort on one field; ``desc`` negates the comparator so ties keep input order."""
    if sort is None:
        return list(items)
    sign = -1 if sort.direction == DESCENDING else 1
    name = sort.field
    return sorted(items, key=cmp_to_key(lambda a, b: sign * _compare(_value(a, name), _value(b, name))))


def paginate(items: Sequence[Any], page: PageSpec) -> QueryResult:
    total = len(items)
    if page.size == PAGE_SIZE_ALL or page.size <= 0:
        return QueryResult(list(items), total, 1, PAGE_SIZE_ALL, 1 if total else 0)

    total_pages = math.ceil(total / page.size)
    if page.index < 1 or page.index > total_pages:
        return QueryResult([], total, page.index, page.size, total_pages)
    start = (page.index - 1) * page.size
    return QueryResult(list(items[start:start + page.size]), total, page.index, page.size, total_pages)


@log_performance("run_query")
def run_query(items: Sequence[Any], query: Optional[QueryDescriptor] = None) -> QueryResult:
    """Filter, search, sort and slice ``items`` according to ``query``."""
    query = query or QueryDescriptor()
    matched = apply_search(apply_filters(items, query.filters), query.search_text)
    ordered = apply_sort(matched, query.sort)
    result = paginate(ordered, query.page)
    logger.debug(
        f"Query matched {result.total} of {len(items)} items",
        extra={"extra_fields": {"filters": query.active_filters(), "search_text": query.search_text}},
    )
    return result


def stories_for_module_choice(stories: Sequence[UserStory], module_id: Optional[str]) -> List[UserStory]:
    """Stories offered in the feature form's story dropdown once a module is picked."""
    if not module_id or module_id == ALL:
        return list(stories)
    return [s for s in stories if s.module_id == module_id]
