"""Scope-Kit - project-structure engine for scoping applications."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "ProjectManager",
    "ProjectSnapshot",
    "Module",
    "UserStory",
    "FeatureTask",
    "OperationResult",
    "QueryDescriptor",
    "RecommendationEngine",
    "Workspace",
]
