"""Project configuration for zora."""

from .project_config import FeatureSelection, ProfileOverrides, Project, TargetKind, load_project, parse_project

__all__ = [
    "FeatureSelection",
    "ProfileOverrides",
    "Project",
    "TargetKind",
    "load_project",
    "parse_project",
]
