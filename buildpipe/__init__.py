"""Concurrent multi-target build orchestration."""

from .config_loader import BuildDefinition, ConfigurationError, ProjectConfig, load_project_config
from .context import BuildCancelled, RunContext
from .pipe import BuildFailed, BuildPipe, TargetResult, TaskState

__all__ = [
    "BuildCancelled",
    "BuildDefinition",
    "BuildFailed",
    "BuildPipe",
    "ConfigurationError",
    "ProjectConfig",
    "RunContext",
    "TargetResult",
    "TaskState",
    "load_project_config",
]
