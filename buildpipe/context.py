"""Per-run state shared by every stage of the build pipe."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping
import os
import threading

from .command_runner import CommandRunner, SubprocessCommandRunner
from .config_loader import ProjectConfig, normalize_env


class BuildCancelled(RuntimeError):
    """Raised when work is abandoned because the run was cancelled."""


@dataclass(slots=True, frozen=True)
class Artifact:
    name: str
    path: str
    build_id: str
    target: str
    os: str = ""
    arch: str = ""


class ArtifactList:
    """Thread-safe collection of artifacts produced during a run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[Artifact] = []

    def add(self, artifact: Artifact) -> None:
        with self._lock:
            self._items.append(artifact)

    def list(self) -> List[Artifact]:
        with self._lock:
            return list(self._items)


@dataclass
class RunContext:
    """State for one invocation of the pipe.

    ``env`` is the base environment handed to every subprocess; it replaces
    the ambient environment, so it starts from a copy of ``os.environ`` unless
    given explicitly. ``parallelism`` bounds the number of target tasks (and
    therefore subprocesses) in flight across all builds of the run.
    """

    config: ProjectConfig
    root: Path = field(default_factory=Path.cwd)
    env: Dict[str, str] = field(default_factory=lambda: dict(os.environ))
    parallelism: int = field(default_factory=lambda: os.cpu_count() or 4)
    runner: CommandRunner = field(default_factory=SubprocessCommandRunner)
    skip_post_build_hooks: bool = False
    version: str = ""
    tag: str = ""
    commit: str = ""
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    artifacts: ArtifactList = field(default_factory=ArtifactList)

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.env.update(normalize_env(self.config.env, field_name="env"))
        self._semaphore = threading.BoundedSemaphore(self.parallelism)
        self._cancel_event = threading.Event()
        self._timer: threading.Timer | None = None

    def resolve_path(self, value: str | Path) -> Path:
        """Resolve ``value`` against the project root unless it is absolute."""
        path = Path(value)
        return path if path.is_absolute() else self.root / path

    @property
    def dist(self) -> Path:
        return self.resolve_path(self.config.dist)

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise BuildCancelled("run was cancelled")

    def start_timeout(self, seconds: float) -> None:
        """Cancel the run automatically once ``seconds`` have elapsed."""
        self._timer = threading.Timer(seconds, self.cancel)
        self._timer.daemon = True
        self._timer.start()

    def stop_timeout(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def acquire_slot(self, poll_interval: float = 0.05) -> None:
        """Block until a parallelism slot is free or the run is cancelled."""
        while not self._semaphore.acquire(timeout=poll_interval):
            self.check_cancelled()
        if self._cancel_event.is_set():
            self._semaphore.release()
            raise BuildCancelled("run was cancelled")

    def release_slot(self) -> None:
        self._semaphore.release()

    def template_fields(self) -> Mapping[str, Any]:
        return {
            "ProjectName": self.config.project_name,
            "Version": self.version,
            "Tag": self.tag,
            "Commit": self.commit,
            "ShortCommit": self.commit[:7],
            "Date": self.date.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "Timestamp": int(self.date.timestamp()),
            "Env": dict(self.env),
        }


__all__ = ["Artifact", "ArtifactList", "BuildCancelled", "RunContext"]
