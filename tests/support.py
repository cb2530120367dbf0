"""Shared fakes for the build pipe tests."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Mapping, Sequence
import threading
import time

from buildpipe.builders import BuilderRegistry
from buildpipe.command_runner import CommandError, CommandResult, RecordingCommandRunner
from buildpipe.config_loader import BuildDefinition, ProjectConfig
from buildpipe.context import RunContext


class FakeBuilder:
    """Writes a small file at the target's output path."""

    def __init__(self, *, fail_targets: Iterable[str] = (), delay: float = 0.0, use_runner: bool = False) -> None:
        self.fail_targets = set(fail_targets)
        self.delay = delay
        self.use_runner = use_runner
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def with_defaults(self, build: BuildDefinition) -> BuildDefinition:
        if not build.targets:
            build.targets = ["linux_amd64", "darwin_arm64"]
        return build

    def build(self, ctx: RunContext, build: BuildDefinition, options) -> None:
        with self._lock:
            self.calls.append(options.target)
        if self.use_runner:
            ctx.runner.run(["compile", options.target], env=ctx.env, cancel=ctx.cancel_event)
        if self.delay:
            time.sleep(self.delay)
        if options.target in self.fail_targets:
            raise RuntimeError(f"compiler exploded on {options.target}")
        path = Path(options.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{build.id} {options.target}\n")


class FailingRunner(RecordingCommandRunner):
    """Records commands and fails those whose program is listed in ``fail``."""

    def __init__(self, fail: Iterable[str] = ()) -> None:
        super().__init__()
        self.fail = set(fail)

    def run(self, command: Sequence[str], **kwargs) -> CommandResult:
        result = super().run(command, **kwargs)
        if command and command[0] in self.fail:
            raise CommandError(command, "exit status 1", "something went wrong\n")
        return result


class ConcurrencyTrackingRunner(RecordingCommandRunner):
    """Records the highest number of commands in flight at once."""

    def __init__(self, delay: float = 0.05) -> None:
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def run(self, command: Sequence[str], **kwargs) -> CommandResult:
        with self._count_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            return super().run(command, **kwargs)
        finally:
            with self._count_lock:
                self.active -= 1


def make_registry(builder) -> BuilderRegistry:
    registry = BuilderRegistry()
    registry.register("fake", builder)
    return registry


def make_context(
    root: Path,
    builds: Sequence[BuildDefinition] = (),
    *,
    env: Mapping[str, str] | None = None,
    **kwargs,
) -> RunContext:
    config = ProjectConfig(project_name="demo", dist=str(root / "dist"), builds=list(builds))
    kwargs.setdefault("runner", RecordingCommandRunner())
    return RunContext(config=config, root=root, env=dict(env) if env is not None else {"PATH": "/usr/bin"}, **kwargs)
