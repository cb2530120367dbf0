"""The build pipe: defaulting, proxying and concurrent per-target builds."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence
import logging

from .builders import Builder, BuilderRegistry, default_registry
from .command_runner import CommandCancelled
from .config_loader import BuildDefinition
from .context import BuildCancelled, RunContext
from .defaults import apply_defaults
from .hooks import run_phase
from .options import TargetOptions, options_for_target
from .proxy import proxy

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    PENDING = "pending"
    OPTIONS_RESOLVED = "options-resolved"
    PRE_HOOKS_RUN = "pre-hooks-run"
    BUILT = "built"
    POST_HOOKS_RUN = "post-hooks-run"
    DONE = "done"
    FAILED = "failed"


def is_cancellation(exc: BaseException | None) -> bool:
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, (BuildCancelled, CommandCancelled)):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False


@dataclass
class TargetResult:
    build_id: str
    target: str
    state: TaskState = TaskState.PENDING
    options: TargetOptions | None = None
    error: BaseException | None = None
    failed_after: TaskState | None = None

    @property
    def cancelled(self) -> bool:
        return is_cancellation(self.error)

    def advance(self, state: TaskState) -> None:
        self.state = state

    def fail(self, error: BaseException) -> None:
        self.failed_after = self.state
        self.state = TaskState.FAILED
        self.error = error


class BuildFailed(RuntimeError):
    """One or more targets of a build failed; every failure is kept."""

    def __init__(self, build_id: str, failures: Sequence[TargetResult], total: int) -> None:
        lines = [f"build '{build_id}' failed for {len(failures)} of {total} targets:"]
        for result in failures:
            lines.append(f"  {result.target}: {result.error}")
        super().__init__("\n".join(lines))
        self.build_id = build_id
        self.failures = list(failures)

    @property
    def cancelled(self) -> bool:
        return bool(self.failures) and all(result.cancelled for result in self.failures)


class BuildPipe:
    """Builds binaries for every configured build definition."""

    def __init__(self, registry: BuilderRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def __str__(self) -> str:
        return "building binaries"

    def default(self, ctx: RunContext) -> None:
        apply_defaults(ctx.config, self.registry)

    def run(self, ctx: RunContext) -> List[TargetResult]:
        results: List[TargetResult] = []
        for build in ctx.config.builds:
            if build.skip:
                logger.info("skip is set id=%s", build.id)
                continue
            ctx.check_cancelled()
            logger.debug("building %s", build)
            results.extend(self.run_build(ctx, build))
        return results

    def run_build(self, ctx: RunContext, build: BuildDefinition) -> List[TargetResult]:
        build = proxy(ctx, build)
        builder = self.registry.for_language(build.lang)

        results = [TargetResult(build_id=build.id, target=target) for target in build.targets]
        workers = max(1, min(ctx.parallelism, len(results)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"build-{build.id}") as pool:
            futures = [
                pool.submit(self._run_target, ctx, builder, build.copy(), result)
                for result in results
            ]
            wait(futures)

        failures = [result for result in results if result.state is TaskState.FAILED]
        if failures:
            raise BuildFailed(build.id, failures, len(results))
        return results

    def _run_target(
        self,
        ctx: RunContext,
        builder: Builder,
        build: BuildDefinition,
        result: TargetResult,
    ) -> TargetResult:
        try:
            ctx.acquire_slot()
        except BuildCancelled as exc:
            result.fail(exc)
            return result

        try:
            options = options_for_target(ctx, build, result.target)
            result.options = options
            result.advance(TaskState.OPTIONS_RESOLVED)

            run_phase(ctx, "pre", options, build.env, build.hooks.pre)
            result.advance(TaskState.PRE_HOOKS_RUN)

            ctx.check_cancelled()
            builder.build(ctx, build, options)
            result.advance(TaskState.BUILT)

            if not ctx.skip_post_build_hooks:
                run_phase(ctx, "post", options, build.env, build.hooks.post)
            result.advance(TaskState.POST_HOOKS_RUN)
            result.advance(TaskState.DONE)
            logger.info("built id=%s target=%s path=%s", build.id, result.target, options.path)
        except Exception as exc:
            result.fail(exc)
            if result.cancelled:
                logger.warning("cancelled id=%s target=%s", build.id, result.target)
            else:
                logger.error("failed id=%s target=%s: %s", build.id, result.target, exc)
        finally:
            ctx.release_slot()
        return result


__all__ = ["BuildFailed", "BuildPipe", "TargetResult", "TaskState", "is_cancellation"]
