"""Pre and post build hooks."""
from __future__ import annotations

from typing import Dict, Mapping, Sequence
import logging
import shlex

from .config_loader import Hook
from .context import RunContext
from .options import TargetOptions
from .template import Template, TemplateError

logger = logging.getLogger(__name__)


class HookError(RuntimeError):
    """A hook of the given phase failed; the cause is chained."""

    def __init__(self, phase: str, cause: BaseException) -> None:
        super().__init__(f"{phase} hook failed: {cause}")
        self.phase = phase


def hook_environment(
    ctx: RunContext,
    options: TargetOptions,
    build_env: Mapping[str, str],
    hook: Hook,
) -> Dict[str, str]:
    """Layer run env, build env and the hook's own entries, later keys winning."""
    env: Dict[str, str] = dict(ctx.env)
    env.update(build_env)
    base = Template.for_context(ctx).with_build_options(options)
    for raw in hook.env:
        entry = base.with_env(env).apply(raw)
        key, sep, value = entry.partition("=")
        if not sep or not key:
            raise TemplateError(f"hook env entry must look like KEY=VALUE, got '{entry}'")
        env[key] = value
    return env


def run_hooks(
    ctx: RunContext,
    options: TargetOptions,
    build_env: Mapping[str, str],
    hooks: Sequence[Hook],
) -> None:
    for hook in hooks:
        ctx.check_cancelled()
        env = hook_environment(ctx, options, build_env, hook)
        template = Template.for_context(ctx).with_build_options(options).with_env(env)
        directory = template.apply(hook.dir)
        line = template.apply(hook.cmd)

        logger.info("running hook %s", line)
        try:
            command = shlex.split(line)
        except ValueError as exc:
            raise ValueError(f"failed to parse hook '{line}': {exc}") from exc
        if not command:
            raise ValueError(f"hook '{hook.cmd}' expanded to an empty command")

        ctx.runner.run(command, cwd=ctx.resolve_path(directory), env=env, cancel=ctx.cancel_event)


def run_phase(
    ctx: RunContext,
    phase: str,
    options: TargetOptions,
    build_env: Mapping[str, str],
    hooks: Sequence[Hook],
) -> None:
    try:
        run_hooks(ctx, options, build_env, hooks)
    except Exception as exc:
        raise HookError(phase, exc) from exc


__all__ = ["HookError", "hook_environment", "run_hooks", "run_phase"]
