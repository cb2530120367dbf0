"""Command line interface for the build pipe."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable
import logging
import signal
import sys

from .command_runner import RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import ConfigurationError, find_config, load_project_config
from .context import BuildCancelled, RunContext
from .pipe import BuildFailed, BuildPipe, is_cancellation
from .template import TemplateError

logger = logging.getLogger("buildpipe")

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def _configure_logging(level: str, log_file: str | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(threadName)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="buildpipe", description="Concurrent multi-target build orchestrator")
    parser.add_argument("--log-level", default="info", help="Logging level (debug, info, warning, error)")
    parser.add_argument("--log-file", help="Also write log records to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build every configured target")
    build_parser.add_argument("-f", "--config", help="Configuration file (default: buildpipe.{yaml,yml,toml,json})")
    build_parser.add_argument("-p", "--parallelism", type=int, help="Maximum number of concurrent target builds")
    build_parser.add_argument("--timeout", type=float, help="Cancel the run after this many seconds")
    build_parser.add_argument("--dist", help="Override the output directory")
    build_parser.add_argument("--skip-post-hooks", action="store_true", help="Do not run post build hooks")
    build_parser.add_argument("--dry-run", action="store_true", help="Print commands without executing them")
    build_parser.add_argument("--version", dest="release_version", default="", help="Value of {{ .Version }}")
    build_parser.add_argument("--tag", default="", help="Value of {{ .Tag }}")
    build_parser.add_argument("--commit", default="", help="Value of {{ .Commit }}")

    validate_parser = subparsers.add_parser("validate", help="Apply defaults and validate the configuration")
    validate_parser.add_argument("-f", "--config", help="Configuration file")

    return parser.parse_args(list(argv))


def _load_context(args: Namespace, workspace: Path, **kwargs) -> RunContext:
    path = Path(args.config) if args.config else find_config(workspace)
    config = load_project_config(path)
    return RunContext(config=config, root=path.resolve().parent, **kwargs)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    _configure_logging(args.log_level, args.log_file)
    workspace = Path.cwd()

    try:
        if args.command == "build":
            return _handle_build(args, workspace)
        if args.command == "validate":
            return _handle_validate(args, workspace)
    except (ConfigurationError, TemplateError) as exc:
        logger.error("invalid configuration: %s", exc)
        return EXIT_FAILURE
    except BuildFailed as exc:
        logger.error("%s", exc)
        return EXIT_CANCELLED if exc.cancelled else EXIT_FAILURE
    except BuildCancelled as exc:
        logger.error("%s", exc)
        return EXIT_CANCELLED
    except RuntimeError as exc:
        if is_cancellation(exc):
            logger.error("build cancelled: %s", exc)
            return EXIT_CANCELLED
        logger.error("build failed: %s", exc)
        return EXIT_FAILURE
    raise ValueError(f"Unknown command: {args.command}")


def _handle_build(args: Namespace, workspace: Path) -> int:
    runner: SubprocessCommandRunner | RecordingCommandRunner
    if args.dry_run:
        runner = RecordingCommandRunner()
    else:
        runner = SubprocessCommandRunner()

    options = {
        "runner": runner,
        "skip_post_build_hooks": args.skip_post_hooks,
        "version": args.release_version,
        "tag": args.tag,
        "commit": args.commit,
    }
    if args.parallelism:
        options["parallelism"] = args.parallelism
    ctx = _load_context(args, workspace, **options)
    if args.dist:
        ctx.config.dist = args.dist

    pipe = BuildPipe()
    pipe.default(ctx)
    if args.timeout:
        ctx.start_timeout(args.timeout)
    logger.info("%s", pipe)
    previous = signal.signal(signal.SIGINT, lambda signum, frame: ctx.cancel())
    try:
        results = pipe.run(ctx)
    finally:
        signal.signal(signal.SIGINT, previous)
        ctx.stop_timeout()

    if isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted():
            print(line)
    for artifact in ctx.artifacts.list():
        print(f"{artifact.build_id}\t{artifact.target}\t{artifact.path}")
    logger.info("built %d target(s)", len(results))
    return 0


def _handle_validate(args: Namespace, workspace: Path) -> int:
    ctx = _load_context(args, workspace, runner=RecordingCommandRunner())
    BuildPipe().default(ctx)
    for build in ctx.config.builds:
        status = "skip" if build.skip else ", ".join(build.targets)
        print(f"{build.id} ({build.lang}): {status}")
    print("Validation successful")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
