"""Utilities for executing external commands with streamed, buffered output."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, Iterable, List, Mapping, Sequence
import logging
import os
import shlex
import signal
import subprocess
import threading

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_TERMINATE_GRACE = 5.0
_POSIX = os.name == "posix"


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    output: str


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


class CommandError(RuntimeError):
    """Raised when a command cannot be spawned or exits with a nonzero status."""

    def __init__(self, command: Sequence[str], reason: str, output: str = "") -> None:
        message = f"{format_command(command)}: {reason}"
        if output:
            message = f"{message}\noutput:\n{output.rstrip()}"
        super().__init__(message)
        self.command = list(command)
        self.reason = reason
        self.output = output


class CommandCancelled(RuntimeError):
    """Raised when a running command is terminated because of cancellation."""

    def __init__(self, command: Sequence[str], output: str = "") -> None:
        super().__init__(f"{format_command(command)}: cancelled")
        self.command = list(command)
        self.output = output


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        raise NotImplementedError


class _OutputBuffer:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: List[str] = []

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def text(self) -> str:
        with self._lock:
            return "".join(self._lines)


def _pump(stream: IO[str], buffer: _OutputBuffer, log: logging.LoggerAdapter, level: int) -> None:
    with stream:
        for line in stream:
            buffer.append(line)
            log.log(level, "%s", line.rstrip("\n"))


def _signal_tree(process: subprocess.Popen, sig: int) -> None:
    """Signal the command and everything it spawned.

    On POSIX the command leads its own session, so the whole process group is
    signalled. Elsewhere only the direct child can be reached.
    """
    if _POSIX:
        try:
            os.killpg(process.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass
        return
    if process.poll() is None:
        if sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    ``env`` replaces the ambient environment; callers that want to inherit it
    must include it themselves. Both output streams are logged line by line
    while also being collected into one combined buffer, which is attached to
    :class:`CommandError` on failure.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        if not command:
            raise CommandError(command, "empty command")
        log = logging.LoggerAdapter(logger, {"cmd": list(command)})
        logger.debug("running %s (cwd=%s) with env %s", format_command(command), cwd or ".", dict(env or {}))
        try:
            process = subprocess.Popen(
                list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                start_new_session=_POSIX,
            )
        except OSError as exc:
            raise CommandError(command, f"failed to start: {exc}") from exc

        buffer = _OutputBuffer()
        readers = [
            threading.Thread(target=_pump, args=(process.stdout, buffer, log, logging.INFO), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr, buffer, log, logging.WARNING), daemon=True),
        ]
        for reader in readers:
            reader.start()

        cancelled = self._wait(process, cancel)
        for reader in readers:
            # a descendant that ignored the group signal may still hold the pipes
            reader.join(timeout=_TERMINATE_GRACE if cancelled else None)

        output = buffer.text()
        if cancelled:
            logger.debug("cancelled %s", format_command(command))
            raise CommandCancelled(command, output)
        if process.returncode != 0:
            logger.debug("failed %s with exit code %s", format_command(command), process.returncode)
            raise CommandError(command, f"exit status {process.returncode}", output)
        return CommandResult(command=command, returncode=process.returncode, output=output)

    @staticmethod
    def _wait(process: subprocess.Popen, cancel: threading.Event | None) -> bool:
        if cancel is None:
            process.wait()
            return False
        while True:
            try:
                process.wait(timeout=_POLL_INTERVAL)
                return False
            except subprocess.TimeoutExpired:
                if not cancel.is_set():
                    continue
            _signal_tree(process, signal.SIGTERM)
            try:
                process.wait(timeout=_TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                pass
            _signal_tree(process, signal.SIGKILL if _POSIX else signal.SIGTERM)
            process.wait()
            return True


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        entry = RecordedCommand(
            command=list(command),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env else {},
        )
        with self._lock:
            self.commands.append(entry)
        return CommandResult(command=command, returncode=0, output="")

    def iter_formatted(self) -> Iterable[str]:
        for record in list(self.commands):
            parts: List[str] = ["[dry-run]"]
            if record.cwd:
                parts.append(f"(cwd={record.cwd})")
            parts.append(format_command(record.command))
            yield " ".join(parts)


__all__ = [
    "CommandCancelled",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "format_command",
]
