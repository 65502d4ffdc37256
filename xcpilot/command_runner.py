"""Utilities for executing toolchain commands with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess

from .errors import PilotError


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False


class CommandError(PilotError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, result.command))}"
        if not result.streamed and result.stderr.strip():
            message = f"{message}\n{result.stderr.strip()}"
        super().__init__(message, context={"returncode": result.returncode})
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str | None] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        input: str | None = None,
        pipes: Sequence[Sequence[str]] | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)

    def format_pipeline(self, command: Sequence[str], pipes: Sequence[Sequence[str]] | None) -> str:
        parts = [self.format_command(command)]
        for pipe in pipes or ():
            parts.append(self.format_command(pipe))
        return " | ".join(parts)


def merge_environment(env: Mapping[str, str | None] | None) -> Dict[str, str] | None:
    """Overlay ``env`` on the process environment; ``None`` values unset a variable."""

    if env is None:
        return None
    merged = os.environ.copy()
    for key, value in env.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = str(value)
    return merged


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    Streamed commands inherit the terminal; everything else is captured so
    callers can parse the output. A command with ``pipes`` runs through
    ``bash`` with ``pipefail`` so the first non-zero status is reported.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str | None] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        input: str | None = None,
        pipes: Sequence[Sequence[str]] | None = None,
    ) -> CommandResult:
        capture = not stream and not pipes
        options: Dict[str, object] = {
            "cwd": str(cwd) if cwd else None,
            "env": merge_environment(env),
            "check": False,
        }
        if pipes:
            target: str | List[str] = f"set -o pipefail; {self.format_pipeline(command, pipes)}"
            options.update(shell=True, executable="/bin/bash")
        else:
            target = list(command)
            options.update(input=input, text=capture or input is not None, capture_output=capture)

        process = subprocess.run(target, **options)
        result = CommandResult(
            command=command,
            returncode=process.returncode,
            stdout=process.stdout if capture else "",
            stderr=process.stderr if capture else "",
            streamed=not capture,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str | None]
    note: str | None
    stream: bool
    pipes: List[List[str]]


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self, responses: Mapping[str, str] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._responses = dict(responses or {})

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str | None] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        input: str | None = None,
        pipes: Sequence[Sequence[str]] | None = None,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else {},
                note=note,
                stream=stream,
                pipes=[list(pipe) for pipe in pipes or ()],
            )
        )
        stdout = self._responses.get(self.format_command(command), "")
        return CommandResult(command=command, returncode=0, stdout=stdout, stderr="")

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_pipeline(record.command, record.pipes)
            cwd = record.cwd or default_cwd
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            yield " ".join(parts)
