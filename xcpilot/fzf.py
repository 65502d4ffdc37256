"""Interactive selection through ``fzf``."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Protocol, Sequence, TypeVar

from .command_runner import CommandRunner, SubprocessCommandRunner
from .errors import NotFoundError, PilotError, SelectionCancelledError, ToolMissingError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class PickItem(Generic[T]):
    label: str
    value: T


class Picker(Protocol):
    def pick(self, prompt: str, items: Sequence[PickItem[T]]) -> T:
        ...


class FzfPicker:
    """Runs ``fzf`` over item labels and maps the chosen line back to its value."""

    def __init__(self, runner: CommandRunner | None = None, *, executable: str = "fzf") -> None:
        self._runner = runner or SubprocessCommandRunner()
        self._executable = executable

    def pick(self, prompt: str, items: Sequence[PickItem[T]]) -> T:
        if not items:
            raise NotFoundError("No items available for selection")
        if len(items) == 1:
            return items[0].value

        # labels may contain anything but tabs; the index after the tab identifies the row
        lines = "\n".join(f"{item.label.replace(chr(9), ' ')}\t{index}" for index, item in enumerate(items))
        command = [self._executable, "--prompt", f"{prompt} ", "--delimiter", "\t", "--with-nth", "1"]
        try:
            result = self._runner.run(command, check=False, input=lines)
        except FileNotFoundError:
            raise ToolMissingError("fzf", "Install it with `brew install fzf` and try again.") from None

        if result.returncode != 0:
            raise SelectionCancelledError()

        _, _, index_part = result.stdout.strip().rpartition("\t")
        try:
            index = int(index_part)
        except ValueError:
            raise PilotError("Failed to parse fzf selection") from None
        if not 0 <= index < len(items):
            raise PilotError("Failed to parse fzf selection")
        return items[index].value


__all__ = ["FzfPicker", "PickItem", "Picker"]
