"""Console output handler shared by the CLI and the runtime context."""
from __future__ import annotations

import sys
from typing import TextIO


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug
    Status lines and warnings are printed regardless of level unless the
    level is ``none``.
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(
        self,
        level: str = "info",
        *,
        prefix: str = "xcpilot",
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.level_name = level
        self.level = self.LEVELS.get(level, 0)
        self.prefix = prefix
        self._stdout = stdout
        self._stderr = stderr

    @property
    def out(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._stderr or sys.stderr

    def status(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"{self.prefix}: {message}", file=self.out)

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"[INFO] {message}", file=self.out)

    def warning(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[WARN] {message}", file=self.err)

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[ERROR] {message}", file=self.err)

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"[DEBUG] {message}", file=self.out)
