"""Exception types raised while resolving and running builds."""
from __future__ import annotations

from typing import Any, Mapping


class PilotError(RuntimeError):
    """Base class for failures surfaced to the user as a single message."""

    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = dict(context) if context else {}


class NotFoundError(PilotError):
    """Nothing to choose from: no workspace, scheme, configuration or destination."""


class ConfigError(PilotError):
    """A project settings file could not be loaded."""


class StateCorruptError(PilotError):
    """The persisted selection file exists but cannot be decoded."""

    def __init__(self, path: Any, reason: str) -> None:
        super().__init__(f"Selection state file '{path}' is corrupt: {reason}", context={"path": str(path)})
        self.path = path
        self.reason = reason


class ToolMissingError(PilotError):
    """A required external tool is not installed."""

    def __init__(self, tool: str, hint: str) -> None:
        super().__init__(f"{tool} is required but not installed. {hint}")
        self.tool = tool
        self.hint = hint


class SelectionCancelledError(PilotError):
    """The interactive picker was closed without a choice."""

    def __init__(self, message: str = "Selection cancelled") -> None:
        super().__init__(message)


class DestinationClassificationError(PilotError):
    """A device reported a hardware family that maps to no destination kind."""

    def __init__(self, device_type: str, *, udid: str | None = None) -> None:
        super().__init__(
            f"Unsupported device type '{device_type}'",
            context={"device_type": device_type, "udid": udid},
        )
        self.device_type = device_type


__all__ = [
    "ConfigError",
    "DestinationClassificationError",
    "NotFoundError",
    "PilotError",
    "SelectionCancelledError",
    "StateCorruptError",
    "ToolMissingError",
]
