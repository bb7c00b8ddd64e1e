"""
Progress events streamed to callers while a downloader process runs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class EventType(str, Enum):
    INFO = "info"
    OUTPUT = "output"
    ERROR = "error"
    PERCENT = "percent"
    STEAM_GUARD = "steam-guard"


@dataclass(frozen=True)
class ProgressEvent:
    """
    A single progress notification.

    `value` is only set for percent events, `guard_type` only for
    steam-guard events. Messages are redacted before the event is built.
    """

    type: EventType
    message: str | None = None
    value: float | None = None
    guard_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serializes to the stable wire schema (camelCase `guardType`)."""
        data: dict[str, Any] = {"type": self.type.value}
        if self.value is not None:
            data["value"] = self.value
        if self.message is not None:
            data["message"] = self.message
        if self.guard_type is not None:
            data["guardType"] = self.guard_type
        return data


ProgressListener = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class MigrationProgress:
    branch: str
    step: str
    completed: int
    total: int


MigrationListener = Callable[[MigrationProgress], None]
