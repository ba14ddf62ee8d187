"""Domain models for tracked activity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class WindowInfo:
    """A single observation of the foreground window."""

    application_name: str
    window_title: str
    process_id: int
    application_path: Optional[str] = None

    def same_window(self, other: Optional["WindowInfo"]) -> bool:
        if other is None:
            return False
        return (
            self.application_name == other.application_name
            and self.window_title == other.window_title
            and self.process_id == other.process_id
        )


@dataclass(slots=True)
class ActivitySession:
    """Represents a contiguous block of time spent in a single window."""

    start_time: datetime
    application_name: str
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    application_path: Optional[str] = None
    window_title: Optional[str] = None
    category: Optional[str] = None
    productivity_score: Optional[float] = None
    is_idle: bool = False
    is_active: bool = True
    hostname: Optional[str] = None
    os_name: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_ongoing(self) -> bool:
        return self.end_time is None

    def calculated_duration(self, now: Optional[datetime] = None) -> int:
        """Duration in whole seconds, measured up to ``now`` while ongoing."""
        if self.duration is not None:
            return self.duration
        end = self.end_time or now or datetime.now()
        return _whole_seconds(self.start_time, end)

    def end_session(self, end_time: Optional[datetime] = None) -> None:
        end = end_time or datetime.now()
        self.end_time = end
        self.duration = _whole_seconds(self.start_time, end)
        self.is_active = False
        self.updated_at = end


def _whole_seconds(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds()))
