"""Configuration models and helpers for the activity monitor."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import timedelta
from typing import Any

DEFAULT_EXCLUDED_APPLICATIONS: tuple[str, ...] = (
    "keychain",
    "1password",
    "bitwarden",
    "lastpass",
    "keepass",
    "system preferences",
    "task manager",
    "activity monitor",
)

MIN_TITLE_LENGTH = 10


@dataclass(slots=True)
class MonitorSettings:
    """Runtime configuration for the activity monitor."""

    sample_interval: timedelta = timedelta(seconds=2)
    idle_check_interval: timedelta = timedelta(seconds=5)
    idle_threshold: timedelta = timedelta(minutes=5)
    track_window_titles: bool = True
    excluded_applications: tuple[str, ...] = DEFAULT_EXCLUDED_APPLICATIONS
    window_title_max_length: int = 200

    def __post_init__(self) -> None:
        self.excluded_applications = tuple(self.excluded_applications)
        self.validate()

    def validate(self) -> None:
        """Raise ``ValueError`` describing the first invalid option."""
        for name in ("sample_interval", "idle_check_interval", "idle_threshold"):
            value = getattr(self, name)
            if not isinstance(value, timedelta):
                raise ValueError(f"{name} must be a timedelta, got {type(value).__name__}")
            if value <= timedelta(0):
                raise ValueError(f"{name} must be positive, got {value}")
        if not isinstance(self.window_title_max_length, int) or (
            self.window_title_max_length < MIN_TITLE_LENGTH
        ):
            raise ValueError(
                f"window_title_max_length must be an integer >= {MIN_TITLE_LENGTH}"
            )
        if not all(isinstance(app, str) and app for app in self.excluded_applications):
            raise ValueError("excluded_applications must contain non-empty strings")

    def updated(self, **changes: Any) -> "MonitorSettings":
        """Return a validated copy with ``changes`` applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown monitor option(s): {', '.join(unknown)}")
        return replace(self, **changes)

    def is_excluded(self, application_name: str) -> bool:
        if not application_name:
            return True
        app_lower = application_name.lower()
        return any(excluded.lower() in app_lower for excluded in self.excluded_applications)

    def as_dict(self) -> dict[str, Any]:
        return {
            "sample_interval_ms": int(self.sample_interval.total_seconds() * 1000),
            "idle_check_interval_ms": int(self.idle_check_interval.total_seconds() * 1000),
            "idle_threshold_ms": int(self.idle_threshold.total_seconds() * 1000),
            "track_window_titles": self.track_window_titles,
            "excluded_applications": list(self.excluded_applications),
            "window_title_max_length": self.window_title_max_length,
        }

    @classmethod
    def from_intervals(
        cls,
        sample_seconds: float,
        idle_minutes: float,
        idle_check_seconds: float | None = None,
        **options: Any,
    ) -> "MonitorSettings":
        idle_check = idle_check_seconds if idle_check_seconds is not None else max(sample_seconds, 5.0)
        return cls(
            sample_interval=timedelta(seconds=sample_seconds),
            idle_threshold=timedelta(minutes=idle_minutes),
            idle_check_interval=timedelta(seconds=idle_check),
            **options,
        )
