"""Classification rules, user preferences and feedback history."""

from __future__ import annotations

import itertools
import json
import logging
from collections import deque
from dataclasses import dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .categories import Category

logger = logging.getLogger(__name__)

FEEDBACK_HISTORY_LIMIT = 1000
EXPORTED_FEEDBACK_LIMIT = 100
CUSTOM_RULE_PREFIX = "custom_"

PreferenceKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Scales a rule's productivity score during part of the week.

    ``weekdays`` uses ``date.weekday()`` numbering (Monday is 0) and both
    hour bounds are inclusive.
    """

    start_hour: int
    end_hour: int
    weekdays: tuple[int, ...]
    modifier: float

    def applies_at(self, moment: datetime) -> bool:
        return (
            moment.weekday() in self.weekdays
            and self.start_hour <= moment.hour <= self.end_hour
        )


@dataclass(slots=True)
class CategoryRule:
    id: str
    description: str
    priority: int
    category: Category
    productivity_score: float
    app_patterns: tuple[str, ...] = ()
    title_patterns: tuple[str, ...] = ()
    regex_patterns: tuple[str, ...] = ()
    domain_patterns: tuple[str, ...] = ()
    time_windows: tuple[TimeWindow, ...] = ()
    tags: tuple[str, ...] = ()
    enabled: bool = True
    custom_score: Optional[float] = None

    @property
    def is_custom(self) -> bool:
        return self.id.startswith(CUSTOM_RULE_PREFIX)

    @property
    def effective_score(self) -> float:
        return self.custom_score if self.custom_score is not None else self.productivity_score

    def time_modifier(self, moment: datetime) -> float:
        for window in self.time_windows:
            if window.applies_at(moment):
                return window.modifier
        return 1.0


@dataclass(frozen=True, slots=True)
class FeedbackRecord:
    application_name: str
    window_title: Optional[str]
    category: Category
    is_correct: Optional[bool]
    timestamp: datetime


_RULE_FIELDS = frozenset(f.name for f in fields(CategoryRule))
_SEQUENCE_FIELDS = (
    "app_patterns",
    "title_patterns",
    "regex_patterns",
    "domain_patterns",
    "time_windows",
    "tags",
)


def preference_key(application_name: str, window_title: Optional[str]) -> PreferenceKey:
    return application_name, window_title or ""


class RuleCatalog:
    """Ordered rule collection plus user preferences and feedback history.

    Rules are kept sorted by ascending priority. Ties keep insertion order, so
    a rule added later never jumps ahead of an existing rule with the same
    priority.
    """

    def __init__(
        self,
        rules: Optional[Iterable[CategoryRule]] = None,
        *,
        feedback_limit: int = FEEDBACK_HISTORY_LIMIT,
    ) -> None:
        self._sequence = itertools.count()
        self._order: dict[str, int] = {}
        self._rules: list[CategoryRule] = []
        self.preferences: dict[PreferenceKey, Category] = {}
        self.feedback: deque[FeedbackRecord] = deque(maxlen=feedback_limit)
        self._custom_ids = itertools.count(1)
        self._replace_rules(default_rules() if rules is None else rules)

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------
    def __iter__(self) -> Iterator[CategoryRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def all_rules(self) -> list[CategoryRule]:
        return list(self._rules)

    def active_rules(self) -> list[CategoryRule]:
        return [rule for rule in self._rules if rule.enabled]

    def get_rule(self, rule_id: str) -> Optional[CategoryRule]:
        return next((rule for rule in self._rules if rule.id == rule_id), None)

    def rules_by_category(self, category: Category) -> list[CategoryRule]:
        return [rule for rule in self._rules if rule.category == category]

    def search_rules(self, query: str) -> list[CategoryRule]:
        needle = query.lower()
        return [
            rule
            for rule in self._rules
            if needle in rule.description.lower()
            or any(needle in pattern.lower() for pattern in rule.app_patterns)
            or any(needle in pattern.lower() for pattern in rule.title_patterns)
            or any(needle in tag.lower() for tag in rule.tags)
        ]

    def add_rule(self, rule: CategoryRule) -> CategoryRule:
        if self.get_rule(rule.id) is not None:
            raise ValueError(f"Rule id already exists: {rule.id}")
        _check_score(rule.productivity_score)
        self._order[rule.id] = next(self._sequence)
        self._rules.append(rule)
        self._sort()
        return rule

    def create_custom_rule(
        self,
        *,
        description: str,
        category: Category,
        productivity_score: float,
        priority: int = 3,
        **patterns: Any,
    ) -> CategoryRule:
        """Add a user-defined rule and return it."""
        rule_id = self._next_custom_id()
        rule = _build_rule(
            {
                **patterns,
                "id": rule_id,
                "description": description,
                "priority": priority,
                "category": category,
                "productivity_score": productivity_score,
                "enabled": True,
            }
        )
        logger.info("Created custom rule %s (%s)", rule.id, rule.description)
        return self.add_rule(rule)

    def update_rule(self, rule_id: str, **changes: Any) -> bool:
        index = self._index_of(rule_id)
        if index is None:
            return False
        if "id" in changes and changes["id"] != rule_id:
            raise ValueError("Rule ids cannot be changed")
        changes = _normalize_rule_values(changes)

        self._rules[index] = replace(self._rules[index], **changes)
        if "priority" in changes:
            self._sort()
        return True

    def delete_rule(self, rule_id: str) -> bool:
        index = self._index_of(rule_id)
        if index is None:
            return False
        del self._rules[index]
        self._order.pop(rule_id, None)
        return True

    def toggle_rule(self, rule_id: str) -> bool:
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        rule.enabled = not rule.enabled
        return True

    # ------------------------------------------------------------------
    # Preferences and feedback
    # ------------------------------------------------------------------
    def preference_for(self, application_name: str, window_title: Optional[str]) -> Optional[Category]:
        return self.preferences.get(preference_key(application_name, window_title))

    def record_feedback(self, record: FeedbackRecord) -> None:
        self.feedback.append(record)
        if record.is_correct:
            key = preference_key(record.application_name, record.window_title)
            self.preferences[key] = record.category

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def category_stats(self) -> dict[str, dict[str, Any]]:
        stats: dict[str, dict[str, Any]] = {}
        for rule in self._rules:
            entry = stats.setdefault(
                rule.category.value,
                {
                    "rules_count": 0,
                    "active_rules_count": 0,
                    "custom_rules_count": 0,
                    "avg_productivity": 0.0,
                    "app_patterns_count": 0,
                    "title_patterns_count": 0,
                    "regex_patterns_count": 0,
                },
            )
            entry["rules_count"] += 1
            entry["active_rules_count"] += int(rule.enabled)
            entry["custom_rules_count"] += int(rule.is_custom)
            entry["avg_productivity"] += rule.productivity_score
            entry["app_patterns_count"] += len(rule.app_patterns)
            entry["title_patterns_count"] += len(rule.title_patterns)
            entry["regex_patterns_count"] += len(rule.regex_patterns)
        for entry in stats.values():
            entry["avg_productivity"] /= entry["rules_count"]
        return stats

    def feedback_stats(self) -> dict[str, Any]:
        correct = sum(1 for record in self.feedback if record.is_correct is True)
        incorrect = sum(1 for record in self.feedback if record.is_correct is False)
        distribution: dict[str, int] = {}
        for record in self.feedback:
            distribution[record.category.value] = distribution.get(record.category.value, 0) + 1
        rated = correct + incorrect
        return {
            "total_data_points": len(self.feedback),
            "correct_feedback": correct,
            "incorrect_feedback": incorrect,
            "accuracy": correct / rated if rated else 0.0,
            "category_distribution": distribution,
            "user_preferences_count": len(self.preferences),
        }

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------
    def export_json(self, *, now: Optional[datetime] = None) -> str:
        recent = list(self.feedback)[-EXPORTED_FEEDBACK_LIMIT:]
        payload = CatalogPayload(
            rules=[RulePayload.from_rule(rule) for rule in self._rules],
            user_preferences=[
                (app, title, category) for (app, title), category in self.preferences.items()
            ],
            feedback=[FeedbackPayload.from_record(record) for record in recent],
            export_date=now or datetime.now(),
        )
        return payload.model_dump_json(indent=2)

    def import_json(self, data: str) -> bool:
        """Replace catalog contents from exported JSON.

        The payload is validated in full before anything is applied; on any
        error the catalog is left untouched and ``False`` is returned.
        """
        try:
            payload = CatalogPayload.model_validate_json(data)
            rules = [item.to_rule() for item in payload.rules] if payload.rules is not None else None
            if rules is not None:
                _check_unique_ids(rules)
        except (ValidationError, ValueError) as exc:
            logger.error("Failed to import rules: %s", exc)
            return False

        if rules is not None:
            self._replace_rules(rules)
        if payload.user_preferences is not None:
            self.preferences = {
                (app, title): category for app, title, category in payload.user_preferences
            }
        if payload.feedback is not None:
            self.feedback = deque(
                (item.to_record() for item in payload.feedback),
                maxlen=self.feedback.maxlen,
            )
        logger.info("Imported rule catalog with %d rules.", len(self._rules))
        return True

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_json(), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "RuleCatalog":
        """Load a catalog from ``path``; built-in rules are used if it is absent."""
        catalog = cls()
        path = Path(path)
        if path.exists() and not catalog.import_json(path.read_text(encoding="utf-8")):
            raise ValueError(f"Rule catalog at {path} is corrupt.")
        return catalog

    # ------------------------------------------------------------------
    def _replace_rules(self, rules: Iterable[CategoryRule]) -> None:
        self._sequence = itertools.count()
        self._order = {}
        self._rules = []
        for rule in rules:
            self._order[rule.id] = next(self._sequence)
            self._rules.append(rule)
        self._sort()

    def _sort(self) -> None:
        self._rules.sort(key=lambda rule: (rule.priority, self._order[rule.id]))

    def _index_of(self, rule_id: str) -> Optional[int]:
        for index, rule in enumerate(self._rules):
            if rule.id == rule_id:
                return index
        return None

    def _next_custom_id(self) -> str:
        while True:
            rule_id = f"{CUSTOM_RULE_PREFIX}{next(self._custom_ids)}"
            if self.get_rule(rule_id) is None:
                return rule_id


def _check_score(score: float) -> None:
    if not 0.0 <= score <= 1.0:
        raise ValueError(f"productivity_score must be within [0, 1], got {score}")


def _check_unique_ids(rules: list[CategoryRule]) -> None:
    seen: set[str] = set()
    for rule in rules:
        if rule.id in seen:
            raise ValueError(f"Duplicate rule id in import: {rule.id}")
        seen.add(rule.id)


def _normalize_rule_values(values: dict[str, Any]) -> dict[str, Any]:
    unknown = set(values) - _RULE_FIELDS
    if unknown:
        raise ValueError(f"Unknown rule field(s): {', '.join(sorted(unknown))}")
    values = dict(values)
    for name in _SEQUENCE_FIELDS:
        if name in values:
            values[name] = tuple(values[name])
    if "category" in values:
        values["category"] = Category(values["category"])
    if "productivity_score" in values:
        _check_score(values["productivity_score"])
    return values


def _build_rule(values: dict[str, Any]) -> CategoryRule:
    return CategoryRule(**_normalize_rule_values(values))


# ----------------------------------------------------------------------
# Serialization payloads
# ----------------------------------------------------------------------
class TimeWindowPayload(BaseModel):
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)
    weekdays: list[int]
    modifier: float = Field(ge=0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("weekdays")
    @classmethod
    def _check_weekdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("weekdays must be within 0-6 (Monday is 0)")
        return value


class RulePayload(BaseModel):
    id: str = Field(min_length=1)
    description: str
    priority: int
    category: Category
    productivity_score: float = Field(ge=0, le=1)
    app_patterns: list[str] = []
    title_patterns: list[str] = []
    regex_patterns: list[str] = []
    domain_patterns: list[str] = []
    time_windows: list[TimeWindowPayload] = []
    tags: list[str] = []
    enabled: bool = True
    custom_score: Optional[float] = None

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_rule(cls, rule: CategoryRule) -> "RulePayload":
        return cls(
            id=rule.id,
            description=rule.description,
            priority=rule.priority,
            category=rule.category,
            productivity_score=rule.productivity_score,
            app_patterns=list(rule.app_patterns),
            title_patterns=list(rule.title_patterns),
            regex_patterns=list(rule.regex_patterns),
            domain_patterns=list(rule.domain_patterns),
            time_windows=[
                TimeWindowPayload(
                    start_hour=window.start_hour,
                    end_hour=window.end_hour,
                    weekdays=list(window.weekdays),
                    modifier=window.modifier,
                )
                for window in rule.time_windows
            ],
            tags=list(rule.tags),
            enabled=rule.enabled,
            custom_score=rule.custom_score,
        )

    def to_rule(self) -> CategoryRule:
        return CategoryRule(
            id=self.id,
            description=self.description,
            priority=self.priority,
            category=self.category,
            productivity_score=self.productivity_score,
            app_patterns=tuple(self.app_patterns),
            title_patterns=tuple(self.title_patterns),
            regex_patterns=tuple(self.regex_patterns),
            domain_patterns=tuple(self.domain_patterns),
            time_windows=tuple(
                TimeWindow(
                    start_hour=window.start_hour,
                    end_hour=window.end_hour,
                    weekdays=tuple(window.weekdays),
                    modifier=window.modifier,
                )
                for window in self.time_windows
            ),
            tags=tuple(self.tags),
            enabled=self.enabled,
            custom_score=self.custom_score,
        )


class FeedbackPayload(BaseModel):
    application_name: str
    window_title: Optional[str] = None
    category: Category
    is_correct: Optional[bool] = None
    timestamp: datetime

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_record(cls, record: FeedbackRecord) -> "FeedbackPayload":
        return cls(
            application_name=record.application_name,
            window_title=record.window_title,
            category=record.category,
            is_correct=record.is_correct,
            timestamp=record.timestamp,
        )

    def to_record(self) -> FeedbackRecord:
        return FeedbackRecord(
            application_name=self.application_name,
            window_title=self.window_title,
            category=self.category,
            is_correct=self.is_correct,
            timestamp=self.timestamp,
        )


class CatalogPayload(BaseModel):
    rules: Optional[list[RulePayload]] = None
    user_preferences: Optional[list[tuple[str, str, Category]]] = None
    feedback: Optional[list[FeedbackPayload]] = None
    export_date: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


def dump_rules(rules: Iterable[CategoryRule]) -> str:
    return json.dumps(
        [RulePayload.from_rule(rule).model_dump(mode="json") for rule in rules],
        indent=2,
    )


# ----------------------------------------------------------------------
# Built-in catalog
# ----------------------------------------------------------------------
_BROWSERS = ("chrome", "firefox", "edge", "safari")
_WEEKDAYS = (0, 1, 2, 3, 4)


def default_rules() -> list[CategoryRule]:
    """Return a fresh copy of the built-in rule catalog."""
    return [
        CategoryRule(
            id="development-ide",
            description="IDEs and Development Environments",
            priority=1,
            category=Category.DEVELOPMENT,
            productivity_score=0.95,
            app_patterns=(
                "vscode", "code", "webstorm", "intellij", "pycharm",
                "android studio", "xcode", "vim", "neovim", "sublime",
            ),
            title_patterns=("debugging", "compiler", "build", "deploy"),
            regex_patterns=(r"\.js$", r"\.ts$", r"\.py$", r"\.java$", r"\.cpp$"),
            tags=("coding", "programming", "ide"),
        ),
        CategoryRule(
            id="development-terminal",
            description="Terminal and Command Line",
            priority=1,
            category=Category.DEVELOPMENT,
            productivity_score=0.90,
            app_patterns=("terminal", "cmd", "powershell", "bash", "git bash", "windows terminal"),
            title_patterns=("git", "npm", "docker", "kubectl", "ssh"),
            tags=("terminal", "cli", "devops"),
        ),
        CategoryRule(
            id="development-browser-dev",
            description="Development in Browser",
            priority=2,
            category=Category.DEVELOPMENT,
            productivity_score=0.85,
            app_patterns=_BROWSERS,
            title_patterns=(
                "github", "stackoverflow", "developer tools", "devtools",
                "localhost:", "127.0.0.1",
            ),
            regex_patterns=(r"github\.com", r"stackoverflow\.com", r"codepen\.io", r"jsfiddle\.net"),
            domain_patterns=("github.com", "gitlab.com", "bitbucket.org", "stackoverflow.com", "codepen.io"),
            tags=("web-dev", "coding", "research"),
        ),
        CategoryRule(
            id="work-communication",
            description="Work Communication Tools",
            priority=1,
            category=Category.WORK,
            productivity_score=0.75,
            app_patterns=("slack", "teams", "discord", "zoom", "skype", "whatsapp"),
            title_patterns=("meeting", "call", "conference"),
            time_windows=(TimeWindow(start_hour=9, end_hour=17, weekdays=_WEEKDAYS, modifier=1.2),),
            tags=("communication", "meetings", "collaboration"),
        ),
        CategoryRule(
            id="work-email",
            description="Email and Productivity",
            priority=1,
            category=Category.WORK,
            productivity_score=0.70,
            app_patterns=("outlook", "thunderbird", "mail", "gmail"),
            title_patterns=("inbox", "compose", "email"),
            tags=("email", "productivity", "communication"),
        ),
        CategoryRule(
            id="work-office",
            description="Office Applications",
            priority=2,
            category=Category.WORK,
            productivity_score=0.80,
            app_patterns=("word", "excel", "powerpoint", "libreoffice", "google docs", "notion", "obsidian"),
            title_patterns=("document", "presentation", "spreadsheet"),
            tags=("documents", "office", "productivity"),
        ),
        CategoryRule(
            id="learning-documentation",
            description="Technical Documentation",
            priority=1,
            category=Category.LEARNING,
            productivity_score=0.85,
            app_patterns=_BROWSERS,
            title_patterns=("documentation", "docs", "api reference", "tutorial", "guide", "manual"),
            regex_patterns=(r"docs\..+", "documentation", "tutorial", "learn"),
            domain_patterns=("developer.mozilla.org", "docs.python.org", "reactjs.org", "nodejs.org"),
            tags=("learning", "documentation", "research"),
        ),
        CategoryRule(
            id="learning-courses",
            description="Online Learning Platforms",
            priority=1,
            category=Category.LEARNING,
            productivity_score=0.90,
            app_patterns=_BROWSERS,
            title_patterns=("coursera", "udemy", "pluralsight", "codecademy", "freecodecamp"),
            domain_patterns=("coursera.org", "udemy.com", "pluralsight.com", "codecademy.com", "freecodecamp.org"),
            tags=("learning", "courses", "education"),
        ),
        CategoryRule(
            id="entertainment-video",
            description="Video Streaming",
            priority=4,
            category=Category.ENTERTAINMENT,
            productivity_score=0.15,
            app_patterns=("youtube", "netflix", "prime video", "disney+", "twitch"),
            title_patterns=("watch", "stream", "video"),
            domain_patterns=("youtube.com", "netflix.com", "twitch.tv", "primevideo.com"),
            tags=("entertainment", "video", "streaming"),
        ),
        CategoryRule(
            id="entertainment-music",
            description="Music and Audio",
            priority=4,
            category=Category.ENTERTAINMENT,
            productivity_score=0.30,
            app_patterns=("spotify", "apple music", "youtube music", "soundcloud", "podcast"),
            title_patterns=("music", "playlist", "podcast"),
            tags=("entertainment", "music", "audio"),
        ),
        CategoryRule(
            id="entertainment-games",
            description="Gaming",
            priority=4,
            category=Category.ENTERTAINMENT,
            productivity_score=0.10,
            app_patterns=("steam", "epic games", "battle.net", "origin", "uplay", "game"),
            title_patterns=("game", "gaming", "play"),
            tags=("entertainment", "gaming", "games"),
        ),
        CategoryRule(
            id="entertainment-social",
            description="Social Media",
            priority=4,
            category=Category.ENTERTAINMENT,
            productivity_score=0.20,
            app_patterns=_BROWSERS,
            title_patterns=("facebook", "twitter", "instagram", "tiktok", "reddit", "linkedin"),
            domain_patterns=(
                "facebook.com", "twitter.com", "instagram.com",
                "tiktok.com", "reddit.com", "linkedin.com",
            ),
            tags=("entertainment", "social", "networking"),
        ),
    ]
