"""Productivity categories and their display metadata."""

from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    DEVELOPMENT = "Development"
    WORK = "Work"
    LEARNING = "Learning"
    ENTERTAINMENT = "Entertainment"
    UNCATEGORIZED = "Uncategorized"

    @property
    def default_score(self) -> float:
        """Productivity score used when a category is assigned without a rule."""
        return _DEFAULT_SCORES.get(self, 0.5)

    @property
    def color(self) -> str:
        return _COLORS.get(self, "#9E9E9E")

    @property
    def icon(self) -> str:
        return _ICONS.get(self, "?")

    @property
    def description(self) -> str:
        return _DESCRIPTIONS.get(self, "Unknown category")


_DEFAULT_SCORES: dict[Category, float] = {
    Category.DEVELOPMENT: 0.90,
    Category.WORK: 0.75,
    Category.LEARNING: 0.85,
    Category.ENTERTAINMENT: 0.25,
    Category.UNCATEGORIZED: 0.50,
}

_COLORS: dict[Category, str] = {
    Category.DEVELOPMENT: "#4CAF50",
    Category.WORK: "#2196F3",
    Category.LEARNING: "#FF9800",
    Category.ENTERTAINMENT: "#E91E63",
    Category.UNCATEGORIZED: "#9E9E9E",
}

_ICONS: dict[Category, str] = {
    Category.DEVELOPMENT: "\N{PERSONAL COMPUTER}",
    Category.WORK: "\N{BRIEFCASE}",
    Category.LEARNING: "\N{BOOKS}",
    Category.ENTERTAINMENT: "\N{VIDEO GAME}",
    Category.UNCATEGORIZED: "\N{BLACK QUESTION MARK ORNAMENT}",
}

_DESCRIPTIONS: dict[Category, str] = {
    Category.DEVELOPMENT: "Programming, coding, and software development",
    Category.WORK: "Professional tasks, meetings, and business applications",
    Category.LEARNING: "Educational content, tutorials, and skill development",
    Category.ENTERTAINMENT: "Games, videos, music, and leisure activities",
    Category.UNCATEGORIZED: "Activities that do not fit into other categories",
}
