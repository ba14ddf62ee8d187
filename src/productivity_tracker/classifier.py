"""Multi-strategy activity classification.

Four independent strategies each propose a category with a confidence:

1. exact user preference (0.95)
2. rule matching in priority order (0.8 - 0.9 depending on what matched)
3. inference from the feedback history (at most 0.9)
4. fuzzy similarity against rule patterns (similarity * 0.7)

The proposal with the highest confidence wins; on a tie the earlier strategy
is kept. When nothing matches the activity is ``Uncategorized`` with
confidence 0.3.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

from .categories import Category
from .rules import CategoryRule, FeedbackRecord, RuleCatalog

logger = logging.getLogger(__name__)

PREFERENCE_CONFIDENCE = 0.95
DEFAULT_CONFIDENCE = 0.3
FEEDBACK_MIN_RECORDS = 3
FEEDBACK_MIN_CONFIDENCE = 0.6
FEEDBACK_MAX_CONFIDENCE = 0.9
FUZZY_MIN_SIMILARITY = 0.7
FUZZY_CONFIDENCE_FACTOR = 0.7
MAX_SUGGESTIONS = 3
SUGGESTION_THRESHOLD = 0.2
APP_SUGGESTION_WEIGHT = 0.3
TITLE_SUGGESTION_WEIGHT = 0.2


class MatchType(str, Enum):
    APP = "app"
    TITLE = "title"
    REGEX = "regex"
    DOMAIN = "domain"
    PREFERENCE = "preference"
    FEEDBACK = "feedback"
    FUZZY = "fuzzy"
    DEFAULT = "default"


@dataclass(frozen=True, slots=True)
class AppMatch:
    pattern: str
    match_type: ClassVar[MatchType] = MatchType.APP
    confidence: ClassVar[float] = 0.9


@dataclass(frozen=True, slots=True)
class TitleMatch:
    pattern: str
    match_type: ClassVar[MatchType] = MatchType.TITLE
    confidence: ClassVar[float] = 0.8


@dataclass(frozen=True, slots=True)
class RegexMatch:
    pattern: str
    match_type: ClassVar[MatchType] = MatchType.REGEX
    confidence: ClassVar[float] = 0.85


@dataclass(frozen=True, slots=True)
class DomainMatch:
    pattern: str
    match_type: ClassVar[MatchType] = MatchType.DOMAIN
    confidence: ClassVar[float] = 0.9


RuleMatch = Union[AppMatch, TitleMatch, RegexMatch, DomainMatch]


@dataclass(slots=True)
class CategoryResult:
    category: Category
    productivity_score: float
    match_type: MatchType
    confidence: float
    matched_rule: Optional[CategoryRule] = None
    match: Optional[RuleMatch] = None
    suggestions: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "productivity_score": self.productivity_score,
            "match_type": self.match_type.value,
            "confidence": self.confidence,
            "matched_rule": self.matched_rule.id if self.matched_rule else None,
            "matched_pattern": self.match.pattern if self.match else None,
            "suggestions": list(self.suggestions),
        }


@dataclass(slots=True)
class CategorizationReport:
    """Outcome of :meth:`ClassificationEngine.explain`."""

    application_name: str
    window_title: Optional[str]
    result: CategoryResult
    rule_matches: list[tuple[CategoryRule, RuleMatch]]
    feedback_count: int


class ClassificationEngine:
    """Assigns categories and productivity scores to application windows."""

    def __init__(
        self,
        catalog: Optional[RuleCatalog] = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.catalog = catalog if catalog is not None else RuleCatalog()
        self._clock = clock

    def categorize(self, application_name: str, window_title: Optional[str] = None) -> CategoryResult:
        candidates = (
            self._from_preference(application_name, window_title),
            self._from_rules(application_name, window_title),
            self._from_feedback(application_name, window_title),
            self._from_fuzzy_match(application_name, window_title),
        )
        best: Optional[CategoryResult] = None
        for candidate in candidates:
            if candidate is not None and (best is None or candidate.confidence > best.confidence):
                best = candidate

        if best is None:
            best = CategoryResult(
                category=Category.UNCATEGORIZED,
                productivity_score=Category.UNCATEGORIZED.default_score,
                match_type=MatchType.DEFAULT,
                confidence=DEFAULT_CONFIDENCE,
            )
        best.suggestions = self.suggestions(application_name, window_title)
        logger.debug(
            "Categorized %r / %r as %s via %s (confidence %.2f)",
            application_name,
            window_title,
            best.category.value,
            best.match_type.value,
            best.confidence,
        )
        return best

    def add_user_feedback(
        self,
        application_name: str,
        window_title: Optional[str],
        category: Category,
        is_correct: bool,
    ) -> None:
        self.catalog.record_feedback(
            FeedbackRecord(
                application_name=application_name,
                window_title=window_title,
                category=Category(category),
                is_correct=is_correct,
                timestamp=self._clock(),
            )
        )

    def explain(self, application_name: str, window_title: Optional[str] = None) -> CategorizationReport:
        """Categorize and list every enabled rule that would match."""
        rule_matches = []
        for rule in self.catalog.active_rules():
            match = evaluate_rule(rule, application_name, window_title)
            if match is not None:
                rule_matches.append((rule, match))
        return CategorizationReport(
            application_name=application_name,
            window_title=window_title,
            result=self.categorize(application_name, window_title),
            rule_matches=rule_matches,
            feedback_count=len(self._related_feedback(application_name, window_title)),
        )

    def suggestions(self, application_name: str, window_title: Optional[str] = None) -> list[str]:
        app_lower = application_name.lower()
        title_lower = (window_title or "").lower()
        found: list[str] = []
        for rule in self.catalog.active_rules():
            relevance = 0.0
            if app_lower:
                relevance += APP_SUGGESTION_WEIGHT * sum(
                    1 for pattern in rule.app_patterns if _partial_match(app_lower, pattern.lower())
                )
            if title_lower:
                relevance += TITLE_SUGGESTION_WEIGHT * sum(
                    1 for pattern in rule.title_patterns if _partial_match(title_lower, pattern.lower())
                )
            if relevance > SUGGESTION_THRESHOLD:
                found.append(f"Consider {rule.category.value} ({rule.description})")
                if len(found) == MAX_SUGGESTIONS:
                    break
        return found

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------
    def _from_preference(self, application_name: str, window_title: Optional[str]) -> Optional[CategoryResult]:
        category = self.catalog.preference_for(application_name, window_title)
        if category is None:
            return None
        return CategoryResult(
            category=category,
            productivity_score=category.default_score,
            match_type=MatchType.PREFERENCE,
            confidence=PREFERENCE_CONFIDENCE,
        )

    def _from_rules(self, application_name: str, window_title: Optional[str]) -> Optional[CategoryResult]:
        for rule in self.catalog.active_rules():
            match = evaluate_rule(rule, application_name, window_title)
            if match is None:
                continue
            score = rule.effective_score * rule.time_modifier(self._clock())
            return CategoryResult(
                category=rule.category,
                productivity_score=_clamp(score),
                match_type=match.match_type,
                confidence=match.confidence,
                matched_rule=rule,
                match=match,
            )
        return None

    def _from_feedback(self, application_name: str, window_title: Optional[str]) -> Optional[CategoryResult]:
        related = self._related_feedback(application_name, window_title)
        if len(related) < FEEDBACK_MIN_RECORDS:
            return None

        weights: dict[Category, float] = {}
        for record in related:
            weights[record.category] = weights.get(record.category, 0.0) + _feedback_weight(record)
        # Ties go to the category seen last.
        best_category: Optional[Category] = None
        for category, weight in weights.items():
            if best_category is None or weight >= weights[best_category]:
                best_category = category
        confidence = weights[best_category] / len(related)
        if confidence <= FEEDBACK_MIN_CONFIDENCE:
            return None
        return CategoryResult(
            category=best_category,
            productivity_score=best_category.default_score,
            match_type=MatchType.FEEDBACK,
            confidence=min(FEEDBACK_MAX_CONFIDENCE, confidence),
        )

    def _from_fuzzy_match(self, application_name: str, window_title: Optional[str]) -> Optional[CategoryResult]:
        app_lower = application_name.lower()
        title_lower = window_title.lower() if window_title else None
        best_rule: Optional[CategoryRule] = None
        best_similarity = FUZZY_MIN_SIMILARITY
        for rule in self.catalog.active_rules():
            for pattern in rule.app_patterns:
                similarity = string_similarity(app_lower, pattern.lower())
                if similarity > best_similarity:
                    best_rule, best_similarity = rule, similarity
            if title_lower:
                for pattern in rule.title_patterns:
                    similarity = string_similarity(title_lower, pattern.lower())
                    if similarity > best_similarity:
                        best_rule, best_similarity = rule, similarity

        if best_rule is None:
            return None
        return CategoryResult(
            category=best_rule.category,
            productivity_score=_clamp(best_rule.productivity_score),
            match_type=MatchType.FUZZY,
            confidence=best_similarity * FUZZY_CONFIDENCE_FACTOR,
            matched_rule=best_rule,
        )

    def _related_feedback(self, application_name: str, window_title: Optional[str]) -> list[FeedbackRecord]:
        app_lower = application_name.lower()
        title_lower = window_title.lower() if window_title else None
        return [
            record
            for record in self.catalog.feedback
            if record.application_name.lower() == app_lower
            or (
                title_lower is not None
                and record.window_title is not None
                and title_lower in record.window_title.lower()
            )
        ]


def evaluate_rule(rule: CategoryRule, application_name: str, window_title: Optional[str]) -> Optional[RuleMatch]:
    """Return how ``rule`` matches the window, or ``None``.

    Pattern kinds are tried in a fixed order: application name, title,
    regular expression, then domain.
    """
    app_lower = application_name.lower()
    title_lower = window_title.lower() if window_title else ""

    for pattern in rule.app_patterns:
        if pattern.lower() in app_lower:
            return AppMatch(pattern)

    if window_title:
        for pattern in rule.title_patterns:
            if pattern.lower() in title_lower:
                return TitleMatch(pattern)

    if rule.regex_patterns:
        text = f"{application_name} {window_title or ''}"
        for pattern in rule.regex_patterns:
            try:
                compiled = _compile(pattern)
            except re.error:
                logger.warning("Invalid regex pattern %r in rule %s", pattern, rule.id)
                continue
            if compiled.search(text):
                return RegexMatch(pattern)

    if window_title:
        for domain in rule.domain_patterns:
            if domain.lower() in title_lower:
                return DomainMatch(domain)

    return None


def string_similarity(first: str, second: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]."""
    longest = max(len(first), len(second))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(first, second) / longest


def levenshtein_distance(first: str, second: str) -> int:
    if len(first) < len(second):
        first, second = second, first
    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i]
        for j, char_b in enumerate(second, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


@functools.lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _partial_match(value: str, pattern: str) -> bool:
    return pattern in value or value in pattern


def _feedback_weight(record: FeedbackRecord) -> float:
    if record.is_correct is True:
        return 1.5
    if record.is_correct is False:
        return 0.5
    return 1.0


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))
