import json
from datetime import datetime

import pytest

from productivity_tracker.categories import Category
from productivity_tracker.rules import (
    FEEDBACK_HISTORY_LIMIT,
    CategoryRule,
    FeedbackRecord,
    RuleCatalog,
    TimeWindow,
    default_rules,
)


def rule(rule_id, priority, **overrides):
    values = dict(
        id=rule_id,
        description=f"Rule {rule_id}",
        priority=priority,
        category=Category.WORK,
        productivity_score=0.5,
        app_patterns=(rule_id,),
    )
    values.update(overrides)
    return CategoryRule(**values)


def feedback(app="app", category=Category.WORK, is_correct=True, title=None):
    return FeedbackRecord(
        application_name=app,
        window_title=title,
        category=category,
        is_correct=is_correct,
        timestamp=datetime(2024, 1, 1, 12, 0),
    )


def ids(catalog):
    return [r.id for r in catalog]


def test_default_catalog_is_sorted_by_priority():
    catalog = RuleCatalog()
    priorities = [r.priority for r in catalog]

    assert priorities == sorted(priorities)
    assert len(catalog) == len(default_rules())
    assert ids(catalog)[0] == "development-ide"


def test_equal_priorities_keep_insertion_order():
    catalog = RuleCatalog([rule("b", 2), rule("a", 1), rule("c", 2)])
    catalog.add_rule(rule("d", 2))

    assert ids(catalog) == ["a", "b", "c", "d"]


def test_create_custom_rule():
    catalog = RuleCatalog([])

    created = catalog.create_custom_rule(
        description="Design tools",
        category="Work",
        productivity_score=0.8,
        app_patterns=["figma"],
    )

    assert created.id.startswith("custom_")
    assert created.is_custom
    assert created.enabled
    assert created.category is Category.WORK
    assert created.app_patterns == ("figma",)
    assert catalog.get_rule(created.id) is created


def test_create_custom_rule_rejects_out_of_range_score():
    with pytest.raises(ValueError):
        RuleCatalog([]).create_custom_rule(description="x", category=Category.WORK, productivity_score=1.5)


def test_update_rule_resorts_on_priority_change():
    catalog = RuleCatalog([rule("a", 1), rule("b", 2)])

    assert catalog.update_rule("a", priority=3, title_patterns=["meeting"])
    assert ids(catalog) == ["b", "a"]
    assert catalog.get_rule("a").title_patterns == ("meeting",)


def test_update_rule_validates_fields():
    catalog = RuleCatalog([rule("a", 1)])

    with pytest.raises(ValueError):
        catalog.update_rule("a", colour="red")
    with pytest.raises(ValueError):
        catalog.update_rule("a", id="b")


def test_missing_rule_operations_return_false():
    catalog = RuleCatalog([rule("a", 1)])

    assert catalog.update_rule("nope", priority=1) is False
    assert catalog.delete_rule("nope") is False
    assert catalog.toggle_rule("nope") is False
    assert ids(catalog) == ["a"]


def test_delete_and_toggle():
    catalog = RuleCatalog([rule("a", 1), rule("b", 1)])

    assert catalog.toggle_rule("a")
    assert [r.id for r in catalog.active_rules()] == ["b"]
    assert catalog.toggle_rule("a")
    assert catalog.get_rule("a").enabled
    assert catalog.delete_rule("a")
    assert ids(catalog) == ["b"]


def test_search_and_filter():
    catalog = RuleCatalog()

    assert {r.id for r in catalog.search_rules("SPOTIFY")} == {"entertainment-music"}
    assert {r.id for r in catalog.search_rules("devops")} == {"development-terminal"}
    assert all(r.category is Category.LEARNING for r in catalog.rules_by_category(Category.LEARNING))


def test_feedback_history_is_bounded():
    catalog = RuleCatalog([])
    for index in range(FEEDBACK_HISTORY_LIMIT + 5):
        catalog.record_feedback(feedback(app=f"app{index}", is_correct=None))

    assert len(catalog.feedback) == FEEDBACK_HISTORY_LIMIT
    assert catalog.feedback[0].application_name == "app5"


def test_positive_feedback_writes_preference():
    catalog = RuleCatalog([])
    catalog.record_feedback(feedback(app="Slack", title="standup", category=Category.WORK))
    catalog.record_feedback(feedback(app="Slack", title="standup", category=Category.LEARNING, is_correct=False))

    assert catalog.preference_for("Slack", "standup") is Category.WORK
    assert catalog.preference_for("Slack", None) is None


def test_category_stats():
    catalog = RuleCatalog([rule("a", 1, productivity_score=0.4), rule("b", 1, productivity_score=0.8)])
    catalog.toggle_rule("b")

    stats = catalog.category_stats()["Work"]

    assert stats["rules_count"] == 2
    assert stats["active_rules_count"] == 1
    assert stats["avg_productivity"] == pytest.approx(0.6)
    assert stats["app_patterns_count"] == 2


def test_feedback_stats():
    catalog = RuleCatalog([])
    catalog.record_feedback(feedback(is_correct=True))
    catalog.record_feedback(feedback(is_correct=True, category=Category.LEARNING))
    catalog.record_feedback(feedback(is_correct=False))

    stats = catalog.feedback_stats()

    assert stats["total_data_points"] == 3
    assert stats["accuracy"] == pytest.approx(2 / 3)
    assert stats["category_distribution"] == {"Work": 2, "Learning": 1}
    assert stats["user_preferences_count"] == 1


def test_export_then_import_restores_catalog():
    source = RuleCatalog(
        [
            rule(
                "a",
                2,
                time_windows=(TimeWindow(9, 17, (0, 1, 2, 3, 4), 1.2),),
                custom_score=0.7,
            ),
            rule("b", 1, enabled=False),
        ]
    )
    source.record_feedback(feedback(app="Code", title="main.py", category=Category.DEVELOPMENT))

    target = RuleCatalog()
    assert target.import_json(source.export_json())

    assert ids(target) == ["b", "a"]
    assert target.get_rule("a").time_windows == source.get_rule("a").time_windows
    assert target.get_rule("a").custom_score == 0.7
    assert target.get_rule("b").enabled is False
    assert target.preference_for("Code", "main.py") is Category.DEVELOPMENT
    assert list(target.feedback) == list(source.feedback)


def test_export_keeps_only_recent_feedback():
    catalog = RuleCatalog([])
    for index in range(150):
        catalog.record_feedback(feedback(app=f"app{index}", is_correct=None))

    exported = json.loads(catalog.export_json())

    assert len(exported["feedback"]) == 100
    assert exported["feedback"][0]["application_name"] == "app50"


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        json.dumps({"rules": [{"id": "x"}]}),
        json.dumps(
            {
                "rules": [
                    {"id": "x", "description": "", "priority": 1, "category": "Work", "productivity_score": 2}
                ]
            }
        ),
        json.dumps({"user_preferences": [["app", "title", "Nonsense"]]}),
        json.dumps(
            {
                "rules": [
                    {"id": "x", "description": "", "priority": 1, "category": "Work", "productivity_score": 0.5},
                    {"id": "x", "description": "", "priority": 2, "category": "Work", "productivity_score": 0.5},
                ]
            }
        ),
    ],
)
def test_corrupt_import_leaves_catalog_untouched(payload):
    catalog = RuleCatalog()
    catalog.record_feedback(feedback())
    before_rules = ids(catalog)
    before_preferences = dict(catalog.preferences)

    assert catalog.import_json(payload) is False
    assert ids(catalog) == before_rules
    assert catalog.preferences == before_preferences
    assert len(catalog.feedback) == 1


def test_save_and_load(tmp_path):
    path = tmp_path / "nested" / "rules.json"
    catalog = RuleCatalog([rule("only", 1)])
    catalog.save(path)

    assert [r.id for r in RuleCatalog.load(path)] == ["only"]


def test_load_missing_file_uses_builtin_rules(tmp_path):
    assert len(RuleCatalog.load(tmp_path / "absent.json")) == len(default_rules())


def test_load_corrupt_file_raises(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(ValueError):
        RuleCatalog.load(path)
