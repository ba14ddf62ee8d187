import json

import pytest
from typer.testing import CliRunner

from productivity_tracker.cli import app
from productivity_tracker.rules import RuleCatalog

runner = CliRunner()


@pytest.fixture
def rules_path(tmp_path):
    return tmp_path / "rules.json"


def test_categorize_with_builtin_rules(rules_path):
    result = runner.invoke(app, ["categorize", "Code", "--title", "main.py", "--rules", str(rules_path)])

    assert result.exit_code == 0
    assert "Category:      Development" in result.output
    assert "development-ide" in result.output


def test_rules_listing_filters_by_category(rules_path):
    result = runner.invoke(app, ["rules", "--category", "Entertainment", "--json", "--rules", str(rules_path)])

    assert result.exit_code == 0
    listed = json.loads(result.stdout)
    assert listed
    assert {rule["category"] for rule in listed} == {"Entertainment"}


def test_feedback_is_persisted_as_preference(rules_path):
    result = runner.invoke(app, ["feedback", "Slack", "Learning", "--title", "standup", "--rules", str(rules_path)])
    assert result.exit_code == 0

    catalog = RuleCatalog.load(rules_path)
    assert catalog.preference_for("Slack", "standup").value == "Learning"

    shown = runner.invoke(app, ["categorize", "Slack", "-t", "standup", "--rules", str(rules_path)])
    assert "Match type:    preference" in shown.output


def test_add_toggle_and_delete_rule(rules_path):
    created = runner.invoke(
        app,
        ["add-rule", "Design tools", "--category", "Work", "--score", "0.8", "--app", "figma", "--rules", str(rules_path)],
    )
    assert created.exit_code == 0
    rule_id = created.stdout.strip().splitlines()[-1].split()[2].rstrip(".")

    assert runner.invoke(app, ["toggle-rule", rule_id, "--rules", str(rules_path)]).exit_code == 0
    assert RuleCatalog.load(rules_path).get_rule(rule_id).enabled is False

    assert runner.invoke(app, ["delete-rule", rule_id, "--rules", str(rules_path)]).exit_code == 0
    assert RuleCatalog.load(rules_path).get_rule(rule_id) is None
    assert runner.invoke(app, ["delete-rule", rule_id, "--rules", str(rules_path)]).exit_code == 1


def test_import_rejects_invalid_export(rules_path, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"rules": [{"id": "x"}]}', encoding="utf-8")

    result = runner.invoke(app, ["import-rules", str(bad), "--rules", str(rules_path)])

    assert result.exit_code == 1
    assert not rules_path.exists()


def test_export_then_import(rules_path, tmp_path):
    exported = tmp_path / "export.json"

    assert runner.invoke(app, ["export-rules", str(exported), "--rules", str(rules_path)]).exit_code == 0
    result = runner.invoke(app, ["import-rules", str(exported), "--rules", str(rules_path)])

    assert result.exit_code == 0
    assert len(RuleCatalog.load(rules_path)) == len(RuleCatalog())


def test_corrupt_catalog_exits_with_error(rules_path):
    rules_path.write_text("{broken", encoding="utf-8")

    result = runner.invoke(app, ["stats", "--rules", str(rules_path)])

    assert result.exit_code == 1


def test_rules_combines_category_and_search(rules_path):
    result = runner.invoke(
        app, ["rules", "--category", "Learning", "--search", "tutorial", "--json", "--rules", str(rules_path)]
    )

    assert result.exit_code == 0
    listed = json.loads(result.stdout)
    assert listed
    assert {rule["category"] for rule in listed} == {"Learning"}


def test_categories_lists_display_metadata(rules_path):
    result = runner.invoke(app, ["categories", "--rules", str(rules_path)])

    assert result.exit_code == 0
    assert "#4CAF50" in result.stdout
    assert "Programming, coding, and software development" in result.stdout
    assert "default=0.25" in result.stdout
