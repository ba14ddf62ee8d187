"""Command-line interface for the productivity tracker."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from .categories import Category
from .paths import get_db_path, get_log_path, get_rules_path
from .rules import RuleCatalog, dump_rules

app = typer.Typer(help="Activity session tracking with productivity classification.")

RULES_OPTION = typer.Option(
    None, "--rules", path_type=Path, help="Location of the rule catalog JSON file."
)
DB_OPTION = typer.Option(
    None, "--db", path_type=Path, help="Location of the session SQLite database."
)


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_to_file: bool = typer.Option(
        False, "--log-file", help="Also write logs to the application data directory."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_to_file:
        handlers.append(logging.FileHandler(get_log_path(), encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


def _load_catalog(rules_path: Optional[Path]) -> tuple[RuleCatalog, Path]:
    path = rules_path or get_rules_path()
    try:
        return RuleCatalog.load(path), path
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def monitor(
    db_path: Optional[Path] = DB_OPTION,
    rules_path: Optional[Path] = RULES_OPTION,
    sample_seconds: float = typer.Option(
        2.0, "--interval", min=0.5, help="Sampling interval in seconds."
    ),
    idle_minutes: float = typer.Option(
        5.0,
        "--idle-threshold",
        min=0.5,
        help="Minutes of inactivity before the open session is closed.",
    ),
    track_titles: bool = typer.Option(
        True, "--titles/--no-titles", help="Read and classify window titles."
    ),
    exclude: Optional[list[str]] = typer.Option(
        None,
        "--exclude",
        help="Extra application name fragments that are never tracked.",
    ),
) -> None:
    """Track foreground activity until interrupted."""
    from .classifier import ClassificationEngine
    from .collector import default_idle_detector, default_window_source
    from .config import DEFAULT_EXCLUDED_APPLICATIONS, MonitorSettings
    from .db import SqliteSessionStore
    from .monitor import ActivityMonitor

    catalog, _ = _load_catalog(rules_path)
    try:
        window_source = default_window_source()
    except RuntimeError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    settings = MonitorSettings.from_intervals(
        sample_seconds=sample_seconds,
        idle_minutes=idle_minutes,
        track_window_titles=track_titles,
        excluded_applications=DEFAULT_EXCLUDED_APPLICATIONS + tuple(exclude or ()),
    )
    store = SqliteSessionStore(db_path or get_db_path())
    activity_monitor = ActivityMonitor(
        store,
        ClassificationEngine(catalog),
        window_source,
        settings,
        idle_detector=default_idle_detector(),
    )
    activity_monitor.events.subscribe("session:started", _echo_session_started)
    activity_monitor.events.subscribe("session:ended", _echo_session_ended)
    try:
        activity_monitor.run_forever()
    finally:
        store.close()


def _echo_session_started(payload: dict[str, Any]) -> None:
    session = payload["session"]
    result = payload["categorization"]
    typer.echo(
        f"> {session.application_name:<24} {result.category.value:<14} "
        f"score={result.productivity_score:.2f} confidence={result.confidence:.2f}"
    )


def _echo_session_ended(payload: dict[str, Any]) -> None:
    session = payload["session"]
    typer.echo(f"< {session.application_name:<24} {session.duration}s")


@app.command()
def categorize(
    application: str = typer.Argument(..., help="Application (process) name."),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Window title."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Show how an application window would be classified."""
    from .classifier import ClassificationEngine

    catalog, _ = _load_catalog(rules_path)
    report = ClassificationEngine(catalog).explain(application, title)
    result = report.result
    typer.echo(f"Category:      {result.category.value}")
    typer.echo(f"Productivity:  {result.productivity_score:.2f}")
    typer.echo(f"Match type:    {result.match_type.value}")
    typer.echo(f"Confidence:    {result.confidence:.2f}")
    if result.matched_rule:
        typer.echo(f"Matched rule:  {result.matched_rule.id}")
    typer.echo(f"Feedback data: {report.feedback_count}")
    if report.rule_matches:
        typer.echo("Matching rules:")
        for rule, match in report.rule_matches:
            typer.echo(f"  {rule.id:<28} {match.match_type.value:<7} {match.pattern}")
    for suggestion in result.suggestions:
        typer.echo(f"  * {suggestion}")


@app.command("rules")
def list_rules(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by text."),
    category: Optional[Category] = typer.Option(None, "--category", help="Filter by category."),
    as_json: bool = typer.Option(False, "--json", help="Print rules as JSON."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """List classification rules in evaluation order."""
    catalog, _ = _load_catalog(rules_path)
    rules = catalog.rules_by_category(category) if category is not None else catalog.all_rules()
    if search:
        matching = {rule.id for rule in catalog.search_rules(search)}
        rules = [rule for rule in rules if rule.id in matching]
    if as_json:
        typer.echo(dump_rules(rules))
        return
    for rule in rules:
        state = "on " if rule.enabled else "off"
        typer.echo(
            f"[{state}] p{rule.priority} {rule.id:<28} {rule.category.value:<14} "
            f"{rule.productivity_score:.2f}  {rule.description}"
        )


@app.command()
def categories(rules_path: Optional[Path] = RULES_OPTION) -> None:
    """List categories with their display colour and default score."""
    catalog, _ = _load_catalog(rules_path)
    for category in Category:
        active = sum(1 for rule in catalog.rules_by_category(category) if rule.enabled)
        typer.echo(
            f"{category.icon} {category.value:<14} {category.color}  "
            f"default={category.default_score:.2f} rules={active}  {category.description}"
        )


@app.command("add-rule")
def add_rule(
    description: str = typer.Argument(..., help="Human readable description."),
    category: Category = typer.Option(..., "--category", help="Target category."),
    score: float = typer.Option(..., "--score", min=0.0, max=1.0, help="Productivity score."),
    priority: int = typer.Option(3, "--priority", help="Lower runs first."),
    app_patterns: Optional[list[str]] = typer.Option(None, "--app", help="Application name fragment."),
    title_patterns: Optional[list[str]] = typer.Option(None, "--title", help="Window title fragment."),
    regex_patterns: Optional[list[str]] = typer.Option(None, "--regex", help="Regular expression."),
    domain_patterns: Optional[list[str]] = typer.Option(None, "--domain", help="Domain fragment."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Create a custom rule."""
    catalog, path = _load_catalog(rules_path)
    rule = catalog.create_custom_rule(
        description=description,
        category=category,
        productivity_score=score,
        priority=priority,
        app_patterns=app_patterns or (),
        title_patterns=title_patterns or (),
        regex_patterns=regex_patterns or (),
        domain_patterns=domain_patterns or (),
    )
    catalog.save(path)
    typer.echo(f"Created rule {rule.id}.")


@app.command("toggle-rule")
def toggle_rule(
    rule_id: str = typer.Argument(..., help="Rule identifier."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Enable or disable a rule."""
    catalog, path = _load_catalog(rules_path)
    if not catalog.toggle_rule(rule_id):
        typer.echo(f"No rule with id {rule_id}.", err=True)
        raise typer.Exit(code=1)
    catalog.save(path)
    rule = catalog.get_rule(rule_id)
    typer.echo(f"Rule {rule_id} is now {'enabled' if rule and rule.enabled else 'disabled'}.")


@app.command("delete-rule")
def delete_rule(
    rule_id: str = typer.Argument(..., help="Rule identifier."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Delete a rule."""
    catalog, path = _load_catalog(rules_path)
    if not catalog.delete_rule(rule_id):
        typer.echo(f"No rule with id {rule_id}.", err=True)
        raise typer.Exit(code=1)
    catalog.save(path)
    typer.echo(f"Deleted rule {rule_id}.")


@app.command()
def feedback(
    application: str = typer.Argument(..., help="Application (process) name."),
    category: Category = typer.Argument(..., help="Category the activity belongs to."),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Window title."),
    incorrect: bool = typer.Option(
        False, "--incorrect", help="Mark the category as a wrong classification."
    ),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Record classification feedback."""
    from .classifier import ClassificationEngine

    catalog, path = _load_catalog(rules_path)
    ClassificationEngine(catalog).add_user_feedback(application, title, category, not incorrect)
    catalog.save(path)
    typer.echo("Feedback recorded.")


@app.command()
def stats(rules_path: Optional[Path] = RULES_OPTION) -> None:
    """Print rule and feedback statistics."""
    catalog, _ = _load_catalog(rules_path)
    typer.echo(
        json.dumps(
            {"categories": catalog.category_stats(), "feedback": catalog.feedback_stats()},
            indent=2,
        )
    )


@app.command("export-rules")
def export_rules(
    destination: Path = typer.Argument(..., path_type=Path, help="File to write."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Export rules, preferences and recent feedback as JSON."""
    catalog, _ = _load_catalog(rules_path)
    destination.write_text(catalog.export_json(), encoding="utf-8")
    typer.echo(f"Exported {len(catalog)} rules to {destination}.")


@app.command("import-rules")
def import_rules(
    source: Path = typer.Argument(..., exists=True, path_type=Path, help="Exported JSON file."),
    rules_path: Optional[Path] = RULES_OPTION,
) -> None:
    """Replace the rule catalog with an exported one."""
    catalog, path = _load_catalog(rules_path)
    if not catalog.import_json(source.read_text(encoding="utf-8")):
        typer.echo(f"{source} is not a valid rule export; catalog unchanged.", err=True)
        raise typer.Exit(code=1)
    catalog.save(path)
    typer.echo(f"Imported {len(catalog)} rules.")


@app.command()
def recent(
    limit: int = typer.Option(20, "--limit", min=1, help="Number of sessions to show."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Print the most recent sessions."""
    from .db import SqliteSessionStore

    store = SqliteSessionStore(db_path or get_db_path())
    try:
        sessions = store.recent_sessions(limit)
    finally:
        store.close()
    if not sessions:
        typer.echo("No sessions recorded yet.")
        return
    for session in sessions:
        duration = "ongoing" if session.is_ongoing else f"{session.calculated_duration()}s"
        typer.echo(
            f"{session.start_time:%Y-%m-%d %H:%M:%S}  {session.application_name:<24} "
            f"{session.category or '-':<14} {duration}"
        )
