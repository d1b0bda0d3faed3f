"""CLI entry point for the narrative engine.

Usage:
  narrative series create -a me -t "The Ember Crown" -g fantasy
  narrative character add -s 1 --name Aria --role protagonist
  narrative relationship set -s 1 --from 1 --to 2 --type ally --back rival
  narrative event add -s 1 --name "Fall of the Keep" --sequence 3
  narrative context -s 1 -b 2
  narrative check -s 1 -b 2 --file chapter.txt
  narrative --help
"""

import asyncio
import functools
import logging
import sys

import click
from rich.table import Table

from cli.theme import (
    ARC_STATUS_STYLES,
    LOCK_STYLES,
    get_console,
    app_header,
    command_panel,
    success_panel,
    series_overview_panel,
    character_cards,
    context_panel,
    report_table,
    violations_table,
    relationship_table,
    timeline_table,
)
from config.exceptions import NarrativeEngineError
from config.logging_config import setup_logging
from config.settings import Settings
from engine.service import NarrativeEngine
from models.database import Database
from models.enums import (
    ArcStatus, ArcType, BookStatus, CanonLockLevel, CharacterRole, CharacterStatus,
    RelationshipType, ResolutionStatus, RuleCategory, RuleType, TimelineEventType, WorldElementType,
)

console = get_console()
logger = logging.getLogger(__name__)


def _choice(enum_cls) -> click.Choice:
    return click.Choice([m.value for m in enum_cls])


def _init_logging(verbose: bool):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    settings = Settings()
    setup_logging(level=level, log_dir=settings.log_dir, console_enabled=verbose)


def _engine() -> NarrativeEngine:
    settings = Settings()
    return NarrativeEngine(Database(settings.sqlite_db_path), settings)


def _handle_errors(func):
    """Report engine errors as a one-line message and a non-zero exit."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except NarrativeEngineError as e:
            console.print(f"[error]{e}[/]")
            logger.debug("Command failed", exc_info=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Narrative engine: series canon, book-scoped context and canon checks."""
    _init_logging(verbose)


# ---------------------------------------------------------------------------
# series
# ---------------------------------------------------------------------------

@cli.group()
def series():
    """Create, list and inspect series."""


@series.command(name="create")
@click.option("--author", "-a", required=True, help="Author id")
@click.option("--title", "-t", required=True, help="Series title")
@click.option("--genre", "-g", required=True, help="Genre")
@click.option("--books", default=1, type=int, help="Planned number of books")
@click.option("--tone", default="", help="Tone guidance")
@click.option("--pacing", default="", help="Pacing guidance")
@click.option("--premise", default="", help="Series premise")
@click.option("--theme", "themes", multiple=True, help="Series theme (repeatable)")
@_handle_errors
def series_create(author, title, genre, books, tone, pacing, premise, themes):
    """Create a new series."""
    engine = _engine()
    created = engine.create_series(
        author, title, genre, target_book_count=books, tone=tone, pacing=pacing,
        premise=premise, themes=list(themes),
    )
    console.print(app_header())
    console.print(command_panel("New series", {
        "Title": created.title, "Genre": created.genre, "Books": str(created.target_book_count),
    }))
    console.print(success_panel("Created", f"Series ID: [stat.value]{created.id}[/]"))


@series.command(name="list")
@click.option("--author", "-a", required=True, help="Author id")
@click.option("--all", "include_archived", is_flag=True, help="Include archived series")
@_handle_errors
def series_list(author, include_archived):
    """List an author's series."""
    engine = _engine()
    items = engine.list_author_series(author, include_archived=include_archived)
    if not items:
        console.print("[warning]No series yet. Use [info]narrative series create[/] to start one.[/]")
        return

    table = Table(title="Series", show_lines=True, border_style="dim")
    table.add_column("ID", style="book.num")
    table.add_column("Title", style="bold")
    table.add_column("Genre", style="genre")
    table.add_column("Status")
    table.add_column("Books", justify="right")
    for s in items:
        status = s.status.value + (" [warning](archived)[/]" if s.is_archived else "")
        table.add_row(str(s.id), s.title, s.genre, status, str(s.target_book_count))
    console.print(table)


@series.command(name="show")
@click.argument("series_id", type=int)
@_handle_errors
def series_show(series_id):
    """Show a series overview."""
    engine = _engine()
    overview = engine.get_series_overview(series_id)
    console.print(app_header())
    console.print(series_overview_panel(overview))

    if overview.books:
        table = Table(title="Books", border_style="dim")
        table.add_column("#", style="book.num")
        table.add_column("Title")
        table.add_column("Words", justify="right")
        table.add_column("Chapters", justify="right")
        table.add_column("Status")
        for b in overview.books:
            table.add_row(str(b.book_number), b.title, f"{b.word_count:,}",
                          str(b.chapter_count), b.status.value)
        console.print(table)

    characters = engine.get_series_characters(series_id)
    if characters:
        console.print(character_cards(characters))


@series.command(name="archive")
@click.argument("series_id", type=int)
@_handle_errors
def series_archive(series_id):
    """Archive a series. Nothing is deleted."""
    engine = _engine()
    archived = engine.archive_series(series_id)
    console.print(f"[success]Archived series {archived.id}: {archived.title}[/]")


# ---------------------------------------------------------------------------
# book
# ---------------------------------------------------------------------------

@cli.group()
def book():
    """Manage the books of a series."""


@book.command(name="add")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--number", "-n", required=True, type=int, help="Book number")
@click.option("--title", "-t", required=True, help="Book title")
@_handle_errors
def book_add(series_id, number, title):
    """Add a book to a series."""
    engine = _engine()
    created = engine.create_book(series_id, number, title)
    console.print(f"[success]Book {created.book_number} added (ID: {created.id})[/]")


@book.command(name="progress")
@click.argument("book_id", type=int)
@click.option("--words", type=int, default=None, help="Current word count")
@click.option("--chapters", type=int, default=None, help="Current chapter count")
@click.option("--status", type=_choice(BookStatus), default=None, help="Book status")
@_handle_errors
def book_progress(book_id, words, chapters, status):
    """Update a book's progress."""
    engine = _engine()
    updated = engine.update_book_progress(book_id, word_count=words, chapter_count=chapters, status=status)
    console.print(
        f"[success]Book {updated.book_number}: {updated.word_count:,} words, "
        f"{updated.chapter_count} chapters, {updated.status.value}[/]"
    )


# ---------------------------------------------------------------------------
# character
# ---------------------------------------------------------------------------

@cli.group()
def character():
    """Manage persistent characters."""


@character.command(name="add")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--name", required=True, help="Character name")
@click.option("--role", type=_choice(CharacterRole), default=CharacterRole.SUPPORTING.value)
@click.option("--status", type=_choice(CharacterStatus), default=CharacterStatus.ACTIVE.value)
@click.option("--first-book", type=int, default=1, help="First book the character appears in")
@click.option("--retired-in", type=int, default=None, help="Last book of a retired character")
@click.option("--lock", type=_choice(CanonLockLevel), default=CanonLockLevel.SOFT.value)
@click.option("--alias", "aliases", multiple=True, help="Alias (repeatable)")
@click.option("--trait", "traits", multiple=True, help="Personality trait (repeatable)")
@_handle_errors
def character_add(series_id, name, role, status, first_book, retired_in, lock, aliases, traits):
    """Add a character card."""
    engine = _engine()
    created = engine.create_character(
        series_id, name, role=role, status=status, first_appears_book=first_book,
        retired_in_book=retired_in, canon_lock_level=lock, aliases=set(aliases),
        core_personality={"traits": set(traits)},
    )
    console.print(f"[success]Character {created.name} added (ID: {created.id})[/]")


@character.command(name="list")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@_handle_errors
def character_list(series_id):
    """List the characters of a series."""
    engine = _engine()
    engine.get_series(series_id)
    characters = engine.get_series_characters(series_id)
    if not characters:
        console.print("[warning]No characters yet.[/]")
        return
    console.print(character_cards(characters))


# ---------------------------------------------------------------------------
# relationship
# ---------------------------------------------------------------------------

@cli.group()
def relationship():
    """Manage relationships between characters."""


@relationship.command(name="set")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--from", "from_id", required=True, type=int, help="Character ID whose view is given")
@click.option("--to", "to_id", required=True, type=int, help="Character ID on the other side")
@click.option("--type", "rel_type", type=_choice(RelationshipType), default=None, help="How --from sees --to")
@click.option("--back", "back_type", type=_choice(RelationshipType), default=None, help="How --to sees --from")
@click.option("--intensity", type=int, default=None, help="Strength of --from's view (1-10)")
@click.option("--back-intensity", type=int, default=None, help="Strength of --to's view (1-10)")
@click.option("--dynamic", default=None, help="Current dynamic between the two")
@click.option("--started-in", type=int, default=None, help="Book the relationship starts in")
@click.option("--ended-in", type=int, default=None, help="Book the relationship ends in")
@click.option("--lock", type=_choice(CanonLockLevel), default=None)
@_handle_errors
def relationship_set(series_id, from_id, to_id, rel_type, back_type, intensity, back_intensity,
                     dynamic, started_in, ended_in, lock):
    """Create or edit the relationship between two characters."""
    engine = _engine()
    attrs = {
        k: v for k, v in (
            ("type_a_to_b", rel_type), ("type_b_to_a", back_type),
            ("intensity_a_to_b", intensity), ("intensity_b_to_a", back_intensity),
            ("current_dynamic", dynamic), ("started_in_book", started_in),
            ("ended_in_book", ended_in), ("canon_lock_level", lock),
        ) if v is not None
    }
    saved = engine.set_character_relationship(series_id, from_id, to_id, **attrs)
    console.print(f"[success]Relationship saved (ID: {saved.id}, version {saved.version})[/]")


@relationship.command(name="list")
@click.argument("character_id", type=int)
@_handle_errors
def relationship_list(character_id):
    """List a character's relationships."""
    engine = _engine()
    character = engine.get_character(character_id)
    pairs = engine.get_character_relationships(character_id)
    if not pairs:
        console.print(f"[warning]{character.name} has no relationships yet.[/]")
        return
    console.print(relationship_table(character, pairs))


# ---------------------------------------------------------------------------
# event
# ---------------------------------------------------------------------------

@cli.group()
def event():
    """Manage the series timeline."""


@event.command(name="add")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--name", required=True, help="Event name")
@click.option("--description", default="", help="What happened")
@click.option("--type", "event_type", type=_choice(TimelineEventType), default=TimelineEventType.CURRENT.value)
@click.option("--sequence", type=int, default=0, help="In-universe order")
@click.option("--when", "in_universe_date", default="", help="In-universe date")
@click.option("--mentioned-in", type=int, default=1, help="Book the event is first mentioned in")
@click.option("--character", "characters", multiple=True, type=int, help="Involved character ID (repeatable)")
@click.option("--lock", type=_choice(CanonLockLevel), default=CanonLockLevel.SOFT.value)
@_handle_errors
def event_add(series_id, name, description, event_type, sequence, in_universe_date, mentioned_in,
              characters, lock):
    """Add a timeline event."""
    engine = _engine()
    created = engine.create_timeline_event(
        series_id, name, event_description=description, event_type=event_type,
        sequence_number=sequence, in_universe_date=in_universe_date,
        first_mentioned_book=mentioned_in, involved_characters=list(characters),
        canon_lock_level=lock,
    )
    console.print(f"[success]Event {created.event_name} added (ID: {created.id})[/]")


@event.command(name="timeline")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--book", "-b", type=int, default=None, help="Only events revealed by this book")
@_handle_errors
def event_timeline(series_id, book):
    """Show the canon timeline of a series."""
    engine = _engine()
    engine.get_series(series_id)
    events = engine.get_timeline(series_id, book)
    if not events:
        console.print("[warning]No timeline events yet.[/]")
        return
    console.print(timeline_table(events))


# ---------------------------------------------------------------------------
# world
# ---------------------------------------------------------------------------

@cli.group()
def world():
    """Manage world elements."""


@world.command(name="add")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--name", required=True, help="Element name")
@click.option("--type", "element_type", type=_choice(WorldElementType), default=WorldElementType.CUSTOM.value)
@click.option("--description", default="", help="Short description")
@click.option("--introduced-in", type=int, default=1, help="Book the element is introduced in")
@click.option("--destroyed-in", type=int, default=None, help="Book the element is destroyed in")
@click.option("--lock", type=_choice(CanonLockLevel), default=CanonLockLevel.SOFT.value)
@_handle_errors
def world_add(series_id, name, element_type, description, introduced_in, destroyed_in, lock):
    """Add a world element."""
    engine = _engine()
    created = engine.create_world_element(
        series_id, name, element_type, short_description=description,
        introduced_in_book=introduced_in, destroyed_in_book=destroyed_in, canon_lock_level=lock,
    )
    console.print(f"[success]World element {created.name} added (ID: {created.id})[/]")


# ---------------------------------------------------------------------------
# arc
# ---------------------------------------------------------------------------

@cli.group()
def arc():
    """Manage narrative arcs."""


@arc.command(name="add")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--name", required=True, help="Arc name")
@click.option("--type", "arc_type", type=_choice(ArcType), default=ArcType.PLOT.value)
@click.option("--starts", type=int, default=1, help="First book of the arc")
@click.option("--ends", type=int, default=None, help="Last book of the arc")
@click.option("--theme", "themes", multiple=True, help="Arc theme (repeatable)")
@_handle_errors
def arc_add(series_id, name, arc_type, starts, ends, themes):
    """Add a narrative arc."""
    engine = _engine()
    created = engine.create_narrative_arc(
        series_id, name, arc_type=arc_type, starts_in_book=starts, ends_in_book=ends,
        themes=set(themes),
    )
    console.print(f"[success]Arc {created.arc_name} added (ID: {created.id})[/]")


@arc.command(name="advance")
@click.argument("arc_id", type=int)
@click.option("--status", type=_choice(ArcStatus), default=None, help="New arc status")
@click.option("--completion", type=int, default=None, help="Completion percentage (0-100)")
@_handle_errors
def arc_advance(arc_id, status, completion):
    """Move an arc along its lifecycle."""
    engine = _engine()
    updated = engine.update_arc_progress(arc_id, status=status, completion_percentage=completion)
    style = ARC_STATUS_STYLES[updated.arc_status]
    console.print(
        f"[success]Arc {updated.arc_name}:[/] [{style}]{updated.arc_status.value}[/] "
        f"({updated.completion_percentage}%)"
    )


# ---------------------------------------------------------------------------
# rule
# ---------------------------------------------------------------------------

@cli.group()
def rule():
    """Manage canon rules."""


@rule.command(name="add")
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--name", required=True, help="Rule name")
@click.option("--description", required=True, help="What the rule requires")
@click.option("--category", type=_choice(RuleCategory), default=RuleCategory.PLOT.value)
@click.option("--type", "rule_type", type=_choice(RuleType), default=RuleType.MUST.value)
@click.option("--lock", type=_choice(CanonLockLevel), default=CanonLockLevel.HARD.value)
@click.option("--from-book", type=int, default=1, help="First book the rule applies to")
@click.option("--until-book", type=int, default=None, help="Last book the rule applies to")
@click.option("--invalid", "invalid_examples", multiple=True, help="Phrase that breaks the rule (repeatable)")
@click.option("--message", default="", help="Message shown on violation")
@_handle_errors
def rule_add(series_id, name, description, category, rule_type, lock, from_book, until_book,
             invalid_examples, message):
    """Add a canon rule."""
    engine = _engine()
    created = engine.create_canon_rule(
        series_id, name, description, rule_category=category, rule_type=rule_type,
        lock_level=lock, applies_from_book=from_book, applies_until_book=until_book,
        invalid_examples=list(invalid_examples), violation_message=message,
    )
    style = LOCK_STYLES[created.lock_level]
    console.print(
        f"[success]Rule {created.rule_name} added (ID: {created.id})[/] "
        f"[{style}]{created.lock_level.value}[/]"
    )


# ---------------------------------------------------------------------------
# context / check / violations
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--book", "-b", required=True, type=int, help="Target book number")
@click.option("--raw", is_flag=True, help="Print the prompt block without decoration")
@_handle_errors
def context(series_id, book, raw):
    """Compile the generation context for one book."""
    engine = _engine()
    compiled = engine.compile_generation_context(series_id, book)
    rendered = engine.render_generation_context(compiled)
    if raw:
        click.echo(rendered)
        return
    console.print(context_panel(compiled, rendered))


@cli.command()
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--book", "-b", required=True, type=int, help="Target book number")
@click.option("--file", "path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="File with the candidate text")
@click.option("--text", default=None, help="Candidate text")
@click.option("--record", is_flag=True, help="Log detected violations")
@click.option("--timeout", type=float, default=None, help="Classifier deadline in seconds")
@_handle_errors
def check(series_id, book, path, text, record, timeout):
    """Screen candidate text against the canon rules of a book."""
    if (path is None) == (text is None):
        raise click.UsageError("Pass exactly one of --file or --text")
    if path is not None:
        with open(path, encoding="utf-8") as f:
            text = f.read()

    engine = _engine()
    compiled = engine.compile_generation_context(series_id, book)
    report = asyncio.run(engine.evaluate_canon(compiled, text, record=record, timeout=timeout))

    for warning in report.warnings:
        console.print(f"[warning]Warning: {warning}[/]")
    if report.unverified_rules:
        names = ", ".join(r.rule_name for r in report.unverified_rules)
        console.print(f"[muted]Unverified rules: {names}[/]")
    if not report.violations:
        if not report.timed_out:
            console.print("[success]No canon violations found.[/]")
        return

    console.print(report_table(report))
    if report.recorded:
        console.print(f"[muted]Logged {len(report.recorded)} violation(s).[/]")
    if report.blocking:
        sys.exit(1)


@cli.command()
@click.option("--series-id", "-s", required=True, type=int, help="Series ID")
@click.option("--pending", is_flag=True, help="Only unresolved violations")
@_handle_errors
def violations(series_id, pending):
    """Show the violation log of a series."""
    engine = _engine()
    engine.get_series(series_id)
    items = engine.get_violations(series_id, pending_only=pending)
    if not items:
        console.print("[success]No violations logged.[/]")
        return
    console.print(violations_table(items))


@cli.command()
@click.argument("violation_id", type=int)
@click.option("--status", type=click.Choice(["resolved", "ignored", "overridden"]), required=True)
@click.option("--reason", default=None, help="Justification (required to override a hard rule)")
@_handle_errors
def resolve(violation_id, status, reason):
    """Close a logged violation."""
    engine = _engine()
    closed = engine.resolve_violation(violation_id, ResolutionStatus(status), reason)
    console.print(f"[success]Violation {closed.id} {closed.resolution_status.value}[/]")


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
