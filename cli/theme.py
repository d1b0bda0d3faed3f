"""Unified Rich theme and reusable UI helper functions for the CLI."""

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme

from engine.evaluator import EvaluationReport
from models.canon import CanonViolation
from models.character import Character
from models.context import GenerationContext
from models.enums import ArcStatus, CanonLockLevel, Severity
from models.relationship import CharacterRelationship
from models.series import SeriesOverview
from models.timeline import TimelineEvent

NARRATIVE_THEME = Theme({
    "app.title": "bold",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "info": "blue",
    "muted": "dim",
    "accent": "cyan",
    "genre": "bold",
    "stat.label": "dim",
    "stat.value": "bold",
    "book.num": "blue",
    "character.name": "bold cyan",
})

SEVERITY_STYLES = {
    Severity.INFO: "info",
    Severity.WARNING: "warning",
    Severity.BLOCKING: "error",
    Severity.FATAL: "bold red",
}

LOCK_STYLES = {
    CanonLockLevel.SUGGESTION: "muted",
    CanonLockLevel.SOFT: "white",
    CanonLockLevel.HARD: "yellow",
    CanonLockLevel.IMMUTABLE: "bold red",
}

ARC_STATUS_STYLES = {
    ArcStatus.SETUP: "dim",
    ArcStatus.RISING: "yellow",
    ArcStatus.CLIMAX: "bold red",
    ArcStatus.FALLING: "blue",
    ArcStatus.RESOLVED: "green",
    ArcStatus.ABANDONED: "muted",
}


def get_console() -> Console:
    """Return a Console instance with the narrative theme applied."""
    return Console(theme=NARRATIVE_THEME)


def app_header(title: str = "narrative") -> Rule:
    """Return a Rule element for the application header banner."""
    return Rule(title=f"[bold]{title}[/]", style="dim")


def command_panel(title: str, fields: dict[str, str]) -> Panel:
    """Return a Panel displaying command parameters.

    Args:
        title: Panel title (e.g. "New series").
        fields: Ordered dict of label -> value pairs.
    """
    lines = []
    for label, value in fields.items():
        lines.append(f"  [stat.label]{label}:[/] [stat.value]{value}[/]")
    body = "\n".join(lines)
    return Panel(body, title=f"[bold]{title}[/]", box=box.ROUNDED, border_style="dim", padding=(0, 2))


def success_panel(title: str, body: str) -> Panel:
    """Return a green-bordered Panel for success results."""
    return Panel(body, title=f"[success]{title}[/]", box=box.ROUNDED, border_style="green", padding=(0, 2))


def series_overview_panel(overview: SeriesOverview) -> Panel:
    """Return a Panel with series summary stats."""
    series = overview.series
    premise = series.premise or ""
    if len(premise) > 200:
        premise = premise[:200] + "..."

    body = (
        f"  [stat.label]Genre:[/] [genre]{series.genre}[/]  "
        f"[muted]|[/]  [stat.label]Status:[/] {series.status.value}  "
        f"[muted]|[/]  [stat.label]Books:[/] [stat.value]{len(overview.books)}[/]"
        f"/[stat.value]{series.target_book_count}[/]\n"
        f"  [stat.label]Characters:[/] [stat.value]{overview.character_count}[/]  "
        f"[muted]|[/]  [stat.label]World:[/] [stat.value]{overview.world_element_count}[/]  "
        f"[muted]|[/]  [stat.label]Open arcs:[/] [stat.value]{overview.active_arc_count}[/]  "
        f"[muted]|[/]  [stat.label]Rules:[/] [stat.value]{overview.rule_count}[/]\n"
        f"  [stat.label]Words:[/] [stat.value]{overview.total_word_count:,}[/]  "
        f"[muted]|[/]  [stat.label]Pending violations:[/] [stat.value]{overview.pending_violations}[/]"
    )
    if premise:
        body += f"\n  [stat.label]Premise:[/] {premise}"
    title = f"[bold]{series.title}[/] [muted](ID: {series.id})[/]"
    if series.is_archived:
        title += " [warning]archived[/]"
    return Panel(body, title=title, box=box.ROUNDED, border_style="dim", padding=(0, 2))


def character_cards(characters: list[Character]) -> Table:
    """Build a Rich Table of character cards."""
    table = Table(box=box.ROUNDED, border_style="dim", show_header=True, padding=(0, 1))
    table.add_column("ID", style="book.num")
    table.add_column("Name", style="character.name")
    table.add_column("Role", style="muted")
    table.add_column("Status")
    table.add_column("Books")
    table.add_column("Lock")

    for c in characters:
        books = f"{c.first_appears_book}-"
        if c.retired_in_book is not None:
            books += str(c.retired_in_book)
        lock_style = LOCK_STYLES[c.canon_lock_level]
        table.add_row(
            str(c.id), c.name, c.role.value, c.status.value, books,
            f"[{lock_style}]{c.canon_lock_level.value}[/]",
        )
    return table


def context_panel(context: GenerationContext, rendered: str) -> Panel:
    """Return a Panel showing a rendered generation context."""
    return Panel(
        rendered or "[muted](empty context)[/]",
        title=f"[bold]Context for book {context.target_book}[/] [muted](series {context.series_id})[/]",
        box=box.ROUNDED,
        border_style="dim",
        padding=(0, 2),
    )


def report_table(report: EvaluationReport) -> Table:
    """Build a Rich Table listing the violations of a canon check."""
    table = Table(title="Canon violations", box=box.ROUNDED, border_style="dim", show_lines=True)
    table.add_column("Severity")
    table.add_column("Rule", style="bold")
    table.add_column("Finding")
    table.add_column("Excerpt", style="muted")

    for v in report.violations:
        style = SEVERITY_STYLES[v.severity]
        excerpt = v.excerpt if len(v.excerpt) <= 80 else v.excerpt[:80] + "..."
        table.add_row(f"[{style}]{v.severity.value}[/]", v.rule.rule_name, v.description, excerpt)
    return table


def violations_table(violations: list[CanonViolation]) -> Table:
    """Build a Rich Table of logged violations."""
    table = Table(title="Violation log", box=box.ROUNDED, border_style="dim")
    table.add_column("ID", style="book.num")
    table.add_column("Book", justify="right")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("Description")

    for v in violations:
        style = SEVERITY_STYLES[v.severity]
        table.add_row(
            str(v.id), str(v.book_number), f"[{style}]{v.severity.value}[/]",
            v.resolution_status.value, v.description,
        )
    return table


def relationship_table(character: Character, pairs: list[tuple[Character, CharacterRelationship]]) -> Table:
    """Build a Rich Table of one character's relationships, seen from their side."""
    table = Table(title=f"Relationships of {character.name}", box=box.ROUNDED, border_style="dim")
    table.add_column("With", style="character.name")
    table.add_column("Feels")
    table.add_column("Felt back")
    table.add_column("Books")
    table.add_column("Dynamic", style="muted")

    for other, r in pairs:
        feels, strength = r.view_from(character.id)
        back, back_strength = r.view_from(other.id)
        books = f"{r.started_in_book}-"
        if r.ended_in_book is not None:
            books += str(r.ended_in_book)
        table.add_row(
            other.name, f"{feels.value} ({strength})", f"{back.value} ({back_strength})",
            books, r.current_dynamic,
        )
    return table


def timeline_table(events: list[TimelineEvent]) -> Table:
    """Build a Rich Table of timeline events in in-universe order."""
    table = Table(title="Timeline", box=box.ROUNDED, border_style="dim")
    table.add_column("#", style="book.num", justify="right")
    table.add_column("Event", style="bold")
    table.add_column("Type", style="muted")
    table.add_column("When")
    table.add_column("Revealed in", justify="right")

    for e in events:
        table.add_row(
            str(e.sequence_number), e.event_name, e.event_type.value,
            e.in_universe_date or e.relative_timing, str(e.first_mentioned_book),
        )
    return table
