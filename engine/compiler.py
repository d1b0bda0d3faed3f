"""Generation context compilation and prompt rendering."""

import logging
from typing import Optional

from config.exceptions import SeriesNotFoundError
from config.settings import Settings
from engine.scope import ScopeResolver, ScopedEntities, validate_target_book
from models.database import Database
from models.enums import CanonLockLevel
from models.context import (
    ArcSummary, CharacterSummary, ElementSummary, EventSummary, GenerationContext, RelationshipSummary,
)
from models.series import Series

logger = logging.getLogger(__name__)

_LOCKED = (CanonLockLevel.HARD, CanonLockLevel.IMMUTABLE)

_RULE_TYPE_LABELS = {
    "must": "MUST",
    "must_not": "MUST NOT",
    "should": "SHOULD",
    "should_not": "SHOULD NOT",
    "may": "MAY",
}


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit - 3].rstrip() + "..."


def _unique(items) -> list[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class ContextCompiler:
    """Builds a :class:`GenerationContext` for one book of one series.

    All reads for a compilation share a single store snapshot, so the
    result reflects one consistent state. Two compilations of the same
    series and book with no writes in between yield equal contexts.
    """

    def __init__(self, db: Database, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or Settings()

    def compile(self, series_id: int, target_book: int) -> GenerationContext:
        target_book = validate_target_book(target_book)
        with self.db.snapshot() as snap:
            series = snap.get_series(series_id)
            if series is None:
                raise SeriesNotFoundError(series_id)
            scoped = ScopeResolver(snap).resolve(series_id, target_book)

        context = self._assemble(series, scoped)
        logger.info(
            "Compiled context series=%d book=%d: %d characters, %d arcs, %d rules, %d world entries, "
            "%d relationships, %d events",
            series_id, target_book, len(context.active_characters), len(context.active_arcs),
            len(context.canon_rules), len(context.world_state), len(context.relationship_map),
            len(context.recent_events),
        )
        return context

    def _assemble(self, series: Series, scoped: ScopedEntities) -> GenerationContext:
        digest_chars = self.settings.context_digest_chars

        world_state: dict[str, str] = {}
        for element in scoped.world_elements:
            key = element.name
            if key in world_state:
                key = f"{element.name} ({element.element_type.value})"
            if key in world_state:
                key = f"{element.name} ({element.element_type.value} #{element.id})"
            world_state[key] = _truncate(element.digest, digest_chars)

        themes = list(series.themes)
        for arc in scoped.arcs:
            themes.extend(sorted(arc.themes))

        names = {c.id: c.name for c in scoped.characters}
        relationship_map = [
            RelationshipSummary(
                id=r.id, character_a=names[r.character_a_id], character_b=names[r.character_b_id],
                type_a_to_b=r.type_a_to_b, type_b_to_a=r.type_b_to_a,
                intensity_a_to_b=r.intensity_a_to_b, intensity_b_to_a=r.intensity_b_to_a,
                current_dynamic=_truncate(r.current_dynamic, digest_chars),
            )
            for r in scoped.relationships
        ]

        past = [e for e in scoped.events if not e.is_prophecy]
        limit = self.settings.context_recent_events
        recent_events = [
            EventSummary(
                id=e.id, name=e.event_name, event_type=e.event_type,
                sequence_number=e.sequence_number,
                when=e.in_universe_date or e.relative_timing,
                digest=_truncate(e.event_description, digest_chars),
            )
            for e in (past[-limit:] if limit else [])
        ]
        pending_payoffs = [
            _truncate(f"{e.event_name}: {e.event_description}" if e.event_description else e.event_name,
                      digest_chars)
            for e in scoped.events if e.is_prophecy
        ]

        locked = [c.name for c in scoped.characters if c.canon_lock_level in _LOCKED]
        locked += [e.name for e in scoped.world_elements if e.canon_lock_level in _LOCKED]

        return GenerationContext(
            series_id=series.id,
            target_book=scoped.target_book,
            active_characters=[
                CharacterSummary(id=c.id, name=c.name, role=c.role, status=c.status)
                for c in scoped.characters
            ],
            active_arcs=[
                ArcSummary(id=a.id, name=a.arc_name, arc_type=a.arc_type,
                           status=a.arc_status, completion=a.completion_percentage)
                for a in scoped.arcs
            ],
            canon_rules=list(scoped.rules),
            world_state=world_state,
            tone_guidance=series.tone,
            pacing_guidance=series.pacing,
            theme_reminders=_unique(themes),
            locked_elements=_unique(locked),
            destroyed_elements=[
                ElementSummary(id=e.id, name=e.name, destroyed_in_book=e.destroyed_in_book)
                for e in scoped.destroyed_elements
            ],
            relationship_map=relationship_map,
            recent_events=recent_events,
            pending_payoffs=pending_payoffs,
        )


def compile_context(
    db: Database, series_id: int, target_book: int, settings: Optional[Settings] = None
) -> GenerationContext:
    """Compile the generation context for ``target_book`` of ``series_id``."""
    return ContextCompiler(db, settings).compile(series_id, target_book)


def render_context(context: GenerationContext, max_chars: int = 6000) -> str:
    """Format a compiled context as a prompt block for a generation call.

    Sections are emitted in priority order; when the block exceeds
    ``max_chars`` the lowest-priority sections are cut first.
    """
    sections = []

    if context.canon_rules:
        lines = [f"[Canon rules for book {context.target_book}]"]
        for rule in context.canon_rules:
            label = _RULE_TYPE_LABELS[rule.rule_type.value]
            lines.append(f"- ({rule.lock_level.value}) {label}: {rule.rule_name}: {rule.rule_description}")
        sections.append("\n".join(lines))

    if context.active_characters:
        lines = ["[Characters]"]
        for c in context.active_characters:
            lines.append(f"- {c.name} ({c.role.value}, {c.status.value})")
        sections.append("\n".join(lines))

    if context.relationship_map:
        lines = ["[Relationships]"]
        for r in context.relationship_map:
            line = (
                f"- {r.character_a} -> {r.character_b}: {r.type_a_to_b.value} ({r.intensity_a_to_b}/10); "
                f"{r.character_b} -> {r.character_a}: {r.type_b_to_a.value} ({r.intensity_b_to_a}/10)"
            )
            if r.current_dynamic:
                line += f". {r.current_dynamic}"
            lines.append(line)
        sections.append("\n".join(lines))

    if context.locked_elements:
        sections.append("[Locked canon]\n" + ", ".join(context.locked_elements))

    if context.active_arcs:
        lines = ["[Active arcs]"]
        for a in context.active_arcs:
            lines.append(f"- {a.name} ({a.arc_type.value}, {a.status.value}, {a.completion}%)")
        sections.append("\n".join(lines))

    if context.recent_events:
        lines = ["[Recent events]"]
        for e in context.recent_events:
            line = f"- {e.name}"
            if e.when:
                line += f" ({e.when})"
            if e.digest:
                line += f": {e.digest}"
            lines.append(line)
        sections.append("\n".join(lines))

    if context.pending_payoffs:
        sections.append("[Pending payoffs]\n" + "\n".join(f"- {p}" for p in context.pending_payoffs))

    if context.destroyed_elements:
        lines = ["[No longer exists]"]
        for e in context.destroyed_elements:
            lines.append(f"- {e.name} (destroyed in book {e.destroyed_in_book})")
        sections.append("\n".join(lines))

    if context.world_state:
        lines = ["[World]"]
        for name, digest in context.world_state.items():
            lines.append(f"- {name}: {digest}")
        sections.append("\n".join(lines))

    guidance = []
    if context.tone_guidance:
        guidance.append(f"Tone: {context.tone_guidance}")
    if context.pacing_guidance:
        guidance.append(f"Pacing: {context.pacing_guidance}")
    if context.theme_reminders:
        guidance.append(f"Themes: {', '.join(context.theme_reminders)}")
    if guidance:
        sections.append("[Guidance]\n" + "\n".join(guidance))

    full = "\n\n".join(sections)
    if len(full) <= max_chars:
        return full
    return _trim_sections(sections, max_chars)


def _trim_sections(sections: list[str], max_chars: int) -> str:
    result = ""
    for section in sections:
        if len(result) + len(section) + 2 <= max_chars:
            result += section + "\n\n"
        else:
            remaining = max_chars - len(result)
            if remaining > 50:
                result += section[:remaining - 3] + "..."
            break
    return result.strip()
