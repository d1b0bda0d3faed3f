"""NarrativeEngine: the service facade over stores, compiler and evaluator."""

import logging
from dataclasses import fields, replace
from typing import Optional

from config.exceptions import (
    EntityNotFoundError, LockedAttributeError, OverrideRejected, SeriesNotFoundError,
    ValidationError,
)
from config.settings import Settings
from engine.arc_status import TERMINAL_STATUSES, check_transition
from engine.classifiers import (
    CanonClassifier, CompositeClassifier, KeywordCanonClassifier, LLMCanonClassifier,
)
from engine.compiler import ContextCompiler, render_context
from engine.evaluator import CanonEvaluator, EvaluationReport
from engine.scope import (
    event_is_known, relationship_is_active, rule_applies, validate_target_book,
)
from models.arc import NarrativeArc
from models.canon import CanonRule, CanonViolation
from models.character import Character
from models.context import GenerationContext
from models.database import Database
from models.enums import (
    ArcStatus, BookStatus, CanonLockLevel, ResolutionStatus, Severity, WorldElementType,
)
from models.fields import coerce_enum
from models.relationship import CharacterRelationship
from models.series import Book, Series, SeriesOverview
from models.timeline import TimelineEvent
from models.world import WorldElement
from tools.agent_sdk_client import AgentSDKClient

logger = logging.getLogger(__name__)

_BOOKKEEPING_FIELDS = {"id", "series_id", "version", "created_at", "updated_at"}

_DIRECTIONAL_FIELDS = (("type_a_to_b", "type_b_to_a"), ("intensity_a_to_b", "intensity_b_to_a"))


def _editable_fields(cls) -> set[str]:
    return {f.name for f in fields(cls)} - _BOOKKEEPING_FIELDS


def _check_fields(cls, attrs: dict, entity: str):
    if not isinstance(attrs, dict):
        raise ValidationError(f"{entity} updates must be a mapping")
    unknown = sorted(set(attrs) - _editable_fields(cls))
    if unknown:
        raise ValidationError(
            f"Unknown {entity} fields: {', '.join(unknown)}", field=unknown[0]
        )


def _build(cls, entity: str, **attrs):
    _check_fields(cls, {k: v for k, v in attrs.items() if k != "series_id"}, entity)
    return cls(**attrs)


def _apply(current, updates: dict, entity: str):
    """Return ``current`` with ``updates`` applied, re-running its validation."""
    _check_fields(type(current), updates, entity)
    return replace(current, **updates)


def _swap_directions(attrs: dict) -> dict:
    """Re-read relationship fields given from the other character's side."""
    directional = {name for pair in _DIRECTIONAL_FIELDS for name in pair}
    swapped = {k: v for k, v in attrs.items() if k not in directional}
    for forward, backward in _DIRECTIONAL_FIELDS:
        if forward in attrs:
            swapped[backward] = attrs[forward]
        if backward in attrs:
            swapped[forward] = attrs[backward]
    return swapped


def build_classifier(settings: Settings) -> CanonClassifier:
    """Keyword matching, followed by the LLM classifier when enabled."""
    keyword = KeywordCanonClassifier()
    if not settings.llm_canon_check_enabled:
        return keyword
    llm = LLMCanonClassifier(AgentSDKClient(settings), model=settings.llm_model_canon)
    return CompositeClassifier([keyword, llm])


class NarrativeEngine:
    """Entry point for authoring tools and generation pipelines.

    Holds no per-series state between calls: every operation reads from or
    writes to the :class:`Database`.
    """

    def __init__(
        self,
        db: Database,
        settings: Optional[Settings] = None,
        evaluator: Optional[CanonEvaluator] = None,
    ):
        self.db = db
        self.settings = settings or Settings()
        self.compiler = ContextCompiler(db, self.settings)
        self.evaluator = evaluator or CanonEvaluator(build_classifier(self.settings), self.settings)

    # ---- Series ----

    def create_series(self, author_id: str, title: str, genre: str, **attrs) -> Series:
        series = _build(Series, "Series", author_id=author_id, title=title, genre=genre, **attrs)
        return self.db.create_series(series)

    def get_series(self, series_id: int) -> Series:
        series = self.db.get_series(series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    def list_author_series(self, author_id: str, include_archived: bool = False) -> list[Series]:
        return self.db.list_series(author_id, include_archived)

    def update_series(self, series_id: int, updates: dict) -> Series:
        if "author_id" in updates:
            raise ValidationError("A series cannot change author", field="author_id")
        series = _apply(self.get_series(series_id), updates, "Series")
        return self.db.update_series(series)

    def archive_series(self, series_id: int) -> Series:
        """Hide a series from listings. Nothing is deleted."""
        series = self.update_series(series_id, {"is_archived": True})
        logger.info("Series %d archived", series_id)
        return series

    # ---- Books ----

    def create_book(self, series_id: int, book_number: int, title: str, **attrs) -> Book:
        book = _build(Book, "Book", series_id=series_id, book_number=book_number, title=title, **attrs)
        return self.db.create_book(book)

    def get_series_books(self, series_id: int) -> list[Book]:
        return self.db.get_books(series_id)

    def _get_book(self, book_id: int) -> Book:
        with self.db.snapshot() as snap:
            book = snap.get_book(book_id)
        if book is None:
            raise EntityNotFoundError("Book", book_id)
        return book

    def update_book_progress(
        self,
        book_id: int,
        word_count: Optional[int] = None,
        chapter_count: Optional[int] = None,
        status: Optional[BookStatus] = None,
        title: Optional[str] = None,
    ) -> Book:
        updates = {
            k: v for k, v in (
                ("word_count", word_count), ("chapter_count", chapter_count),
                ("status", status), ("title", title),
            ) if v is not None
        }
        book = _apply(self._get_book(book_id), updates, "Book")
        return self.db.update_book(book)

    def renumber_book(self, book_id: int, new_number: int) -> Book:
        """Move a book on the series axis while no entity refers to its number."""
        return self.db.renumber_book(book_id, new_number)

    # ---- Characters ----

    def create_character(self, series_id: int, name: str, **attrs) -> Character:
        character = _build(Character, "Character", series_id=series_id, name=name, **attrs)
        created = self.db.create_character(character)
        logger.info("Character %d created in series %d: %s", created.id, series_id, created.name)
        return created

    def get_series_characters(self, series_id: int) -> list[Character]:
        return self.db.get_characters(series_id)

    def get_character(self, character_id: int) -> Character:
        character = self.db.get_character(character_id)
        if character is None:
            raise EntityNotFoundError("Character", character_id)
        return character

    def update_character(self, character_id: int, updates: dict, override: bool = False) -> Character:
        """Edit a character card.

        Raises:
            OverrideRejected: The character is immutable.
            LockedAttributeError: A locked attribute would change and
                ``override`` is not set.
        """
        current = self.get_character(character_id)
        if current.canon_lock_level is CanonLockLevel.IMMUTABLE:
            raise OverrideRejected(f"Character '{current.name}' is immutable and cannot be edited")

        updated = _apply(current, updates, "Character")
        changed = [k for k in updates if getattr(current, k) != getattr(updated, k)]
        locked = sorted(set(changed) & current.locked_attributes)
        if locked:
            if not override:
                raise LockedAttributeError(locked)
            logger.warning(
                "Locked attributes of character %d overridden: %s", character_id, ", ".join(locked)
            )
        if not changed:
            return current
        return self.db.update_character(updated)

    # ---- Relationships ----

    def set_character_relationship(
        self, series_id: int, character_a_id: int, character_b_id: int, **attrs
    ) -> CharacterRelationship:
        """Create the relationship between two characters, or edit the existing one.

        Directional fields are read from ``character_a_id``'s side, whichever
        way round the ids are passed. On an existing pair only the given
        fields change.

        Raises:
            OverrideRejected: The existing relationship is immutable.
        """
        if character_a_id > character_b_id:
            character_a_id, character_b_id = character_b_id, character_a_id
            attrs = _swap_directions(attrs)

        with self.db.snapshot() as snap:
            existing = snap.find_relationship(series_id, character_a_id, character_b_id)
        if existing is None:
            relationship = _build(
                CharacterRelationship, "CharacterRelationship", series_id=series_id,
                character_a_id=character_a_id, character_b_id=character_b_id, **attrs,
            )
            created = self.db.create_relationship(relationship)
            logger.info(
                "Relationship %d set in series %d: %d <-> %d",
                created.id, series_id, created.character_a_id, created.character_b_id,
            )
            return created

        if existing.canon_lock_level is CanonLockLevel.IMMUTABLE:
            raise OverrideRejected(
                f"Relationship between characters {character_a_id} and {character_b_id} is immutable"
            )
        return self.db.update_relationship(_apply(existing, attrs, "CharacterRelationship"))

    def get_character_relationships(self, character_id: int) -> list[tuple[Character, CharacterRelationship]]:
        """Every relationship of one character, paired with the character on the other side."""
        with self.db.snapshot() as snap:
            character = snap.get_character(character_id)
            if character is None:
                raise EntityNotFoundError("Character", character_id)
            others = {c.id: c for c in snap.get_characters(character.series_id)}
            relationships = snap.get_relationships(character.series_id)
        return [
            (others[r.other(character_id)], r)
            for r in relationships
            if character_id in (r.character_a_id, r.character_b_id)
        ]

    def get_series_relationships(
        self, series_id: int, book_number: Optional[int] = None
    ) -> list[CharacterRelationship]:
        relationships = self.db.get_relationships(series_id)
        if book_number is None:
            return relationships
        book_number = validate_target_book(book_number)
        return [r for r in relationships if relationship_is_active(r, book_number)]

    # ---- Timeline ----

    def create_timeline_event(self, series_id: int, event_name: str, **attrs) -> TimelineEvent:
        event = _build(TimelineEvent, "TimelineEvent", series_id=series_id, event_name=event_name, **attrs)
        created = self.db.create_event(event)
        logger.info(
            "Timeline event %d (%s, #%d) created in series %d",
            created.id, created.event_type.value, created.sequence_number, series_id,
        )
        return created

    def update_timeline_event(self, event_id: int, updates: dict) -> TimelineEvent:
        """Edit a timeline event.

        Raises:
            OverrideRejected: The event is immutable.
        """
        current = self.db.get_event(event_id)
        if current is None:
            raise EntityNotFoundError("TimelineEvent", event_id)
        if current.canon_lock_level is CanonLockLevel.IMMUTABLE:
            raise OverrideRejected(f"Timeline event '{current.event_name}' is immutable and cannot be edited")
        return self.db.update_event(_apply(current, updates, "TimelineEvent"))

    def get_timeline(self, series_id: int, book_number: Optional[int] = None) -> list[TimelineEvent]:
        """Canon events in in-universe order, optionally only those revealed by ``book_number``."""
        events = [e for e in self.db.get_events(series_id) if e.is_canon]
        if book_number is None:
            return events
        book_number = validate_target_book(book_number)
        return [e for e in events if event_is_known(e, book_number)]

    # ---- World ----

    def create_world_element(
        self, series_id: int, name: str, element_type: WorldElementType, **attrs
    ) -> WorldElement:
        element = _build(
            WorldElement, "WorldElement",
            series_id=series_id, name=name, element_type=element_type, **attrs,
        )
        return self.db.create_world_element(element)

    def get_world_elements(
        self,
        series_id: int,
        element_type: Optional[WorldElementType] = None,
        active_only: bool = False,
    ) -> list[WorldElement]:
        if element_type is not None:
            element_type = coerce_enum(WorldElementType, element_type, "element_type")
        return self.db.get_world_elements(series_id, element_type, active_only)

    def update_world_element(self, element_id: int, updates: dict) -> WorldElement:
        current = self.db.get_world_element(element_id)
        if current is None:
            raise EntityNotFoundError("WorldElement", element_id)
        return self.db.update_world_element(_apply(current, updates, "WorldElement"))

    # ---- Canon rules ----

    def create_canon_rule(
        self, series_id: int, rule_name: str, rule_description: str, **attrs
    ) -> CanonRule:
        rule = _build(
            CanonRule, "CanonRule",
            series_id=series_id, rule_name=rule_name, rule_description=rule_description, **attrs,
        )
        created = self.db.create_rule(rule)
        logger.info(
            "Canon rule %d (%s, %s) created in series %d",
            created.id, created.rule_type.value, created.lock_level.value, series_id,
        )
        return created

    def get_canon_rules(self, series_id: int, book_number: Optional[int] = None) -> list[CanonRule]:
        """Active rules of a series, optionally narrowed to those applying at ``book_number``."""
        rules = [r for r in self.db.get_rules(series_id) if r.is_active]
        if book_number is None:
            return rules
        book_number = validate_target_book(book_number)
        return [r for r in rules if rule_applies(r, book_number)]

    def update_canon_rule(self, rule_id: int, updates: dict) -> CanonRule:
        """Edit a canon rule.

        Raises:
            OverrideRejected: The rule is immutable. Lowering its lock level
                or deactivating it would be an override too.
        """
        current = self.db.get_rule(rule_id)
        if current is None:
            raise EntityNotFoundError("CanonRule", rule_id)
        if current.lock_level is CanonLockLevel.IMMUTABLE:
            raise OverrideRejected(f"Canon rule '{current.rule_name}' is immutable and cannot be edited")
        return self.db.update_rule(_apply(current, updates, "CanonRule"))

    # ---- Narrative arcs ----

    def create_narrative_arc(self, series_id: int, arc_name: str, **attrs) -> NarrativeArc:
        arc = _build(NarrativeArc, "NarrativeArc", series_id=series_id, arc_name=arc_name, **attrs)
        return self.db.create_arc(arc)

    def get_narrative_arcs(
        self, series_id: int, statuses: Optional[list[ArcStatus]] = None
    ) -> list[NarrativeArc]:
        if statuses is not None:
            statuses = [coerce_enum(ArcStatus, s, "statuses") for s in statuses]
        return self.db.get_arcs(series_id, statuses)

    def update_arc_progress(
        self,
        arc_id: int,
        status: Optional[ArcStatus] = None,
        completion_percentage: Optional[int] = None,
        setup_points: Optional[list[str]] = None,
        rising_action_points: Optional[list[str]] = None,
        climax_point: Optional[str] = None,
        falling_action_points: Optional[list[str]] = None,
        resolution_point: Optional[str] = None,
    ) -> NarrativeArc:
        """Advance an arc along its lifecycle and record beats.

        Raises:
            InvalidTransitionError: The status move is not allowed.
        """
        current = self.db.get_arc(arc_id)
        if current is None:
            raise EntityNotFoundError("NarrativeArc", arc_id)

        updates = {
            k: v for k, v in (
                ("completion_percentage", completion_percentage),
                ("setup_points", setup_points),
                ("rising_action_points", rising_action_points),
                ("climax_point", climax_point),
                ("falling_action_points", falling_action_points),
                ("resolution_point", resolution_point),
            ) if v is not None
        }
        if status is not None:
            status = coerce_enum(ArcStatus, status, "arc_status")
            check_transition(current.arc_status, status)
            updates["arc_status"] = status

        arc = self.db.update_arc(_apply(current, updates, "NarrativeArc"))
        if arc.arc_status is not current.arc_status:
            logger.info(
                "Arc %d '%s': %s -> %s",
                arc_id, arc.arc_name, current.arc_status.value, arc.arc_status.value,
            )
        return arc

    # ---- Context & canon ----

    def compile_generation_context(self, series_id: int, target_book: int) -> GenerationContext:
        return self.compiler.compile(series_id, target_book)

    def render_generation_context(self, context: GenerationContext) -> str:
        return render_context(context, self.settings.context_max_chars)

    async def evaluate_canon(
        self,
        context: GenerationContext,
        text: str,
        record: bool = False,
        timeout: Optional[float] = None,
    ) -> EvaluationReport:
        """Screen candidate text against the context's canon rules.

        With ``record=True`` every detected violation is written to the
        violation log as pending.
        """
        report = await self.evaluator.evaluate(context, text, timeout)
        if record and report.violations:
            report.recorded = self.db.record_violations(
                context.series_id, context.target_book, report.violations
            )
        return report

    def get_violations(self, series_id: int, pending_only: bool = False) -> list[CanonViolation]:
        return self.db.get_violations(series_id, pending_only)

    def resolve_violation(
        self, violation_id: int, status: ResolutionStatus, reason: Optional[str] = None
    ) -> CanonViolation:
        """Close a logged violation.

        Overriding follows the same policy as :meth:`CanonEvaluator.override`:
        fatal violations cannot be overridden and blocking ones need a reason.
        """
        status = coerce_enum(ResolutionStatus, status, "status")
        if status is ResolutionStatus.PENDING:
            raise ValidationError("A violation cannot be resolved back to pending", field="status")
        with self.db.snapshot() as snap:
            record = snap.get_violation(violation_id)
        if record is None:
            raise EntityNotFoundError("CanonViolation", violation_id)

        reason = (reason or "").strip() or None
        if status is ResolutionStatus.OVERRIDDEN:
            if record.severity is Severity.FATAL:
                raise OverrideRejected("Violations of immutable rules cannot be overridden")
            if record.severity is Severity.BLOCKING and reason is None:
                raise ValidationError(
                    "Overriding a hard-rule violation requires a reason", field="reason"
                )
        return self.db.resolve_violation(violation_id, status, reason)

    def get_series_overview(self, series_id: int) -> SeriesOverview:
        with self.db.snapshot() as snap:
            series = snap.get_series(series_id)
            if series is None:
                raise SeriesNotFoundError(series_id)
            books = snap.get_books(series_id)
            characters = snap.get_characters(series_id)
            elements = snap.get_world_elements(series_id)
            arcs = snap.get_arcs(series_id)
            rules = snap.get_rules(series_id)
            pending = snap.get_violations(series_id, pending_only=True)

        return SeriesOverview(
            series=series,
            books=books,
            character_count=len(characters),
            world_element_count=len(elements),
            active_arc_count=sum(1 for a in arcs if a.arc_status not in TERMINAL_STATUSES),
            rule_count=sum(1 for r in rules if r.is_active),
            total_word_count=sum(b.word_count for b in books),
            pending_violations=len(pending),
        )
