"""Book-scoped filtering of series entities.

An entity is *active* for a target book when it has been introduced by that
book and has not yet left the story. Every predicate here is a pure function
of the entity and the book number; ordering of the input is preserved.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config.exceptions import InvalidScopeError
from models.arc import NarrativeArc
from models.canon import CanonRule
from models.character import Character
from models.database import StoreSnapshot
from models.enums import CharacterStatus
from models.relationship import CharacterRelationship
from models.timeline import TimelineEvent
from models.world import WorldElement

logger = logging.getLogger(__name__)


def validate_target_book(target_book) -> int:
    if isinstance(target_book, bool) or not isinstance(target_book, int) or target_book < 1:
        raise InvalidScopeError(target_book)
    return target_book


def character_is_active(character: Character, target_book: int) -> bool:
    if character.first_appears_book > target_book:
        return False
    if character.status is not CharacterStatus.RETIRED:
        return True
    # Retired with no recorded book: gone from every book
    if character.retired_in_book is None:
        return False
    return target_book <= character.retired_in_book


def element_is_active(element: WorldElement, target_book: int) -> bool:
    if element.introduced_in_book > target_book:
        return False
    if element.is_active:
        return True
    return element.destroyed_in_book is not None and target_book <= element.destroyed_in_book


def element_is_destroyed(element: WorldElement, target_book: int) -> bool:
    return element.destroyed_in_book is not None and element.destroyed_in_book < target_book


def arc_is_active(arc: NarrativeArc, target_book: int) -> bool:
    if arc.starts_in_book > target_book:
        return False
    return arc.ends_in_book is None or arc.ends_in_book >= target_book


def rule_applies(rule: CanonRule, target_book: int) -> bool:
    return rule.applies_to(target_book)


def relationship_is_active(relationship: CharacterRelationship, target_book: int) -> bool:
    if relationship.started_in_book > target_book:
        return False
    return relationship.ended_in_book is None or target_book <= relationship.ended_in_book


def event_is_known(event: TimelineEvent, target_book: int) -> bool:
    """Canon events already revealed to the reader by ``target_book``."""
    return event.is_canon and event.first_mentioned_book <= target_book


@dataclass
class ScopedEntities:
    """Entities of one series that are in play at one book."""
    series_id: int
    target_book: int
    characters: list[Character] = field(default_factory=list)
    world_elements: list[WorldElement] = field(default_factory=list)
    arcs: list[NarrativeArc] = field(default_factory=list)
    rules: list[CanonRule] = field(default_factory=list)
    destroyed_elements: list[WorldElement] = field(default_factory=list)
    relationships: list[CharacterRelationship] = field(default_factory=list)
    events: list[TimelineEvent] = field(default_factory=list)


class ScopeResolver:
    """Selects the active subset of each entity type for a target book."""

    def __init__(self, snapshot: StoreSnapshot):
        self.snapshot = snapshot

    def characters(self, series_id: int, target_book: int) -> list[Character]:
        target_book = validate_target_book(target_book)
        return [c for c in self.snapshot.get_characters(series_id)
                if character_is_active(c, target_book)]

    def world_elements(self, series_id: int, target_book: int) -> list[WorldElement]:
        target_book = validate_target_book(target_book)
        return [e for e in self.snapshot.get_world_elements(series_id)
                if element_is_active(e, target_book)]

    def arcs(self, series_id: int, target_book: int) -> list[NarrativeArc]:
        target_book = validate_target_book(target_book)
        return [a for a in self.snapshot.get_arcs(series_id) if arc_is_active(a, target_book)]

    def rules(self, series_id: int, target_book: int) -> list[CanonRule]:
        target_book = validate_target_book(target_book)
        return [r for r in self.snapshot.get_rules(series_id) if rule_applies(r, target_book)]

    def relationships(
        self, series_id: int, target_book: int, characters: Optional[list[Character]] = None
    ) -> list[CharacterRelationship]:
        """Relationships in force whose two characters are both on stage."""
        target_book = validate_target_book(target_book)
        if characters is None:
            characters = self.characters(series_id, target_book)
        present = {c.id for c in characters}
        return [
            r for r in self.snapshot.get_relationships(series_id)
            if relationship_is_active(r, target_book)
            and r.character_a_id in present and r.character_b_id in present
        ]

    def events(self, series_id: int, target_book: int) -> list[TimelineEvent]:
        target_book = validate_target_book(target_book)
        return [e for e in self.snapshot.get_events(series_id) if event_is_known(e, target_book)]

    def resolve(self, series_id: int, target_book: int) -> ScopedEntities:
        target_book = validate_target_book(target_book)
        elements = self.snapshot.get_world_elements(series_id)
        characters = self.characters(series_id, target_book)
        scoped = ScopedEntities(
            series_id=series_id,
            target_book=target_book,
            characters=characters,
            world_elements=[e for e in elements if element_is_active(e, target_book)],
            arcs=self.arcs(series_id, target_book),
            rules=self.rules(series_id, target_book),
            destroyed_elements=[e for e in elements if element_is_destroyed(e, target_book)],
            relationships=self.relationships(series_id, target_book, characters),
            events=self.events(series_id, target_book),
        )
        logger.debug(
            "Scope series=%d book=%d: %d characters, %d elements, %d arcs, %d rules, "
            "%d relationships, %d events",
            series_id, target_book, len(scoped.characters), len(scoped.world_elements),
            len(scoped.arcs), len(scoped.rules), len(scoped.relationships), len(scoped.events),
        )
        return scoped


def resolve_scope(snapshot: StoreSnapshot, series_id: int, target_book: int) -> ScopedEntities:
    """Resolve every entity of ``series_id`` active at ``target_book``."""
    return ScopeResolver(snapshot).resolve(series_id, target_book)
