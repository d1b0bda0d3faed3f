"""Compiled generation context handed to text-generation callers.

These values are derived per compilation and never persisted. They hold
only minimal projections of the stored entities to keep prompts small.
"""

from dataclasses import dataclass, field
from typing import Optional

from models.canon import CanonRule
from models.enums import (
    ArcStatus, ArcType, CharacterRole, CharacterStatus, RelationshipType, TimelineEventType,
)


@dataclass(frozen=True)
class CharacterSummary:
    id: int
    name: str
    role: CharacterRole
    status: CharacterStatus


@dataclass(frozen=True)
class ArcSummary:
    id: int
    name: str
    arc_type: ArcType
    status: ArcStatus
    completion: int


@dataclass(frozen=True)
class ElementSummary:
    id: int
    name: str
    destroyed_in_book: Optional[int] = None


@dataclass(frozen=True)
class RelationshipSummary:
    id: int
    character_a: str
    character_b: str
    type_a_to_b: RelationshipType
    type_b_to_a: RelationshipType
    intensity_a_to_b: int
    intensity_b_to_a: int
    current_dynamic: str = ""


@dataclass(frozen=True)
class EventSummary:
    id: int
    name: str
    event_type: TimelineEventType
    sequence_number: int
    when: str = ""
    digest: str = ""


@dataclass
class GenerationContext:
    """Book-scoped bundle of everything canon-relevant for one book."""
    series_id: int
    target_book: int
    active_characters: list[CharacterSummary] = field(default_factory=list)
    active_arcs: list[ArcSummary] = field(default_factory=list)
    canon_rules: list[CanonRule] = field(default_factory=list)
    world_state: dict[str, str] = field(default_factory=dict)
    tone_guidance: str = ""
    pacing_guidance: str = ""
    theme_reminders: list[str] = field(default_factory=list)
    locked_elements: list[str] = field(default_factory=list)
    destroyed_elements: list[ElementSummary] = field(default_factory=list)
    relationship_map: list[RelationshipSummary] = field(default_factory=list)
    recent_events: list[EventSummary] = field(default_factory=list)
    pending_payoffs: list[str] = field(default_factory=list)

    def rule_by_id(self, rule_id: int) -> Optional[CanonRule]:
        for rule in self.canon_rules:
            if rule.id == rule_id:
                return rule
        return None
