"""Models package: database, entity dataclasses, and enums."""

from models.database import Database, StoreSnapshot
from models.series import Series, Book, SeriesOverview
from models.character import Character, CorePersonality, LOCKABLE_CHARACTER_ATTRIBUTES
from models.world import WorldElement, WorldRules
from models.arc import NarrativeArc
from models.relationship import CharacterRelationship
from models.timeline import TimelineEvent
from models.canon import CanonRule, CanonViolation, Violation, ViolationOverride
from models.context import (
    ArcSummary, CharacterSummary, ElementSummary, EventSummary, GenerationContext, RelationshipSummary,
)
from models.enums import (
    SeriesStatus,
    BookStatus,
    CharacterRole,
    CharacterStatus,
    CanonLockLevel,
    WorldElementType,
    ArcType,
    ArcStatus,
    RuleCategory,
    RuleType,
    Severity,
    ResolutionStatus,
    RelationshipType,
    TimelineEventType,
)

__all__ = [
    "Database",
    "StoreSnapshot",
    "Series",
    "Book",
    "SeriesOverview",
    "Character",
    "CorePersonality",
    "LOCKABLE_CHARACTER_ATTRIBUTES",
    "WorldElement",
    "WorldRules",
    "NarrativeArc",
    "CharacterRelationship",
    "TimelineEvent",
    "CanonRule",
    "CanonViolation",
    "Violation",
    "ViolationOverride",
    "ArcSummary",
    "CharacterSummary",
    "ElementSummary",
    "EventSummary",
    "RelationshipSummary",
    "GenerationContext",
    "SeriesStatus",
    "BookStatus",
    "CharacterRole",
    "CharacterStatus",
    "CanonLockLevel",
    "WorldElementType",
    "ArcType",
    "ArcStatus",
    "RuleCategory",
    "RuleType",
    "Severity",
    "ResolutionStatus",
    "RelationshipType",
    "TimelineEventType",
]
