"""Enumerations for series, canon and arc tracking."""

from enum import Enum


class SeriesStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"


class BookStatus(str, Enum):
    PLANNING = "planning"
    OUTLINING = "outlining"
    DRAFTING = "drafting"
    REVISING = "revising"
    COMPLETE = "complete"
    PUBLISHED = "published"


class CharacterRole(str, Enum):
    PROTAGONIST = "protagonist"
    ANTAGONIST = "antagonist"
    DEUTERAGONIST = "deuteragonist"
    SUPPORTING = "supporting"
    MINOR = "minor"
    BACKGROUND = "background"


class CharacterStatus(str, Enum):
    ACTIVE = "active"
    DECEASED = "deceased"
    MISSING = "missing"
    RETIRED = "retired"
    TRANSFORMED = "transformed"


class CanonLockLevel(str, Enum):
    SUGGESTION = "suggestion"
    SOFT = "soft"
    HARD = "hard"
    IMMUTABLE = "immutable"


class WorldElementType(str, Enum):
    GEOGRAPHY = "geography"
    CULTURE = "culture"
    RELIGION = "religion"
    MAGIC_SYSTEM = "magic_system"
    TECHNOLOGY = "technology"
    POLITICAL = "political"
    ECONOMIC = "economic"
    HISTORICAL = "historical"
    MYTH = "myth"
    CUSTOM = "custom"


class ArcType(str, Enum):
    CHARACTER = "character"
    PLOT = "plot"
    THEMATIC = "thematic"
    RELATIONSHIP = "relationship"
    WORLD = "world"


class ArcStatus(str, Enum):
    SETUP = "setup"
    RISING = "rising"
    CLIMAX = "climax"
    FALLING = "falling"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


class RuleCategory(str, Enum):
    CHARACTER = "character"
    WORLD = "world"
    PLOT = "plot"
    TIMELINE = "timeline"
    RELATIONSHIP = "relationship"
    SYSTEM = "system"


class RuleType(str, Enum):
    MUST = "must"
    MUST_NOT = "must_not"
    SHOULD = "should"
    SHOULD_NOT = "should_not"
    MAY = "may"


class Severity(str, Enum):
    """Enforcement strength of a detected violation, derived from lock level."""
    INFO = "info"
    WARNING = "warning"
    BLOCKING = "blocking"
    FATAL = "fatal"


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    IGNORED = "ignored"
    OVERRIDDEN = "overridden"


class RelationshipType(str, Enum):
    ALLY = "ally"
    ENEMY = "enemy"
    FAMILY = "family"
    ROMANTIC = "romantic"
    MENTOR = "mentor"
    RIVAL = "rival"
    NEUTRAL = "neutral"
    COMPLICATED = "complicated"


class TimelineEventType(str, Enum):
    HISTORICAL = "historical"
    CURRENT = "current"
    FLASHBACK = "flashback"
    PROPHECY = "prophecy"
