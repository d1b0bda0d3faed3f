"""Character data models."""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional

from config.exceptions import ValidationError
from models.enums import CanonLockLevel, CharacterRole, CharacterStatus
from models.fields import (
    coerce_enum, optional_book_end, require_book_number, require_text, string_set,
)


@dataclass
class CorePersonality:
    """Stable personality baseline carried across every book."""
    traits: set[str] = field(default_factory=set)
    values: set[str] = field(default_factory=set)
    fears: set[str] = field(default_factory=set)
    desires: set[str] = field(default_factory=set)

    def __post_init__(self):
        for name in ("traits", "values", "fears", "desires"):
            setattr(self, name, string_set(getattr(self, name), f"core_personality.{name}"))

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CorePersonality":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("core_personality must be a mapping", field="core_personality")
        unknown = set(data) - {"traits", "values", "fears", "desires"}
        if unknown:
            raise ValidationError(
                f"Unknown core_personality keys: {', '.join(sorted(unknown))}",
                field="core_personality",
            )
        return cls(**data)

    def to_dict(self) -> dict:
        return {
            "traits": sorted(self.traits),
            "values": sorted(self.values),
            "fears": sorted(self.fears),
            "desires": sorted(self.desires),
        }


@dataclass
class Character:
    """A persistent character card shared by every book of a series."""
    id: Optional[int] = None
    series_id: int = 0
    name: str = ""
    aliases: set[str] = field(default_factory=set)
    role: CharacterRole = CharacterRole.SUPPORTING
    status: CharacterStatus = CharacterStatus.ACTIVE
    first_appears_book: int = 1
    retired_in_book: Optional[int] = None  # Last book the character takes part in
    core_personality: CorePersonality = field(default_factory=CorePersonality)
    physical_description: str = ""
    dialogue_style: str = ""
    canon_lock_level: CanonLockLevel = CanonLockLevel.SOFT
    locked_attributes: set[str] = field(default_factory=set)
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.name = require_text(self.name, "name")
        self.aliases = string_set(self.aliases, "aliases")
        self.role = coerce_enum(CharacterRole, self.role, "role")
        self.status = coerce_enum(CharacterStatus, self.status, "status")
        self.first_appears_book = require_book_number(self.first_appears_book, "first_appears_book")
        self.retired_in_book = optional_book_end(
            self.retired_in_book, self.first_appears_book, "retired_in_book", "first_appears_book"
        )
        if not isinstance(self.core_personality, CorePersonality):
            self.core_personality = CorePersonality.from_dict(self.core_personality)
        self.canon_lock_level = coerce_enum(CanonLockLevel, self.canon_lock_level, "canon_lock_level")
        self.locked_attributes = string_set(self.locked_attributes, "locked_attributes")
        unknown = self.locked_attributes - LOCKABLE_CHARACTER_ATTRIBUTES
        if unknown:
            raise ValidationError(
                f"Unknown locked attributes: {', '.join(sorted(unknown))}",
                field="locked_attributes",
            )


_BOOKKEEPING_FIELDS = {"id", "series_id", "version", "created_at", "updated_at", "locked_attributes"}

LOCKABLE_CHARACTER_ATTRIBUTES = frozenset(
    f.name for f in fields(Character) if f.name not in _BOOKKEEPING_FIELDS
)
