"""World-building data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.exceptions import ValidationError
from models.enums import CanonLockLevel, WorldElementType
from models.fields import (
    coerce_enum, optional_book_end, require_book_number, require_text, string_list, string_set,
)


@dataclass
class WorldRules:
    """Laws of a world element: what always holds, what limits it, and known exceptions."""
    rules: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    exceptions: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.rules = string_list(self.rules, "rules.rules")
        self.constraints = string_list(self.constraints, "rules.constraints")
        self.exceptions = string_list(self.exceptions, "rules.exceptions")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WorldRules":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("rules must be a mapping", field="rules")
        unknown = set(data) - {"rules", "constraints", "exceptions"}
        if unknown:
            raise ValidationError(f"Unknown rules keys: {', '.join(sorted(unknown))}", field="rules")
        return cls(**data)

    def to_dict(self) -> dict:
        return {
            "rules": list(self.rules),
            "constraints": list(self.constraints),
            "exceptions": list(self.exceptions),
        }


@dataclass
class WorldElement:
    """A place, culture, system or other established world fact."""
    id: Optional[int] = None
    series_id: int = 0
    element_type: WorldElementType = WorldElementType.CUSTOM
    name: str = ""
    aliases: set[str] = field(default_factory=set)
    short_description: str = ""
    full_description: str = ""
    visual_description: str = ""
    category: str = ""
    tags: set[str] = field(default_factory=set)
    introduced_in_book: int = 1
    destroyed_in_book: Optional[int] = None
    rules: WorldRules = field(default_factory=WorldRules)
    canon_lock_level: CanonLockLevel = CanonLockLevel.SOFT
    is_active: bool = True
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.element_type = coerce_enum(WorldElementType, self.element_type, "element_type")
        self.name = require_text(self.name, "name")
        self.aliases = string_set(self.aliases, "aliases")
        self.tags = string_set(self.tags, "tags")
        self.introduced_in_book = require_book_number(self.introduced_in_book, "introduced_in_book")
        self.destroyed_in_book = optional_book_end(
            self.destroyed_in_book, self.introduced_in_book, "destroyed_in_book", "introduced_in_book"
        )
        if not isinstance(self.rules, WorldRules):
            self.rules = WorldRules.from_dict(self.rules)
        self.canon_lock_level = coerce_enum(CanonLockLevel, self.canon_lock_level, "canon_lock_level")
        # A destroyed element stays visible only up to its destruction book
        self.is_active = bool(self.is_active) and self.destroyed_in_book is None

    @property
    def digest(self) -> str:
        """One-line summary used in compiled contexts."""
        description = self.short_description or self.full_description
        return f"{self.element_type.value}: {description}" if description else self.element_type.value
