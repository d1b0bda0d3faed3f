"""Timeline event data model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.exceptions import ValidationError
from models.enums import CanonLockLevel, TimelineEventType
from models.fields import (
    coerce_enum, require_book_number, require_non_negative, require_text, string_list, string_set,
)


@dataclass
class TimelineEvent:
    """Something that happened (or is foretold) in the story's world.

    ``sequence_number`` orders events in-universe, which need not match the
    order the books reveal them in.
    """
    id: Optional[int] = None
    series_id: int = 0
    event_name: str = ""
    event_description: str = ""
    event_type: TimelineEventType = TimelineEventType.CURRENT
    in_universe_date: str = ""
    relative_timing: str = ""
    sequence_number: int = 0
    first_mentioned_book: int = 1
    referenced_in_books: list[int] = field(default_factory=list)
    involved_characters: list[int] = field(default_factory=list)  # Character ids, not owned
    involved_locations: set[str] = field(default_factory=set)
    consequences: list[str] = field(default_factory=list)
    is_canon: bool = True
    canon_lock_level: CanonLockLevel = CanonLockLevel.SOFT
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.event_name = require_text(self.event_name, "event_name")
        self.event_type = coerce_enum(TimelineEventType, self.event_type, "event_type")
        self.sequence_number = require_non_negative(self.sequence_number, "sequence_number")
        self.first_mentioned_book = require_book_number(self.first_mentioned_book, "first_mentioned_book")
        self.referenced_in_books = sorted(
            {require_book_number(b, "referenced_in_books") for b in self.referenced_in_books}
        )
        if any(isinstance(c, bool) or not isinstance(c, int) for c in self.involved_characters):
            raise ValidationError("involved_characters must be character ids", field="involved_characters")
        self.involved_characters = list(self.involved_characters)
        self.involved_locations = string_set(self.involved_locations, "involved_locations")
        self.consequences = string_list(self.consequences, "consequences")
        self.is_canon = bool(self.is_canon)
        self.canon_lock_level = coerce_enum(CanonLockLevel, self.canon_lock_level, "canon_lock_level")

    @property
    def is_prophecy(self) -> bool:
        return self.event_type is TimelineEventType.PROPHECY
