"""Character relationship data model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.exceptions import ValidationError
from models.enums import CanonLockLevel, RelationshipType
from models.fields import coerce_enum, optional_book_end, require_book_number, string_list


def validate_intensity(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 10:
        raise ValidationError(f"{field} must be an integer in 1..10, got {value!r}", field=field)
    return value


def _character_id(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a character id, got {value!r}", field=field)
    return value


@dataclass
class CharacterRelationship:
    """How two characters stand toward each other, seen from each side.

    A pair is stored once, with ``character_a_id < character_b_id``. Building
    one with the ids the other way round swaps the directional fields too, so
    ``type_a_to_b`` always describes the lower id's view of the higher.
    """
    id: Optional[int] = None
    series_id: int = 0
    character_a_id: int = 0
    character_b_id: int = 0
    type_a_to_b: RelationshipType = RelationshipType.NEUTRAL
    type_b_to_a: RelationshipType = RelationshipType.NEUTRAL
    intensity_a_to_b: int = 5
    intensity_b_to_a: int = 5
    current_dynamic: str = ""
    tension_points: list[str] = field(default_factory=list)
    shared_history: list[str] = field(default_factory=list)
    started_in_book: int = 1
    ended_in_book: Optional[int] = None
    ending_reason: str = ""
    canon_lock_level: CanonLockLevel = CanonLockLevel.SOFT
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.character_a_id = _character_id(self.character_a_id, "character_a_id")
        self.character_b_id = _character_id(self.character_b_id, "character_b_id")
        if self.character_a_id == self.character_b_id:
            raise ValidationError("A character cannot have a relationship with itself",
                                  field="character_b_id")
        if self.character_a_id > self.character_b_id:
            self.character_a_id, self.character_b_id = self.character_b_id, self.character_a_id
            self.type_a_to_b, self.type_b_to_a = self.type_b_to_a, self.type_a_to_b
            self.intensity_a_to_b, self.intensity_b_to_a = self.intensity_b_to_a, self.intensity_a_to_b

        self.type_a_to_b = coerce_enum(RelationshipType, self.type_a_to_b, "type_a_to_b")
        self.type_b_to_a = coerce_enum(RelationshipType, self.type_b_to_a, "type_b_to_a")
        self.intensity_a_to_b = validate_intensity(self.intensity_a_to_b, "intensity_a_to_b")
        self.intensity_b_to_a = validate_intensity(self.intensity_b_to_a, "intensity_b_to_a")
        self.tension_points = string_list(self.tension_points, "tension_points")
        self.shared_history = string_list(self.shared_history, "shared_history")
        self.started_in_book = require_book_number(self.started_in_book, "started_in_book")
        self.ended_in_book = optional_book_end(
            self.ended_in_book, self.started_in_book, "ended_in_book", "started_in_book"
        )
        self.canon_lock_level = coerce_enum(CanonLockLevel, self.canon_lock_level, "canon_lock_level")

    def other(self, character_id: int) -> int:
        """The id on the far side of the pair from ``character_id``."""
        if character_id == self.character_a_id:
            return self.character_b_id
        if character_id == self.character_b_id:
            return self.character_a_id
        raise ValueError(f"Character {character_id} is not part of relationship {self.id}")

    def view_from(self, character_id: int) -> tuple[RelationshipType, int]:
        """Type and intensity of the relationship as ``character_id`` sees it."""
        if character_id == self.character_a_id:
            return self.type_a_to_b, self.intensity_a_to_b
        if character_id == self.character_b_id:
            return self.type_b_to_a, self.intensity_b_to_a
        raise ValueError(f"Character {character_id} is not part of relationship {self.id}")
