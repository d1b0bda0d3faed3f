"""Narrative arc data model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.exceptions import ValidationError
from models.enums import ArcStatus, ArcType
from models.fields import (
    coerce_enum, optional_book_end, require_book_number, require_text, string_list, string_set,
)


def validate_completion(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError(
            f"completion_percentage must be an integer in 0..100, got {value!r}",
            field="completion_percentage",
        )
    return value


@dataclass
class NarrativeArc:
    """A plot, character or thematic arc spanning one or more books."""
    id: Optional[int] = None
    series_id: int = 0
    arc_name: str = ""
    arc_type: ArcType = ArcType.PLOT
    arc_status: ArcStatus = ArcStatus.SETUP
    arc_description: str = ""
    starts_in_book: int = 1
    ends_in_book: Optional[int] = None  # None = open-ended
    themes: set[str] = field(default_factory=set)
    setup_points: list[str] = field(default_factory=list)
    rising_action_points: list[str] = field(default_factory=list)
    climax_point: str = ""
    falling_action_points: list[str] = field(default_factory=list)
    resolution_point: str = ""
    primary_characters: list[int] = field(default_factory=list)  # Character ids, not owned
    completion_percentage: int = 0
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.arc_name = require_text(self.arc_name, "arc_name")
        self.arc_type = coerce_enum(ArcType, self.arc_type, "arc_type")
        self.arc_status = coerce_enum(ArcStatus, self.arc_status, "arc_status")
        self.starts_in_book = require_book_number(self.starts_in_book, "starts_in_book")
        self.ends_in_book = optional_book_end(
            self.ends_in_book, self.starts_in_book, "ends_in_book", "starts_in_book"
        )
        self.themes = string_set(self.themes, "themes")
        self.setup_points = string_list(self.setup_points, "setup_points")
        self.rising_action_points = string_list(self.rising_action_points, "rising_action_points")
        self.falling_action_points = string_list(self.falling_action_points, "falling_action_points")
        if any(isinstance(c, bool) or not isinstance(c, int) for c in self.primary_characters):
            raise ValidationError("primary_characters must be character ids", field="primary_characters")
        self.primary_characters = list(self.primary_characters)
        self.completion_percentage = validate_completion(self.completion_percentage)
