"""Series and book data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models.enums import BookStatus, SeriesStatus
from models.fields import (
    coerce_enum, require_book_number, require_non_negative, require_text, string_list,
)


@dataclass
class Series:
    """A multi-book authored work and its series-wide guidance."""
    id: Optional[int] = None
    author_id: str = ""
    title: str = ""
    genre: str = ""
    target_book_count: int = 1
    tone: str = ""
    pacing: str = ""
    target_audience: str = ""
    premise: str = ""
    main_conflict: str = ""
    planned_ending: str = ""  # Author-only, never compiled into a context
    themes: list[str] = field(default_factory=list)
    status: SeriesStatus = SeriesStatus.PLANNING
    is_archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.author_id = require_text(self.author_id, "author_id")
        self.title = require_text(self.title, "title")
        self.genre = require_text(self.genre, "genre")
        self.target_book_count = require_book_number(self.target_book_count, "target_book_count")
        self.themes = string_list(self.themes, "themes")
        self.status = coerce_enum(SeriesStatus, self.status, "status")


@dataclass
class Book:
    """A single book positioned on the series' temporal axis."""
    id: Optional[int] = None
    series_id: int = 0
    book_number: int = 1
    title: str = ""
    word_count: int = 0
    chapter_count: int = 0
    status: BookStatus = BookStatus.PLANNING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.book_number = require_book_number(self.book_number, "book_number")
        self.title = require_text(self.title, "title")
        self.word_count = require_non_negative(self.word_count, "word_count")
        self.chapter_count = require_non_negative(self.chapter_count, "chapter_count")
        self.status = coerce_enum(BookStatus, self.status, "status")


@dataclass
class SeriesOverview:
    """Dashboard counts for one series."""
    series: Series
    books: list[Book] = field(default_factory=list)
    character_count: int = 0
    world_element_count: int = 0
    active_arc_count: int = 0
    rule_count: int = 0
    total_word_count: int = 0
    pending_violations: int = 0
