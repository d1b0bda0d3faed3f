"""Canon rule and violation data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models.enums import (
    CanonLockLevel, ResolutionStatus, RuleCategory, RuleType, Severity,
)
from models.fields import (
    coerce_enum, optional_book_end, require_book_number, require_text, string_list,
)

SEVERITY_BY_LOCK_LEVEL = {
    CanonLockLevel.SUGGESTION: Severity.INFO,
    CanonLockLevel.SOFT: Severity.WARNING,
    CanonLockLevel.HARD: Severity.BLOCKING,
    CanonLockLevel.IMMUTABLE: Severity.FATAL,
}


@dataclass
class CanonRule:
    """An explicit author-declared rule the series must keep."""
    id: Optional[int] = None
    series_id: int = 0
    rule_category: RuleCategory = RuleCategory.PLOT
    rule_name: str = ""
    rule_description: str = ""
    rule_type: RuleType = RuleType.MUST
    lock_level: CanonLockLevel = CanonLockLevel.HARD
    applies_from_book: int = 1
    applies_until_book: Optional[int] = None  # None = forever
    violation_message: str = ""
    valid_examples: list[str] = field(default_factory=list)
    invalid_examples: list[str] = field(default_factory=list)
    applies_to_entity_ids: list[int] = field(default_factory=list)
    is_active: bool = True
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.rule_category = coerce_enum(RuleCategory, self.rule_category, "rule_category")
        self.rule_name = require_text(self.rule_name, "rule_name")
        self.rule_description = require_text(self.rule_description, "rule_description")
        self.rule_type = coerce_enum(RuleType, self.rule_type, "rule_type")
        self.lock_level = coerce_enum(CanonLockLevel, self.lock_level, "lock_level")
        self.applies_from_book = require_book_number(self.applies_from_book, "applies_from_book")
        self.applies_until_book = optional_book_end(
            self.applies_until_book, self.applies_from_book, "applies_until_book", "applies_from_book"
        )
        self.valid_examples = string_list(self.valid_examples, "valid_examples")
        self.invalid_examples = string_list(self.invalid_examples, "invalid_examples")
        self.applies_to_entity_ids = list(self.applies_to_entity_ids)
        self.is_active = bool(self.is_active)

    def applies_to(self, book_number: int) -> bool:
        if not self.is_active or self.applies_from_book > book_number:
            return False
        return self.applies_until_book is None or self.applies_until_book >= book_number

    @property
    def severity(self) -> Severity:
        return SEVERITY_BY_LOCK_LEVEL[self.lock_level]


@dataclass
class Violation:
    """A rule the candidate text appears to break."""
    rule: CanonRule
    severity: Severity
    description: str = ""
    matched_example: Optional[str] = None
    excerpt: str = ""

    @property
    def blocks_acceptance(self) -> bool:
        return self.severity in (Severity.BLOCKING, Severity.FATAL)

    @property
    def overridable(self) -> bool:
        return self.severity is not Severity.FATAL


@dataclass
class ViolationOverride:
    """Author decision to accept content despite a violation."""
    rule_id: int
    severity: Severity
    justification: str = ""


@dataclass
class CanonViolation:
    """Persisted record of a detected violation and its resolution."""
    id: Optional[int] = None
    series_id: int = 0
    rule_id: Optional[int] = None
    book_number: int = 1
    severity: Severity = Severity.WARNING
    description: str = ""
    excerpt: str = ""
    matched_example: Optional[str] = None
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    override_reason: Optional[str] = None
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        self.severity = coerce_enum(Severity, self.severity, "severity")
        self.resolution_status = coerce_enum(ResolutionStatus, self.resolution_status, "resolution_status")
