"""Custom exception hierarchy for the narrative context engine."""

from typing import Optional


class NarrativeEngineError(Exception):
    """Base exception for all narrative engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# ---- Validation Errors ----

class ValidationError(NarrativeEngineError):
    """Entity input is malformed or violates an invariant."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class InvalidTransitionError(ValidationError):
    """Narrative arc status change not allowed by the arc state machine."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Arc cannot move from '{current}' to '{requested}'",
            field="arc_status",
            details={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class LockedAttributeError(ValidationError):
    """Edit touches canon-locked attributes without an explicit override."""

    def __init__(self, attributes: list[str]):
        super().__init__(
            f"Locked attributes cannot be edited without override: {', '.join(attributes)}",
            field=attributes[0] if attributes else None,
            details={"attributes": attributes},
        )
        self.attributes = attributes


# ---- Scope / Lookup Errors ----

class InvalidScopeError(NarrativeEngineError):
    """Target book number is outside the series' temporal axis."""

    def __init__(self, target_book):
        super().__init__(
            f"Target book must be an integer >= 1, got {target_book!r}",
            {"target_book": target_book},
        )
        self.target_book = target_book


class SeriesNotFoundError(NarrativeEngineError):
    """Referenced series does not exist."""

    def __init__(self, series_id):
        super().__init__(f"Series {series_id} not found", {"series_id": series_id})
        self.series_id = series_id


class EntityNotFoundError(NarrativeEngineError):
    """Referenced entity (book, character, element, arc, rule, relationship, event) does not exist."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


# ---- Canon Errors ----

class EvaluationTimeout(NarrativeEngineError):
    """Canon classification exceeded its deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Canon check exceeded {timeout:g}s deadline", {"timeout": timeout})
        self.timeout = timeout


class OverrideRejected(NarrativeEngineError):
    """Attempt to override an immutable canon lock."""


# ---- Storage Errors ----

class DatabaseError(NarrativeEngineError):
    """Database operation failed."""


class ConcurrentModificationError(DatabaseError):
    """Entity was modified by another writer since it was read."""

    def __init__(self, entity: str, entity_id, expected_version: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently",
            {"entity": entity, "id": entity_id, "expected_version": expected_version},
        )


# ---- LLM Errors ----

class LLMError(NarrativeEngineError):
    """Base exception for LLM API errors."""


class LLMResponseParseError(LLMError):
    """Failed to parse LLM response."""

    def __init__(self, message: str = "Failed to parse LLM response", raw_response: str = ""):
        details = {"raw_response": raw_response[:200]} if raw_response else {}
        super().__init__(message, details)
        self.raw_response = raw_response
