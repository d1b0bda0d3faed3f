"""Configuration package: settings, logging and exceptions."""

from config.exceptions import (
    NarrativeEngineError,
    ValidationError,
    InvalidTransitionError,
    LockedAttributeError,
    InvalidScopeError,
    SeriesNotFoundError,
    EntityNotFoundError,
    EvaluationTimeout,
    OverrideRejected,
    DatabaseError,
    ConcurrentModificationError,
    LLMError,
    LLMResponseParseError,
)
from config.logging_config import setup_logging
from config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "NarrativeEngineError",
    "ValidationError",
    "InvalidTransitionError",
    "LockedAttributeError",
    "InvalidScopeError",
    "SeriesNotFoundError",
    "EntityNotFoundError",
    "EvaluationTimeout",
    "OverrideRejected",
    "DatabaseError",
    "ConcurrentModificationError",
    "LLMError",
    "LLMResponseParseError",
]
