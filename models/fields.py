"""Field coercion and invariant checks shared by the entity dataclasses.

Every helper raises ``ValidationError`` naming the offending field, so
creation forms can attach the message to the right input.
"""

from enum import Enum
from typing import Iterable, Optional, TypeVar

from config.exceptions import ValidationError

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], value, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} {value!r}; expected one of: {allowed}", field=field
        ) from None


def require_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def string_set(values: Optional[Iterable[str]], field: str) -> set[str]:
    if values is None:
        return set()
    if isinstance(values, str):
        raise ValidationError(f"{field} must be a collection of strings, not a string", field=field)
    result = set()
    for item in values:
        if not isinstance(item, str):
            raise ValidationError(f"{field} entries must be strings, got {item!r}", field=field)
        if item.strip():
            result.add(item.strip())
    return result


def string_list(values: Optional[Iterable[str]], field: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise ValidationError(f"{field} must be a sequence of strings, not a string", field=field)
    result = []
    for item in values:
        if not isinstance(item, str):
            raise ValidationError(f"{field} entries must be strings, got {item!r}", field=field)
        result.append(item)
    return result


def require_book_number(value, field: str) -> int:
    # bool is an int subclass; True would silently mean book 1
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be an integer >= 1, got {value!r}", field=field)
    return value


def optional_book_end(value, start: int, field: str, start_field: str) -> Optional[int]:
    """Validate an optional closing book number against its opening one."""
    if value is None:
        return None
    require_book_number(value, field)
    if value < start:
        raise ValidationError(
            f"{field} ({value}) must be >= {start_field} ({start})", field=field
        )
    return value


def require_non_negative(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer, got {value!r}", field=field)
    return value
