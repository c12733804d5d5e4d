"""Turn `ApiError` bodies into one display message plus per-field messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, cast

from ats_session.api.errors import ApiError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_GENERIC_KEYS: tuple[str, ...] = ("detail", "error", "non_field_errors", "message")


def _no_field_errors() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class ErrorDescription:
    """Display message and the field-keyed messages that matched known fields."""

    message: str
    field_errors: Mapping[str, str] = field(default_factory=_no_field_errors)


def describe_error(
    error: Exception,
    *,
    fields: Sequence[str],
    api_fallback: str,
    fallback: str | None = None,
) -> ErrorDescription:
    """Describe `error` for display.

    `fields` are checked in priority order; the first present one supplies the
    message. Non-API errors get `fallback` (defaults to `api_fallback`).
    """
    if not isinstance(error, ApiError):
        return ErrorDescription(message=fallback or api_fallback)

    data = error.data
    if not isinstance(data, dict):
        return ErrorDescription(message=api_fallback)
    body = cast("dict[str, object]", data)

    field_errors: dict[str, str] = {}
    for name in fields:
        message = _first_message(body.get(name))
        if message is not None:
            field_errors[name] = message

    if field_errors:
        first = next(iter(field_errors.values()))
        return ErrorDescription(
            message=first,
            field_errors=MappingProxyType(field_errors),
        )

    for key in _GENERIC_KEYS:
        message = _first_message(body.get(key))
        if message is not None:
            return ErrorDescription(message=message)
    return ErrorDescription(message=api_fallback)


def _first_message(value: object) -> str | None:
    """Return a string or the first string of a list of strings."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, list):
        for item in cast("list[object]", value):
            if isinstance(item, str) and item:
                return item
    return None
