from __future__ import annotations

"""Input validators for the study core boundary."""

from typing import Any, Iterable, Tuple

from studycore.models import Rating


def validate_rating(value: Any) -> Tuple[bool, str | None]:
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"Invalid rating {value!r}. Expected one of 1, 2, 3, 4."
    if value not in {r.value for r in Rating}:
        return False, f"Invalid rating {value!r}. Expected one of 1, 2, 3, 4."
    return True, None


def validate_batch_number(value: Any) -> Tuple[bool, str | None]:
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"Invalid batch number {value!r}. Expected a non-negative integer."
    if value < 0:
        return False, f"Invalid batch number {value}. Expected a non-negative integer."
    return True, None


def validate_tag_ids(values: Iterable[Any] | None) -> Tuple[bool, str | None]:
    if values is None:
        return True, None
    if isinstance(values, (str, bytes)):
        return False, "Invalid tag ids. Expected a list of ids, not a single string."
    for v in values:
        if not isinstance(v, str) or not v.strip() or v != v.strip():
            return False, f"Invalid tag id {v!r}."
    return True, None


def validate_id(value: Any, what: str = "id") -> Tuple[bool, str | None]:
    if not isinstance(value, str) or not value.strip():
        return False, f"Invalid {what} {value!r}."
    return True, None
