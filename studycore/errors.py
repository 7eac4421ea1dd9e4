from __future__ import annotations

"""Exceptions raised by the study core.

Storage errors from aiosqlite are not wrapped; they reach the caller as-is.
"""

from dataclasses import dataclass


@dataclass
class StudyCoreError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message


class ValidationError(StudyCoreError):
    """Bad input at the boundary: rating, tag id, batch number."""


class CardNotFoundError(ValidationError):
    """Card id is not part of the user's collections."""


class InvariantViolation(StudyCoreError):
    """Stored state breaks a scheduler invariant (corrupted upstream data)."""
