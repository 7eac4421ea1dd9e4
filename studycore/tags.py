from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from studycore.config import GOLDEN_TOPIC_TAGS
from studycore.errors import ValidationError


def _require_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Tag must be a string, got {type(value).__name__}")
    return value


class TagResolver:
    """Canonicalizes tag strings against a fixed, ordered Golden List."""

    def __init__(self, golden_list: Sequence[str] = GOLDEN_TOPIC_TAGS) -> None:
        self._golden = tuple(golden_list)
        self._by_key = {t.lower(): t for t in self._golden}

    @property
    def golden_list(self) -> tuple[str, ...]:
        return self._golden

    def resolve_topic_tag(self, value: str) -> Optional[str]:
        """Canonical casing of a Golden List topic, or None.

        Only surrounding whitespace and letter case are ignored; "Safe" or
        "Safety123" do not match "Safety".
        """
        key = _require_str(value).strip().lower()
        if not key:
            return None
        return self._by_key.get(key)

    def is_valid_topic(self, value: str) -> bool:
        return self.resolve_topic_tag(value) is not None

    def validate_topic_tags(self, values: Iterable[str]) -> list[str]:
        """Canonical forms of the valid topics, de-duplicated, in input order."""
        out: list[str] = []
        for v in values:
            canonical = self.resolve_topic_tag(v)
            if canonical and canonical not in out:
                out.append(canonical)
        return out

    @staticmethod
    def resolve_concept_tag(value: str) -> str:
        """PascalCase concept id, e.g. "  safety  protocol " -> "SafetyProtocol"."""
        words = _require_str(value).strip().lower().split()
        return "".join(w[:1].upper() + w[1:] for w in words)


default_resolver = TagResolver()

resolve_topic_tag = default_resolver.resolve_topic_tag
is_valid_topic = default_resolver.is_valid_topic
validate_topic_tags = default_resolver.validate_topic_tags
resolve_concept_tag = TagResolver.resolve_concept_tag
