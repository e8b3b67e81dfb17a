from collections.abc import Mapping
from typing import Protocol

from testtrack.models.split_registry import SplitRegistry
from testtrack.services.variant_calculator import calculate_variant

FEATURE_GATE_SUFFIX = "_enabled"


class VisitorLike(Protocol):
    """What an Assignment needs from a visitor."""

    @property
    def id(self) -> str: ...

    @property
    def offline(self) -> bool: ...

    @property
    def assignment_registry(self) -> Mapping[str, str] | None: ...

    @property
    def split_registry(self) -> SplitRegistry | None: ...


def is_feature_gate(split_name: str) -> bool:
    return str(split_name).endswith(FEATURE_GATE_SUFFIX)


class Assignment:
    """A visitor's variant for one split.

    The variant comes from the visitor's persisted assignment registry when
    present; otherwise it is calculated, unless the visitor is offline.
    """

    def __init__(self, visitor: VisitorLike, split_name: str) -> None:
        self._visitor = visitor
        self._split_name = str(split_name)
        self._variant = self._resolve_variant()

    @property
    def visitor(self) -> VisitorLike:
        return self._visitor

    @property
    def split_name(self) -> str:
        return self._split_name

    @property
    def variant(self) -> str | None:
        return self._variant

    @property
    def unsynced(self) -> bool:
        # Evaluated before any persistence round-trip: every touched
        # assignment is reported, even when it repeats a stored variant.
        return True

    @property
    def feature_gate(self) -> bool:
        return is_feature_gate(self._split_name)

    def _resolve_variant(self) -> str | None:
        registry = self._visitor.assignment_registry or {}
        if self._split_name in registry:
            stored = registry[self._split_name]
            return None if stored is None else str(stored)

        if self._visitor.offline:
            return None

        split_registry = self._visitor.split_registry
        weights = split_registry.weights_for(self._split_name) if split_registry is not None else None
        if weights is None:
            return None

        variant = calculate_variant(self._visitor.id, self._split_name, weights)
        return None if variant is None else str(variant)

    def __repr__(self) -> str:
        return f"Assignment(split_name={self._split_name!r}, variant={self._variant!r})"
