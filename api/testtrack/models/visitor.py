from collections.abc import Callable, Mapping
from typing import TypeVar

from testtrack.models.assignment import Assignment
from testtrack.models.split_registry import SplitRegistry

T = TypeVar("T")


class Visitor:
    """One visitor for the duration of a session turn.

    ``assignment_registry`` given at construction is the persisted state as
    known when the visitor was resolved. Assignments are created on demand
    and memoized per split name, so repeated queries within a turn neither
    recalculate nor report the split twice.
    """

    def __init__(
        self,
        id: str,
        *,
        split_registry: SplitRegistry | None = None,
        assignment_registry: Mapping[str, str] | None = None,
        offline: bool = False,
    ) -> None:
        self._id = str(id)
        self._split_registry = split_registry
        self._persisted = None if assignment_registry is None else dict(assignment_registry)
        self._offline = offline
        self._assignments: dict[str, Assignment] = {}

    @property
    def id(self) -> str:
        return self._id

    @property
    def offline(self) -> bool:
        return self._offline

    @property
    def split_registry(self) -> SplitRegistry | None:
        return self._split_registry

    @property
    def assignment_registry(self) -> dict[str, str] | None:
        """Persisted assignments plus those resolved this turn, or None if unavailable."""
        if self._persisted is None:
            return None
        registry = dict(self._persisted)
        for split_name, assignment in self._assignments.items():
            if assignment.variant is not None:
                registry[split_name] = assignment.variant
        return registry

    @property
    def assignments(self) -> list[Assignment]:
        return list(self._assignments.values())

    @property
    def new_assignments(self) -> dict[str, str]:
        """Touched, unsynced assignments that resolved to a variant."""
        return {
            split_name: assignment.variant
            for split_name, assignment in self._assignments.items()
            if assignment.unsynced and assignment.variant is not None
        }

    def assignment_for(self, split_name: str) -> Assignment:
        split_name = str(split_name)
        assignment = self._assignments.get(split_name)
        if assignment is None:
            assignment = Assignment(self, split_name)
            self._assignments[split_name] = assignment
        return assignment

    def ab(self, split_name: str, true_variant: str = "true", *other_variants: str) -> bool:
        """True iff the visitor is assigned ``true_variant``.

        ``other_variants`` only names the alternatives at the call site and
        does not affect the result.
        """
        return self.assignment_for(split_name).variant == str(true_variant)

    def vary(self, split_name: str, handlers: Mapping[str, Callable[[], T]], default: str) -> T:
        """Run the handler registered for the assigned variant.

        Falls back to the ``default`` variant's handler when the visitor has
        no variant or one without a handler.
        """
        if default not in handlers:
            raise ValueError(f"default variant {default!r} has no handler for split {split_name!r}")
        variant = self.assignment_for(split_name).variant
        handler = handlers.get(variant) if variant is not None else None
        return (handler or handlers[default])()

    def __repr__(self) -> str:
        return f"Visitor(id={self._id!r}, offline={self._offline!r})"
