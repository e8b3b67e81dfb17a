from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import NonNegativeInt, TypeAdapter

_registry_adapter = TypeAdapter(dict[str, dict[str, NonNegativeInt]])


class SplitRegistry(Mapping[str, Mapping[str, int]]):
    """Read-only snapshot of split definitions: split name -> {variant: weight}."""

    def __init__(self, splits: Mapping[str, Mapping[str, int]] | None = None) -> None:
        self._splits = MappingProxyType(
            {name: MappingProxyType(dict(weights)) for name, weights in (splits or {}).items()}
        )

    @classmethod
    def from_payload(cls, payload: Any) -> "SplitRegistry":
        """Validate a decoded JSON payload; raises pydantic.ValidationError on bad shapes."""
        return cls(_registry_adapter.validate_python(payload))

    def __getitem__(self, split_name: str) -> Mapping[str, int]:
        return self._splits[split_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._splits)

    def __len__(self) -> int:
        return len(self._splits)

    def weights_for(self, split_name: str) -> Mapping[str, int] | None:
        return self._splits.get(split_name)

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {name: dict(weights) for name, weights in self._splits.items()}

    def __repr__(self) -> str:
        return f"SplitRegistry({self.to_dict()!r})"
