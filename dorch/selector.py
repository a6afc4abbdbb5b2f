"""
Selector - Narrow a registry to the units an operator asked for.

The selection only contains what was requested (explicit names and
tag matches). Dependencies are pulled in later by the resolver.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from dorch.errors import EmptySelectionError, UnknownUnitError
from dorch.registry import UnitRegistry


def _split(values: Optional[Iterable[str]]) -> frozenset[str]:
    """Flatten repeated and comma-separated CLI values."""
    result: set[str] = set()
    for value in values or ():
        for part in value.split(","):
            part = part.strip()
            if part:
                result.add(part)
    return frozenset(result)


@dataclass(frozen=True)
class Selection:
    """
    A request for a subset of units.

    Attributes:
        names: Units requested explicitly
        tags: Tags whose units are requested
        all: Request every registered unit
    """
    names: frozenset[str] = field(default_factory=frozenset)
    tags: frozenset[str] = field(default_factory=frozenset)
    all: bool = False

    def __post_init__(self):
        object.__setattr__(self, "names", frozenset(self.names))
        object.__setattr__(self, "tags", frozenset(self.tags))

    @classmethod
    def everything(cls) -> "Selection":
        return cls(all=True)

    @classmethod
    def parse(
        cls,
        names: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> "Selection":
        """
        Build a selection from CLI-style values.

        Values may be repeated or comma-separated ("Controller,Staking").
        No names and no tags selects everything.
        """
        parsed_names = _split(names)
        parsed_tags = _split(tags)
        if not parsed_names and not parsed_tags:
            return cls.everything()
        return cls(names=parsed_names, tags=parsed_tags)

    @property
    def is_everything(self) -> bool:
        return self.all or (not self.names and not self.tags)

    def describe(self) -> str:
        if self.is_everything:
            return "all units"
        parts = []
        if self.names:
            parts.append(f"units={','.join(sorted(self.names))}")
        if self.tags:
            parts.append(f"tags={','.join(sorted(self.tags))}")
        return " ".join(parts)


def select(registry: UnitRegistry, selection: Optional[Selection] = None) -> list[str]:
    """
    Compute the requested unit names.

    Args:
        registry: Registry to select from
        selection: Request (None selects everything)

    Returns:
        Selected unit names in declaration order

    Raises:
        UnknownUnitError: If an explicitly named unit is not registered
        EmptySelectionError: If nothing matches
    """
    selection = selection or Selection.everything()

    if selection.is_everything:
        chosen = registry.names()
    else:
        for name in sorted(selection.names):
            if name not in registry:
                raise UnknownUnitError(name)
        chosen = [
            unit.name
            for unit in registry
            if unit.name in selection.names or unit.tags & selection.tags
        ]

    if not chosen:
        raise EmptySelectionError(f"Selection matched no units: {selection.describe()}")
    return chosen
