"""
UnitRegistry - Declarative catalog of deployment units.

The registry provides:
- Registration with unique names (declaration order is preserved)
- Lookup by name and by tag
- Loading unit definitions from YAML or JSON files in a definitions directory

It performs no ordering or execution; see dorch.resolver and dorch.executor.
"""

import json
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml

from dorch.errors import DuplicateNameError, UnknownUnitError, UnitValidationError
from dorch.schemas import Unit


DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")


class UnitRegistry:
    """
    Registry of deployment units.

    Units are immutable once registered. Declaration order is the tie-break
    the resolver uses, so it must be stable across runs.

    Example definitions directory:
        definitions/
            00_tokens.yaml
            01_controller.yaml
            storage/
                asto_storage.yaml
    """

    def __init__(self, units: Iterable[Unit] = ()):
        self._units: dict[str, Unit] = {}
        self._index: dict[str, int] = {}
        for unit in units:
            self.register(unit)

    def register(self, unit: Unit) -> None:
        """
        Add a unit to the registry.

        Raises:
            DuplicateNameError: If a unit with the same name is registered
        """
        if unit.name in self._units:
            raise DuplicateNameError(unit.name)
        self._index[unit.name] = len(self._units)
        self._units[unit.name] = unit

    def get(self, name: str) -> Unit:
        """
        Get a unit by name.

        Raises:
            UnknownUnitError: If no unit has this name
        """
        if name not in self._units:
            raise UnknownUnitError(name)
        return self._units[name]

    def has(self, name: str) -> bool:
        return name in self._units

    def index_of(self, name: str) -> int:
        """Declaration index of a unit (registration order)."""
        if name not in self._index:
            raise UnknownUnitError(name)
        return self._index[name]

    def names(self) -> list[str]:
        """Unit names in declaration order."""
        return list(self._units.keys())

    def units(self) -> list[Unit]:
        """Units in declaration order."""
        return list(self._units.values())

    def with_tag(self, tag: str) -> list[Unit]:
        """Units carrying a tag, in declaration order."""
        return [u for u in self._units.values() if tag in u.tags]

    def tags(self) -> set[str]:
        """All tags used by registered units."""
        result: set[str] = set()
        for unit in self._units.values():
            result |= unit.tags
        return result

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(self._units.values())

    def __len__(self) -> int:
        return len(self._units)

    def __repr__(self) -> str:
        return f"UnitRegistry({len(self._units)} units)"

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_directory(cls, definitions_dir: Path | str) -> "UnitRegistry":
        """
        Load every definition file under a directory.

        Files are read in sorted relative-path order; within a file, units are
        registered in the order they appear. A file holds either a single unit
        mapping or {"units": [...]}.

        Args:
            definitions_dir: Directory containing *.yaml, *.yml or *.json files

        Returns:
            Populated registry

        Raises:
            UnitValidationError: If the directory is missing or a file is invalid
            DuplicateNameError: If two definitions share a name
        """
        root = Path(definitions_dir)
        if not root.is_dir():
            raise UnitValidationError(f"Definitions directory not found: {root}")

        registry = cls()
        for path in sorted(
            (p for p in root.rglob("*") if p.suffix in DEFINITION_SUFFIXES and p.is_file()),
            key=lambda p: p.relative_to(root).as_posix(),
        ):
            for unit in load_definition_file(path):
                registry.register(unit)
        return registry


def _load_file(path: Path) -> Any:
    """Load and parse a YAML or JSON file."""
    with open(path) as f:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        return json.load(f)


def load_definition_file(path: Path) -> list[Unit]:
    """
    Parse the units declared in one definition file.

    Raises:
        UnitValidationError: If the file cannot be parsed or holds invalid units
    """
    try:
        data = _load_file(path)
    except (yaml.YAMLError, json.JSONDecodeError, OSError) as e:
        raise UnitValidationError(f"Failed to load {path}: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict) and "units" in data:
        entries = data["units"] or []
    else:
        entries = [data]
    if not isinstance(entries, list):
        raise UnitValidationError(f"{path}: 'units' must be a list")

    units = []
    for entry in entries:
        try:
            units.append(Unit.from_dict(entry))
        except UnitValidationError as e:
            raise UnitValidationError(f"{path}: {e}") from e
    return units
