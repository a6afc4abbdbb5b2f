"""
Dependency resolver - turn a selection into a deterministic execution order.

Resolution steps:
1. Expand the requested names by transitive closure over each unit's
   effective dependencies (declared dependencies plus @unit references).
2. Detect cycles with a depth-first search, then report the shortest
   cycle through the first unit found on one.
3. Topologically sort with Kahn's algorithm, breaking ties by declaration
   order so identical input always yields the identical order.
"""

import heapq
import logging
from collections import deque
from typing import Iterable, Optional

from dorch.errors import CyclicDependencyError, UnknownUnitError
from dorch.registry import UnitRegistry


logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


def dependency_closure(registry: UnitRegistry, requested: Iterable[str]) -> set[str]:
    """
    Expand requested unit names with everything they transitively depend on.

    Raises:
        UnknownUnitError: If a requested or referenced unit is not registered
    """
    included: set[str] = set()
    stack: list[str] = []
    for name in requested:
        if name not in registry:
            raise UnknownUnitError(name)
        stack.append(name)

    while stack:
        name = stack.pop()
        if name in included:
            continue
        included.add(name)
        for dep in registry.get(name).effective_dependencies:
            if dep not in registry:
                raise UnknownUnitError(dep, referenced_by=name)
            if dep not in included:
                stack.append(dep)
    return included


def find_cycle(registry: UnitRegistry, names: Iterable[str]) -> Optional[list[str]]:
    """
    Find a dependency cycle among `names`.

    Units and their dependencies are visited in declaration order, so the
    reported cycle is stable.

    Returns:
        Names along the shortest cycle through the first unit found on a
        cycle, with that unit repeated at the end, or None
    """
    ordered = sorted(names, key=registry.index_of)
    scope = set(ordered)
    color = {name: _WHITE for name in ordered}
    path: list[str] = []

    def _visit(name: str) -> Optional[list[str]]:
        color[name] = _GRAY
        path.append(name)
        for dep in registry.get(name).effective_dependencies:
            if dep not in scope:
                continue
            if color[dep] == _GRAY:
                return path[path.index(dep):] + [dep]
            if color[dep] == _WHITE:
                cycle = _visit(dep)
                if cycle:
                    return cycle
        color[name] = _BLACK
        path.pop()
        return None

    for name in ordered:
        if color[name] == _WHITE:
            cycle = _visit(name)
            if cycle:
                return _shortest_cycle(registry, cycle[0], scope)
    return None


def _shortest_cycle(registry: UnitRegistry, start: str, scope: set[str]) -> list[str]:
    """Breadth-first search from `start` back to itself."""
    parents: dict[str, str] = {}
    queue = deque([start])
    while queue:
        name = queue.popleft()
        for dep in registry.get(name).effective_dependencies:
            if dep not in scope:
                continue
            if dep == start:
                path = [name]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path)) + [start]
            if dep not in parents:
                parents[dep] = name
                queue.append(dep)
    raise AssertionError(f"{start} is not on a cycle")


def resolve(registry: UnitRegistry, requested: Iterable[str]) -> list[str]:
    """
    Compute the execution order for a set of requested units.

    Every unit appears after all of its effective dependencies. Among units
    whose dependencies are satisfied, the one declared first runs first.

    Args:
        registry: Full registry (used to look up transitive dependencies)
        requested: Unit names to include (usually from dorch.selector.select)

    Returns:
        Ordered unit names

    Raises:
        UnknownUnitError: If a requested or referenced unit is not registered
        CyclicDependencyError: If the closed set contains a cycle
    """
    included = dependency_closure(registry, requested)

    cycle = find_cycle(registry, included)
    if cycle:
        raise CyclicDependencyError(cycle)

    # Kahn's algorithm with a declaration-order heap
    remaining: dict[str, int] = {}
    dependents: dict[str, list[str]] = {name: [] for name in included}
    for name in included:
        deps = registry.get(name).effective_dependencies
        remaining[name] = len(deps)
        for dep in deps:
            dependents[dep].append(name)

    ready = [(registry.index_of(name), name) for name, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for dependent in dependents[name]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (registry.index_of(dependent), dependent))

    if len(order) != len(included):
        # find_cycle already ran; this guards against a broken registry
        raise CyclicDependencyError(sorted(included - set(order), key=registry.index_of))

    logger.debug(f"Resolved {len(order)} unit(s): {', '.join(order)}")
    return order


def dependency_levels(registry: UnitRegistry, order: list[str]) -> dict[str, int]:
    """
    Depth of each unit in a resolved order.

    Level 0: units with no dependencies in the order
    Level N: units whose deepest dependency is at level N-1
    """
    levels: dict[str, int] = {}
    for name in order:
        deps = [d for d in registry.get(name).effective_dependencies if d in levels]
        levels[name] = max((levels[d] for d in deps), default=-1) + 1
    return levels
