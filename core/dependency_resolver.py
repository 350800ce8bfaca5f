"""
Foreign-key aware ordering of tables.

Kahn's algorithm over the "table references table" relation. Ready nodes are
kept in a min-heap so that ties always resolve to the lexicographically
smallest name and repeated runs produce the same order.
"""

import heapq
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Set

from core.errors import DependencyCycleWarning

logger = logging.getLogger(__name__)


@dataclass
class ResolutionResult:
    """Load order plus the tables that could not be ordered"""
    order: List[str] = field(default_factory=list)
    cyclic: List[str] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return bool(self.cyclic)


def resolve_order(tables: Iterable[str], dependencies: Mapping[str, Iterable[str]]) -> ResolutionResult:
    """Order ``tables`` so that each one follows every table it depends on.

    Args:
        tables: table names, in the order they were discovered
        dependencies: table -> tables it references. References to tables not in
            ``tables`` and self references are ignored.

    Returns:
        ResolutionResult. Tables left over by a cycle are appended to ``order``
        in their input order and also listed in ``cyclic``.
    """
    names: List[str] = []
    seen: Set[str] = set()
    for name in tables:
        if name not in seen:
            seen.add(name)
            names.append(name)

    # in_degree[t] = number of distinct tables t still waits for
    depends_on: Dict[str, Set[str]] = {}
    dependents: Dict[str, Set[str]] = {name: set() for name in names}
    for name in names:
        refs = {ref for ref in dependencies.get(name, ()) if ref in seen and ref != name}
        depends_on[name] = refs
        for ref in refs:
            dependents[ref].add(name)

    in_degree = {name: len(depends_on[name]) for name in names}
    ready = [name for name in names if in_degree[name] == 0]
    heapq.heapify(ready)

    result = ResolutionResult()
    while ready:
        current = heapq.heappop(ready)
        result.order.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(result.order) < len(names):
        emitted = set(result.order)
        result.cyclic = [name for name in names if name not in emitted]
        result.order.extend(result.cyclic)
        message = f"Circular foreign key dependencies detected for: {', '.join(result.cyclic)}"
        logger.warning(message)
        warnings.warn(message, DependencyCycleWarning, stacklevel=2)

    return result
