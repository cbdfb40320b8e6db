"""
Flag definition validation for the Feature Flag Service.
"""

from typing import Dict, Any, Iterable, List, Mapping, Optional, Sequence

import pydantic

from shared.errors import ValidationError, DependencyCycleError
from .models import FlagDefinition
from .registry import FlagRegistry


def build_definition(data: Any) -> FlagDefinition:
    """Validate raw input into a FlagDefinition.

    pydantic errors are converted to the service's ValidationError so admin
    callers get one error type with the field-level problems in ``details``.
    """
    if isinstance(data, FlagDefinition):
        return data
    try:
        return FlagDefinition.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in e.errors()
        ]
        raise ValidationError("Invalid feature flag definition", {"errors": errors}) from e


def find_dependency_cycle(graph: Mapping[str, Sequence[str]], start: str) -> Optional[List[str]]:
    """Return the first cycle reachable from ``start`` as a path, or None."""
    visiting: List[str] = []
    on_path = set()
    done = set()

    def visit(node: str) -> Optional[List[str]]:
        if node in on_path:
            return visiting[visiting.index(node):] + [node]
        if node in done:
            return None
        visiting.append(node)
        on_path.add(node)
        for dep in graph.get(node, ()):
            cycle = visit(dep)
            if cycle:
                return cycle
        visiting.pop()
        on_path.discard(node)
        done.add(node)
        return None

    return visit(start)


def validate_dependencies(
    definition: FlagDefinition,
    definitions: Mapping[str, FlagDefinition],
    registry: FlagRegistry
) -> None:
    """Check that dependencies are known flags and form no cycle.

    ``definitions`` is the current snapshot; ``definition`` replaces any
    entry with the same id when building the dependency graph.
    """
    unknown = [dep for dep in definition.dependencies if dep not in registry]
    if unknown:
        raise ValidationError(
            "Dependencies reference unknown feature flags",
            {"flag": definition.flag, "unknown_dependencies": unknown}
        )

    graph: Dict[str, Sequence[str]] = {
        flag: existing.dependencies for flag, existing in definitions.items()
    }
    graph[definition.flag] = definition.dependencies

    cycle = find_dependency_cycle(graph, definition.flag)
    if cycle:
        raise DependencyCycleError(cycle, {"flag": definition.flag})


def dependents_of(flag: str, definitions: Iterable[FlagDefinition]) -> List[str]:
    """Flags whose dependency chain reaches ``flag``, nearest first."""
    reverse: Dict[str, List[str]] = {}
    for definition in definitions:
        for dep in definition.dependencies:
            reverse.setdefault(dep, []).append(definition.flag)

    found: List[str] = []
    seen = {flag}
    queue = [flag]
    while queue:
        current = queue.pop(0)
        for dependent in reverse.get(current, []):
            if dependent not in seen:
                seen.add(dependent)
                found.append(dependent)
                queue.append(dependent)
    return found
