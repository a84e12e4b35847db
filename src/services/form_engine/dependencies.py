"""
Field dependency graph.

The graph maps a field id to the ids of fields that declare it in their
``dependsOn`` list, i.e. the fields whose visibility or validation must be
recomputed when it changes. ``dependsOn`` is never derived from the
visibility conditions; check_dependency_consistency reports drift between
the two instead.
"""

from collections import deque
from typing import Dict, Iterable, List, Optional, Set

import structlog

from src.core.exceptions import SchemaIntegrityError
from src.domain.models.form_schema import FormField
from src.services.form_engine.conditions import collect_condition_field_ids

log = structlog.get_logger(__name__)

DependencyGraph = Dict[str, Set[str]]


def _invert(fields: List[FormField]) -> DependencyGraph:
    graph: DependencyGraph = {field.id: set() for field in fields}
    for field in fields:
        for dep_id in field.depends_on or []:
            if dep_id in graph:
                graph[dep_id].add(field.id)
            else:
                log.warning(
                    "dependency_on_unknown_field",
                    field_id=field.id,
                    depends_on=dep_id,
                )
    return graph


def find_dependency_cycle(fields: Iterable[FormField]) -> Optional[List[str]]:
    """Return one dependency cycle as a list of field ids, or None.

    The returned path starts and ends with the same id.
    """
    graph = _invert(list(fields))
    white, grey, black = 0, 1, 2
    color = {node: white for node in graph}
    parent: Dict[str, Optional[str]] = {}

    for root in graph:
        if color[root] != white:
            continue
        stack = [(root, iter(sorted(graph[root])))]
        color[root] = grey
        parent[root] = None
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if color[child] == white:
                    color[child] = grey
                    parent[child] = node
                    stack.append((child, iter(sorted(graph[child]))))
                    advanced = True
                    break
                if color[child] == grey:
                    # Back edge: unwind from node to child
                    cycle = [child]
                    cursor: Optional[str] = node
                    while cursor is not None and cursor != child:
                        cycle.append(cursor)
                        cursor = parent[cursor]
                    cycle.append(child)
                    cycle.reverse()
                    return cycle
            if not advanced:
                color[node] = black
                stack.pop()
    return None


def build_dependency_graph(fields: Iterable[FormField]) -> DependencyGraph:
    """
    Invert every field's ``dependsOn`` list.

    Args:
        fields: Form fields

    Returns:
        field_id -> set of ids of fields that depend on it (every field has
        an entry, possibly empty)

    Raises:
        SchemaIntegrityError: If the dependencies form a cycle
    """
    fields = list(fields)
    cycle = find_dependency_cycle(fields)
    if cycle:
        raise SchemaIntegrityError(
            f"Dependency cycle between fields: {' -> '.join(cycle)}",
            field_ids=tuple(dict.fromkeys(cycle)),
        )
    return _invert(fields)


def collect_affected_fields(graph: DependencyGraph, field_id: str) -> Set[str]:
    """All fields transitively depending on ``field_id`` (excluding itself)."""
    affected: Set[str] = set()
    queue = deque(graph.get(field_id, ()))
    while queue:
        current = queue.popleft()
        if current in affected or current == field_id:
            continue
        affected.add(current)
        queue.extend(graph.get(current, ()))
    return affected


def check_dependency_consistency(fields: Iterable[FormField]) -> List[str]:
    """
    Report drift between ``dependsOn`` and ``visibilityConditions``.

    Returns:
        Human-readable issues; empty when every field is consistent
    """
    fields = list(fields)
    known = {field.id for field in fields}
    issues: List[str] = []

    for field in fields:
        declared = set(field.depends_on or [])

        for dep_id in sorted(declared - known):
            issues.append(f"{field.id}: dependsOn names unknown field '{dep_id}'")

        if field.visibility_conditions is None:
            continue

        referenced = collect_condition_field_ids(field.visibility_conditions)
        for ref_id in sorted(referenced - declared):
            issues.append(
                f"{field.id}: condition references '{ref_id}' missing from dependsOn"
            )
        if field.id in referenced:
            issues.append(f"{field.id}: visibility condition references itself")

    return issues
