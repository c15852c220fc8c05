"""
Role graph utilities (pure).

Cycle detection and topological ordering for the role dependency
graph.  No I/O, no subprocess.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from wsmigrate.core.models.target import Role


def find_cycle_members(dependencies: Mapping[Role, Iterable[Role]]) -> list[Role]:
    """Roles that sit on (or behind) a dependency cycle.

    Runs Kahn's algorithm; whatever never reaches in-degree zero is
    returned, in canonical order.  Empty list = acyclic.
    """
    order = _kahn(dependencies)
    done = set(order)
    return [r for r in Role if r not in done]


def role_order(dependencies: Mapping[Role, Iterable[Role]]) -> list[Role]:
    """Total order over every role: dependencies first, ties broken canonically.

    Raises:
        ValueError: If the graph has a cycle.
    """
    order = _kahn(dependencies)
    if len(order) < len(Role):
        stuck = ", ".join(r.value for r in Role if r not in set(order))
        raise ValueError(f"Dependency cycle among roles: {stuck}")
    return order


def _kahn(dependencies: Mapping[Role, Iterable[Role]]) -> list[Role]:
    canonical = {role: i for i, role in enumerate(Role)}
    deps: dict[Role, set[Role]] = {role: set() for role in Role}
    for role, needs in dependencies.items():
        deps[Role(role)].update(Role(n) for n in needs)

    # dep → roles waiting on it
    adj: dict[Role, list[Role]] = {role: [] for role in Role}
    in_degree: dict[Role, int] = {role: len(needs) for role, needs in deps.items()}
    for role, needs in deps.items():
        for dep in needs:
            adj[dep].append(role)

    ready = sorted((r for r, d in in_degree.items() if d == 0), key=canonical.__getitem__)
    order: list[Role] = []
    while ready:
        node = ready.pop(0)
        order.append(node)
        for successor in adj[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                ready.append(successor)
        ready.sort(key=canonical.__getitem__)
    return order
