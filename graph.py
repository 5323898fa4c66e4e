"""
Explicit dependency graph for the resources of a deployment.

Every "resource A reads an output of resource B" relation is recorded here as
an edge, and the Pulumi ``depends_on`` options are derived from it, so the
ordering can be checked without relying on the engine's own inference.
"""

from typing import Dict, Iterable, List


class GraphError(ValueError):
    pass


class UnknownDependencyError(GraphError):
    pass


class DuplicateNodeError(GraphError):
    pass


class DependencyCycleError(GraphError):
    pass


class DependencyGraph:
    def __init__(self):
        # insertion order doubles as the tie-break for ordering
        self._deps: Dict[str, List[str]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._deps

    def __len__(self) -> int:
        return len(self._deps)

    @property
    def nodes(self) -> List[str]:
        return list(self._deps)

    def add(self, name: str, depends_on: Iterable[str] = ()) -> None:
        if name in self._deps:
            raise DuplicateNodeError(f"Resource '{name}' is already registered.")
        deps = list(dict.fromkeys(depends_on))
        unknown = [dep for dep in deps if dep not in self._deps]
        if unknown:
            raise UnknownDependencyError(
                f"Resource '{name}' depends on unregistered resources: {', '.join(unknown)}"
            )
        self._deps[name] = deps

    def dependencies_of(self, name: str) -> List[str]:
        if name not in self._deps:
            raise UnknownDependencyError(f"Resource '{name}' not found.")
        return list(self._deps[name])

    def stages(self) -> List[List[str]]:
        """
        Group nodes into layers (Kahn's algorithm). Every node's dependencies
        sit in earlier layers, so nodes in one layer can be realized in
        parallel.
        """
        remaining = {node: set(deps) for node, deps in self._deps.items()}
        layers: List[List[str]] = []
        while remaining:
            ready = [node for node, deps in remaining.items() if not deps]
            if not ready:
                raise DependencyCycleError(
                    f"Dependency cycle between: {', '.join(sorted(remaining))}"
                )
            layers.append(ready)
            for node in ready:
                del remaining[node]
            for deps in remaining.values():
                deps.difference_update(ready)
        return layers

    def topological_order(self) -> List[str]:
        return [node for layer in self.stages() for node in layer]
