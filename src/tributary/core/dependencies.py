"""
Stream dependency graph and run-order resolution.

The graph is built once per sync from immutable stream definitions and only
covers the requested streams: a dependency on a stream that was not
requested is dropped, since a stream may use another's output when present
but must not require it.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from tributary.core.stream import StreamDefinition
from tributary.exceptions import DependencyCycleError, StreamNotFoundError


class DependencyGraph:
    """Directed graph of stream dependencies; read-only after construction."""

    def __init__(self, dependencies: Mapping[str, Iterable[str]]):
        """
        Args:
            dependencies: stream name -> names it depends on. Insertion order
                is the tie-break order for ``topological_sort``. Edges to
                names that are not keys are dropped.
        """
        nodes = list(dependencies)
        node_set = set(nodes)
        graph: dict[str, tuple[str, ...]] = {}
        reverse: dict[str, list[str]] = defaultdict(list)
        for name in nodes:
            deps = tuple(dict.fromkeys(dep for dep in dependencies[name] if dep in node_set))
            graph[name] = deps
            for dep in deps:
                reverse[dep].append(name)

        self._order = {name: index for index, name in enumerate(nodes)}
        self._graph = MappingProxyType(graph)
        self._reverse = MappingProxyType({name: tuple(reverse.get(name, ())) for name in nodes})

    @classmethod
    def from_definitions(
        cls, definitions: Iterable[StreamDefinition], requested: Iterable[str] | None = None
    ) -> "DependencyGraph":
        """
        Build the graph over ``requested`` (all definitions when None).

        Unknown requested names are skipped here; ``resolve_stream_order``
        validates them first.
        """
        by_name = {d.name: d for d in definitions}
        names = list(by_name) if requested is None else [n for n in dict.fromkeys(requested) if n in by_name]
        return cls({name: by_name[name].dependencies for name in names})

    @property
    def nodes(self) -> list[str]:
        return list(self._graph)

    def get_dependencies(self, name: str) -> list[str]:
        """Get the (requested) streams a stream depends on."""
        return list(self._graph.get(name, ()))

    def get_dependents(self, name: str) -> list[str]:
        """Get the streams that depend on this one."""
        return list(self._reverse.get(name, ()))

    def topological_sort(self) -> list[str]:
        """
        Order streams so every dependency precedes its dependents.

        Kahn's algorithm; among streams that are ready at the same time the
        one listed first wins. Streams caught in a cycle are left out, so
        callers should check ``detect_cycles`` first.
        """
        in_degree = {name: len(deps) for name, deps in self._graph.items()}
        ready = sorted((n for n, d in in_degree.items() if d == 0), key=self._order.__getitem__)
        result: list[str] = []

        while ready:
            name = ready.pop(0)
            result.append(name)
            released = []
            for dependent in self._reverse[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    released.append(dependent)
            if released:
                ready = sorted(ready + released, key=self._order.__getitem__)

        return result

    def detect_cycles(self) -> list[list[str]]:
        """
        Detect cycles in the dependency graph.

        Uses DFS; each cycle is reported as a path that starts and ends on
        the same stream.
        """
        visited: set[str] = set()
        rec_stack: set[str] = set()
        cycles: list[list[str]] = []
        path: list[str] = []

        def dfs(node: str):
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for neighbor in self._graph.get(node, ()):
                if neighbor not in visited:
                    dfs(neighbor)
                elif neighbor in rec_stack:
                    cycle_start = path.index(neighbor)
                    cycles.append(path[cycle_start:] + [neighbor])

            rec_stack.remove(node)
            path.pop()

        for node in self._graph:
            if node not in visited:
                dfs(node)

        return cycles

    def get_layers(self) -> dict[str, int]:
        """
        Get the layer of each stream: 0 for streams without dependencies,
        otherwise one more than the deepest dependency.
        """
        layers: dict[str, int] = {}
        for name in self.topological_sort():
            deps = self._graph[name]
            layers[name] = max((layers[d] for d in deps), default=-1) + 1
        return layers

    def visualize_layers(self) -> str:
        """Render streams grouped by layer, one line per layer."""
        grouped: dict[int, list[str]] = defaultdict(list)
        for name, layer in self.get_layers().items():
            grouped[layer].append(name)

        lines = []
        for layer_num in sorted(grouped):
            lines.append(f"Layer {layer_num}: {' ── '.join(sorted(grouped[layer_num]))}")
        return "\n".join(lines)


def resolve_stream_order(definitions: Iterable[StreamDefinition], requested: Iterable[str]) -> list[str]:
    """
    Order the requested streams so dependencies run first.

    Args:
        definitions: Every stream the source defines
        requested: Stream names selected for this sync, in catalog order

    Returns:
        The requested stream names in run order

    Raises:
        StreamNotFoundError: If a requested name is not a defined stream
        DependencyCycleError: If the requested streams depend on each other cyclically
    """
    definitions = list(definitions)
    known = {d.name for d in definitions}
    requested = list(dict.fromkeys(requested))
    missing = [name for name in requested if name not in known]
    if missing:
        raise StreamNotFoundError(missing, known)

    graph = DependencyGraph.from_definitions(definitions, requested)
    cycles = graph.detect_cycles()
    if cycles:
        raise DependencyCycleError(cycles)
    return graph.topological_sort()
