"""
Component dependency graph.

Builds the directed "requires" graph from ordered (name, dependencies)
declarations and derives a deterministic topological order from it. The
graph is validated on construction: a reference to an undeclared component
raises MissingDependency and a cycle raises CyclicDependency carrying the
cycle path.
"""

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import CyclicDependency, MissingDependency

if TYPE_CHECKING:
    from .config.versions import VersionsManifest


class DependencyGraph:
    """
    Directed acyclic graph over release components.

    Edges point from a component to the components it requires. Ordering is
    a depth-first traversal in declaration order, appending each component
    after all of its dependencies, so the same declarations always produce
    the same order.

    Usage:
        graph = DependencyGraph.from_manifest(manifest)
        for name in graph.topological_order():
            build(name)
    """

    def __init__(self, declarations: Iterable[Tuple[str, Sequence[str]]]):
        """
        Initialize the graph and validate it.

        Args:
            declarations: Ordered (component, dependency names) pairs

        Raises:
            MissingDependency: If a dependency is not declared
            CyclicDependency: If the declarations contain a cycle
        """
        self._deps: Dict[str, List[str]] = {}
        for name, deps in declarations:
            # Deduplicate while keeping declaration order
            seen: List[str] = []
            for dep in deps:
                if dep not in seen:
                    seen.append(dep)
            self._deps[name] = seen

        for name, deps in self._deps.items():
            for dep in deps:
                if dep not in self._deps:
                    raise MissingDependency(name, dep)

        self._order = self._compute_order()

    @classmethod
    def from_manifest(cls, manifest: "VersionsManifest") -> "DependencyGraph":
        return cls(manifest.declarations())

    def __contains__(self, name: str) -> bool:
        return name in self._deps

    def __len__(self) -> int:
        return len(self._deps)

    @property
    def components(self) -> List[str]:
        """Component names in declaration order."""
        return list(self._deps)

    def _compute_order(self) -> List[str]:
        order: List[str] = []
        visited: Set[str] = set()
        visiting: List[str] = []

        def visit(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                start = visiting.index(name)
                raise CyclicDependency(visiting[start:] + [name])

            visiting.append(name)
            for dep in self._deps[name]:
                visit(dep)
            visiting.pop()

            visited.add(name)
            order.append(name)

        for name in self._deps:
            visit(name)

        return order

    def topological_order(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        """
        Get components ordered so that dependencies come first.

        Args:
            subset: Optional component names to restrict the result to; their
                transitive dependencies are always included

        Returns:
            Ordered list of component names

        Raises:
            KeyError: If a subset name is not in the graph
        """
        if subset is None:
            return list(self._order)

        wanted: Set[str] = set()
        for name in subset:
            if name not in self._deps:
                raise KeyError(f"Unknown component '{name}'")
            wanted.add(name)
            wanted.update(self.transitive_dependencies(name))

        return [name for name in self._order if name in wanted]

    def dependencies_of(self, name: str) -> List[str]:
        """Direct dependencies of a component, in declaration order."""
        return list(self._deps[name])

    def dependents_of(self, name: str) -> List[str]:
        """Components that directly require `name`, in topological order."""
        if name not in self._deps:
            raise KeyError(f"Unknown component '{name}'")
        return [other for other in self._order if name in self._deps[other]]

    def transitive_dependencies(self, name: str) -> Set[str]:
        """All components `name` depends on, directly or indirectly."""
        result: Set[str] = set()
        stack = list(self._deps[name])
        while stack:
            dep = stack.pop()
            if dep not in result:
                result.add(dep)
                stack.extend(self._deps[dep])
        return result

    def transitive_dependents(self, name: str) -> Set[str]:
        """All components that depend on `name`, directly or indirectly."""
        return {other for other in self._deps if name in self.transitive_dependencies(other)}
