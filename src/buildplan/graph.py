"""Dependency graph of a project's tasks with cycle detection."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

import networkx as nx

from buildplan.errors import CycleError, DanglingReference, UnknownTaskError
from buildplan.models import Task

logger = logging.getLogger(__name__)


class TaskGraph:
    """Tasks of one project and the directed "depends on" relation between them.

    Edges point from a dependency to its dependent (``dep -> task``), so a
    topological sort lists every dependency before the tasks waiting on it.
    Each node remembers the order in which it was added; that index breaks
    ties between independent tasks in :meth:`topological_order`.
    """

    def __init__(self) -> None:
        self._g = nx.DiGraph()
        self._next_index = 0
        self.dangling: list[DanglingReference] = []

    @classmethod
    def from_tasks(cls, tasks: dict[str, Task] | Iterable[Task]) -> TaskGraph:
        """Build a graph from a task snapshot.

        Edges are loaded as-is, so an already-cyclic snapshot is representable
        (and reported by :meth:`find_cycle`). Dependencies on ids outside the
        snapshot are dropped and recorded in :attr:`dangling`.
        """
        items = list(tasks.values()) if isinstance(tasks, dict) else list(tasks)
        graph = cls()
        for task in items:
            graph.add_task(task.id)
        for task in items:
            for dep in task.depends_on:
                if dep not in graph:
                    ref = DanglingReference(task.id, dep)
                    logger.warning("Dropping dependency edge: %s", ref)
                    graph.dangling.append(ref)
                    continue
                graph._g.add_edge(dep, task.id)
        return graph

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._g

    def __len__(self) -> int:
        return self._g.number_of_nodes()

    def add_task(self, task_id: str) -> None:
        if task_id in self._g:
            return
        self._g.add_node(task_id, order=self._next_index)
        self._next_index += 1

    def remove_task(self, task_id: str) -> None:
        """Drop a task together with every edge that references it."""
        if task_id in self._g:
            self._g.remove_node(task_id)

    def _require(self, *task_ids: str) -> None:
        missing = [tid for tid in task_ids if tid not in self._g]
        if missing:
            raise UnknownTaskError(f"Unknown task(s): {', '.join(missing)}", missing)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def dependencies_of(self, task_id: str) -> list[str]:
        self._require(task_id)
        return sorted(self._g.predecessors(task_id), key=self._order)

    def dependents_of(self, task_id: str) -> list[str]:
        self._require(task_id)
        return sorted(self._g.successors(task_id), key=self._order)

    def edges(self) -> list[tuple[str, str]]:
        """All edges as ``(dependency_id, task_id)`` pairs."""
        return sorted(self._g.edges(), key=lambda e: (self._order(e[1]), self._order(e[0])))

    def _order(self, task_id: str) -> int:
        return self._g.nodes[task_id]["order"]

    def has_cycle_if_added(self, task_id: str, new_dependency_ids: Iterable[str]) -> bool:
        """Would replacing *task_id*'s dependency list with *new_dependency_ids* form a cycle?

        Depth-first search from *task_id* over the "depends on" direction,
        with *task_id*'s own dependencies swapped for the proposed ones. A node
        found on the current path is a back edge, hence a cycle; a node
        finished earlier is skipped, which keeps the walk linear in edges.
        Ids outside the graph are treated as having no dependencies.
        """
        proposed = list(new_dependency_ids)
        if task_id in proposed:
            return True

        def deps(node: str) -> list[str]:
            if node == task_id:
                return proposed
            if node not in self._g:
                return []
            return list(self._g.predecessors(node))

        return self._search_back_edge(task_id, deps)

    @staticmethod
    def _search_back_edge(root: str, deps) -> bool:
        visited: set[str] = {root}
        on_path: set[str] = {root}
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(deps(root)))]

        while stack:
            node, children = stack[-1]
            for child in children:
                if child in on_path:
                    return True
                if child not in visited:
                    visited.add(child)
                    on_path.add(child)
                    stack.append((child, iter(deps(child))))
                    break
            else:
                stack.pop()
                on_path.discard(node)
        return False

    def find_cycle(self) -> list[str] | None:
        """Return the ids along one cycle, or None if the graph is a DAG."""
        try:
            cycle_edges = nx.find_cycle(self._g)
        except nx.NetworkXNoCycle:
            return None
        return [u for u, _ in cycle_edges]

    def cycles(self) -> list[list[str]]:
        """Every group of tasks caught in a cycle, self-dependencies included."""
        groups = []
        for component in nx.strongly_connected_components(self._g):
            if len(component) > 1 or any(self._g.has_edge(n, n) for n in component):
                groups.append(sorted(component, key=self._order))
        return sorted(groups, key=lambda g: self._order(g[0]))

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._g)

    def topological_order(self) -> Iterator[str]:
        """Yield task ids with every dependency before its dependents.

        Lazy. Among tasks that are ready at the same time, the one added to
        the graph first comes first. Raises CycleError once the remaining
        tasks all wait on each other.
        """
        try:
            yield from nx.lexicographical_topological_sort(self._g, key=self._order)
        except nx.NetworkXUnfeasible:
            cycle = self.find_cycle() or []
            raise CycleError(
                f"Circular dependency detected: {' -> '.join(cycle)}", cycle
            ) from None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str, depends_on_id: str) -> None:
        """Record that *task_id* depends on *depends_on_id*.

        Raises CycleError, leaving the graph untouched, when *depends_on_id*
        already (transitively) depends on *task_id* or the two are the same.
        """
        self._require(task_id, depends_on_id)
        if task_id == depends_on_id:
            raise CycleError(f"Task {task_id} cannot depend on itself", [task_id])
        if self._g.has_edge(depends_on_id, task_id):
            return
        # edges run dep -> task, so a path task_id -> depends_on_id means a loop
        if nx.has_path(self._g, task_id, depends_on_id):
            raise CycleError(
                f"Cannot add dependency: {task_id} -> {depends_on_id} would create a "
                "circular dependency",
                [task_id, depends_on_id],
            )
        self._g.add_edge(depends_on_id, task_id)
        logger.debug("Added dependency %s -> %s", task_id, depends_on_id)

    def remove_dependency(self, task_id: str, depends_on_id: str) -> None:
        """Forget that *task_id* depends on *depends_on_id*. Missing edges are ignored."""
        if self._g.has_edge(depends_on_id, task_id):
            self._g.remove_edge(depends_on_id, task_id)
            logger.debug("Removed dependency %s -> %s", task_id, depends_on_id)

    def set_dependencies(self, task_id: str, dependency_ids: Iterable[str]) -> None:
        """Replace *task_id*'s whole dependency list, rejecting cyclic replacements."""
        new_deps = list(dict.fromkeys(dependency_ids))
        self._require(task_id, *new_deps)
        if self.has_cycle_if_added(task_id, new_deps):
            raise CycleError(
                f"Circular dependency detected for task {task_id}", [task_id, *new_deps]
            )
        for dep in list(self._g.predecessors(task_id)):
            self._g.remove_edge(dep, task_id)
        for dep in new_deps:
            self._g.add_edge(dep, task_id)
