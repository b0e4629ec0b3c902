"""
DependencyGraph - immutable DAG over component names.
DependencyGraph —— 组件名之上的不可变有向无环图。

An edge (a, b) means "a must be resolved before b can start"; for stop
the same edge is walked backwards.
边 (a, b) 表示「a 必须在 b 启动之前完成」；停止时沿同一条边反向遍历。

Key operations:
  - from_system():          build the graph from declared dependencies
  - ready():                frontier of nodes with no unresolved prerequisite
  - mark_resolved():        new graph with a resolved node's edges removed
  - topological_sort():     Kahn's algorithm, raises on cycles
  - dependency_graph():     validated, closed, acyclic view for one run

核心操作：
  - from_system():          根据组件声明的依赖构建图
  - ready():                前置条件全部满足的就绪前沿
  - mark_resolved():        移除已解析节点的边，返回新图
  - topological_sort():     Kahn 算法，遇环抛出异常
  - dependency_graph():     为单次执行构建经过校验、闭包、无环的视图

The graph never mutates: several in-flight completions may compute
readiness against the same snapshot.
图从不原地修改：多个并发完成的节点可能基于同一快照计算就绪集合。
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Iterable, Mapping

from lifecycle.component import dependencies
from lifecycle.errors import CyclicDependencyError, MissingComponentError
from schema import Direction

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Directed acyclic graph over node names with value semantics.
    具有值语义的节点名有向无环图。
    """

    def __init__(self, nodes: Iterable[str], edges: Iterable[tuple[str, str]] = ()):
        self._nodes: tuple[str, ...] = tuple(dict.fromkeys(nodes))  # 去重且保持顺序
        node_set = set(self._nodes)
        self._edges: frozenset[tuple[str, str]] = frozenset(
            (a, b) for a, b in edges if a in node_set and b in node_set
        )

    @classmethod
    def from_system(cls, system: Mapping[str, Any]) -> DependencyGraph:
        """
        Build the graph of a whole system from its components' declarations.
        根据系统中所有组件声明的依赖构建整图。

        Dependencies pointing at keys absent from the system produce no edge;
        they are reported when the dependent is dispatched.
        指向系统中不存在的键的依赖不产生边，由依赖方派发时报告。
        """
        edges = []
        for key, component in system.items():
            for dep in dependencies(component):
                if dep.system_key in system:
                    edges.append((dep.system_key, key))
                else:
                    logger.debug(
                        "[Graph] %s declares %s -> %r which is not in the system",
                        key, dep.alias, dep.system_key,
                    )
        return cls(system.keys(), edges)

    # ------------------------------------------------------------------
    # Queries
    # 查询
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> tuple[str, ...]:
        return self._nodes

    @property
    def edges(self) -> frozenset[tuple[str, str]]:
        return self._edges

    def __contains__(self, node: object) -> bool:
        return node in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def immediate_dependencies(self, node: str) -> set[str]:
        return {a for a, b in self._edges if b == node}

    def immediate_dependents(self, node: str) -> set[str]:
        return {b for a, b in self._edges if a == node}

    def _closure(self, start: Iterable[str], step) -> set[str]:
        # BFS，与下游遍历相同的写法
        visited: set[str] = set()
        queue: deque[str] = deque(start)
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            queue.extend(step(node))
        return visited

    def transitive_dependencies(self, nodes: Iterable[str]) -> set[str]:
        """`nodes` plus everything they depend on, directly or not."""
        return self._closure(nodes, self.immediate_dependencies)

    def transitive_dependents(self, nodes: Iterable[str]) -> set[str]:
        """`nodes` plus everything depending on them, directly or not."""
        return self._closure(nodes, self.immediate_dependents)

    def ready(self, unresolved: Iterable[str], direction: Direction) -> list[str]:
        """
        Nodes of `unresolved` with no remaining prerequisite edge, in node order.
        `unresolved` 中不再有前置边的节点，按节点顺序返回。

        FORWARD: no incoming edge left (all dependencies resolved).
        REVERSE: no outgoing edge left (all dependents resolved).
        FORWARD：没有剩余入边（依赖均已解析）。
        REVERSE：没有剩余出边（依赖者均已解析）。
        """
        pending = set(unresolved)
        if direction == Direction.FORWARD:
            blocked = {b for a, b in self._edges}
        else:
            blocked = {a for a, b in self._edges}
        return [n for n in self._nodes if n in pending and n not in blocked]

    # ------------------------------------------------------------------
    # Derived graphs (never mutate self)
    # 派生新图（从不修改自身）
    # ------------------------------------------------------------------

    def mark_resolved(self, node: str) -> DependencyGraph:
        """
        New graph with every edge incident to `node` removed, so nodes that
        were only waiting on it can become ready.
        返回移除了 `node` 所有关联边的新图，使仅等待它的节点变为就绪。
        """
        return DependencyGraph(
            self._nodes,
            ((a, b) for a, b in self._edges if a != node and b != node),
        )

    def subgraph(self, nodes: Iterable[str]) -> DependencyGraph:
        keep = set(nodes)
        return DependencyGraph((n for n in self._nodes if n in keep), self._edges)

    def topological_sort(self) -> list[str]:
        """
        Kahn's algorithm: node names in a valid start order.
        Kahn 算法 —— 返回合法的启动顺序。

        Raises CyclicDependencyError naming the nodes that sit on a cycle.
        若存在环则抛出 CyclicDependencyError，只列出环上的节点。
        """
        in_degree: dict[str, int] = {n: 0 for n in self._nodes}
        successors: dict[str, list[str]] = {n: [] for n in self._nodes}
        for a, b in sorted(self._edges):
            in_degree[b] += 1
            successors[a].append(b)

        queue = deque(n for n in self._nodes if in_degree[n] == 0)
        result: list[str] = []
        while queue:
            node = queue.popleft()
            result.append(node)
            for b in successors[node]:
                in_degree[b] -= 1
                if in_degree[b] == 0:
                    queue.append(b)

        if len(result) != len(self._nodes):
            seen = set(result)
            cycle = self.subgraph(n for n in self._nodes if n not in seen).nodes_on_cycles()
            logger.warning("[Graph] Cycle detected between %s", cycle)
            raise CyclicDependencyError(cycle)
        return result

    def nodes_on_cycles(self) -> list[str]:
        """
        Nodes reachable again from one of their own dependents, in node order.
        能从自身的依赖者重新到达自身的节点（即环上的节点），按节点顺序返回。
        """
        return [
            n for n in self._nodes
            if n in self._closure(self.immediate_dependents(n), self.immediate_dependents)
        ]

    def summary(self) -> str:
        """One-line summary for logging, e.g. Graph[3 nodes, 2 edges]."""
        return f"Graph[{len(self._nodes)} nodes, {len(self._edges)} edges]"

    def __repr__(self) -> str:
        edges = ", ".join(f"{a}->{b}" for a, b in sorted(self._edges))
        return f"DependencyGraph(nodes={list(self._nodes)}, edges=[{edges}])"


def dependency_graph(
    system: Mapping[str, Any],
    component_keys: Iterable[str],
    direction: Direction,
) -> DependencyGraph:
    """
    Graph of everything one run must touch, validated before any dispatch.
    单次执行需要触及的全部节点构成的图，在任何派发之前完成校验。

    1. Every requested key must be present in the system.
    2. Close over dependencies (FORWARD) or dependents (REVERSE): a requested
       node still needs the nodes outside the request resolved first.
    3. Restrict to the closure and reject cycles.

    1. 每个请求的键都必须存在于系统中。
    2. 按方向求依赖闭包（FORWARD）或依赖者闭包（REVERSE）：
       即便只请求了部分节点，其前置节点也必须先解析。
    3. 限制到闭包子图，并拒绝环。
    """
    keys = list(dict.fromkeys(component_keys))
    for key in keys:
        if key not in system:
            raise MissingComponentError(key, system)

    full = DependencyGraph.from_system(system)
    if direction == Direction.FORWARD:
        closure = full.transitive_dependencies(keys)
    else:
        closure = full.transitive_dependents(keys)

    graph = full.subgraph(closure)
    try:
        graph.topological_sort()
    except CyclicDependencyError as exc:
        exc.system = system
        raise
    extra = closure.difference(keys)
    if extra:
        logger.debug("[Graph] %s pulled in by closure: %s", direction.value, sorted(extra))
    return graph
