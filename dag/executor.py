"""
Graph Executor - drives one start/stop operation across a dependency graph.
图执行引擎 —— 沿依赖图驱动一次完整的 start/stop 操作。

Unlike a super-step loop that waits for a whole batch before looking for
the next one, this executor is readiness-driven: every completion
immediately re-evaluates the frontier, so a node is dispatched the instant
its last prerequisite resolves, independent of unrelated branches.
与等待整批完成再寻找下一批的 Super-step 循环不同，本引擎由就绪驱动：
每次完成都立即重新计算就绪前沿，节点在最后一个前置条件解析的瞬间就被派发，
不受无关分支影响。

  step():
    1. If cancelled or finished, return
    2. Compute the ready frontier from the graph and the unresolved nodes
    3. Empty frontier -> every node resolved -> on_done(system), once
    4. Otherwise mark each ready PENDING node RUNNING and dispatch it
  node succeeded:
    store the updated component in a new system copy, remove the node's
    edges, mark it COMPLETED, step() again
  node failed:
    set the cancellation flag (first failure only) and call on_error, once

  step():
    1. 已取消或已结束则返回
    2. 根据当前图与未解析节点计算就绪前沿
    3. 前沿为空 -> 全部解析完毕 -> 调用一次 on_done(system)
    4. 否则把每个 PENDING 的就绪节点标记为 RUNNING 并派发
  节点成功：
    把更新后的组件写入新的系统副本，移除该节点的边，标记 COMPLETED，再次 step()
  节点失败：
    设置取消标记（仅第一次失败生效）并调用一次 on_error

The executor never blocks. All of its state lives behind one lock so
components may resolve from any thread; on_done, on_error and node
dispatch always happen outside the lock.
引擎从不阻塞。所有状态由一把锁保护，组件可在任意线程回调；
on_done、on_error 与节点派发始终在锁外进行。
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Iterable, Mapping

from dag.graph import DependencyGraph, dependency_graph
from dag.state_machine import UNRESOLVED, NodeStateMachine
from lifecycle.action import node_action
from lifecycle.component import assoc_key
from lifecycle.errors import ComponentSystemError
from schema import Direction, NodeRecord, NodeStatus, Operation

logger = logging.getLogger(__name__)


class GraphExecutor:
    """
    Single-use scheduler for one operation over one system.
    针对一个系统执行一次操作的一次性调度器。

    Construction validates the graph (missing keys, cycles) and raises
    before anything is dispatched; run() then drives the nodes.
    构造时校验图（缺失键、环），在任何派发前抛出；run() 负责驱动节点。
    """

    def __init__(
        self,
        system: Mapping[str, Any],
        component_keys: Iterable[str],
        operation: Operation,
        direction: Direction,
        on_event: Callable[[str, Any], None] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._system = system
        self._operation = operation
        self._direction = direction
        self._emit_fn = on_event or (lambda *_: None)
        self._loop = loop
        self._lock = threading.RLock()
        self._cancelled = False
        self._finished = False
        self._started = False
        self._stepping = False
        self._step_again = False
        self._on_done: Callable[[Mapping[str, Any]], None] | None = None
        self._on_error: Callable[[BaseException], None] | None = None
        self._sm = NodeStateMachine(on_transition=self._on_node_transition)

        self._graph: DependencyGraph = dependency_graph(system, component_keys, direction)
        self._nodes: dict[str, NodeRecord] = {key: NodeRecord(key=key) for key in self._graph.nodes}
        logger.debug(
            "[GraphExecutor] %s over %s", operation.value, self._graph.summary(),
        )

    # ------------------------------------------------------------------
    # Read-only views
    # 只读视图
    # ------------------------------------------------------------------

    @property
    def system(self) -> Mapping[str, Any]:
        return self._system

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def nodes(self) -> dict[str, NodeRecord]:
        """Copies of the per-node records."""
        with self._lock:
            return {k: r.model_copy() for k, r in self._nodes.items()}

    def unresolved(self) -> set[str]:
        with self._lock:
            return {k for k, r in self._nodes.items() if r.status in UNRESOLVED}

    def in_flight(self) -> set[str]:
        with self._lock:
            return {k for k, r in self._nodes.items() if r.status == NodeStatus.RUNNING}

    def summary(self) -> str:
        """One-line summary, e.g. start[3 nodes: 1 completed, 2 running]."""
        with self._lock:
            counts: dict[str, int] = {}
            for r in self._nodes.values():
                counts[r.status.value] = counts.get(r.status.value, 0) + 1
        parts = [f"{v} {k}" for k, v in counts.items()]
        return f"{self._operation.value}[{len(self._nodes)} nodes: {', '.join(parts)}]"

    # ------------------------------------------------------------------
    # Main loop
    # 主循环
    # ------------------------------------------------------------------

    def run(
        self,
        on_done: Callable[[Mapping[str, Any]], None],
        on_error: Callable[[BaseException], None],
    ) -> None:
        """
        Start driving the graph. Returns as soon as the first frontier is
        dispatched; exactly one of on_done / on_error is called later (or
        already, when every component resolves synchronously).
        开始驱动依赖图。派发完第一批就绪节点后立即返回；
        之后恰好调用一次 on_done 或 on_error（全部同步组件时可能在返回前就已调用）。
        """
        with self._lock:
            if self._started:
                raise RuntimeError("GraphExecutor.run() may only be called once")
            self._started = True
            self._on_done = on_done
            self._on_error = on_error
        self._emit("operation_started", {
            "operation": self._operation.value,
            "nodes": list(self._graph.nodes),
        })
        self._step()

    def _step(self) -> None:
        """
        Trampoline around _step_once. A completion arriving while a step is
        already running (a synchronous component resolving inside dispatch,
        or another thread) only records pending work; the outermost caller
        loops until none is left, so the stack depth does not grow with the
        length of a dependency chain.
        _step_once 的蹦床：若已有 step 在运行（同步组件在派发中直接解析，或其他线程），
        新的完成只记录「有待处理」，由最外层调用循环处理，栈深度不随依赖链长度增长。
        """
        with self._lock:
            if self._stepping:
                self._step_again = True
                return
            self._stepping = True

        fatal: Exception | None = None
        while True:
            try:
                self._step_once()
            except Exception as exc:
                # 例如 ExcessiveResolutionError：先处理完已记录的工作，再向调用方抛出
                if fatal is None:
                    fatal = exc
            with self._lock:
                if not self._step_again:
                    self._stepping = False
                    break
                self._step_again = False
        if fatal is not None:
            raise fatal

    def _step_once(self) -> None:
        with self._lock:
            if self._cancelled or self._finished:
                return
            unresolved = [k for k, r in self._nodes.items() if r.status in UNRESOLVED]
            ready = self._graph.ready(unresolved, self._direction)
            if not ready:
                self._finished = True
                system = self._system
                batch: list[str] = []
            else:
                batch = [k for k in ready if self._nodes[k].status == NodeStatus.PENDING]
                for key in batch:
                    self._sm.transition(self._nodes[key], NodeStatus.RUNNING)
                # 同一批节点共享派发时刻的快照：它们的依赖都已在其中解析完毕
                snapshot = self._system

        if not ready:
            logger.info("[GraphExecutor] %s complete. %s", self._operation.value, self.summary())
            self._emit("operation_completed", {"operation": self._operation.value, "system": system})
            self._on_done(system)
            return

        if batch:
            self._emit("frontier", {"operation": self._operation.value, "nodes": batch})
        for key in batch:
            self._dispatch(key, snapshot)

    def _dispatch(self, key: str, snapshot: Mapping[str, Any]) -> None:
        with self._lock:
            # 同批中较早的节点可能已同步失败
            if self._cancelled:
                return
        logger.debug("[GraphExecutor] dispatch %s %s", self._operation.value, key)
        self._emit("node_dispatched", {"operation": self._operation.value, "key": key})
        action = node_action(snapshot, key, self._operation, loop=self._loop)
        action(
            lambda updated: self._resolve(key, updated),
            lambda error: self._fail(key, error),
        )

    # ------------------------------------------------------------------
    # Completions
    # 完成回调
    # ------------------------------------------------------------------

    def _resolve(self, key: str, updated: Any) -> None:
        with self._lock:
            if self._cancelled:
                logger.debug(
                    "[GraphExecutor] ignoring late completion of %s after cancellation", key,
                )
                return
            self._system = assoc_key(self._system, key, updated)
            self._graph = self._graph.mark_resolved(key)
            self._sm.transition(self._nodes[key], NodeStatus.COMPLETED)
        self._emit("node_resolved", {"operation": self._operation.value, "key": key, "component": updated})
        self._step()

    def _fail(self, key: str, error: BaseException) -> None:
        with self._lock:
            if self._cancelled:
                logger.debug(
                    "[GraphExecutor] ignoring late failure of %s after cancellation: %r", key, error,
                )
                return
            self._cancelled = True
            record = self._nodes[key]
            record.error = str(error)
            self._sm.transition(record, NodeStatus.FAILED)
            for other in self._nodes.values():
                if other.status in UNRESOLVED:
                    self._sm.transition(other, NodeStatus.CANCELLED)
            if isinstance(error, ComponentSystemError):
                # 用最新快照替换派发时的快照，调用方据此得知哪些节点已解析
                error.system = self._system

        logger.error(
            "[GraphExecutor] %s failed at %s: %s. %s",
            self._operation.value, key, error, self.summary(),
        )
        self._emit("operation_failed", {"operation": self._operation.value, "key": key, "error": error})
        self._on_error(error)

    # ------------------------------------------------------------------
    # Event helpers
    # 事件辅助方法
    # ------------------------------------------------------------------

    def _emit(self, event: str, data: Any) -> None:
        try:
            self._emit_fn(event, data)
        except Exception:
            logger.exception("[GraphExecutor] on_event callback failed for %s", event)

    def _on_node_transition(self, key: str, old: NodeStatus, new: NodeStatus) -> None:
        self._emit("node_transition", {
            "key": key,
            "from": old.value,
            "to": new.value,
        })
