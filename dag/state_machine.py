"""
Node State Machine - Validates and enforces per-run node transitions.
节点状态机 —— 校验并强制执行单次运行中节点的合法状态转移。

Every status change of a NodeRecord goes through VALID_TRANSITIONS.
PENDING -> RUNNING can happen only once per node, so a component's
start/stop is never dispatched twice within one run.
NodeRecord 的每次状态变化都经过 VALID_TRANSITIONS 校验。
PENDING -> RUNNING 对每个节点只能发生一次，
因此一次运行中组件的 start/stop 不会被重复派发。

Transition graph:
转移图：
    PENDING ──> RUNNING ──> COMPLETED   (happy path / 正常路径)
                        ──> FAILED
    PENDING / RUNNING ────> CANCELLED   (a sibling failed / 兄弟节点失败)
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import NodeRecord, NodeStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    A node was asked to move to a status its current one cannot reach.
    节点被要求切换到当前状态无法到达的状态。
    """


VALID_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.PENDING:   {NodeStatus.RUNNING, NodeStatus.CANCELLED},
    NodeStatus.RUNNING:   {NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.CANCELLED},
    # Terminal states
    # 终态——不允许任何进一步转移
    NodeStatus.COMPLETED: set(),
    NodeStatus.FAILED:    set(),
    NodeStatus.CANCELLED: set(),
}

UNRESOLVED = frozenset({NodeStatus.PENDING, NodeStatus.RUNNING})


class NodeStateMachine:
    """
    Moves NodeRecords between statuses for one executor run.
    在一次执行中驱动 NodeRecord 的状态变化。

    transition() rejects anything outside VALID_TRANSITIONS, stamps the
    record with the current time, then notifies `on_transition`.
    transition() 拒绝 VALID_TRANSITIONS 之外的转移，为记录打上时间戳，
    再通知 `on_transition`。
    """

    def __init__(self, on_transition: Callable[[str, NodeStatus, NodeStatus], None] | None = None):
        """
        Args:
            on_transition: Optional callback(node_key, old_status, new_status).
            on_transition: 可选回调 callback(节点键, 旧状态, 新状态)。
        """
        self._on_transition = on_transition

    def can_transition(self, record: NodeRecord, new_status: NodeStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(record.status, set())

    def transition(self, record: NodeRecord, new_status: NodeStatus) -> None:
        """
        Move `record` to `new_status`; InvalidTransitionError when not allowed.
        把 `record` 切换到 `new_status`；不允许时抛出 InvalidTransitionError。
        """
        if not self.can_transition(record, new_status):
            raise InvalidTransitionError(
                f"Node '{record.key}': cannot transition from {record.status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(record.status, set()))}"
            )

        old_status = record.status
        record.status = new_status
        record.touch()

        logger.debug("[SM] %s: %s -> %s", record.key, old_status.value, new_status.value)

        if self._on_transition:
            try:
                self._on_transition(record.key, old_status, new_status)
            except Exception:
                # 事件回调异常不能影响调度主流程
                logger.exception("[SM] on_transition callback failed for %s", record.key)
