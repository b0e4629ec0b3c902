"""
Pydantic data models for the component lifecycle runtime.
Defines the enums and small records shared by the graph, the executor
and the lifecycle layer.
组件生命周期运行时的 Pydantic 数据模型。
定义了图、执行引擎与生命周期层共用的枚举与数据结构。
"""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ======================================================================
# Operations and ordering
# 操作类型与执行方向
# ======================================================================

class Operation(str, Enum):
    """
    Lifecycle operation applied to every node of a system.
    作用于系统中每个节点的生命周期操作。
    """
    START = "start"
    STOP = "stop"

    @property
    def async_method(self) -> str:
        """Name of the callback-style capability method. 回调风格方法名。"""
        return f"{self.value}_async"

    @property
    def coroutine_method(self) -> str:
        """Name of the coroutine capability method. 协程风格方法名。"""
        return f"a{self.value}"


class Direction(str, Enum):
    """
    Order in which the dependency graph is walked.
    依赖图的遍历方向。
    """
    FORWARD = "forward"   # 依赖优先（启动）
    REVERSE = "reverse"   # 依赖者优先（停止）


class NodeStatus(str, Enum):
    """
    Per-node lifecycle inside one executor run, managed by NodeStateMachine.
    单次执行中每个节点的状态，由 NodeStateMachine 强制管理合法转移。

    Transition graph:
    转移图：
        PENDING -> RUNNING -> COMPLETED
                           -> FAILED
        PENDING / RUNNING  -> CANCELLED   (a sibling failed / 兄弟节点失败)
    """
    PENDING = "pending"       # 尚未派发
    RUNNING = "running"       # 已派发，等待回调（in-flight）
    COMPLETED = "completed"   # 已成功解析（终态）
    FAILED = "failed"         # 操作失败（终态）
    CANCELLED = "cancelled"   # 因其他节点失败而放弃（终态）


class ErrorReason(str, Enum):
    """
    Machine-readable reason attached to every structured error.
    每个结构化错误携带的机器可读原因。
    """
    MISSING_COMPONENT = "missing-component"
    NIL_COMPONENT = "nil-component"
    MISSING_DEPENDENCY = "missing-dependency"
    COMPONENT_FUNCTION_THREW_EXCEPTION = "component-function-threw-exception"
    EXCESSIVE_RESOLUTION = "excessive-resolution"
    INVALID_CONFIGURATION = "invalid-configuration"
    CYCLIC_DEPENDENCY = "cyclic-dependency"
    ILLEGAL_ARGUMENT = "illegal-argument"


# ======================================================================
# Dependencies and node bookkeeping
# 依赖声明与节点记录
# ======================================================================

class Dependency(BaseModel):
    """
    One declared dependency of a component.
    组件声明的单个依赖。

    `alias` is the attribute the value is injected under on the dependent,
    `system_key` is where the value lives in the system.
    `alias` 是注入到依赖方组件上的属性名，`system_key` 是该值在系统中的键。
    """
    model_config = ConfigDict(frozen=True)

    alias: str = Field(description="Attribute name on the dependent component")
    system_key: str = Field(description="Key of the dependency in the system")


class NodeRecord(BaseModel):
    """
    Status record of a single node during one executor run.
    单次执行过程中某个节点的状态记录。
    """
    key: str
    status: NodeStatus = NodeStatus.PENDING
    dispatched_at: float | None = None   # 派发时间（time.monotonic）
    finished_at: float | None = None     # 完成/失败时间
    error: str | None = None             # 失败时的错误摘要

    def touch(self) -> None:
        """Stamp the record according to its current status."""
        now = time.monotonic()
        if self.status == NodeStatus.RUNNING:
            self.dispatched_at = now
        elif self.status in (NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.CANCELLED):
            self.finished_at = now

    @property
    def elapsed(self) -> float | None:
        if self.dispatched_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.dispatched_at
