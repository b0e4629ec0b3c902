"""
DAG module - Core engine for dependency-ordered lifecycle execution.
DAG 模块 —— 按依赖顺序执行生命周期操作的核心引擎。

Components:
  - graph.py:         DependencyGraph data structure and graph operations
  - state_machine.py: Per-run node state machine
  - executor.py:      Readiness-driven graph executor

模块组成：
  - graph.py:         DependencyGraph 数据结构与图算法（就绪前沿、闭包、拓扑排序）
  - state_machine.py: 单次运行中的节点状态机（强制合法状态转移）
  - executor.py:      就绪驱动的图执行引擎
"""

from dag.graph import DependencyGraph, dependency_graph   # 依赖图
from dag.state_machine import NodeStateMachine             # 节点状态机
from dag.executor import GraphExecutor                     # 图执行引擎
