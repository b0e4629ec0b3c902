"""
Lifecycle module - components, their capabilities and system entry points.
生命周期模块 —— 组件、组件能力与系统入口。

Components:
  - component.py: capability protocols, Component base class, using/assoc
  - errors.py:    structured error hierarchy
  - guard.py:     once-guard for callback pairs
  - action.py:    per-node action wrapper
  - system.py:    SystemMap and start/stop entry points

模块组成：
  - component.py: 能力协议、Component 基类、using/assoc
  - errors.py:    结构化错误层级
  - guard.py:     回调对的一次性守卫
  - action.py:    单节点动作包装
  - system.py:    SystemMap 与 start/stop 入口

Import from the submodules directly (lifecycle.system, lifecycle.component):
the dag package depends on them, so nothing is re-exported here.
请直接从子模块导入（lifecycle.system、lifecycle.component）：
dag 包依赖这些子模块，因此这里不做再导出。
"""
