"""
Component capabilities and value helpers.
组件能力协议与值操作辅助函数。

A component is any object. What the runtime can do with it is decided by
capability tests, checked per operation in this order:
  1. LifecycleAsync     - start_async(on_done, on_error) / stop_async(...)
  2. LifecycleCoroutine - async def astart() / astop()
  3. Lifecycle          - start() / stop(), returning the new instance

An object with none of them keeps itself on start/stop (no-op lifecycle).

组件可以是任意对象。运行时对每个操作分别按以下顺序做能力检测：
  1. LifecycleAsync     —— 回调风格 start_async / stop_async
  2. LifecycleCoroutine —— 协程风格 astart / astop
  3. Lifecycle          —— 同步 start / stop，返回新实例
三者都不具备的对象在 start/stop 时原样返回（空操作生命周期）。

Components are treated as values: injecting dependencies or replacing a
component in a system always produces a copy.
组件被视为值：注入依赖或在系统中替换组件时总是产生副本。
"""

from __future__ import annotations

import copy
import dataclasses
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from schema import Dependency


# ======================================================================
# Capability protocols
# 能力协议
# ======================================================================

@runtime_checkable
class Lifecycle(Protocol):
    """Synchronous lifecycle: each method returns the updated component."""

    def start(self) -> Any: ...

    def stop(self) -> Any: ...


@runtime_checkable
class LifecycleAsync(Protocol):
    """
    Callback lifecycle. Returns immediately; must later call exactly one of
    on_done(updated_component) or on_error(exception), exactly once.
    回调风格生命周期：立即返回，之后必须恰好调用一次 on_done 或 on_error。
    """

    def start_async(
        self, on_done: Callable[[Any], None], on_error: Callable[[BaseException], None],
    ) -> None: ...

    def stop_async(
        self, on_done: Callable[[Any], None], on_error: Callable[[BaseException], None],
    ) -> None: ...


@runtime_checkable
class LifecycleCoroutine(Protocol):
    """Coroutine lifecycle: awaiting the method yields the updated component."""

    async def astart(self) -> Any: ...

    async def astop(self) -> Any: ...


class Component(BaseModel):
    """
    Convenience base class for components.
    组件的便捷基类。

    Extra attributes are allowed so injected dependencies land next to the
    declared fields; arbitrary types allow holding connections, pools, etc.
    允许额外属性，使注入的依赖与声明字段并列；允许任意类型以持有连接、连接池等。
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    dependencies: dict[str, str] = Field(
        default_factory=dict,
        description="alias -> system key",
    )


# ======================================================================
# Value helpers
# 值操作辅助
# ======================================================================

def assoc(component: Any, **updates: Any) -> Any:
    """
    Return a copy of `component` with the given attributes set.
    返回设置了指定属性的 `component` 副本，原对象不变。
    """
    if isinstance(component, BaseModel):
        return component.model_copy(update=updates)
    if dataclasses.is_dataclass(component) and not isinstance(component, type):
        names = {f.name for f in dataclasses.fields(component) if f.init}
        if set(updates) <= names:
            return dataclasses.replace(component, **updates)
    clone = copy.copy(component)
    for name, value in updates.items():
        # frozen dataclasses and other read-only setattr overrides
        object.__setattr__(clone, name, value)
    return clone


def _normalize(deps: Mapping[str, str] | Iterable[str] | None) -> dict[str, str]:
    if deps is None:
        return {}
    if isinstance(deps, Mapping):
        return {str(alias): str(key) for alias, key in deps.items()}
    if isinstance(deps, str):
        return {deps: deps}
    return {str(name): str(name) for name in deps}


def using(component: Any, deps: Mapping[str, str] | Iterable[str]) -> Any:
    """
    Declare dependencies on a copy of `component`.
    在 `component` 的副本上声明依赖。

    `deps` is either a mapping alias -> system key, or a sequence of names
    used both as alias and key. Merged with already declared dependencies.
    `deps` 可以是 alias -> 系统键 的映射，也可以是名称序列（alias 与键相同）。
    """
    merged = {**_normalize(getattr(component, "dependencies", None)), **_normalize(deps)}
    return assoc(component, dependencies=merged)


def dependencies(component: Any) -> list[Dependency]:
    """Declared dependencies of `component` (empty for None or undeclared)."""
    if component is None:
        return []
    declared = _normalize(getattr(component, "dependencies", None))
    return [Dependency(alias=alias, system_key=key) for alias, key in declared.items()]


def assoc_key(system: Mapping[str, Any], key: str, value: Any) -> Mapping[str, Any]:
    """
    New system with `key` set to `value`; `system` itself is never mutated.
    返回把 `key` 设为 `value` 的新系统；原系统不变。
    """
    if hasattr(system, "assoc"):
        return system.assoc(key, value)
    updated = dict(system)
    updated[key] = value
    return updated
