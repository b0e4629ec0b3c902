"""
System entry points - start and stop a whole system of components.
系统入口 —— 启动与停止由多个组件组成的整个系统。

Three shapes of the same operation:
  - start_system_async / stop_system_async: callbacks, return immediately
  - astart_system / astop_system:           awaitable, for asyncio code
  - start_system / stop_system:             blocking, with a timeout

同一操作的三种形态：
  - start_system_async / stop_system_async：回调风格，立即返回
  - astart_system / astop_system：           可 await，供 asyncio 代码使用
  - start_system / stop_system：             阻塞式，带超时

start walks the graph forward (dependencies first), stop walks it in
reverse (dependents first). Both default to every key of the system.
start 正向遍历（依赖优先），stop 反向遍历（依赖者优先）。默认作用于系统的全部键。
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Iterator

import config
from dag.executor import GraphExecutor
from lifecycle.errors import ComponentSystemError, IllegalArgumentError
from schema import Direction, Operation

logger = logging.getLogger(__name__)

OnDone = Callable[[Mapping[str, Any]], None]
OnError = Callable[[BaseException], None]
OnEvent = Callable[[str, Any], None]


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _run(
    system: Mapping[str, Any],
    operation: Operation,
    direction: Direction,
    on_done: OnDone,
    on_error: OnError,
    component_keys: Iterable[str] | None,
    on_event: OnEvent | None,
    loop: asyncio.AbstractEventLoop | None,
) -> GraphExecutor | None:
    keys = list(system.keys()) if component_keys is None else list(component_keys)
    try:
        executor = GraphExecutor(system, keys, operation, direction, on_event=on_event, loop=loop)
    except ComponentSystemError as exc:
        # 配置错误：在任何派发之前就终止
        logger.error("[System] cannot %s %s: %s", operation.value, keys, exc)
        on_error(exc)
        return None
    logger.info("[System] %s %d component(s)", operation.value, len(executor.nodes))
    executor.run(on_done, on_error)
    return executor


# ======================================================================
# Callback entry points
# 回调风格入口
# ======================================================================

def start_system_async(
    system: Mapping[str, Any],
    on_done: OnDone,
    on_error: OnError,
    component_keys: Iterable[str] | None = None,
    *,
    on_event: OnEvent | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> GraphExecutor | None:
    """
    Start `component_keys` (default: all) and everything they depend on.
    启动 `component_keys`（默认全部）及其全部依赖。

    Exactly one of on_done(started_system) / on_error(error) is called.
    The returned executor (None on a configuration error) can be inspected
    while the operation is outstanding.
    恰好调用一次 on_done(已启动系统) 或 on_error(错误)。
    返回的执行器（配置错误时为 None）可在操作进行中用于观察状态。
    """
    return _run(
        system, Operation.START, Direction.FORWARD, on_done, on_error,
        component_keys, on_event, loop or _running_loop(),
    )


def stop_system_async(
    system: Mapping[str, Any],
    on_done: OnDone,
    on_error: OnError,
    component_keys: Iterable[str] | None = None,
    *,
    on_event: OnEvent | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> GraphExecutor | None:
    """
    Stop `component_keys` (default: all) and everything depending on them,
    dependents first.
    停止 `component_keys`（默认全部）及所有依赖它们的组件，依赖者优先。
    """
    return _run(
        system, Operation.STOP, Direction.REVERSE, on_done, on_error,
        component_keys, on_event, loop or _running_loop(),
    )


# ======================================================================
# Awaitable entry points
# 可 await 的入口
# ======================================================================

async def _await_operation(
    operation: Operation,
    direction: Direction,
    system: Mapping[str, Any],
    component_keys: Iterable[str] | None,
    on_event: OnEvent | None,
) -> Mapping[str, Any]:
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def settle(setter: Callable[[Any], None], value: Any) -> None:
        if not future.done():
            setter(value)

    # 回调可能来自任意线程，统一切回事件循环线程
    _run(
        system, operation, direction,
        lambda result: loop.call_soon_threadsafe(settle, future.set_result, result),
        lambda error: loop.call_soon_threadsafe(settle, future.set_exception, error),
        component_keys, on_event, loop,
    )
    return await future


async def astart_system(
    system: Mapping[str, Any],
    component_keys: Iterable[str] | None = None,
    *,
    on_event: OnEvent | None = None,
) -> Mapping[str, Any]:
    """Awaitable start; raises the structured error on failure."""
    return await _await_operation(Operation.START, Direction.FORWARD, system, component_keys, on_event)


async def astop_system(
    system: Mapping[str, Any],
    component_keys: Iterable[str] | None = None,
    *,
    on_event: OnEvent | None = None,
) -> Mapping[str, Any]:
    """Awaitable stop; raises the structured error on failure."""
    return await _await_operation(Operation.STOP, Direction.REVERSE, system, component_keys, on_event)


# ======================================================================
# Blocking entry points
# 阻塞式入口
# ======================================================================

def _block_on(
    operation: Operation,
    direction: Direction,
    system: Mapping[str, Any],
    component_keys: Iterable[str] | None,
    timeout: float | None,
    on_event: OnEvent | None,
) -> Mapping[str, Any]:
    future: concurrent.futures.Future = concurrent.futures.Future()
    # loop 固定为 None：协程组件在阻塞调用中会报错，而不是死锁事件循环
    _run(
        system, operation, direction,
        future.set_result, future.set_exception,
        component_keys, on_event, None,
    )
    if timeout is None:
        timeout = config.LIFECYCLE_TIMEOUT
    return future.result(timeout=timeout or None)


def start_system(
    system: Mapping[str, Any],
    component_keys: Iterable[str] | None = None,
    timeout: float | None = None,
    *,
    on_event: OnEvent | None = None,
) -> Mapping[str, Any]:
    """
    Blocking start. Waits up to `timeout` seconds (config.LIFECYCLE_TIMEOUT
    by default, 0 waits forever) and raises TimeoutError past it.
    阻塞式启动。最多等待 `timeout` 秒（默认 config.LIFECYCLE_TIMEOUT，0 表示无限等待），
    超时抛出 TimeoutError。

    Must not be called from an event loop thread whose loop the components
    rely on to call back.
    不要在组件回调所依赖的事件循环线程中调用。
    """
    return _block_on(Operation.START, Direction.FORWARD, system, component_keys, timeout, on_event)


def stop_system(
    system: Mapping[str, Any],
    component_keys: Iterable[str] | None = None,
    timeout: float | None = None,
    *,
    on_event: OnEvent | None = None,
) -> Mapping[str, Any]:
    """Blocking stop, see start_system."""
    return _block_on(Operation.STOP, Direction.REVERSE, system, component_keys, timeout, on_event)


# ======================================================================
# SystemMap
# 系统容器
# ======================================================================

class SystemMap(Mapping[str, Any]):
    """
    Ordered, immutable name -> component container.
    有序、不可变的 名称 -> 组件 容器。

    assoc() returns a new map; the original is never modified. A SystemMap
    is itself a component (all three lifecycle shapes), so systems nest.
    assoc() 返回新容器，原容器从不修改。SystemMap 本身也是组件（具备三种生命周期形态），
    因此系统可以嵌套。
    """

    def __init__(self, components: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None, **more: Any):
        self._components: dict[str, Any] = dict(components or {})
        self._components.update(more)
        self.dependencies: dict[str, str] = {}

    def __getitem__(self, key: str) -> Any:
        return self._components[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._components)

    def __len__(self) -> int:
        return len(self._components)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {', '.join(self._components)}>"

    def assoc(self, key: str, value: Any) -> SystemMap:
        clone = type(self).__new__(type(self))
        clone.__dict__.update(self.__dict__)
        clone._components = {**self._components, key: value}
        return clone

    # --- Lifecycle (blocking) ---

    def start(self) -> SystemMap:
        return start_system(self)

    def stop(self) -> SystemMap:
        return stop_system(self)

    # --- LifecycleAsync (callbacks) ---

    def start_async(self, on_done: OnDone, on_error: OnError) -> None:
        start_system_async(self, on_done, on_error)

    def stop_async(self, on_done: OnDone, on_error: OnError) -> None:
        stop_system_async(self, on_done, on_error)

    # --- LifecycleCoroutine ---

    async def astart(self) -> SystemMap:
        return await astart_system(self)

    async def astop(self) -> SystemMap:
        return await astop_system(self)


def system_map(*keyvals: Any) -> SystemMap:
    """
    Build a SystemMap from alternating keys and components.
    用交替出现的键与组件构建 SystemMap。

        system_map("db", Database(), "api", using(Api(), ["db"]))
    """
    if len(keyvals) % 2:
        raise IllegalArgumentError("system_map requires an even number of arguments")
    return SystemMap(zip(keyvals[0::2], keyvals[1::2]))
