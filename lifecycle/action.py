"""
Per-node action - one component's start/stop as a (done, err) action.
单节点动作 —— 把一个组件的 start/stop 包装成 (done, err) 形式的动作。

node_action() turns (system snapshot, key, operation) into a nullary
asynchronous action. Running it:
  1. checks the component is present and not None
  2. resolves its declared dependencies from the snapshot
  3. injects them under their aliases into a copy of the component
  4. dispatches the operation through whichever capability the component has
  5. reports the updated component to done, or a structured error to err

node_action() 把（系统快照、键、操作）转换为一个无参异步动作。运行时：
  1. 检查组件存在且不为 None
  2. 从快照中解析其声明的依赖
  3. 按 alias 注入到组件副本上
  4. 根据组件具备的能力派发操作
  5. 成功时把更新后的组件交给 done，失败时把结构化错误交给 err

The caller-visible contract is identical whichever capability is used.
无论组件实现哪种能力，调用方看到的契约完全一致。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from lifecycle.component import assoc, dependencies
from lifecycle.errors import (
    ComponentFunctionError,
    ExcessiveResolutionError,
    MissingComponentError,
    MissingDependencyError,
    NilComponentError,
)
from lifecycle.guard import OnceGuard
from schema import Operation

logger = logging.getLogger(__name__)

Done = Callable[[Any], None]
Err = Callable[[BaseException], None]
Action = Callable[[Done, Err], None]

# 事件循环只弱引用任务：在途的协程任务由这里持有，直到完成
_in_flight_tasks: set[asyncio.Future] = set()


def inject_dependencies(system: Mapping[str, Any], key: str, component: Any) -> Any:
    """
    Copy of `component` with every declared dependency set under its alias.
    返回把每个声明依赖按 alias 注入后的组件副本；系统本身不变。

    Raises MissingDependencyError for a dependency absent or None in `system`.
    """
    deps = dependencies(component)
    if not deps:
        return component
    values = {}
    for dep in deps:
        value = system.get(dep.system_key)
        if value is None:
            raise MissingDependencyError(dep.alias, dep.system_key, component, system, dependent_key=key)
        values[dep.alias] = value
    return assoc(component, **values)


def _running_in(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


def _method(component: Any, name: str) -> Callable[..., Any] | None:
    method = getattr(component, name, None)
    return method if callable(method) else None


def _call_sync(component: Any, operation: Operation) -> Any:
    method = _method(component, operation.value)
    if method is None:
        return component  # 无生命周期方法：原样返回
    return method()


def _dispatch_coroutine(
    component: Any,
    operation: Operation,
    on_done: Done,
    on_error: Err,
    loop: asyncio.AbstractEventLoop | None,
) -> None:
    if loop is None:
        raise RuntimeError(
            f"{type(component).__name__}.{operation.coroutine_method}() needs a running event loop"
        )
    coro = getattr(component, operation.coroutine_method)()
    if _running_in(loop):
        future = loop.create_task(coro)
    else:
        # concurrent future 的取消回调引用着循环中的任务
        future = asyncio.run_coroutine_threadsafe(coro, loop)
    _in_flight_tasks.add(future)
    future.add_done_callback(_in_flight_tasks.discard)

    def settle(fut) -> None:
        if fut.cancelled():
            on_error(asyncio.CancelledError(f"{operation.coroutine_method}() was cancelled"))
            return
        exc = fut.exception()
        if exc is not None:
            on_error(exc)
        else:
            on_done(fut.result())

    future.add_done_callback(settle)


def invoke(
    component: Any,
    operation: Operation,
    on_done: Done,
    on_error: Err,
    *,
    key: str | None = None,
    system: Mapping[str, Any] | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> None:
    """
    Run `operation` on `component` via its capability, normalized to callbacks.
    按组件能力执行 `operation`，统一成回调形式。

    The capability is looked up per operation: `<op>_async`, then `a<op>`,
    then `<op>`. A component implementing only start_async still has its
    start_async called on start.
    能力按操作逐一查找：`<op>_async`、`a<op>`、`<op>`。

    Callback and coroutine components get guarded callbacks: a second resolution raises
    ExcessiveResolutionError. A failure raised by the call itself goes to
    on_error unless the component already resolved, in which case it
    propagates to the caller.
    回调型与协程型组件拿到的是受守卫保护的回调：第二次解析会抛出 ExcessiveResolutionError。
    调用本身抛出的异常走 on_error；若组件已解析过，则向调用方传播。
    """
    async_method = _method(component, operation.async_method)
    if async_method is not None:
        guard = OnceGuard(operation, key, component, system)
        guarded_done, guarded_error = guard.wrap_pair(on_done, on_error)
        try:
            async_method(guarded_done, guarded_error)
        except ExcessiveResolutionError:
            raise
        except Exception as exc:
            if guard.resolved:
                raise
            guarded_error(exc)
        return

    if _method(component, operation.coroutine_method) is not None:
        guarded_done, guarded_error = OnceGuard(operation, key, component, system).wrap_pair(on_done, on_error)
        try:
            _dispatch_coroutine(component, operation, guarded_done, guarded_error, loop)
        except Exception as exc:
            guarded_error(exc)
        return

    try:
        updated = _call_sync(component, operation)
    except Exception as exc:
        on_error(exc)
        return
    on_done(updated)


def node_action(
    system: Mapping[str, Any],
    key: str,
    operation: Operation,
    loop: asyncio.AbstractEventLoop | None = None,
) -> Action:
    """
    Build the (done, err) action applying `operation` to `system[key]`.
    构建对 `system[key]` 执行 `operation` 的 (done, err) 动作。

    done receives the updated component; storing it in the system is left
    to the caller, which owns the current snapshot.
    done 收到更新后的组件；写回系统由持有当前快照的调用方负责。
    """

    def run(done: Done, err: Err) -> None:
        if key not in system:
            err(MissingComponentError(key, system))
            return
        component = system[key]
        if component is None:
            err(NilComponentError(key, system))
            return
        try:
            component = inject_dependencies(system, key, component)
        except MissingDependencyError as exc:
            err(exc)
            return

        def fail(cause: BaseException) -> None:
            error = ComponentFunctionError(operation, key, component, system)
            error.__cause__ = cause
            logger.debug("[Action] %s %s failed: %r", operation.value, key, cause)
            err(error)

        logger.debug("[Action] %s %s", operation.value, key)
        invoke(component, operation, done, fail, key=key, system=system, loop=loop)

    return run
