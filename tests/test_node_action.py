"""
单节点动作测试 — 覆盖：
  1. 组件/依赖校验与依赖注入 (Presence checks & injection)
  2. 同步/回调/协程三种能力的统一契约 (Uniform capability contract)
  3. 一次性守卫 (Once-Guard)
  4. 组件值辅助函数与节点状态机 (Value helpers & state machine)

运行方式:
    pytest tests/test_node_action.py -v
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from dag.state_machine import InvalidTransitionError, NodeStateMachine
from lifecycle.action import inject_dependencies, invoke, node_action
from lifecycle.component import (
    Component,
    LifecycleAsync,
    LifecycleCoroutine,
    assoc,
    assoc_key,
    dependencies,
    using,
)
from lifecycle.errors import (
    ComponentFunctionError,
    ExcessiveResolutionError,
    MissingComponentError,
    MissingDependencyError,
    NilComponentError,
)
from lifecycle.guard import OnceGuard
from schema import Dependency, ErrorReason, NodeRecord, NodeStatus, Operation


@dataclass
class Service:
    name: str
    started: bool = False
    dependencies: dict = field(default_factory=dict)

    def start(self):
        return assoc(self, started=True)

    def stop(self):
        return assoc(self, started=False)


@dataclass
class Broken:
    def start(self):
        raise RuntimeError("boom")


class Callbacks:
    """Collects done/err outcomes. 收集 done/err 结果。"""

    def __init__(self):
        self.done: list = []
        self.errors: list = []

    def on_done(self, value):
        self.done.append(value)

    def on_error(self, error):
        self.errors.append(error)


def _run(system, key, operation=Operation.START, loop=None) -> Callbacks:
    cb = Callbacks()
    node_action(system, key, operation, loop=loop)(cb.on_done, cb.on_error)
    return cb


# ======================================================================
# Test 1: 校验与依赖注入
# ======================================================================


class TestPresenceAndInjection:

    def test_missing_component(self):
        cb = _run({"A": Service("A")}, "Q")
        assert cb.done == []
        (error,) = cb.errors
        assert isinstance(error, MissingComponentError)
        assert error.reason == ErrorReason.MISSING_COMPONENT
        assert error.system_key == "Q"
        assert "A" in error.system

    def test_nil_component(self):
        (error,) = _run({"A": None}, "A").errors
        assert isinstance(error, NilComponentError)
        assert "returned None" in str(error)

    def test_missing_dependency_names_alias_and_key(self):
        system = {"B": using(Service("B"), {"db": "A"})}
        (error,) = _run(system, "B").errors
        assert isinstance(error, MissingDependencyError)
        assert error.dependency_key == "db"
        assert error.system_key == "A"
        assert error.dependent_key == "B"
        assert "missing" in str(error)

    def test_none_dependency_is_missing_dependency(self):
        system = {"A": None, "B": using(Service("B"), ["A"])}
        (error,) = _run(system, "B").errors
        assert isinstance(error, MissingDependencyError)
        assert "(None)" in str(error)

    def test_dependencies_injected_into_copy_only(self):
        a = Service("A", started=True)
        b = using(Service("B"), {"upstream": "A"})
        system = {"A": a, "B": b}

        injected = inject_dependencies(system, "B", b)
        assert injected.upstream is a
        assert not hasattr(system["B"], "upstream")

        (updated,) = _run(system, "B").done
        assert updated.started is True
        assert system["B"].started is False

    def test_pydantic_component_receives_extra_attribute(self):
        comp = using(Component(), {"db": "A"})
        injected = inject_dependencies({"A": "conn"}, "B", comp)
        assert injected.db == "conn"
        assert not hasattr(comp, "db")


# ======================================================================
# Test 2: 能力契约
# ======================================================================


class TestCapabilityContract:

    def test_sync_failure_is_wrapped(self):
        (error,) = _run({"A": Broken()}, "A").errors
        assert isinstance(error, ComponentFunctionError)
        assert error.operation == Operation.START
        assert error.system_key == "A"
        assert isinstance(error.__cause__, RuntimeError)

    def test_object_without_lifecycle_is_returned_unchanged(self):
        marker = object()
        (value,) = _run({"A": marker}, "A").done
        assert value is marker

    def test_callback_failure_is_wrapped(self):
        class Refuses:
            def start_async(self, on_done, on_error):
                on_error(ValueError("nope"))

            def stop_async(self, on_done, on_error):
                on_done(self)

        assert isinstance(Refuses(), LifecycleAsync)
        (error,) = _run({"A": Refuses()}, "A").errors
        assert isinstance(error, ComponentFunctionError)
        assert isinstance(error.__cause__, ValueError)

    def test_capability_is_looked_up_per_operation(self):
        class StartOnly:
            started = False

            def start_async(self, on_done, on_error):
                on_done(assoc(self, started=True))

        comp = StartOnly()
        # 不满足完整协议，但 start_async 仍必须被调用
        assert not isinstance(comp, LifecycleAsync)
        (started,) = _run({"A": comp}, "A").done
        assert started.started is True

        # 没有任何 stop 方法：原样返回
        (stopped,) = _run({"A": started}, "A", Operation.STOP).done
        assert stopped is started

    def test_callback_raising_before_resolving_goes_to_error(self):
        class Explodes:
            def start_async(self, on_done, on_error):
                raise KeyError("early")

            def stop_async(self, on_done, on_error):
                raise KeyError("early")

        cb = _run({"A": Explodes()}, "A", Operation.STOP)
        (error,) = cb.errors
        assert error.operation == Operation.STOP
        assert isinstance(error.__cause__, KeyError)

    def test_coroutine_without_loop_is_a_component_error(self):
        class Coro:
            async def astart(self):
                return self

            async def astop(self):
                return self

        comp = Coro()
        assert isinstance(comp, LifecycleCoroutine)
        (error,) = _run({"A": comp}, "A").errors
        assert isinstance(error, ComponentFunctionError)
        assert isinstance(error.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_coroutine_resolves_on_loop(self):
        class Coro:
            started = False

            async def astart(self):
                await asyncio.sleep(0)
                return assoc(self, started=True)

            async def astop(self):
                return self

        cb = _run({"A": Coro()}, "A", loop=asyncio.get_running_loop())
        assert cb.done == []  # 尚未调度
        for _ in range(5):
            await asyncio.sleep(0)
        (value,) = cb.done
        assert value.started is True

    @pytest.mark.asyncio
    async def test_coroutine_failure_is_wrapped(self):
        class Coro:
            async def astart(self):
                raise OSError("port in use")

            async def astop(self):
                return self

        cb = _run({"A": Coro()}, "A", loop=asyncio.get_running_loop())
        for _ in range(5):
            await asyncio.sleep(0)
        (error,) = cb.errors
        assert isinstance(error.__cause__, OSError)


# ======================================================================
# Test 3: 一次性守卫
# ======================================================================


class TestOnceGuard:

    def test_first_call_wins_second_is_fatal(self):
        cb = Callbacks()
        guard = OnceGuard(Operation.START, "A")
        done, err = guard.wrap_pair(cb.on_done, cb.on_error)

        done("first")
        assert guard.resolved
        with pytest.raises(ExcessiveResolutionError):
            err(RuntimeError("late"))
        with pytest.raises(ExcessiveResolutionError):
            done("again")
        assert cb.done == ["first"]
        assert cb.errors == []

    def test_excessive_resolution_is_not_a_domain_error(self):
        from lifecycle.errors import ComponentSystemError

        error = ExcessiveResolutionError(Operation.STOP, "A", object(), {"A": 1})
        assert not isinstance(error, ComponentSystemError)
        assert error.reason == ErrorReason.EXCESSIVE_RESOLUTION
        assert error.system_key == "A"

    def test_double_done_from_component_raises_into_component(self):
        class Twice:
            def start_async(self, on_done, on_error):
                on_done(self)
                on_done(self)

            def stop_async(self, on_done, on_error):
                on_done(self)

        cb = Callbacks()
        with pytest.raises(ExcessiveResolutionError):
            invoke(Twice(), Operation.START, cb.on_done, cb.on_error, key="A")
        assert len(cb.done) == 1
        assert cb.errors == []

    def test_raise_after_resolving_propagates(self):
        class ResolvesThenRaises:
            def start_async(self, on_done, on_error):
                on_done(self)
                raise LookupError("after done")

            def stop_async(self, on_done, on_error):
                on_done(self)

        cb = Callbacks()
        with pytest.raises(LookupError):
            invoke(ResolvesThenRaises(), Operation.START, cb.on_done, cb.on_error, key="A")
        assert len(cb.done) == 1
        assert cb.errors == []


# ======================================================================
# Test 4: 值辅助函数与状态机
# ======================================================================


class TestValueHelpers:

    def test_using_accepts_names_and_mappings_and_merges(self):
        comp = using(using(Service("S"), ["db"]), {"cache": "redis"})
        assert dependencies(comp) == [
            Dependency(alias="db", system_key="db"),
            Dependency(alias="cache", system_key="redis"),
        ]

    def test_assoc_never_mutates(self):
        original = Service("S")
        changed = assoc(original, started=True, extra="x")
        assert original.started is False
        assert changed.started is True
        assert changed.extra == "x"

    def test_assoc_key_copies_plain_dict(self):
        system = {"A": 1}
        updated = assoc_key(system, "A", 2)
        assert system == {"A": 1}
        assert updated == {"A": 2}


class TestNodeStateMachine:

    def test_node_cannot_be_dispatched_twice(self):
        seen = []
        sm = NodeStateMachine(on_transition=lambda *t: seen.append(t))
        record = NodeRecord(key="A")
        sm.transition(record, NodeStatus.RUNNING)
        with pytest.raises(InvalidTransitionError):
            sm.transition(record, NodeStatus.RUNNING)
        assert seen == [("A", NodeStatus.PENDING, NodeStatus.RUNNING)]
        assert record.dispatched_at is not None

    def test_terminal_states_are_final(self):
        sm = NodeStateMachine()
        record = NodeRecord(key="A")
        sm.transition(record, NodeStatus.RUNNING)
        sm.transition(record, NodeStatus.COMPLETED)
        assert record.elapsed is not None
        with pytest.raises(InvalidTransitionError):
            sm.transition(record, NodeStatus.CANCELLED)

    def test_transition_callback_errors_are_contained(self):
        def bad(*_):
            raise RuntimeError("ui")

        sm = NodeStateMachine(on_transition=bad)
        record = NodeRecord(key="A")
        sm.transition(record, NodeStatus.RUNNING)
        assert record.status == NodeStatus.RUNNING
