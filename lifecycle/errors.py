"""
Structured errors raised or reported by the lifecycle runtime.
生命周期运行时抛出或上报的结构化错误。

Every domain error carries enough context (reason, system key, system
snapshot, extra data) to diagnose a failure without re-running it.
ExcessiveResolutionError sits outside that hierarchy: it marks
a programming defect in a component, never a normal failure.

每个领域错误都携带足够的上下文（原因、系统键、系统快照、附加数据），
无需重跑即可定位问题。ExcessiveResolutionError 不属于该层级：
它代表组件的编程缺陷，而不是普通失败。
"""

from __future__ import annotations

from typing import Any, Mapping

from schema import ErrorReason, Operation


def type_name(value: Any) -> str:
    """Qualified type name used in error messages."""
    cls = type(value)
    return f"{cls.__module__}.{cls.__qualname__}"


class ComponentSystemError(Exception):
    """
    Base class of all structured lifecycle errors.
    所有结构化生命周期错误的基类。
    """

    reason: ErrorReason

    def __init__(
        self,
        message: str,
        *,
        system_key: str | None = None,
        system: Mapping[str, Any] | None = None,
        **data: Any,
    ):
        super().__init__(message)
        self.system_key = system_key
        self.system = system  # 失败时的系统快照，供调用方决定是否补偿性停止
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Diagnostic view of the error (system keys only, not values)."""
        return {
            "reason": self.reason.value,
            "message": str(self),
            "system_key": self.system_key,
            "system_keys": list(self.system) if self.system is not None else None,
            **{k: repr(v) for k, v in self.data.items()},
        }


class MissingComponentError(ComponentSystemError):
    """Requested key is absent from the system."""
    reason = ErrorReason.MISSING_COMPONENT

    def __init__(self, system_key: str, system: Mapping[str, Any]):
        super().__init__(
            f"Missing component {system_key!r} from system",
            system_key=system_key,
            system=system,
        )


class NilComponentError(ComponentSystemError):
    """Component is present but None (usually a lifecycle method returned nothing)."""
    reason = ErrorReason.NIL_COMPONENT

    def __init__(self, system_key: str, system: Mapping[str, Any]):
        super().__init__(
            f"Component {system_key!r} was None in system; "
            f"maybe it returned None from start or stop",
            system_key=system_key,
            system=system,
        )


class MissingDependencyError(ComponentSystemError):
    """A declared dependency is absent or None in the system."""
    reason = ErrorReason.MISSING_DEPENDENCY

    def __init__(
        self,
        dependency_key: str,
        system_key: str,
        component: Any,
        system: Mapping[str, Any],
        dependent_key: str | None = None,
    ):
        state = "None" if system_key in system else "missing"
        super().__init__(
            f"Missing dependency {dependency_key!r} of {type_name(component)} "
            f"expected in system at {system_key!r} ({state})",
            system_key=system_key,
            system=system,
            dependency_key=dependency_key,
            dependent_key=dependent_key,
            component=component,
        )
        self.dependency_key = dependency_key
        self.dependent_key = dependent_key
        self.component = component


class ComponentFunctionError(ComponentSystemError):
    """The start/stop operation of a component raised or reported a failure."""
    reason = ErrorReason.COMPONENT_FUNCTION_THREW_EXCEPTION

    def __init__(
        self,
        operation: Operation,
        system_key: str,
        component: Any,
        system: Mapping[str, Any],
    ):
        super().__init__(
            f"Error in component {system_key!r} in system {type_name(system)} "
            f"calling {operation.value}",
            system_key=system_key,
            system=system,
            operation=operation,
            component=component,
        )
        self.operation = operation
        self.component = component


class ConfigurationError(ComponentSystemError):
    """Malformed dependency declarations, detected before any dispatch."""
    reason = ErrorReason.INVALID_CONFIGURATION


class CyclicDependencyError(ConfigurationError):
    """The dependency graph of the requested subset contains a cycle."""
    reason = ErrorReason.CYCLIC_DEPENDENCY

    def __init__(self, cycle_keys: list[str], system: Mapping[str, Any] | None = None):
        super().__init__(
            f"Dependency cycle between components {sorted(cycle_keys)}",
            system=system,
            cycle_keys=cycle_keys,
        )
        self.cycle_keys = cycle_keys


class IllegalArgumentError(ComponentSystemError, ValueError):
    reason = ErrorReason.ILLEGAL_ARGUMENT


class ExcessiveResolutionError(RuntimeError):
    """
    A component resolved its asynchronous operation more than once.
    组件对同一次异步操作解析了不止一次。

    Fatal: raised straight into the offending callback call, never routed
    to on_error and never retried.
    致命错误：直接在违规的回调调用处抛出，不会路由到 on_error，也不会重试。
    """

    reason = ErrorReason.EXCESSIVE_RESOLUTION

    def __init__(
        self,
        operation: Operation,
        system_key: str | None,
        component: Any,
        system: Mapping[str, Any] | None,
    ):
        super().__init__(
            f"Asynchronous {operation.value} of component {system_key!r} "
            f"({type_name(component)}) already resolved."
        )
        self.operation = operation
        self.system_key = system_key
        self.component = component
        self.system = system
