"""
Once-Guard - at most one resolution per asynchronous operation.
一次性守卫 —— 每个异步操作最多只能被解析一次。

A component's asynchronous start/stop receives an on_done and an on_error
callback and must call exactly one of them, exactly once. The guard wraps
both callbacks so the first call (to either) wins and every further call
raises ExcessiveResolutionError into the offending caller.

组件的异步 start/stop 会收到 on_done 和 on_error 两个回调，
且必须恰好调用其中一个、恰好一次。守卫同时包装这两个回调：
第一次调用（无论哪个）生效，之后的任何调用都会向调用方抛出 ExcessiveResolutionError。
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping

from lifecycle.errors import ExcessiveResolutionError
from schema import Operation

logger = logging.getLogger(__name__)


class OnceGuard:
    """
    Shared resolution flag for one callback pair.
    一对回调共享的解析标记。

    Thread-safe: components may resolve from any thread.
    线程安全：组件可能在任意线程中回调。
    """

    def __init__(
        self,
        operation: Operation,
        system_key: str | None = None,
        component: Any = None,
        system: Mapping[str, Any] | None = None,
    ):
        self._operation = operation
        self._system_key = system_key
        self._component = component
        self._system = system
        self._lock = threading.Lock()
        self._resolved = False

    @property
    def resolved(self) -> bool:
        return self._resolved

    def _claim(self) -> None:
        with self._lock:
            if not self._resolved:
                self._resolved = True
                return
        logger.critical(
            "[Guard] %s of %r resolved more than once", self._operation.value, self._system_key,
        )
        raise ExcessiveResolutionError(
            self._operation, self._system_key, self._component, self._system,
        )

    def wrap(self, callback: Callable[[Any], None]) -> Callable[[Any], None]:
        """Return `callback` guarded by this instance."""
        def guarded(value: Any) -> None:
            self._claim()
            callback(value)
        return guarded

    def wrap_pair(
        self,
        on_done: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
    ) -> tuple[Callable[[Any], None], Callable[[BaseException], None]]:
        return self.wrap(on_done), self.wrap(on_error)
