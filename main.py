"""
Lifecycle demo - command line entry point.
生命周期演示 —— 命令行入口。

Builds a three-component system and runs it through start and stop with a
rich console UI that shows every frontier, dispatch and completion:
  A: synchronous component
  B: callback component resolving from a timer thread
  C: coroutine component depending on both A and B

构建一个由三个组件组成的系统，依次执行 start 与 stop，并用 Rich 控制台展示
每次就绪前沿、派发与完成：
  A：同步组件
  B：在定时器线程中回调的回调型组件
  C：依赖 A 与 B 的协程组件

Usage / 用法:
    python main.py [-v] [--fail A|B|C] [--delay MS]
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
import time
from typing import Any, Callable

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

import config
from lifecycle.component import Component, using
from lifecycle.errors import ComponentSystemError
from lifecycle.system import SystemMap, astart_system, astop_system, system_map

console = Console()

# Node status -> Rich style mapping
# 节点状态 -> Rich 样式映射
_STATUS_STYLES = {
    "pending": "dim",
    "running": "bold yellow",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim strike",
}


# ======================================================================
# Demo components
# 演示组件
# ======================================================================

class DemoComponent(Component):
    """Shared state of the demo components. 演示组件的共享状态。"""
    name: str
    started: bool = False
    stopped: bool = False
    fail_on: str = ""   # "start" / "stop" / ""

    def _check(self, op: str) -> None:
        if self.fail_on == op:
            raise RuntimeError(f"{self.name} refused to {op}")


class SyncComponent(DemoComponent):
    def start(self) -> SyncComponent:
        self._check("start")
        return self.model_copy(update={"started": True})

    def stop(self) -> SyncComponent:
        self._check("stop")
        return self.model_copy(update={"stopped": True})


_FLAGS = {"start": "started", "stop": "stopped"}


class TimerComponent(DemoComponent):
    """Resolves from a threading.Timer after `delay_ms`. 在定时器线程中延迟回调。"""
    delay_ms: int = 0

    def _later(self, op: str, on_done: Callable[[Any], None], on_error: Callable[[BaseException], None]) -> None:
        def fire() -> None:
            try:
                self._check(op)
            except RuntimeError as exc:
                on_error(exc)
                return
            on_done(self.model_copy(update={_FLAGS[op]: True}))
        threading.Timer(self.delay_ms / 1000, fire).start()

    def start_async(self, on_done, on_error) -> None:
        self._later("start", on_done, on_error)

    def stop_async(self, on_done, on_error) -> None:
        self._later("stop", on_done, on_error)


class CoroutineComponent(DemoComponent):
    """Awaits asyncio.sleep(delay_ms). 通过 asyncio.sleep 模拟耗时。"""
    delay_ms: int = 0

    async def astart(self) -> CoroutineComponent:
        await asyncio.sleep(self.delay_ms / 1000)
        self._check("start")
        return self.model_copy(update={"started": True})

    async def astop(self) -> CoroutineComponent:
        await asyncio.sleep(self.delay_ms / 1000)
        self._check("stop")
        return self.model_copy(update={"stopped": True})


def build_system(delay_ms: int, fail: str = "") -> SystemMap:
    """
    A and B are independent; C depends on both.
    A 与 B 相互独立；C 同时依赖 A 和 B。
    """
    def fail_on(name: str) -> str:
        return "start" if fail == name else ""

    return system_map(
        "A", SyncComponent(name="A", fail_on=fail_on("A")),
        "B", TimerComponent(name="B", delay_ms=delay_ms, fail_on=fail_on("B")),
        "C", using(
            CoroutineComponent(name="C", delay_ms=delay_ms * 2, fail_on=fail_on("C")),
            {"a": "A", "b": "B"},
        ),
    )


# ======================================================================
# Rendering
# 渲染
# ======================================================================

def _build_system_table(system: SystemMap, title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Key", style="cyan")
    table.add_column("Type")
    table.add_column("Depends on")
    table.add_column("Started")
    table.add_column("Stopped")
    for key, comp in system.items():
        deps = ", ".join(f"{a}->{k}" for a, k in getattr(comp, "dependencies", {}).items()) or "-"
        table.add_row(
            key,
            type(comp).__name__,
            deps,
            "[green]yes[/green]" if getattr(comp, "started", False) else "[dim]no[/dim]",
            "[green]yes[/green]" if getattr(comp, "stopped", False) else "[dim]no[/dim]",
        )
    return table


def _build_timeline_tree(timeline: list[tuple[float, str, str]], title: str) -> Tree:
    tree = Tree(f"[bold]{title}[/bold]")
    for elapsed, key, status in timeline:
        style = _STATUS_STYLES.get(status, "white")
        tree.add(f"[dim]{elapsed * 1000:7.1f} ms[/dim]  [cyan]{key}[/cyan] [{style}]{status}[/{style}]")
    return tree


class EventRecorder:
    """
    on_event handler: prints frontier events and records node transitions.
    on_event 处理器：打印就绪前沿事件，并记录节点状态转移。
    """

    def __init__(self) -> None:
        self._t0 = time.monotonic()
        self._lock = threading.Lock()
        self.timeline: list[tuple[float, str, str]] = []
        self.resolved: list[str] = []

    def __call__(self, event: str, data: Any) -> None:
        if event == "frontier":
            console.print(f"[yellow]>>[/yellow] {data['operation']} frontier: [bold]{', '.join(data['nodes'])}[/bold]")
        elif event == "node_transition":
            with self._lock:
                self.timeline.append((time.monotonic() - self._t0, data["key"], data["to"]))
        elif event == "node_resolved":
            with self._lock:
                self.resolved.append(data["key"])
            console.print(f"   [green]OK[/green] {data['operation']} {data['key']}")
        elif event == "operation_failed":
            console.print(f"   [red]FAILED[/red] {data['operation']} {data['key']}")


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。verbose=True 时启用 DEBUG 级别。
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


async def run_demo(delay_ms: int, fail: str) -> int:
    """
    Start then stop the demo system. On a start failure, stop whatever had
    already started (compensating stop) and return a non-zero exit code.
    先启动再停止演示系统。启动失败时，停止已启动的部分（补偿性停止）并返回非零退出码。
    """
    system = build_system(delay_ms, fail)
    console.print(_build_system_table(system, "System"))

    recorder = EventRecorder()
    try:
        started = await astart_system(system, on_event=recorder)
    except ComponentSystemError as exc:
        console.print(Panel(
            f"[bold]{exc}[/bold]\ncause: {exc.__cause__!r}\nreason: {exc.reason.value}",
            title="[red]Start failed[/red]",
            border_style="red",
        ))
        console.print(_build_timeline_tree(recorder.timeline, "start timeline"))
        if recorder.resolved and exc.system is not None:
            console.print(f"[dim]Stopping already started: {', '.join(recorder.resolved)}[/dim]")
            # 只停止已启动的组件；它们的依赖也都已启动，注入不会缺失
            started_only = SystemMap({key: exc.system[key] for key in recorder.resolved})
            await astop_system(started_only)
        return 1

    console.print(_build_timeline_tree(recorder.timeline, "start timeline"))
    console.print(_build_system_table(started, "Started system"))

    recorder = EventRecorder()
    stopped = await astop_system(started, on_event=recorder)
    console.print(_build_timeline_tree(recorder.timeline, "stop timeline"))
    console.print(_build_system_table(stopped, "Stopped system"))
    return 0


def main() -> None:
    """
    程序入口：解析命令行参数并运行演示。
    - -v / --verbose：启用调试日志
    - --fail NAME：让指定组件启动失败（默认取 DEMO_FAIL_COMPONENT）
    - --delay MS：异步组件的模拟耗时（默认取 DEMO_DELAY_MS）
    """
    argv = sys.argv[1:]
    verbose = "--verbose" in argv or "-v" in argv
    setup_logging(verbose)

    fail = config.DEMO_FAIL_COMPONENT
    delay_ms = config.DEMO_DELAY_MS
    if "--fail" in argv and argv.index("--fail") + 1 < len(argv):
        fail = argv[argv.index("--fail") + 1]
    if "--delay" in argv and argv.index("--delay") + 1 < len(argv):
        delay_ms = int(argv[argv.index("--delay") + 1])

    sys.exit(asyncio.run(run_demo(delay_ms, fail)))


if __name__ == "__main__":
    main()
