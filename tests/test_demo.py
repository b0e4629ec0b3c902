"""
演示程序测试 — 覆盖：
  1. 正常启动与停止 (Happy path)
  2. 启动失败后的补偿性停止 (Compensating stop after a failed start)

运行方式:
    pytest tests/test_demo.py -v
"""

from __future__ import annotations

import pytest

import main


@pytest.fixture
def stopped_names(monkeypatch):
    """记录所有演示组件的 stop 调用。"""
    names: list[str] = []

    def sync_stop(self):
        names.append(self.name)
        return self.model_copy(update={"stopped": True})

    def timer_stop(self, on_done, on_error):
        names.append(self.name)
        on_done(self.model_copy(update={"stopped": True}))

    async def coroutine_stop(self):
        names.append(self.name)
        return self.model_copy(update={"stopped": True})

    monkeypatch.setattr(main.SyncComponent, "stop", sync_stop)
    monkeypatch.setattr(main.TimerComponent, "stop_async", timer_stop)
    monkeypatch.setattr(main.CoroutineComponent, "astop", coroutine_stop)
    return names


class TestDemo:

    @pytest.mark.asyncio
    async def test_start_then_stop_dependents_first(self, stopped_names):
        assert await main.run_demo(delay_ms=0, fail="") == 0
        assert stopped_names[0] == "C"
        assert sorted(stopped_names) == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_compensating_stop_skips_components_that_never_started(self, stopped_names):
        assert await main.run_demo(delay_ms=0, fail="C") == 1
        # C 启动失败：只停止已启动的 A、B
        assert sorted(stopped_names) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_nothing_to_stop_when_first_component_fails(self, stopped_names):
        assert await main.run_demo(delay_ms=0, fail="A") == 1
        # A 同步失败后，同批的 B 不再派发
        assert stopped_names == []
