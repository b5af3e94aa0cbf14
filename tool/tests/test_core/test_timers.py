"""
タイマースケジューラのユニットテスト

ManualScheduler の仮想時計（発火順・キャンセル・コールバック内での再登録）と
AsyncioScheduler の実イベントループ上での遅延実行を検証する。
"""

from __future__ import annotations

import asyncio

import pytest

from macrocap.core.timers import AsyncioScheduler, ManualScheduler, Scheduler


class TestManualScheduler:
    """ManualScheduler のテスト。"""

    def test_fires_only_when_due(self, scheduler: ManualScheduler):
        """期限前には発火せず、期限に達した時点で発火すること。"""
        fired: list[str] = []
        scheduler.call_later(500, lambda: fired.append("a"))

        scheduler.advance(499)
        assert fired == []

        scheduler.advance(1)
        assert fired == ["a"]
        assert scheduler.now_ms == 500

    def test_cancelled_timer_does_not_fire(self, scheduler: ManualScheduler):
        """キャンセルしたタイマーは発火しないこと。"""
        fired: list[str] = []
        handle = scheduler.call_later(100, lambda: fired.append("a"))
        scheduler.cancel(handle)

        scheduler.advance(1000)

        assert fired == []
        assert scheduler.pending == 0

    def test_order_by_due_then_registration(self, scheduler: ManualScheduler):
        """期限順、同時刻なら登録順に発火すること。"""
        fired: list[str] = []
        scheduler.call_later(200, lambda: fired.append("late"))
        scheduler.call_later(100, lambda: fired.append("first"))
        scheduler.call_later(100, lambda: fired.append("second"))

        scheduler.advance(300)

        assert fired == ["first", "second", "late"]

    def test_timer_registered_in_callback(self, scheduler: ManualScheduler):
        """コールバック内で登録したタイマーも期限内なら同じ advance で発火すること。"""
        fired: list[float] = []

        def first() -> None:
            fired.append(scheduler.now_ms)
            scheduler.call_later(50, lambda: fired.append(scheduler.now_ms))

        scheduler.call_later(100, first)
        scheduler.advance(200)

        assert fired == [100, 150]

    def test_run_all(self, scheduler: ManualScheduler):
        """run_all で未発火のタイマーがすべて発火すること。"""
        fired: list[int] = []
        for delay in (300, 10, 5000):
            scheduler.call_later(delay, lambda d=delay: fired.append(d))

        scheduler.run_all()

        assert fired == [10, 300, 5000]
        assert scheduler.pending == 0

    def test_satisfies_protocol(self, scheduler: ManualScheduler):
        """Scheduler プロトコルを満たすこと。"""
        assert isinstance(scheduler, Scheduler)


class TestAsyncioScheduler:
    """AsyncioScheduler のテスト。"""

    async def test_call_later_on_running_loop(self):
        """実行中のイベントループ上で遅延実行されること。"""
        scheduler = AsyncioScheduler()
        done = asyncio.Event()
        scheduler.call_later(10, done.set)

        await asyncio.wait_for(done.wait(), timeout=1.0)

        assert done.is_set()

    async def test_cancel(self):
        """キャンセルしたコールバックは実行されないこと。"""
        scheduler = AsyncioScheduler()
        fired: list[bool] = []
        handle = scheduler.call_later(10, lambda: fired.append(True))
        scheduler.cancel(handle)

        await asyncio.sleep(0.05)

        assert fired == []

    def test_bind_without_running_loop(self):
        """実行中のループが無い状態で bind() すると RuntimeError になること。"""
        scheduler = AsyncioScheduler()

        with pytest.raises(RuntimeError):
            scheduler.bind()

    async def test_bind_keeps_loop(self):
        """bind() が実行中のループを確定し、以降も同じループを返すこと。"""
        scheduler = AsyncioScheduler()

        loop = scheduler.bind()

        assert loop is asyncio.get_running_loop()
        assert scheduler.bind() is loop
