"""
タイマースケジューラ — デバウンス用の遅延実行

レコーダーの入力 / スクロールのデバウンスは、注入されたスケジューラ上で動作する。
ブラウザの setTimeout / clearTimeout に相当する最小限のインターフェースを定義する。

主な実装:
  - AsyncioScheduler: asyncio イベントループの call_later を利用する
  - ManualScheduler: 仮想時計。advance() で時間を進める（イベントログ再生・テスト用）
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TimerHandle(Protocol):
    """スケジュール済みコールバックのハンドル。"""

    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """遅延実行スケジューラのインターフェース。"""

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle: ...

    def cancel(self, handle: TimerHandle) -> None: ...


# ---------------------------------------------------------------------------
# asyncio ベースの実装
# ---------------------------------------------------------------------------

class AsyncioScheduler:
    """asyncio イベントループ上で遅延実行するスケジューラ。

    ページのイベントが同じイベントループから配送される前提で使用する。
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def bind(self) -> asyncio.AbstractEventLoop:
        """使用するイベントループを確定して返す。

        Raises:
            RuntimeError: ループ未指定で、実行中のイベントループも無い場合
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return self.bind().call_later(delay_ms / 1000.0, callback)

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancel()


# ---------------------------------------------------------------------------
# 仮想時計による実装
# ---------------------------------------------------------------------------

@dataclass(order=True)
class ManualTimer:
    """ManualScheduler に登録されたタイマー。

    Attributes:
        due_ms: 発火予定時刻（仮想時計上のミリ秒）
        seq: 同時刻タイマーの登録順を保つための連番
        callback: 発火時に呼び出すコールバック
        cancelled: キャンセル済みフラグ
    """

    due_ms: float
    seq: int
    callback: Callable[[], Any] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """advance() で時間を進める仮想時計スケジューラ。

    使用例::

        scheduler = ManualScheduler()
        scheduler.call_later(500, flush)
        scheduler.advance(499)   # まだ発火しない
        scheduler.advance(1)     # flush が呼ばれる
    """

    def __init__(self) -> None:
        self._now_ms: float = 0.0
        self._queue: list[ManualTimer] = []
        self._seq = itertools.count()

    @property
    def now_ms(self) -> float:
        """現在の仮想時刻（ミリ秒）。"""
        return self._now_ms

    @property
    def pending(self) -> int:
        """未発火かつ未キャンセルのタイマー数。"""
        return sum(1 for t in self._queue if not t.cancelled)

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> ManualTimer:
        timer = ManualTimer(self._now_ms + max(delay_ms, 0), next(self._seq), callback)
        heapq.heappush(self._queue, timer)
        return timer

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancel()

    def advance(self, ms: float) -> None:
        """仮想時刻を ms だけ進め、期限に達したタイマーを順に発火する。

        発火したコールバック内で登録されたタイマーも、期限内であれば同じ呼び出しで発火する。
        """
        target = self._now_ms + ms
        while self._queue and self._queue[0].due_ms <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now_ms = timer.due_ms
            timer.callback()
        self._now_ms = target

    def run_all(self) -> None:
        """未発火のタイマーをすべて発火させる。"""
        while self.pending:
            last = max(t.due_ms for t in self._queue if not t.cancelled)
            self.advance(last - self._now_ms)
