"""
SessionChannel のユニットテスト

同期配送、終端イベントの高々1回配送、open() による再準備、購読解除を検証する。
"""

from __future__ import annotations

from typing import Any

from macrocap.core.events import (
    PickerCancelled,
    RecordingStopped,
    SessionChannel,
    StepRecorded,
    StepRemoved,
    step_callback_adapter,
)
from macrocap.dsl.schema import ClickStep


def _collect(channel: SessionChannel) -> list[Any]:
    received: list[Any] = []
    channel.subscribe(received.append)
    return received


class TestSessionChannel:
    """SessionChannel のテスト。"""

    def test_delivers_in_order(self):
        """イベントが発生順に同期配送されること。"""
        channel = SessionChannel()
        received = _collect(channel)
        step = ClickStep(selector="#a")

        channel.publish(StepRecorded(step=step, index=0))
        channel.publish(StepRemoved(index=0))

        assert [type(e) for e in received] == [StepRecorded, StepRemoved]

    def test_terminal_event_delivered_once(self):
        """終端イベントは1セッションにつき1回だけ配送されること。"""
        channel = SessionChannel()
        received = _collect(channel)

        assert channel.publish(RecordingStopped()) is True
        assert channel.publish(PickerCancelled()) is False
        assert channel.publish(RecordingStopped()) is False

        assert len(received) == 1
        assert channel.settled

    def test_non_terminal_after_settle(self):
        """終端後もステップイベントは配送されること。"""
        channel = SessionChannel()
        received = _collect(channel)
        channel.publish(RecordingStopped())

        assert channel.publish(StepRemoved(index=0)) is True
        assert len(received) == 2

    def test_open_rearms(self):
        """open() 後は再び終端イベントを配送できること。"""
        channel = SessionChannel()
        received = _collect(channel)
        channel.publish(PickerCancelled())

        channel.open()

        assert not channel.settled
        assert channel.publish(PickerCancelled()) is True
        assert len(received) == 2

    def test_unsubscribe(self):
        """購読解除後は配送されないこと。"""
        channel = SessionChannel()
        received: list[Any] = []
        unsubscribe = channel.subscribe(received.append)

        unsubscribe()
        unsubscribe()
        channel.publish(StepRemoved(index=1))

        assert received == []

    def test_step_callback_adapter(self):
        """(step, index) 形式のコールバックには StepRecorded だけが渡されること。"""
        channel = SessionChannel()
        calls: list[tuple[str, int]] = []
        channel.subscribe(step_callback_adapter(lambda step, i: calls.append((step.action, i))))

        channel.publish(StepRecorded(step=ClickStep(selector="#a"), index=3))
        channel.publish(StepRemoved(index=3))

        assert calls == [("click", 3)]
