"""
セッションイベントチャネル — レコーダー / ピッカーからホストへの通知

記録中のステップ追加や完了・キャンセルを、購読者（ホスト UI 等）へ同期的に配送する。

保証:
  - StepRecorded / StepRemoved は発生順に同期配送される
  - 終端イベント（RecordingStopped / PickerCompleted / PickerCancelled）は
    1セッションにつき高々1回だけ配送される。open() で次のセッション用に再準備する
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:
    from ..dsl.schema import ActionStep
    from ..picker.element_picker import PickerResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# イベント定義
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepRecorded:
    """ステップが確定したことを示すイベント。

    同じ index で複数回配送された場合は、後のステップが前のステップを置き換えたことを表す
    （デバウンス後の再入力による type ステップの置換）。その場合 replaced は True になる。
    """

    step: ActionStep
    index: int
    replaced: bool = False


@dataclass(frozen=True)
class StepRemoved:
    """確定済みステップが削除されたことを示すイベント。"""

    index: int


@dataclass(frozen=True)
class RecordingStopped:
    """記録が停止されたことを示す終端イベント。"""

    steps: list[ActionStep] = field(default_factory=list)


@dataclass(frozen=True)
class PickerCompleted:
    """ピッカーが抽出ステップを確定したことを示す終端イベント。"""

    result: PickerResult


@dataclass(frozen=True)
class PickerCancelled:
    """ピッカーがキャンセルされたことを示す終端イベント。"""


SessionEvent = Union[StepRecorded, StepRemoved, RecordingStopped, PickerCompleted, PickerCancelled]
_TERMINAL_EVENTS = (RecordingStopped, PickerCompleted, PickerCancelled)

Subscriber = Callable[[Any], None]


# ---------------------------------------------------------------------------
# SessionChannel 本体
# ---------------------------------------------------------------------------

class SessionChannel:
    """購読者へセッションイベントを配送するチャネル。"""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._settled = False

    @property
    def settled(self) -> bool:
        """終端イベントが配送済みかどうか。"""
        return self._settled

    def subscribe(self, handler: Subscriber) -> Callable[[], None]:
        """イベントハンドラを登録する。

        Returns:
            登録を解除する関数
        """
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def open(self) -> None:
        """次のセッション用に終端状態をリセットする。"""
        self._settled = False

    def publish(self, event: SessionEvent) -> bool:
        """イベントを全購読者へ同期配送する。

        終端イベントが既に配送済みの場合、後続の終端イベントは破棄する。

        Returns:
            配送した場合 True、破棄した場合 False
        """
        if isinstance(event, _TERMINAL_EVENTS):
            if self._settled:
                logger.debug("終端イベントは配送済みのため破棄しました: %s", type(event).__name__)
                return False
            self._settled = True

        for handler in list(self._subscribers):
            handler(event)
        return True


def step_callback_adapter(on_step: Callable[[ActionStep, int], Any]) -> Subscriber:
    """(step, index) 形式のコールバックを購読者に変換する。"""

    def handler(event: Any) -> None:
        if isinstance(event, StepRecorded):
            on_step(event.step, event.index)

    return handler
