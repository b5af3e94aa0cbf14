"""
RecordingSession — レコーダー・ピッカー・レーンを束ねて1つのツール定義を作る

記録中のステップはアクティブなレーンに追加される。抽出モードに切り替えると
レコーダーを一時停止してピッカーを動かし、確定した extract ステップを追加してから再開する。

finalize() でツール定義を組み立てた後は、セッションへの変更を受け付けない。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from ..config import CaptureConfig
from ..core.events import SessionChannel, StepRecorded, StepRemoved
from ..core.timers import Scheduler
from ..dom.page import Page
from ..dsl.builder import ParamBinding, apply_param_bindings, build_tool_definition
from ..dsl.schema import DEFAULT_LANE_NAME, ActionStep, Lane, ToolDefinition, TypeStep
from ..picker.element_picker import ElementPicker, ExtractionMode, PickerResult
from .action_recorder import ActionRecorder, RecorderStateError

logger = logging.getLogger(__name__)


@dataclass
class LaneBuffer:
    """記録中のレーン（ステップ数0を許す可変バッファ）。"""

    name: str
    steps: list[ActionStep] = field(default_factory=list)


class RecordingSession:
    """1つのツール定義を記録するセッション。

    Attributes:
        events: セッション内のステップ追加 / 削除を通知するチャネル
            （index はアクティブレーン内の位置）
    """

    def __init__(
        self,
        page: Page,
        *,
        scheduler: Optional[Scheduler] = None,
        config: Optional[CaptureConfig] = None,
    ) -> None:
        self.page = page
        self.config = config or CaptureConfig()
        self.recorder = ActionRecorder(page, scheduler=scheduler, config=self.config)
        self.picker = ElementPicker(page, config=self.config)
        self.events = SessionChannel()
        self.last_preview: Optional[PickerResult] = None

        self._lanes: list[LaneBuffer] = [LaneBuffer(DEFAULT_LANE_NAME.format(index=1))]
        self._active_lane = 0
        self._finalized = False
        self.recorder.channel.subscribe(self._on_recorder_event)

    # ----- 状態 -----

    @property
    def lanes(self) -> list[LaneBuffer]:
        return [LaneBuffer(lane.name, list(lane.steps)) for lane in self._lanes]

    @property
    def active_lane(self) -> int:
        return self._active_lane

    @property
    def steps(self) -> list[ActionStep]:
        """アクティブレーンのステップのコピー。"""
        return list(self._lanes[self._active_lane].steps)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _ensure_mutable(self) -> None:
        if self._finalized:
            raise RecorderStateError("確定済みのセッションは変更できません")

    # ----- 記録 -----

    def start(self) -> None:
        """記録を開始する。"""
        self._ensure_mutable()
        self.recorder.start()

    def stop(self) -> list[ActionStep]:
        """記録を停止し、アクティブレーンのステップを返す。

        動作中のピッカーはキャンセルする。抽出ステップとステップ編集はレーンにのみ
        反映されるので、返すのはレコーダーの記録ではなくレーンの内容。
        """
        if self.picker.is_active():
            self.picker.cancel()
        self.recorder.stop()
        return self.steps

    def _on_recorder_event(self, event: Any) -> None:
        if not isinstance(event, StepRecorded) or self._finalized:
            return
        lane = self._lanes[self._active_lane]
        last = lane.steps[-1] if lane.steps else None
        if event.replaced and isinstance(last, TypeStep) and last.selector == event.step.selector:
            lane.steps[-1] = event.step
            self.events.publish(StepRecorded(step=event.step, index=len(lane.steps) - 1, replaced=True))
        else:
            self._append(event.step)

    def _append(self, step: ActionStep) -> None:
        lane = self._lanes[self._active_lane]
        lane.steps.append(step)
        self.events.publish(StepRecorded(step=step, index=len(lane.steps) - 1))

    # ----- レーン -----

    def add_lane(self, name: Optional[str] = None) -> int:
        """新しいレーンを追加してアクティブにし、その位置を返す。"""
        self._ensure_mutable()
        self._lanes.append(LaneBuffer(name or DEFAULT_LANE_NAME.format(index=len(self._lanes) + 1)))
        self._active_lane = len(self._lanes) - 1
        logger.info("レーンを追加しました: %s", self._lanes[self._active_lane].name)
        return self._active_lane

    def switch_lane(self, index: int) -> None:
        """アクティブレーンを切り替える。

        Raises:
            IndexError: index が範囲外の場合
        """
        self._ensure_mutable()
        if not 0 <= index < len(self._lanes):
            raise IndexError(f"レーン {index} は存在しません")
        self._active_lane = index

    # ----- 抽出 -----

    def start_extraction(self, mode: ExtractionMode = "list") -> ElementPicker:
        """レコーダーを一時停止してピッカーを開始する。

        確定時は extract ステップをアクティブレーンに追加し、確定 / キャンセルのどちらでも
        レコーダーを再開する。

        Raises:
            RecorderStateError: 記録中でない場合
        """
        self._ensure_mutable()
        if self.recorder.state != "recording":
            raise RecorderStateError("記録中でないため抽出モードに切り替えられません")

        self.recorder.pause()

        def on_complete(result: PickerResult) -> None:
            self.last_preview = result
            self._append(result.step)
            self.recorder.resume()

        self.picker.start(mode, on_complete=on_complete, on_cancel=self.recorder.resume)
        return self.picker

    # ----- 編集 -----

    def remove_step(self, index: int) -> ActionStep:
        """アクティブレーンのステップを削除する。"""
        self._ensure_mutable()
        step = self._lanes[self._active_lane].steps.pop(index)
        self.events.publish(StepRemoved(index=index))
        return step

    def move_step(self, from_index: int, to_index: int) -> None:
        """アクティブレーン内でステップを移動する。移動先が範囲外なら何もしない。"""
        self._ensure_mutable()
        steps = self._lanes[self._active_lane].steps
        if not 0 <= to_index < len(steps):
            return
        steps.insert(to_index, steps.pop(from_index))

    # ----- 確定 -----

    def finalize(
        self,
        name: str,
        description: str,
        bindings: Sequence[ParamBinding] = (),
        *,
        tool_id: Optional[str] = None,
    ) -> ToolDefinition:
        """記録を停止し、ツール定義を組み立てて返す。

        パラメータ指定はアクティブレーンのステップに適用する。空のレーンは含めない。

        Raises:
            RecorderStateError: 既に確定済みの場合
            ToolSchemaValidationError: 組み立てた定義が不正な場合
        """
        self._ensure_mutable()
        self.stop()

        lanes = [lane for lane in self._lanes if lane.steps]
        active = self._lanes[self._active_lane]
        steps, parameters = apply_param_bindings(active.steps, bindings)
        active_steps = steps
        if not active.steps and lanes:
            active_steps = lanes[0].steps

        model_lanes = [
            Lane(name=lane.name, steps=steps if lane is active else lane.steps)
            for lane in lanes
        ]
        tool = build_tool_definition(
            name,
            description,
            active_steps,
            parameters,
            lanes=model_lanes,
            viewport=(self.config.viewport_width, self.config.viewport_height),
            tool_id=tool_id,
        )
        self._finalized = True
        logger.info("セッションを確定しました: %s", tool.name)
        return tool
