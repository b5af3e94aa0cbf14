"""
ActionRecorder — ページ上のユーザー操作をステップ列に変換する記録エンジン

ページのイベント（click / input / change / scroll / beforeunload）を購読し、
条件を満たすイベントを ActionStep として順に蓄積する。

状態遷移:
  idle --start()--> recording --stop()--> idle
  recording --pause()--> paused --resume()--> recording

記録規則:
  - start() は現在の URL を navigate ステップとして記録し、スクロール基準位置をリセットする
  - ツール UI 外のクリックは click ステップ（select 要素へのクリックは change で扱うため無視）
  - テキスト入力は要素ごとに 500ms デバウンスし、直前の同一要素への type ステップを置き換える
  - select の変更はデバウンスせず即座に select ステップを記録する
  - スクロールは 300ms デバウンスし、確定位置からの移動量が 50px 未満なら破棄する
  - beforeunload では何も記録しない（遷移先は次の start() で記録される）

pause() / stop() では保留中のデバウンスを確定せずに破棄する。
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Literal, Optional
from urllib.parse import parse_qsl, urlsplit

from bs4 import Tag

from ..config import CaptureConfig
from ..core.events import RecordingStopped, SessionChannel, StepRecorded, StepRemoved, step_callback_adapter
from ..core.selector import generate_selector
from ..core.timers import AsyncioScheduler, Scheduler, TimerHandle
from ..dom.page import DomEvent, Page, closest_with_attr, tag_name, text_content
from ..dsl.schema import ActionStep, ClickStep, NavigateStep, ScrollStep, SelectStep, TypeStep

logger = logging.getLogger(__name__)

RecorderState = Literal["idle", "recording", "paused"]


class RecorderStateError(RuntimeError):
    """記録セッションの状態に対して不正な操作が行われた。"""


def describe_element(el: Tag) -> str:
    """要素の人間向けラベルを生成する。

    aria-label → placeholder → name → テキスト（先頭30文字）→ タグ名 の順に採用する。
    """
    tag = tag_name(el)
    aria_label = el.get("aria-label")
    placeholder = el.get("placeholder")
    name = el.get("name")
    text = text_content(el).strip()[:30]

    if aria_label:
        return f'{tag} "{aria_label}"'
    if placeholder:
        return f'{tag} "{placeholder}"'
    if name:
        return f"{tag} [name={name}]"
    if text:
        return f'{tag} "{text}"'
    return tag


class ActionRecorder:
    """ページ上の操作を ActionStep 列として記録するレコーダー。

    ステップが確定するたびに channel へ StepRecorded を同期配送する。
    """

    def __init__(
        self,
        page: Page,
        *,
        scheduler: Optional[Scheduler] = None,
        config: Optional[CaptureConfig] = None,
        channel: Optional[SessionChannel] = None,
    ) -> None:
        """レコーダーを初期化する。

        Args:
            page: 記録対象のページ
            scheduler: デバウンス用スケジューラ（省略時は asyncio）
            config: デバウンス時間・閾値等の設定
            channel: イベント配送先（省略時は専用チャネルを生成）
        """
        self.page = page
        self.config = config or CaptureConfig()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.channel = channel or SessionChannel()

        self._state: RecorderState = "idle"
        self._steps: list[ActionStep] = []
        self._last_scroll_y: float = 0
        self._scroll_timer: Optional[TimerHandle] = None
        # id(要素) → (要素, タイマー)
        self._input_timers: dict[int, tuple[Tag, TimerHandle]] = {}
        self._unsubscribe_step: Optional[Callable[[], None]] = None

    # ----- 状態 -----

    @property
    def state(self) -> RecorderState:
        return self._state

    def is_recording(self) -> bool:
        """記録セッション中（一時停止を含む）か。"""
        return self._state != "idle"

    def get_steps(self) -> list[ActionStep]:
        """記録済みステップのコピーを返す（ライブビューではない）。"""
        return list(self._steps)

    # ----- ライフサイクル -----

    def start(self, on_step: Optional[Callable[[ActionStep, int], Any]] = None) -> None:
        """記録を開始する。記録中に呼ばれた場合は何もしない。

        Args:
            on_step: ステップ確定ごとに (step, index) で呼ばれるコールバック（任意）

        Raises:
            RecorderStateError: 既定の AsyncioScheduler を使うのに実行中のイベントループが無い場合
        """
        if self.is_recording():
            logger.debug("既に記録中のため start() を無視しました")
            return
        if isinstance(self.scheduler, AsyncioScheduler):
            try:
                self.scheduler.bind()
            except RuntimeError as e:
                raise RecorderStateError(
                    "実行中のイベントループがありません。"
                    "イベントループ外で記録する場合は ManualScheduler を渡してください"
                ) from e

        self._state = "recording"
        self._steps = []
        self._last_scroll_y = self.page.scroll_y
        self.channel.open()
        if on_step is not None:
            self._unsubscribe_step = self.channel.subscribe(step_callback_adapter(on_step))

        logger.info("記録を開始しました: %s", self.page.url)
        self._add_step(self._navigate_step())
        self._attach_listeners()

    def stop(self) -> list[ActionStep]:
        """記録を停止し、記録済みステップのコピーを返す。

        保留中のデバウンス（未確定の入力 / スクロール）は破棄される。
        """
        if not self.is_recording():
            return list(self._steps)

        if self._state == "recording":
            self._detach_listeners()
        self._state = "idle"
        self._drop_pending()

        steps = list(self._steps)
        logger.info("記録を停止しました (%d ステップ)", len(steps))
        self.channel.publish(RecordingStopped(steps=list(steps)))
        if self._unsubscribe_step is not None:
            self._unsubscribe_step()
            self._unsubscribe_step = None
        return steps

    def pause(self) -> None:
        """リスナーを一時的に外す。ステップは保持し、保留中のデバウンスは破棄する。"""
        if self._state != "recording":
            return
        self._detach_listeners()
        self._drop_pending()
        self._state = "paused"
        logger.debug("記録を一時停止しました")

    def resume(self) -> None:
        """一時停止中のリスナーを再登録する。"""
        if self._state != "paused":
            return
        self._attach_listeners()
        self._state = "recording"
        logger.debug("記録を再開しました")

    def remove_step(self, index: int) -> ActionStep:
        """確定済みステップを削除する。

        Raises:
            IndexError: index が範囲外の場合
        """
        step = self._steps.pop(index)
        self.channel.publish(StepRemoved(index=index))
        return step

    # ----- リスナー管理 -----

    def _attach_listeners(self) -> None:
        self.page.add_event_listener("click", self._handle_click, capture=True)
        self.page.add_event_listener("input", self._handle_input, capture=True)
        self.page.add_event_listener("change", self._handle_input, capture=True)
        self.page.add_event_listener("scroll", self._handle_scroll)
        self.page.add_event_listener("beforeunload", self._handle_before_unload)

    def _detach_listeners(self) -> None:
        self.page.remove_event_listener("click", self._handle_click, capture=True)
        self.page.remove_event_listener("input", self._handle_input, capture=True)
        self.page.remove_event_listener("change", self._handle_input, capture=True)
        self.page.remove_event_listener("scroll", self._handle_scroll)
        self.page.remove_event_listener("beforeunload", self._handle_before_unload)

    def _drop_pending(self) -> None:
        if self._scroll_timer is not None:
            self.scheduler.cancel(self._scroll_timer)
            self._scroll_timer = None
        for _, handle in self._input_timers.values():
            self.scheduler.cancel(handle)
        if self._input_timers:
            logger.debug("未確定の入力 %d 件を破棄しました", len(self._input_timers))
        self._input_timers.clear()

    # ----- イベントハンドラ -----

    def _is_tool_ui(self, el: Tag) -> bool:
        return closest_with_attr(el, self.config.ui_marker_attr) is not None

    def _handle_click(self, event: DomEvent) -> None:
        target = event.target
        if target is None or self._state != "recording":
            return
        if self._is_tool_ui(target):
            return
        if tag_name(target) == "select":
            return

        self._add_step(ClickStep(selector=generate_selector(target), label=describe_element(target)))

    def _handle_input(self, event: DomEvent) -> None:
        target = event.target
        if target is None or self._state != "recording":
            return
        if self._is_tool_ui(target):
            return

        selector = generate_selector(target)

        if tag_name(target) == "select":
            # input と change の両方が発火するため change のみ記録する
            if event.type != "change":
                return
            value = self.page.value_of(target)
            self._add_step(SelectStep(selector=selector, value=value, label=f"Select: {value}"))
            return

        key = id(target)
        existing = self._input_timers.get(key)
        if existing is not None:
            self.scheduler.cancel(existing[1])

        handle = self.scheduler.call_later(
            self.config.input_debounce_ms,
            lambda: self._flush_input(target, selector),
        )
        self._input_timers[key] = (target, handle)

    def _flush_input(self, target: Tag, selector: str) -> None:
        self._input_timers.pop(id(target), None)
        if self._state != "recording":
            return

        step = TypeStep(
            selector=selector,
            text=self.page.value_of(target),
            clear=True,
            label=f"Type into {describe_element(target)}",
        )
        last = self._steps[-1] if self._steps else None
        if isinstance(last, TypeStep) and last.selector == selector:
            self._steps.pop()
            logger.debug("同一要素への入力を置き換えました: %s", selector)
            self._add_step(step, replaced=True)
        else:
            self._add_step(step)

    def _handle_scroll(self, event: DomEvent) -> None:
        if self._state != "recording":
            return
        if self._scroll_timer is not None:
            self.scheduler.cancel(self._scroll_timer)
        self._scroll_timer = self.scheduler.call_later(self.config.scroll_debounce_ms, self._flush_scroll)

    def _flush_scroll(self) -> None:
        self._scroll_timer = None
        if self._state != "recording":
            return

        delta = self.page.scroll_y - self._last_scroll_y
        if abs(delta) < self.config.scroll_threshold_px:
            logger.debug("スクロール量が閾値未満のため破棄しました: %spx", delta)
            return

        direction = "down" if delta > 0 else "up"
        amount = abs(round(delta))
        self._add_step(ScrollStep(direction=direction, amount=amount, label=f"Scroll {direction} {amount}px"))
        self._last_scroll_y = self.page.scroll_y

    def _handle_before_unload(self, event: DomEvent) -> None:
        # 遷移先は次のセッションの start() が navigate として記録する
        return

    # ----- 補助 -----

    def _navigate_step(self) -> NavigateStep:
        parts = urlsplit(self.page.url)
        base = f"{self.page.origin}{self.page.pathname}" if self.page.origin else parts._replace(
            query="", fragment="",
        ).geturl()
        return NavigateStep(url=base, urlParams=dict(parse_qsl(parts.query, keep_blank_values=True)))

    def _add_step(self, step: ActionStep, *, replaced: bool = False) -> None:
        self._steps.append(step)
        index = len(self._steps) - 1
        logger.debug("ステップを記録しました [%d] %s", index, step.action)
        self.channel.publish(StepRecorded(step=step, index=index, replaced=replaced))
