"""
ElementPicker — データ抽出対象を対話的に選ぶピッカー

2つのモードを start(mode) で選ぶ。

list モード（自動）:
  1. 繰り返し構造を検出し、各要素にアウトラインと "Select · i/N" バッジを付ける
  2. バッジ（または候補要素内）をクリックすると、グループの先頭要素を代表として
     フィールドを自動検出し、そのまま確定する
  候補外のクリックは、同一タグの兄弟を持つ祖先（最大6階層）をコンテナとみなす。

single モード（手動）:
  1. コンテナ要素をクリック
  2. フィールドにしたい要素を順にクリック（ホバー中の要素を強調表示）
  3. Done で確定

どの段階でも ESC でキャンセルできる。完了とキャンセルはどちらか一方だけが通知され、
オーバーレイの後片付けもちょうど1回だけ行われる。
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Literal, Optional

from bs4 import Tag

from ..config import CaptureConfig
from ..core.events import PickerCancelled, PickerCompleted, SessionChannel
from ..core.selector import css_escape, generate_selector
from ..dom.page import DomEvent, Page, closest_with_attr, contains, parent_element, same_tag_siblings, tag_name
from ..dsl.schema import ExtractionField, ExtractStep
from .detection import ListCandidate, detect_list_candidates, find_shared_class
from .fields import FieldKeyRegistry, build_field, detect_fields_for, slugify
from .overlay import OverlaySession
from .preview import Preview, generate_preview, preview_html, preview_items

logger = logging.getLogger(__name__)

ExtractionMode = Literal["single", "list"]
PickerPhase = Literal["container", "field"]

# 候補外クリックからコンテナを探すときに遡る最大階層
MAX_CONTAINER_DEPTH = 6


class PickerStateError(RuntimeError):
    """ピッカーの状態に対して不正な操作が行われた。"""


@dataclass
class PickerResult:
    """ピッカーの確定結果。

    Attributes:
        step: 生成された extract ステップ
        preview: 抽出結果の見本（list はリスト、single は辞書）
        preview_html: プレビュー要素の outer HTML（注入 UI を除去済み）
    """

    step: ExtractStep
    preview: Preview
    preview_html: list[str] = field(default_factory=list)


class ElementPicker:
    """データ抽出対象を選ぶ対話的ピッカー。"""

    def __init__(
        self,
        page: Page,
        *,
        config: Optional[CaptureConfig] = None,
        channel: Optional[SessionChannel] = None,
    ) -> None:
        self.page = page
        self.config = config or CaptureConfig()
        self.channel = channel or SessionChannel()

        self._active = False
        self._phase: PickerPhase = "container"
        self._mode: ExtractionMode = "list"
        self._overlay: Optional[OverlaySession] = None
        self._candidates: list[ListCandidate] = []
        self._container_selector = ""
        self._container: Optional[Tag] = None
        self._fields: list[ExtractionField] = []
        self._keys = FieldKeyRegistry()
        self._unsubscribe_complete: Optional[Callable[[], None]] = None
        self._unsubscribe_cancel: Optional[Callable[[], None]] = None
        self.hovered: Optional[Tag] = None

    # ----- 状態 -----

    def is_active(self) -> bool:
        return self._active

    @property
    def mode(self) -> ExtractionMode:
        return self._mode

    @property
    def phase(self) -> PickerPhase:
        return self._phase

    @property
    def candidates(self) -> list[ListCandidate]:
        return list(self._candidates)

    @property
    def fields(self) -> list[ExtractionField]:
        return list(self._fields)

    @property
    def status_message(self) -> str:
        """情報パネルに表示する文言。"""
        if self._phase == "container":
            if self._mode == "list":
                n = len(self._candidates)
                if n > 0:
                    return f"{n} list{'s' if n != 1 else ''} detected - click Select on an item"
                return "Click on a repeating element"
            return "Click on the element to extract"
        n = len(self._fields)
        return f"{n} field{'s' if n != 1 else ''} selected"

    # ----- ライフサイクル -----

    def start(
        self,
        mode: ExtractionMode = "list",
        on_complete: Optional[Callable[[PickerResult], Any]] = None,
        on_cancel: Optional[Callable[[], Any]] = None,
    ) -> None:
        """ピッカーを開始する。動作中なら先にキャンセルする。

        Args:
            mode: "list"（自動検出）または "single"（手動）
            on_complete: 確定時に PickerResult で呼ばれるコールバック（任意）
            on_cancel: キャンセル時に呼ばれるコールバック（任意）
        """
        if self._active:
            self.cancel()

        self._active = True
        self._phase = "container"
        self._mode = mode
        self._candidates = []
        self._container_selector = ""
        self._container = None
        self._fields = []
        self._keys = FieldKeyRegistry()
        self.hovered = None

        self.channel.open()
        if on_complete is not None:
            def complete_handler(event: Any) -> None:
                if isinstance(event, PickerCompleted):
                    on_complete(event.result)
            self._unsubscribe_complete = self.channel.subscribe(complete_handler)
        if on_cancel is not None:
            def cancel_handler(event: Any) -> None:
                if isinstance(event, PickerCancelled):
                    on_cancel()
            self._unsubscribe_cancel = self.channel.subscribe(cancel_handler)

        self._overlay = OverlaySession(self.page, self.config)
        self._overlay.acquire()
        with self._cleanup_on_error():
            if mode == "list":
                self._candidates = detect_list_candidates(self.page, self.config)
                self._overlay.decorate(self._candidates)
            self._attach_listeners()
            self._refresh_status()
        logger.info("ピッカーを開始しました (mode=%s, 候補=%d)", mode, len(self._candidates))

    def cancel(self) -> None:
        """ピッカーを中止し、キャンセルを通知する。"""
        if not self._active:
            return
        self._teardown()
        logger.info("ピッカーをキャンセルしました")
        self.channel.publish(PickerCancelled())
        self._drop_subscriptions()

    def done(self) -> None:
        """single モードのフィールド選択を確定する。

        Raises:
            PickerStateError: single モードのフィールド選択中でない場合
        """
        if not self._active or self._mode != "single" or self._phase != "field":
            raise PickerStateError("フィールド選択中ではないため確定できません")
        self._finalize()

    # ----- 候補の選択 -----

    def select_candidate(self, candidate: ListCandidate) -> None:
        """候補グループを選択し、先頭要素からフィールドを検出して確定する。"""
        if not self._active:
            raise PickerStateError("ピッカーが動作していません")
        representative = candidate.items[0]
        if tag_name(representative) == "tr" and representative.select_one("td") is None:
            representative = next(
                (row for row in candidate.items if row.select_one("td") is not None), representative,
            )

        self._container_selector = candidate.selector
        self._container = representative
        with self._cleanup_on_error():
            self._fields = detect_fields_for(self.page, representative, self.config)
        self._finalize()

    def find_repeating_container(self, el: Tag) -> Optional[Tag]:
        """el から祖先を遡り、同一タグの兄弟を2つ以上持つ最初の要素を返す。"""
        current: Optional[Tag] = el
        for _ in range(MAX_CONTAINER_DEPTH):
            if current is None:
                break
            parent = parent_element(current)
            if parent is None:
                break
            if len(same_tag_siblings(current)) >= 2:
                return current
            current = parent
        return None

    def _sibling_selector(self, container: Tag) -> str:
        parent = parent_element(container)
        if parent is None:
            return generate_selector(container)
        tag = tag_name(container)
        shared = find_shared_class(same_tag_siblings(container), self.config)
        suffix = f".{css_escape(shared)}" if shared else ""
        return f"{generate_selector(parent)} > {tag}{suffix}"

    def _select_container(self, el: Tag) -> None:
        if self._mode == "list":
            for candidate in self._candidates:
                if any(contains(item, el) for item in candidate.items):
                    self.select_candidate(candidate)
                    return

            with self._cleanup_on_error():
                container = self.find_repeating_container(el)
                if container is not None:
                    self._container_selector = self._sibling_selector(container)
                    self._container = container
                else:
                    self._container_selector = generate_selector(el)
                    self._container = el
                self._fields = detect_fields_for(self.page, self._container, self.config)
            self._finalize()
            return

        with self._cleanup_on_error():
            self._container_selector = generate_selector(el)
        self._container = el
        self._phase = "field"
        self._refresh_status()
        logger.debug("コンテナを選択しました: %s", self._container_selector)

    def _select_field(self, el: Tag) -> None:
        if self._container is None:
            raise PickerStateError("コンテナが選択されていません")
        scope = self._container if contains(self._container, el) else None
        with self._cleanup_on_error():
            field_ = build_field(el, scope, self._keys, len(self._fields), self.config)
        self._fields.append(field_)
        if self._overlay is not None:
            self._overlay.mark_selected(el)
        self._refresh_status()
        logger.debug("フィールドを追加しました: %s (%s)", field_.key, field_.selector)

    # ----- イベント -----

    def _attach_listeners(self) -> None:
        self.page.add_event_listener("mousemove", self._handle_mouse_move, capture=True)
        self.page.add_event_listener("click", self._handle_click, capture=True)
        self.page.add_event_listener("keydown", self._handle_key_down, capture=True)

    def _detach_listeners(self) -> None:
        self.page.remove_event_listener("mousemove", self._handle_mouse_move, capture=True)
        self.page.remove_event_listener("click", self._handle_click, capture=True)
        self.page.remove_event_listener("keydown", self._handle_key_down, capture=True)

    def _is_tool_ui(self, el: Tag) -> bool:
        return closest_with_attr(el, self.config.ui_marker_attr) is not None

    def _handle_mouse_move(self, event: DomEvent) -> None:
        if not self._active or self._mode == "list" or self._phase == "container":
            return
        target = event.target
        if target is None or self._is_tool_ui(target):
            return
        self.hovered = target
        if self._overlay is not None:
            self._overlay.highlight(target)

    def _handle_click(self, event: DomEvent) -> None:
        if not self._active or event.target is None:
            return
        target = event.target

        if self._overlay is not None:
            candidate = self._overlay.candidate_for(target)
            if candidate is not None:
                event.prevent_default()
                event.stop_propagation()
                self.select_candidate(candidate)
                return
            if self._overlay.is_done_button(target) and self._phase == "field":
                event.prevent_default()
                event.stop_propagation()
                self._finalize()
                return
        if self._is_tool_ui(target):
            return

        event.prevent_default()
        event.stop_propagation()
        if self._phase == "container":
            self._select_container(target)
        else:
            self._select_field(target)

    def _handle_key_down(self, event: DomEvent) -> None:
        if not self._active:
            return
        if event.key == "Escape":
            event.prevent_default()
            event.stop_propagation()
            self.cancel()

    # ----- 確定 / 後片付け -----

    def _refresh_status(self) -> None:
        if self._overlay is not None:
            self._overlay.show_status(self.status_message, with_done=self._phase == "field")

    def _finalize(self) -> None:
        if not self._fields:
            logger.info("フィールドが選択されていないためキャンセルします")
            self.cancel()
            return

        with self._cleanup_on_error():
            item_count: Optional[int] = None
            if self._mode == "list" and self._container is not None:
                item_count = len(same_tag_siblings(self._container))
            n_fields = len(self._fields)
            label = (
                f"{item_count if item_count is not None else '?'} items · {n_fields} fields (list)"
                if self._mode == "list"
                else f"{n_fields} fields (single)"
            )
            step = ExtractStep(
                name=slugify(self._container_selector[:30]) or "data",
                mode=self._mode,
                containerSelector=self._container_selector,
                fields=list(self._fields),
                itemCount=item_count,
                label=label,
            )
            self._teardown()

            items = preview_items(self.page, step, self._container, self.config)
            result = PickerResult(
                step=step,
                preview=generate_preview(self.page, step, self._container, self.config),
                preview_html=preview_html(items, self.config),
            )

        # 完了時にキャンセル通知が発火しないよう先に解除する
        if self._unsubscribe_cancel is not None:
            self._unsubscribe_cancel()
            self._unsubscribe_cancel = None
        logger.info("抽出ステップを確定しました: %s", label)
        try:
            self.channel.publish(PickerCompleted(result=result))
        finally:
            self._drop_subscriptions()

    @contextmanager
    def _cleanup_on_error(self) -> Iterator[None]:
        """ブロック内で例外が起きたらページを元に戻し、キャンセルを通知して再送出する。"""
        try:
            yield
        except Exception:
            logger.warning("ピッカーの処理中にエラーが発生したため後片付けします", exc_info=True)
            self._teardown()
            self.channel.publish(PickerCancelled())
            self._drop_subscriptions()
            raise

    def _teardown(self) -> None:
        self._active = False
        self._detach_listeners()
        if self._overlay is not None:
            self._overlay.release()
            self._overlay = None
        self._candidates = []
        self.hovered = None

    def _drop_subscriptions(self) -> None:
        for unsubscribe in (self._unsubscribe_complete, self._unsubscribe_cancel):
            if unsubscribe is not None:
                unsubscribe()
        self._unsubscribe_complete = None
        self._unsubscribe_cancel = None
