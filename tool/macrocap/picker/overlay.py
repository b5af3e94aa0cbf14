"""
OverlaySession — ピッカーがページに加える DOM 変更を一括管理するスコープ付きリソース

ピッカーがページに注入するもの:
  - 候補要素のアウトライン用クラスと "Select · i/N" バッジ
  - バッジ配置のための position:static → relative の切り替え
  - スタイルタグ、情報パネル、ホバー強調ボックス

release() は注入したものをすべて取り除き、切り替えた position を元に戻す。
何度呼ばれても実際の後片付けは1回だけ行う。with 文で使うと例外時にも解放される。
"""

from __future__ import annotations

import logging
from typing import Optional

from bs4 import Tag

from ..config import CaptureConfig
from ..dom.page import Page, class_list, closest_with_attr, set_inline_style
from .detection import ListCandidate

logger = logging.getLogger(__name__)

DONE_ACTION = "done"
ACTION_ATTR = "data-macrocap-action"


class OverlaySession:
    """ピッカーの DOM 変更を所有し、解放時に元へ戻すセッション。"""

    def __init__(self, page: Page, config: Optional[CaptureConfig] = None) -> None:
        self.page = page
        self.config = config or CaptureConfig()
        prefix = self.config.class_prefix
        self.candidate_class = f"{prefix}pick-candidate"
        self.badge_class = f"{prefix}pick-badge"
        self.selected_class = f"{prefix}pick-selected"
        self.style_id = f"{prefix}picker-styles"

        self._decorated: list[Tag] = []
        self._flipped: list[Tag] = []
        self._selected: list[Tag] = []
        self._injected: list[Tag] = []
        # id(バッジ) → 候補グループ
        self._badges: dict[int, ListCandidate] = {}
        self._panel: Optional[Tag] = None
        self._highlight: Optional[Tag] = None
        self._acquired = False
        self._released = False

    # ----- with 文 -----

    def __enter__(self) -> "OverlaySession":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def active(self) -> bool:
        return self._acquired and not self._released

    # ----- 取得 -----

    def _ui_attrs(self, **extra: str) -> dict[str, str]:
        attrs = {self.config.ui_marker_attr: "true"}
        attrs.update(extra)
        return attrs

    def acquire(self) -> None:
        """スタイルタグと情報パネルを注入する。"""
        if self._acquired:
            return
        self._acquired = True

        if self.page.query_selector(f"#{self.style_id}") is None:
            style = self.page.create_element(
                "style",
                self._ui_attrs(id=self.style_id),
                text=(
                    f".{self.candidate_class} {{ outline: 2px dashed hsla(220, 90%, 56%, 0.45) !important; }}\n"
                    f".{self.badge_class} {{ position: absolute !important; top: 4px !important; "
                    f"right: 4px !important; cursor: pointer !important; }}\n"
                    f".{self.selected_class} {{ outline: 2px dashed hsla(160, 70%, 50%, 0.5) !important; }}"
                ),
            )
            self.page.head.append(style)
            self._injected.append(style)

        self._panel = self.page.create_element("div", self._ui_attrs(**{"class": f"{self.config.class_prefix}panel"}))
        self.page.body.append(self._panel)
        self._injected.append(self._panel)

    def decorate(self, candidates: list[ListCandidate]) -> None:
        """各候補の要素にアウトラインとバッジを付ける。"""
        for candidate in candidates:
            for i, item in enumerate(candidate.items):
                if self.candidate_class not in class_list(item):
                    item["class"] = class_list(item) + [self.candidate_class]
                    self._decorated.append(item)

                if self.page.computed_position(item) == "static" and not any(item is f for f in self._flipped):
                    set_inline_style(item, "position", "relative")
                    self._flipped.append(item)

                badge = self.page.create_element(
                    "div",
                    self._ui_attrs(**{"class": self.badge_class}),
                    text=f"Select · {i + 1}/{candidate.total}",
                )
                item.append(badge)
                self._injected.append(badge)
                self._badges[id(badge)] = candidate
        logger.debug("候補 %d 件にバッジを付けました", len(candidates))

    # ----- 参照 -----

    def candidate_for(self, el: Tag) -> Optional[ListCandidate]:
        """el がバッジ（またはその内部）なら対応する候補グループを返す。"""
        cur: Optional[Tag] = el
        while cur is not None:
            candidate = self._badges.get(id(cur))
            if candidate is not None:
                return candidate
            cur = cur.parent
        return None

    def is_done_button(self, el: Tag) -> bool:
        button = closest_with_attr(el, ACTION_ATTR)
        return button is not None and button.get(ACTION_ATTR) == DONE_ACTION

    # ----- 表示更新 -----

    def show_status(self, message: str, *, with_done: bool = False) -> None:
        """情報パネルの内容を更新する。"""
        if self._panel is None:
            return
        self._panel.clear()
        self._panel.append(self.page.create_element("span", {"class": "msg"}, text=message))
        if with_done:
            self._panel.append(self.page.create_element("button", {ACTION_ATTR: DONE_ACTION}, text="Done"))
        self._panel.append(self.page.create_element("span", {"class": "esc"}, text="ESC cancel"))

    def highlight(self, el: Tag) -> None:
        """ホバー中の要素の位置に強調ボックスを重ねる。"""
        if self._highlight is None:
            self._highlight = self.page.create_element("div", self._ui_attrs())
            self.page.body.append(self._highlight)
            self._injected.append(self._highlight)
        rect = self.page.rect_of(el)
        for prop, value in (
            ("position", "fixed"),
            ("left", f"{rect.x:g}px"),
            ("top", f"{rect.y:g}px"),
            ("width", f"{rect.width:g}px"),
            ("height", f"{rect.height:g}px"),
        ):
            set_inline_style(self._highlight, prop, value)

    def mark_selected(self, el: Tag) -> None:
        if self.selected_class not in class_list(el):
            el["class"] = class_list(el) + [self.selected_class]
            self._selected.append(el)

    # ----- 解放 -----

    def release(self) -> bool:
        """注入した変更をすべて元に戻す。

        Returns:
            今回の呼び出しで後片付けを行った場合 True（2回目以降は False）
        """
        if self._released:
            return False
        self._released = True

        owned = {self.candidate_class, self.selected_class}
        for el in self._decorated + self._selected:
            remaining = [c for c in class_list(el) if c not in owned]
            if remaining:
                el["class"] = remaining
            elif el.has_attr("class"):
                del el["class"]
        for el in self._flipped:
            set_inline_style(el, "position", "")
        for node in self._injected:
            node.decompose()

        logger.debug(
            "オーバーレイを解放しました (装飾 %d, position 復元 %d, 注入 %d)",
            len(self._decorated), len(self._flipped), len(self._injected),
        )
        self._decorated.clear()
        self._flipped.clear()
        self._selected.clear()
        self._injected.clear()
        self._badges.clear()
        self._panel = None
        self._highlight = None
        return True
