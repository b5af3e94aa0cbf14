"""
Page — レコーダー / ピッカーが利用する DOM サーフェス

ブラウザが提供する DOM（querySelectorAll, getBoundingClientRect, classList,
getComputedStyle, イベント配送）を、BeautifulSoup で解析した HTML 文書の上に再現する。

レイアウト情報の取得順:
  1. data-macrocap-rect="x,y,w,h"（capture モジュールがライブページから書き込む）
  2. インライン style の width / height（px 指定のみ）
  3. 非表示判定（hidden 属性, display:none, 描画されないタグ）→ 面積 0
  4. 既定の矩形（CaptureConfig.default_box_width / default_box_height）

注意: BeautifulSoup の Tag は構造比較で等価判定されるため、
要素の同一性判定は必ず ``is`` で行う（index_of / contains を使用する）。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from ..config import CaptureConfig

logger = logging.getLogger(__name__)

# capture モジュールが書き込むレイアウト属性
RECT_ATTR = "data-macrocap-rect"
POSITION_ATTR = "data-macrocap-position"

# 描画されない（面積 0 とみなす）タグ
_NON_RENDERED_TAGS = frozenset({
    "head", "script", "style", "template", "meta", "link", "title", "noscript", "base",
})

_PX_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)px\s*$")

EventHandler = Callable[["DomEvent"], Any]


# ---------------------------------------------------------------------------
# 値オブジェクト
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    """要素の描画矩形（getBoundingClientRect 相当）。"""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class DomEvent:
    """ページ上で発生したイベント。

    Attributes:
        type: イベント種別（click, input, change, scroll, keydown, mousemove, beforeunload）
        target: イベント発生元の要素（window 由来のイベントは None）
        key: keydown 時のキー名
        default_prevented: prevent_default() が呼ばれたか
        propagation_stopped: stop_propagation() が呼ばれたか
    """

    type: str
    target: Optional[Tag] = None
    key: Optional[str] = None
    default_prevented: bool = False
    propagation_stopped: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True

    def stop_propagation(self) -> None:
        self.propagation_stopped = True


# ---------------------------------------------------------------------------
# 要素ユーティリティ（同一性は常に `is` で判定する）
# ---------------------------------------------------------------------------

def tag_name(el: Tag) -> str:
    """小文字のタグ名を返す。"""
    return (el.name or "").lower()


def element_children(el: Tag) -> list[Tag]:
    """子要素（テキストノードを除く）を返す。"""
    return [c for c in el.children if isinstance(c, Tag)]


def parent_element(el: Tag) -> Optional[Tag]:
    """親要素を返す。文書ルート（BeautifulSoup オブジェクト）は親要素として扱わない。"""
    parent = el.parent
    if parent is None or isinstance(parent, BeautifulSoup):
        return None
    return parent


def index_of(items: Sequence[Tag], el: Tag) -> int:
    """同一性に基づいて要素の位置を返す。見つからない場合は -1。"""
    for i, item in enumerate(items):
        if item is el:
            return i
    return -1


def contains(ancestor: Tag, el: Optional[Tag]) -> bool:
    """ancestor が el 自身または el の祖先であれば True（Node.contains 相当）。"""
    cur = el
    while cur is not None:
        if cur is ancestor:
            return True
        cur = cur.parent
    return False


def closest_with_attr(el: Tag, attr: str) -> Optional[Tag]:
    """el 自身または祖先のうち、attr 属性を持つ最も近い要素を返す。"""
    cur: Optional[Tag] = el
    while cur is not None and not isinstance(cur, BeautifulSoup):
        if cur.has_attr(attr):
            return cur
        cur = cur.parent
    return None


def class_list(el: Tag) -> list[str]:
    """class 属性をトークンのリストとして返す。"""
    value = el.get("class")
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return list(value)


def text_content(el: Tag) -> str:
    """textContent 相当の文字列を返す。"""
    return el.get_text()


def same_tag_siblings(el: Tag) -> list[Tag]:
    """el と同じタグ名の兄弟要素（el 自身を含む）を返す。"""
    parent = el.parent
    if parent is None:
        return [el]
    return [c for c in element_children(parent) if c.name == el.name]


def document_of(el: Tag) -> Tag:
    """el が属する文書ルートを返す。"""
    cur = el
    while cur.parent is not None:
        cur = cur.parent
    return cur


def inline_style(el: Tag) -> dict[str, str]:
    """インライン style 属性を辞書として返す。"""
    style = el.get("style") or ""
    result: dict[str, str] = {}
    for decl in str(style).split(";"):
        if ":" not in decl:
            continue
        prop, _, value = decl.partition(":")
        result[prop.strip().lower()] = value.strip().lower()
    return result


def set_inline_style(el: Tag, prop: str, value: str) -> None:
    """インライン style の1プロパティを設定する。value が空文字なら削除する。"""
    styles = inline_style(el)
    if value:
        styles[prop] = value
    else:
        styles.pop(prop, None)
    if styles:
        el["style"] = "; ".join(f"{k}: {v}" for k, v in styles.items())
    elif el.has_attr("style"):
        del el["style"]


def _parse_px(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = _PX_PATTERN.match(value)
    return float(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Page 本体
# ---------------------------------------------------------------------------

class Page:
    """HTML 文書・URL・スクロール位置・イベント配送を持つページモデル。"""

    def __init__(
        self,
        html: str,
        url: str = "about:blank",
        *,
        scroll_x: float = 0,
        scroll_y: float = 0,
        config: Optional[CaptureConfig] = None,
    ) -> None:
        """ページを初期化する。

        Args:
            html: HTML 文書
            url: ページの URL（location.href 相当）
            scroll_x: 横スクロール位置
            scroll_y: 縦スクロール位置
            config: 既定矩形サイズ等を含む設定
        """
        self._config = config or CaptureConfig()
        self.soup = BeautifulSoup(html, "lxml")
        self.url = url
        self.scroll_x = scroll_x
        self.scroll_y = scroll_y
        # (type, capture) → ハンドラ一覧
        self._listeners: dict[tuple[str, bool], list[EventHandler]] = {}

    # ----- 文書 -----

    @property
    def document_element(self) -> Optional[Tag]:
        return self.soup.find("html")

    @property
    def body(self) -> Tag:
        body = self.soup.find("body")
        if body is None:
            # lxml は通常 body を補完するが、断片 HTML の場合に備える
            body = self.soup.new_tag("body")
            root = self.document_element or self.soup
            root.append(body)
        return body

    @property
    def head(self) -> Tag:
        head = self.soup.find("head")
        if head is None:
            head = self.soup.new_tag("head")
            root = self.document_element or self.soup
            root.insert(0, head)
        return head

    def query_selector_all(self, selector: str, root: Optional[Tag] = None) -> list[Tag]:
        """CSS セレクタに一致する要素を文書順で返す（querySelectorAll 相当）。"""
        return list((root or self.soup).select(selector))

    def query_selector(self, selector: str, root: Optional[Tag] = None) -> Optional[Tag]:
        """CSS セレクタに一致する最初の要素を返す（querySelector 相当）。"""
        return (root or self.soup).select_one(selector)

    def create_element(
        self,
        name: str,
        attrs: Optional[dict[str, Any]] = None,
        text: Optional[str] = None,
    ) -> Tag:
        """この文書に属する新しい要素を生成する（未挿入）。"""
        el = self.soup.new_tag(name, attrs=attrs or {})
        if text is not None:
            el.string = text
        return el

    def to_html(self) -> str:
        return str(self.soup)

    # ----- location -----

    @property
    def origin(self) -> str:
        parts = urlsplit(self.url)
        if not parts.scheme or not parts.netloc:
            return ""
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def pathname(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def search(self) -> str:
        query = urlsplit(self.url).query
        return f"?{query}" if query else ""

    # ----- レイアウト / スタイル -----

    def rect_of(self, el: Tag) -> Rect:
        """要素の描画矩形を返す（getBoundingClientRect 相当）。"""
        stamped = el.get(RECT_ATTR)
        if stamped:
            try:
                x, y, w, h = (float(v) for v in str(stamped).split(","))
                return Rect(x, y, w, h)
            except ValueError:
                logger.warning("%s の値が不正です: %s", RECT_ATTR, stamped)

        if self._is_hidden(el):
            return Rect()

        styles = inline_style(el)
        width = _parse_px(styles.get("width"))
        height = _parse_px(styles.get("height"))
        return Rect(
            0.0,
            0.0,
            width if width is not None else float(self._config.default_box_width),
            height if height is not None else float(self._config.default_box_height),
        )

    def computed_position(self, el: Tag) -> str:
        """要素の position を返す（getComputedStyle().position 相当）。"""
        inline = inline_style(el).get("position")
        if inline:
            return inline
        stamped = el.get(POSITION_ATTR)
        if stamped:
            return str(stamped)
        return "static"

    def _is_hidden(self, el: Tag) -> bool:
        cur: Optional[Tag] = el
        while cur is not None and not isinstance(cur, BeautifulSoup):
            if tag_name(cur) in _NON_RENDERED_TAGS or cur.has_attr("hidden"):
                return True
            if inline_style(cur).get("display") == "none":
                return True
            if tag_name(cur) == "input" and str(cur.get("type", "")).lower() == "hidden":
                return True
            # 祖先に確定矩形があればそちらを信用する
            if cur is not el and cur.has_attr(RECT_ATTR):
                return False
            cur = cur.parent
        return False

    # ----- フォーム値 -----

    def value_of(self, el: Tag) -> str:
        """フォーム要素の現在値を返す（HTMLInputElement.value 相当）。"""
        name = tag_name(el)
        if name == "textarea":
            return el.get_text()
        if name == "select":
            options = el.find_all("option")
            for option in options:
                if option.has_attr("selected"):
                    return str(option.get("value", option.get_text()))
            if options:
                return str(options[0].get("value", options[0].get_text()))
            return ""
        return str(el.get("value", ""))

    def set_value(self, el: Tag, value: str) -> None:
        """フォーム要素の値を設定する（イベントは発火しない）。"""
        name = tag_name(el)
        if name == "textarea":
            el.string = value
        elif name == "select":
            for option in el.find_all("option"):
                option_value = str(option.get("value", option.get_text()))
                if option_value == value:
                    option["selected"] = ""
                elif option.has_attr("selected"):
                    del option["selected"]
        else:
            el["value"] = value

    # ----- イベント -----

    def add_event_listener(self, event_type: str, handler: EventHandler, capture: bool = False) -> None:
        handlers = self._listeners.setdefault((event_type, capture), [])
        if handler not in handlers:
            handlers.append(handler)

    def remove_event_listener(self, event_type: str, handler: EventHandler, capture: bool = False) -> None:
        handlers = self._listeners.get((event_type, capture), [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event_type: Optional[str] = None) -> int:
        """登録済みリスナー数を返す（event_type 指定時はその種別のみ）。"""
        return sum(
            len(handlers)
            for (etype, _), handlers in self._listeners.items()
            if event_type is None or etype == event_type
        )

    def dispatch(self, event: DomEvent) -> DomEvent:
        """イベントをキャプチャリスナー → 通常リスナーの順に同期配送する。"""
        for capture in (True, False):
            if event.propagation_stopped and not capture:
                break
            for handler in list(self._listeners.get((event.type, capture), [])):
                handler(event)
        return event

    # ----- ユーザー操作の再現 -----

    def click(self, el: Tag) -> DomEvent:
        return self.dispatch(DomEvent("click", target=el))

    def mouse_move(self, el: Tag) -> DomEvent:
        return self.dispatch(DomEvent("mousemove", target=el))

    def press_key(self, key: str, target: Optional[Tag] = None) -> DomEvent:
        return self.dispatch(DomEvent("keydown", target=target or self.body, key=key))

    def type_text(self, el: Tag, value: str, *, change: bool = False) -> None:
        """入力欄の値を value にして input（と任意で change）イベントを発火する。"""
        self.set_value(el, value)
        self.dispatch(DomEvent("input", target=el))
        if change:
            self.dispatch(DomEvent("change", target=el))

    def select_option(self, el: Tag, value: str) -> None:
        """select 要素の選択値を変更し、input → change の順にイベントを発火する。"""
        self.set_value(el, value)
        self.dispatch(DomEvent("input", target=el))
        self.dispatch(DomEvent("change", target=el))

    def scroll_to(self, y: float, x: Optional[float] = None) -> None:
        """スクロール位置を変更し、scroll イベントを発火する。"""
        self.scroll_y = y
        if x is not None:
            self.scroll_x = x
        self.dispatch(DomEvent("scroll"))

    def navigate(self, url: str, html: Optional[str] = None) -> None:
        """beforeunload を発火してから URL（と任意で文書）を差し替える。"""
        self.dispatch(DomEvent("beforeunload"))
        self.url = url
        if html is not None:
            self.soup = BeautifulSoup(html, "lxml")
        self.scroll_x = 0
        self.scroll_y = 0
