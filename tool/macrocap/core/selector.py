"""
セレクタエンジン — DOM 要素から安定した CSS セレクタ / XPath を生成

マークアップの変化に強いセレクタを優先順位付きで生成する。
上から順に評価し、最初に一意に一致した規則を採用する。

  1. [data-testid="..."]（慣習上一意とみなし、再検証しない）
  2. #id（querySelectorAll で1件一致を確認）
  3. tag[aria-label="..."]（1件一致のみ）
  4. tag[name="..."]（フォーム要素向け、1件一致のみ）
  5. tag[type="..."][placeholder="..."]（input / textarea、1件一致のみ）
  6. body からの構造パス（同一タグの兄弟が2つ以上ある場合のみ :nth-of-type を付与）

どの関数も DOM を変更せず、必ず何らかのセレクタを返す（エラー経路はない）。
属性ベースのセレクタが得られない場合は構造パスに黙って縮退する。
"""

from __future__ import annotations

import logging

import soupsieve
from bs4 import Tag

from ..dom.page import document_of, index_of, parent_element, same_tag_siblings, tag_name

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 補助関数
# ---------------------------------------------------------------------------

def css_escape(ident: str) -> str:
    """CSS 識別子をエスケープする（CSS.escape 相当）。"""
    return soupsieve.escape(ident)


def quote_attr(value: str) -> str:
    """属性セレクタのダブルクォート内に埋め込めるよう値をエスケープする。"""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def count_matches(root: Tag, selector: str) -> int:
    """root 配下で selector に一致する要素数を返す。構文エラーは 0 件として扱う。"""
    try:
        return len(root.select(selector))
    except soupsieve.SelectorSyntaxError:
        logger.debug("セレクタの構文が不正なため一致なしとして扱います: %s", selector)
        return 0


def _attr(el: Tag, name: str) -> str:
    value = el.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


# ---------------------------------------------------------------------------
# 公開 API
# ---------------------------------------------------------------------------

def generate_selector(element: Tag) -> str:
    """要素を特定する安定した CSS セレクタを生成する。

    Args:
        element: 対象要素

    Returns:
        CSS セレクタ文字列
    """
    doc = document_of(element)
    tag = tag_name(element)

    test_id = _attr(element, "data-testid")
    if test_id:
        return f'[data-testid="{quote_attr(test_id)}"]'

    el_id = _attr(element, "id")
    if el_id:
        selector = f"#{css_escape(el_id)}"
        if count_matches(doc, selector) == 1:
            return selector

    aria_label = _attr(element, "aria-label")
    if aria_label:
        selector = f'{tag}[aria-label="{quote_attr(aria_label)}"]'
        if count_matches(doc, selector) == 1:
            return selector

    name = _attr(element, "name")
    if name:
        selector = f'{tag}[name="{quote_attr(name)}"]'
        if count_matches(doc, selector) == 1:
            return selector

    if tag in ("input", "textarea"):
        input_type = _attr(element, "type") or "text"
        placeholder = _attr(element, "placeholder")
        if placeholder:
            selector = (
                f'{tag}[type="{quote_attr(input_type)}"]'
                f'[placeholder="{quote_attr(placeholder)}"]'
            )
            if count_matches(doc, selector) == 1:
                return selector

    return build_structural_path(element)


def build_structural_path(element: Tag) -> str:
    """body から要素までの構造パスを生成する。

    同一タグの兄弟が1つだけならタグ名のみ、2つ以上なら :nth-of-type(k) を付与する。
    再描画で兄弟の並びが変わった場合の頑健性は保証しない。
    """
    parts: list[str] = []
    current: Tag = element
    root = document_of(element).find("html")

    while current is not None and current is not root:
        parent = parent_element(current)
        if parent is None:
            break

        tag = tag_name(current)
        siblings = same_tag_siblings(current)
        if len(siblings) == 1:
            parts.insert(0, tag)
        else:
            parts.insert(0, f"{tag}:nth-of-type({index_of(siblings, current) + 1})")

        current = parent
        if tag_name(current) == "body":
            parts.insert(0, "body")
            break

    return " > ".join(parts) or tag_name(element)


def generate_xpath(element: Tag) -> str:
    """文書ルートまでの構造のみで XPath を生成する（属性は使用しない）。"""
    parts: list[str] = []
    current: Tag = element

    while current is not None:
        tag = tag_name(current)
        parent = parent_element(current)
        if parent is None:
            parts.insert(0, f"/{tag}")
            break

        siblings = same_tag_siblings(current)
        if len(siblings) == 1:
            parts.insert(0, f"/{tag}")
        else:
            parts.insert(0, f"/{tag}[{index_of(siblings, current) + 1}]")
        current = parent

    return "".join(parts)
