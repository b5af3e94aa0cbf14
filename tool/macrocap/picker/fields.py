"""
自動フィールド検出 — 代表要素から抽出フィールドを推定する

代表要素（リストの1項目）を再帰的に走査し、値を持つ葉要素を抽出候補とする。

  - 面積 0 の要素とツール UI はスキップ
  - <a href> / <img src> / フォーム要素は常に葉候補（画像・フォームの内部は走査しない）
  - それ以外は、テキストを持ち、子要素が3つ以下で、ブロック要素の直接の子を持たない場合のみ葉候補
    （ブロック要素の子があれば子へ再帰する）

候補ごとに、代表要素からの相対セレクタ・抽出方法・キー名を決める。
キーは数値サフィックスで一意化する。
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import Tag

from ..config import CaptureConfig
from ..core.selector import count_matches, css_escape, generate_selector
from ..dom.page import (
    Page,
    class_list,
    closest_with_attr,
    element_children,
    index_of,
    parent_element,
    same_tag_siblings,
    tag_name,
    text_content,
)
from ..dsl.schema import ExtractionField
from .detection import is_dynamic_class

logger = logging.getLogger(__name__)

MAX_DEPTH = 15
MAX_CANDIDATES = 20
MAX_LEAF_CHILDREN = 3

BLOCK_TAGS = frozenset({
    "div", "p", "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "table", "section", "article",
})
FORM_TAGS = frozenset({"input", "textarea", "select"})

# data-* 属性名をキーに使う場合の長さ（"data-" を除いた部分）
DATA_KEY_MIN_LEN = 3
DATA_KEY_MAX_LEN = 20

# テキスト等からキーを作れなかった場合のタグ別キー
_TAG_FALLBACK_KEYS = {"time": "date", "a": "link", "img": "image"}

_SLUG_RE = re.compile(r"[^a-z0-9]+")

# 抽出値が見つからない代表要素に使う全文フィールド
CATCH_ALL_SELECTOR = "*"


def catch_all_field() -> ExtractionField:
    """要素全体のテキストを取り出すフィールド。"""
    return ExtractionField(key="text", selector=CATCH_ALL_SELECTOR, type="text")


# ---------------------------------------------------------------------------
# キー名
# ---------------------------------------------------------------------------

def slugify(value: str) -> str:
    """英小文字・数字・アンダースコアのキー名に変換する（最大30文字）。"""
    slug = _SLUG_RE.sub("_", value.lower()).strip("_")[:30]
    return slug or "field"


class FieldKeyRegistry:
    """1つの抽出ステップ内でフィールドキーを一意化する。"""

    def __init__(self) -> None:
        self._used: set[str] = set()

    def claim(self, base: str) -> str:
        """base が未使用ならそのまま、使用済みなら base_2, base_3, ... を返して登録する。"""
        key = base
        i = 2
        while key in self._used:
            key = f"{base}_{i}"
            i += 1
        self._used.add(key)
        return key


def generate_field_key(el: Tag, index: int, config: Optional[CaptureConfig] = None) -> str:
    """要素からフィールドキーの候補を生成する。

    aria-label → name → 安定したクラス名 → テキスト（先頭20文字）の順に採用する。
    どれも無い場合は data-* 属性名 → タグ別キー（time は "date"、a は "link"、img は "image"）
    → field_<index> の順。ツール自身が付ける data-* 属性は使わない。
    """
    for attr in ("aria-label", "name"):
        value = el.get(attr)
        if value:
            return slugify(str(value))

    for cls in class_list(el):
        if len(cls) > 3 and not is_dynamic_class(cls, config):
            return slugify(cls)

    text = text_content(el).strip()[:20]
    if text:
        return slugify(text)

    own_prefix = f"data-{(config or CaptureConfig()).class_prefix}"
    for attr in el.attrs:
        if not attr.startswith("data-") or attr.startswith(own_prefix):
            continue
        name = attr[len("data-"):]
        if DATA_KEY_MIN_LEN <= len(name) <= DATA_KEY_MAX_LEN:
            return slugify(name)
    return _TAG_FALLBACK_KEYS.get(tag_name(el), f"field_{index}")


# ---------------------------------------------------------------------------
# 抽出方法・相対セレクタ
# ---------------------------------------------------------------------------

def infer_extraction_type(el: Tag) -> str:
    """タグ名から抽出方法を推定する。"""
    tag = tag_name(el)
    if tag in FORM_TAGS:
        return "value"
    if tag in ("a", "img"):
        return "attribute"
    return "text"


def attribute_for(el: Tag) -> str:
    """attribute 抽出で読む属性名。"""
    return "href" if tag_name(el) == "a" else "src"


def unique_class_name(el: Tag, scope: Tag, config: Optional[CaptureConfig] = None) -> Optional[str]:
    """scope 配下で el だけが持つ安定したクラス名を返す。"""
    for cls in class_list(el):
        if is_dynamic_class(cls, config):
            continue
        if count_matches(scope, f".{css_escape(cls)}") == 1:
            return cls
    return None


def generate_relative_selector(el: Tag, container: Tag, config: Optional[CaptureConfig] = None) -> str:
    """container から el を特定する相対 CSS セレクタを生成する。

    container 内で一意なクラスを持つ祖先（el 自身を含む）があればそこで打ち切り、
    それ以外は tag または tag:nth-of-type(k) をつなぐ。el が container 自身なら "*"。
    """
    parts: list[str] = []
    current: Optional[Tag] = el
    while current is not None and current is not container:
        parent = parent_element(current)
        if parent is None:
            break
        cls = unique_class_name(current, container, config)
        if cls:
            parts.insert(0, f".{css_escape(cls)}")
            break
        siblings = same_tag_siblings(current)
        tag = tag_name(current)
        if len(siblings) == 1:
            parts.insert(0, tag)
        else:
            parts.insert(0, f"{tag}:nth-of-type({index_of(siblings, current) + 1})")
        current = parent
    return " > ".join(parts) or CATCH_ALL_SELECTOR


def build_field(
    el: Tag,
    container: Optional[Tag],
    keys: FieldKeyRegistry,
    index: int,
    config: Optional[CaptureConfig] = None,
) -> ExtractionField:
    """1要素分の抽出フィールドを生成する（キーは keys で一意化される）。

    container が None の場合は文書全体で一意なセレクタを使う。
    """
    extraction_type = infer_extraction_type(el)
    if container is None:
        selector = generate_selector(el)
    else:
        selector = generate_relative_selector(el, container, config)
    return ExtractionField(
        key=keys.claim(generate_field_key(el, index, config)),
        selector=selector,
        type=extraction_type,
        attribute=attribute_for(el) if extraction_type == "attribute" else None,
    )


# ---------------------------------------------------------------------------
# 自動フィールド検出
# ---------------------------------------------------------------------------

def _collect_candidates(page: Page, item: Tag, config: CaptureConfig) -> list[Tag]:
    candidates: list[Tag] = []

    def walk(el: Tag, depth: int) -> None:
        if depth > MAX_DEPTH or len(candidates) >= MAX_CANDIDATES:
            return
        if closest_with_attr(el, config.ui_marker_attr) is not None:
            return
        if page.rect_of(el).area == 0:
            return

        tag = tag_name(el)
        if (tag == "a" and el.get("href")) or (tag == "img" and el.get("src")) or tag in FORM_TAGS:
            candidates.append(el)
            return

        children = element_children(el)
        text = text_content(el).strip()
        has_block_child = any(tag_name(c) in BLOCK_TAGS for c in children)
        if text and len(children) <= MAX_LEAF_CHILDREN and not has_block_child:
            candidates.append(el)
            return

        for child in children:
            walk(child, depth + 1)

    for child in element_children(item):
        walk(child, 0)
    return candidates


def auto_detect_fields(page: Page, item: Tag, config: Optional[CaptureConfig] = None) -> list[ExtractionField]:
    """代表要素から抽出フィールドを自動検出する。

    テキストを持つ <a> には、href とは別に "<key>_text" のテキストフィールドを追加する。
    候補が見つからない場合は空リストを返す。
    """
    config = config or CaptureConfig()
    keys = FieldKeyRegistry()
    fields: list[ExtractionField] = []

    for el in _collect_candidates(page, item, config):
        base = generate_field_key(el, len(fields), config)
        extraction_type = infer_extraction_type(el)
        selector = generate_relative_selector(el, item, config)
        fields.append(ExtractionField(
            key=keys.claim(base),
            selector=selector,
            type=extraction_type,
            attribute=attribute_for(el) if extraction_type == "attribute" else None,
        ))
        if tag_name(el) == "a" and text_content(el).strip():
            fields.append(ExtractionField(key=keys.claim(f"{base}_text"), selector=selector, type="text"))

    logger.debug("フィールドを %d 件検出しました", len(fields))
    return fields


def auto_detect_table_fields(page: Page, row: Tag, config: Optional[CaptureConfig] = None) -> list[ExtractionField]:
    """テーブル行からセル単位の抽出フィールドを生成する。

    キーはヘッダー（th）のテキストから、なければ col_<n> とする。
    セル内のリンク / 画像は "_url" / "_img" フィールドとして追加する。
    """
    config = config or CaptureConfig()
    keys = FieldKeyRegistry()
    fields: list[ExtractionField] = []

    headers: list[str] = []
    table = row.find_parent("table")
    if table is not None:
        headers = [text_content(th).strip() for th in table.select("thead th, tr:first-child th")]

    for idx, cell in enumerate(element_children(row)):
        tag = tag_name(cell)
        if tag not in ("td", "th"):
            continue
        if page.rect_of(cell).area == 0:
            continue

        header = headers[idx] if idx < len(headers) else ""
        base = slugify(header) if header else f"col_{idx + 1}"
        selector = f"{tag}:nth-child({idx + 1})"
        fields.append(ExtractionField(key=keys.claim(base), selector=selector, type="text"))

        link = cell.select_one("a[href]")
        if link is not None and text_content(link).strip():
            fields.append(ExtractionField(
                key=keys.claim(f"{base}_url"), selector=f"{selector} a", type="attribute", attribute="href",
            ))
        img = cell.select_one("img[src]")
        if img is not None:
            fields.append(ExtractionField(
                key=keys.claim(f"{base}_img"), selector=f"{selector} img", type="attribute", attribute="src",
            ))

    return fields


def detect_fields_for(page: Page, representative: Tag, config: Optional[CaptureConfig] = None) -> list[ExtractionField]:
    """代表要素の種類に応じて検出方法を選び、空なら全文フィールドで補う。"""
    if tag_name(representative) == "tr":
        fields = auto_detect_table_fields(page, representative, config)
    else:
        fields = auto_detect_fields(page, representative, config)
    return fields or [catch_all_field()]
