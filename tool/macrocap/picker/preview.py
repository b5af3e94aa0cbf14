"""
プレビュー生成 — 抽出ステップをライブ DOM に適用して結果の見本を作る

プレビューはキャッシュに頼らず、その時点の DOM を再検索して作る。
セレクタが何にも一致しないフィールドは None になり、プレビュー全体は中断しない。
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Optional, Union

import soupsieve
from bs4 import Tag

from ..config import CaptureConfig
from ..dom.page import Page, class_list, same_tag_siblings, text_content
from ..dsl.schema import ExtractionField, ExtractStep
from .fields import CATCH_ALL_SELECTOR

logger = logging.getLogger(__name__)

PreviewRow = dict[str, Any]
Preview = Union[list[PreviewRow], PreviewRow]

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)")
_NON_NUMERIC_RE = re.compile(r"[^\d.,\-]")


# ---------------------------------------------------------------------------
# 値の取り出し
# ---------------------------------------------------------------------------

def _select_one(root: Tag, selector: str) -> Optional[Tag]:
    if selector == CATCH_ALL_SELECTOR:
        return root
    try:
        return root.select_one(selector)
    except soupsieve.SelectorSyntaxError:
        logger.warning("プレビューのセレクタが不正です: %s", selector)
        return None


def _select_all(root: Tag, selector: str) -> list[Tag]:
    try:
        return list(root.select(selector))
    except soupsieve.SelectorSyntaxError:
        logger.warning("プレビューのセレクタが不正です: %s", selector)
        return []


def _parse_number(value: str) -> Optional[float]:
    cleaned = _NON_NUMERIC_RE.sub("", value).replace(",", "")
    match = _NUMBER_RE.match(cleaned)
    if match is None:
        return None
    number = float(match.group(0))
    return number or None


def apply_transform(value: Optional[str], field: ExtractionField) -> Any:
    """フィールドの transform を適用する。値がなければ default を返す。"""
    if value is None:
        return field.default
    if field.transform is None:
        return value
    if field.transform == "trim":
        return value.strip()
    if field.transform == "lowercase":
        return value.lower()
    if field.transform == "uppercase":
        return value.upper()
    if field.transform == "number":
        return _parse_number(value)
    return value


def _field_value(root: Tag, field: ExtractionField, page: Page, missing: Any) -> Any:
    if field.type == "nested_list":
        return [_sub_row(item, field.fields or [], page) for item in _select_all(root, field.selector)]
    el = _select_one(root, field.selector)
    if el is None:
        return missing
    return extract_value(el, field, page)


def _sub_row(root: Tag, fields: list[ExtractionField], page: Page) -> PreviewRow:
    return {sub.key: _field_value(root, sub, page, sub.default) for sub in fields}


def extract_value(el: Tag, field: ExtractionField, page: Page) -> Any:
    """セレクタで特定済みの要素からフィールドの値を取り出す。

    nested は el を起点にサブフィールドを取り出す。nested_list は el 1件分の行として扱う。
    """
    if field.type == "html":
        return el.decode_contents()
    if field.type == "value":
        return apply_transform(page.value_of(el), field)
    if field.type == "attribute":
        value = el.get(field.attribute or "")
        if isinstance(value, list):
            value = " ".join(value)
        return apply_transform(value or "", field)
    if field.type == "regex":
        text = text_content(el).strip()
        match = re.search(field.pattern, text) if field.pattern else None
        if match is None:
            return field.default
        return apply_transform(match.group(1) if match.groups() and match.group(1) else match.group(0), field)
    if field.type == "nested":
        if not field.fields:
            return field.default if field.default is not None else {}
        return _sub_row(el, field.fields, page)
    if field.type == "nested_list":
        return [_sub_row(el, field.fields or [], page)]
    return apply_transform(text_content(el).strip(), field)


def preview_row(item: Tag, fields: list[ExtractionField], page: Page) -> PreviewRow:
    """1要素分のプレビュー行を作る。一致しないフィールドは None。"""
    return {field.key: _field_value(item, field, page, None) for field in fields}


# ---------------------------------------------------------------------------
# プレビュー対象の解決
# ---------------------------------------------------------------------------

def preview_items(
    page: Page,
    step: ExtractStep,
    representative: Optional[Tag] = None,
    config: Optional[CaptureConfig] = None,
) -> list[Tag]:
    """プレビューに使う要素をライブ DOM から取得する。

    list モードは containerSelector の一致要素（なければ代表要素の同一タグ兄弟）の先頭
    config.preview_items 件、single モードは最初の一致要素（なければ代表要素）。
    """
    config = config or CaptureConfig()
    matches = _select_all(page.soup, step.containerSelector) if step.containerSelector else []

    if step.mode == "list":
        if not matches and representative is not None:
            matches = same_tag_siblings(representative)
        return matches[: config.preview_items]

    if matches:
        return matches[:1]
    return [representative] if representative is not None else []


def generate_preview(
    page: Page,
    step: ExtractStep,
    representative: Optional[Tag] = None,
    config: Optional[CaptureConfig] = None,
) -> Preview:
    """抽出ステップのプレビューを生成する（list はリスト、single は辞書）。"""
    items = preview_items(page, step, representative, config)
    if step.mode == "list":
        return [preview_row(item, step.fields, page) for item in items]
    if not items:
        return {}
    return preview_row(items[0], step.fields, page)


def preview_html(items: list[Tag], config: Optional[CaptureConfig] = None) -> list[str]:
    """プレビュー要素から注入 UI とピッカーのクラスを除いた outer HTML を返す。"""
    config = config or CaptureConfig()
    result: list[str] = []
    for item in items:
        clone = copy.copy(item)
        for node in clone.select(f"[{config.ui_marker_attr}]"):
            node.decompose()
        for el in [clone, *clone.find_all(True)]:
            classes = [c for c in class_list(el) if not c.startswith(config.class_prefix)]
            if classes:
                el["class"] = classes
            elif el.has_attr("class"):
                del el["class"]
        result.append(str(clone))
    return result
