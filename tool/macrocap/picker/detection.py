"""
リスト自動検出 — ページ内の繰り返し構造を候補グループとして列挙する

検出手順（一般要素）:
  1. body 配下の全要素のうち、子要素を3つ以上持つものを親候補とする（親ごとに1回）
  2. 子要素をタグ名でグループ化し、3つ以上のグループを対象とする
  3. 全メンバーが共通して持つクラス（動的 / ユーティリティ系を除く）を探す
  4. 共通クラスがなく、メンバー数が5未満のグループは誤検出として除外する
  5. 描画サイズが 30x20px 以上のメンバーだけを残す
  6. 採用した親は訪問済みとし、入れ子の再検出を防ぐ

テーブルは構造スコア（thead / tbody / th / 行数 / caption / 入れ子）で別途判定し、
行を要素とする候補として追加する。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal, Optional

from bs4 import Tag

from ..config import CaptureConfig
from ..core.selector import css_escape, generate_selector
from ..dom.page import Page, class_list, closest_with_attr, element_children, tag_name

logger = logging.getLogger(__name__)

# テーブルとして採用する最小スコア
TABLE_SCORE_THRESHOLD = 5
# テーブル行として扱う最小の描画高さ
_MIN_ROW_HEIGHT = 10

_SHORT_PREFIX_RE = re.compile(r"^[a-z]{1,2}-")
_CSS_MODULE_HASH_RE = re.compile(r"^[a-zA-Z]{1,3}[A-Z][a-zA-Z]{4,}$")
_UTILITY_PREFIX_RE = re.compile(r"^(bg|text|flex|grid|p|m|w|h)-")


@dataclass
class ListCandidate:
    """繰り返し構造として検出された候補グループ。

    Attributes:
        parent: メンバーの親要素（テーブル候補ではテーブル要素）
        selector: 全メンバーに一致するコンテナセレクタ
        key: 重複排除キー（tag.sharedClass または parent>tag）
        items: 描画されている（サイズ条件を満たす）メンバー
        total: サイズで絞り込む前のメンバー数
        shared_class: 全メンバー共通のクラス（なければ None）
        kind: "list" または "table"
    """

    parent: Tag
    selector: str
    key: str
    items: list[Tag] = field(default_factory=list)
    total: int = 0
    shared_class: Optional[str] = None
    kind: Literal["list", "table"] = "list"


# ---------------------------------------------------------------------------
# クラス名の判定
# ---------------------------------------------------------------------------

def is_dynamic_class(cls: str, config: Optional[CaptureConfig] = None) -> bool:
    """自動生成・ユーティリティ系のクラス名なら True を返す。

    短すぎるもの、"a-" 形式の短い接頭辞、CSS Modules のハッシュ風、
    Tailwind 風ユーティリティ、ピッカー自身が注入するクラスを対象とする。
    """
    prefix = (config or CaptureConfig()).class_prefix
    if len(cls) < 3:
        return True
    if cls.startswith(prefix):
        return True
    if _SHORT_PREFIX_RE.match(cls):
        return True
    if _CSS_MODULE_HASH_RE.match(cls):
        return True
    if _UTILITY_PREFIX_RE.match(cls):
        return True
    return False


def find_shared_class(items: list[Tag], config: Optional[CaptureConfig] = None) -> Optional[str]:
    """全要素が共通して持つ安定したクラス名を、先頭要素のクラス順で探す。"""
    if not items:
        return None
    for cls in class_list(items[0]):
        if is_dynamic_class(cls, config):
            continue
        if all(cls in class_list(el) for el in items):
            return cls
    return None


# ---------------------------------------------------------------------------
# 一般要素のリスト検出
# ---------------------------------------------------------------------------

def _group_by_tag(children: list[Tag]) -> dict[str, list[Tag]]:
    groups: dict[str, list[Tag]] = {}
    for child in children:
        groups.setdefault(tag_name(child), []).append(child)
    return groups


def _is_visible_item(page: Page, el: Tag, config: CaptureConfig) -> bool:
    rect = page.rect_of(el)
    return rect.width >= config.min_item_width and rect.height >= config.min_item_height


def detect_list_candidates(page: Page, config: Optional[CaptureConfig] = None) -> list[ListCandidate]:
    """ページ内の繰り返し構造（リスト / テーブル）を検出する。

    Args:
        page: 対象ページ
        config: 閾値・上限の設定

    Returns:
        検出された候補グループ（最大 config.max_groups 件）
    """
    config = config or CaptureConfig()
    candidates: list[ListCandidate] = []
    seen_keys: set[str] = set()
    visited: set[int] = set()
    checked = 0

    for parent in page.query_selector_all("body *"):
        if checked >= config.max_parents or len(candidates) >= config.max_groups:
            break
        children = element_children(parent)
        if len(children) < config.list_min_items or id(parent) in visited:
            continue
        if closest_with_attr(parent, config.ui_marker_attr) is not None:
            continue
        checked += 1

        for tag, items in _group_by_tag(children).items():
            if len(candidates) >= config.max_groups:
                break
            if len(items) < config.list_min_items:
                continue
            shared = find_shared_class(items, config)
            if shared is None and len(items) < config.list_min_items_without_class:
                continue

            parent_selector = generate_selector(parent)
            if shared:
                selector = f"{parent_selector} > {tag}.{css_escape(shared)}"
                key = f"{tag}.{shared}"
            else:
                selector = f"{parent_selector} > {tag}"
                key = f"{parent_selector}>{tag}"
            if key in seen_keys:
                continue

            visible = [el for el in items if _is_visible_item(page, el, config)]
            if len(visible) < config.list_min_items:
                logger.debug("描画サイズ条件を満たす要素が不足しています: %s", selector)
                continue

            visited.add(id(parent))
            seen_keys.add(key)
            candidates.append(ListCandidate(
                parent=parent,
                selector=selector,
                key=key,
                items=visible,
                total=len(items),
                shared_class=shared,
            ))

    candidates.extend(detect_table_candidates(page, config, existing=candidates, visited=visited))
    logger.info("リスト候補を %d 件検出しました (親要素 %d 件を検査)", len(candidates), checked)
    return candidates


# ---------------------------------------------------------------------------
# テーブル検出
# ---------------------------------------------------------------------------

def score_table(table: Tag) -> int:
    """テーブルがデータテーブルらしいかをスコア化する。"""
    score = 0
    if table.select_one("thead") is not None:
        score += 2
    if table.select_one("tbody") is not None:
        score += 2
    if table.select_one("th") is not None:
        score += 2
    rows = table.select("tr")
    if len(rows) >= 3:
        score += 1
    if len(rows) >= 10:
        score += 1
    if table.select_one("table") is not None:
        score -= 3
    if table.select_one("caption") is not None:
        score += 1
    return score


def detect_table_candidates(
    page: Page,
    config: Optional[CaptureConfig] = None,
    *,
    existing: Optional[list[ListCandidate]] = None,
    visited: Optional[set[int]] = None,
) -> list[ListCandidate]:
    """スコアが閾値以上のテーブルを、行を要素とする候補として返す。

    existing の候補と合わせて config.max_groups 件を超えないようにする。
    行の親が既に一般要素の候補として採用されている場合は追加しない。
    """
    config = config or CaptureConfig()
    existing = existing or []
    visited = visited if visited is not None else set()
    found: list[ListCandidate] = []
    seen_selectors = {c.selector for c in existing}

    for table in page.query_selector_all("table"):
        if len(existing) + len(found) >= config.max_groups:
            break
        score = score_table(table)
        if score < TABLE_SCORE_THRESHOLD:
            continue

        table_selector = generate_selector(table)
        tbody = table.select_one("tbody")
        if tbody is not None:
            row_selector = f"{table_selector} > tbody > tr"
            rows = table.select("tbody > tr")
        else:
            row_selector = f"{table_selector} > tr"
            rows = table.select("tr")
        if row_selector in seen_selectors:
            continue
        if tbody is not None and id(tbody) in visited:
            continue

        data_rows = []
        for row in rows:
            rect = page.rect_of(row)
            if rect.width >= config.min_item_width and rect.height >= _MIN_ROW_HEIGHT:
                data_rows.append(row)
        if len(data_rows) < config.list_min_items:
            continue

        seen_selectors.add(row_selector)
        found.append(ListCandidate(
            parent=table,
            selector=row_selector,
            key=row_selector,
            items=data_rows,
            total=len(data_rows),
            kind="table",
        ))
        logger.debug("テーブル候補を検出しました: %s (score=%d)", row_selector, score)

    return found
