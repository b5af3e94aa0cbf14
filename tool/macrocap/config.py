"""
キャプチャ設定 — 環境変数・CLI 引数からの設定読み込み

レコーダー / ピッカーの閾値やデバウンス時間を環境変数または CLI 引数で制御する。
CLI 引数 > 環境変数 > デフォルト値 の優先順位で適用される。

環境変数一覧:
  MACROCAP_INPUT_DEBOUNCE_MS  : テキスト入力のデバウンス時間（デフォルト: 500）
  MACROCAP_SCROLL_DEBOUNCE_MS : スクロールのデバウンス時間（デフォルト: 300）
  MACROCAP_SCROLL_THRESHOLD_PX: スクロールとみなす最小移動量（デフォルト: 50）
  MACROCAP_LIST_MIN_ITEMS     : リスト候補の最小要素数（デフォルト: 3）
  MACROCAP_MAX_GROUPS         : リスト候補の最大グループ数（デフォルト: 15）
  MACROCAP_PREVIEW_ITEMS      : プレビューに含める要素数（デフォルト: 3）
  MACROCAP_VIEWPORT           : キャプチャ時のビューポート（WIDTHxHEIGHT, デフォルト: 1280x720）
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 環境変数キー定数
# ---------------------------------------------------------------------------

_ENV_INPUT_DEBOUNCE_MS = "MACROCAP_INPUT_DEBOUNCE_MS"
_ENV_SCROLL_DEBOUNCE_MS = "MACROCAP_SCROLL_DEBOUNCE_MS"
_ENV_SCROLL_THRESHOLD_PX = "MACROCAP_SCROLL_THRESHOLD_PX"
_ENV_LIST_MIN_ITEMS = "MACROCAP_LIST_MIN_ITEMS"
_ENV_MAX_GROUPS = "MACROCAP_MAX_GROUPS"
_ENV_PREVIEW_ITEMS = "MACROCAP_PREVIEW_ITEMS"
_ENV_VIEWPORT = "MACROCAP_VIEWPORT"

# 整数値として読み込む環境変数と設定属性の対応
_INT_ENV_FIELDS: dict[str, str] = {
    _ENV_INPUT_DEBOUNCE_MS: "input_debounce_ms",
    _ENV_SCROLL_DEBOUNCE_MS: "scroll_debounce_ms",
    _ENV_SCROLL_THRESHOLD_PX: "scroll_threshold_px",
    _ENV_LIST_MIN_ITEMS: "list_min_items",
    _ENV_MAX_GROUPS: "max_groups",
    _ENV_PREVIEW_ITEMS: "preview_items",
}


# ---------------------------------------------------------------------------
# 設定データクラス
# ---------------------------------------------------------------------------

@dataclass
class CaptureConfig:
    """レコーダー / ピッカーの実行時設定。

    Attributes:
        input_debounce_ms: テキスト入力を1ステップにまとめる待機時間
        scroll_debounce_ms: スクロールを1ステップにまとめる待機時間
        scroll_threshold_px: これ未満のスクロール量はノイズとして破棄する
        list_min_items: リスト候補とみなす同一タグ兄弟要素の最小数
        list_min_items_without_class: 共通クラスがない場合に必要な最小数
        min_item_width: 候補要素の最小描画幅（px）
        min_item_height: 候補要素の最小描画高さ（px）
        max_parents: リスト検出で調べる親要素の上限
        max_groups: リスト候補グループの上限
        preview_items: プレビューに含める要素数
        default_box_width: レイアウト情報がない要素の既定幅
        default_box_height: レイアウト情報がない要素の既定高さ
        ui_marker_attr: ツール UI を示すマーカー属性（記録対象外）
        class_prefix: ページに注入するクラス名の接頭辞
        viewport_width: キャプチャ時のビューポート幅
        viewport_height: キャプチャ時のビューポート高さ
    """

    input_debounce_ms: int = 500
    scroll_debounce_ms: int = 300
    scroll_threshold_px: int = 50
    list_min_items: int = 3
    list_min_items_without_class: int = 5
    min_item_width: int = 30
    min_item_height: int = 20
    max_parents: int = 200
    max_groups: int = 15
    preview_items: int = 3
    default_box_width: int = 200
    default_box_height: int = 40
    ui_marker_attr: str = "data-macrocap-ui"
    class_prefix: str = "macrocap-"
    viewport_width: int = 1280
    viewport_height: int = 720


# ---------------------------------------------------------------------------
# 環境変数からの読み込み
# ---------------------------------------------------------------------------

def _parse_viewport(value: str) -> tuple[int, int]:
    """"WIDTHxHEIGHT" 形式の文字列を (幅, 高さ) に変換する。

    Raises:
        ValueError: 形式が不正な場合
    """
    w, h = value.lower().split("x")
    return int(w), int(h)


def load_config_from_env() -> CaptureConfig:
    """環境変数から CaptureConfig を生成する。

    設定されていない環境変数、または値が不正な環境変数はデフォルト値を使用する。

    Returns:
        環境変数から読み込んだ設定
    """
    config = CaptureConfig()

    for env_key, attr in _INT_ENV_FIELDS.items():
        if env_key not in os.environ:
            continue
        try:
            value = int(os.environ[env_key])
        except ValueError:
            logger.warning("%s の値が不正です: %s", env_key, os.environ[env_key])
            continue
        if value < 0:
            logger.warning("%s に負の値は指定できません: %s", env_key, value)
            continue
        setattr(config, attr, value)

    if _ENV_VIEWPORT in os.environ:
        try:
            config.viewport_width, config.viewport_height = _parse_viewport(
                os.environ[_ENV_VIEWPORT]
            )
        except ValueError:
            logger.warning("%s の形式が不正です: %s (WIDTHxHEIGHT)", _ENV_VIEWPORT, os.environ[_ENV_VIEWPORT])

    logger.debug("設定を読み込みました: %s", config)
    return config


def apply_cli_args(config: CaptureConfig, args: Any) -> CaptureConfig:
    """CLI 引数を CaptureConfig に適用する。

    CLI 引数が指定されている（None でない）場合のみ上書きする。

    Args:
        config: ベースとなる設定（環境変数から読み込み済み）
        args: 属性として input_debounce_ms / scroll_debounce_ms / viewport 等を持つオブジェクト

    Returns:
        CLI 引数が適用された設定
    """
    for attr in _INT_ENV_FIELDS.values():
        value = getattr(args, attr, None)
        if value is not None:
            setattr(config, attr, int(value))

    viewport_str = getattr(args, "viewport", None)
    if viewport_str is not None:
        try:
            config.viewport_width, config.viewport_height = _parse_viewport(str(viewport_str))
        except ValueError:
            logger.warning("--viewport の形式が不正です: %s (WIDTHxHEIGHT)", viewport_str)

    return config
