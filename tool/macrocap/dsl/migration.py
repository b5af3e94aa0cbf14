"""
旧形式デコーダー — スキーマ検証前にツール定義ドキュメントを現行形式へ変換する

バリデータ本体には互換処理を持ち込まず、検証前の明示的なデコード段として実装する。

対応する旧形式:
  - lanes: ActionStep[][]（名前なしのステップ配列の配列）
      → [{"name": "Lane 1", "steps": [...]}, {"name": "Lane 2", "steps": [...]}]

既に名前付きレーンの形式であれば何も変更しない。
入力ドキュメントは変更せず、必要な場合のみ浅いコピーを返す。
"""

from __future__ import annotations

import logging
from typing import Any

from .schema import DEFAULT_LANE_NAME

logger = logging.getLogger(__name__)

# ドキュメント形式の世代
FORMAT_NAMED_LANES = 2
FORMAT_LEGACY_LANES = 1


def detect_format_version(data: Any) -> int:
    """ツール定義ドキュメントの形式世代を判定する。

    lanes の要素が1つでもリストであれば旧形式とみなす。
    """
    if not isinstance(data, dict):
        return FORMAT_NAMED_LANES
    lanes = data.get("lanes")
    if isinstance(lanes, list) and any(isinstance(lane, list) for lane in lanes):
        return FORMAT_LEGACY_LANES
    return FORMAT_NAMED_LANES


def migrate_lanes(lanes: list[Any]) -> list[Any]:
    """旧形式のレーン配列を名前付きレーンに変換する。

    リストの要素は "Lane i"（1始まり）として包み、それ以外の要素はそのまま残す。
    """
    migrated: list[Any] = []
    for i, lane in enumerate(lanes):
        if isinstance(lane, list):
            migrated.append({"name": DEFAULT_LANE_NAME.format(index=i + 1), "steps": lane})
        else:
            migrated.append(lane)
    return migrated


def decode_tool_document(data: Any) -> Any:
    """ツール定義ドキュメントを現行形式に変換する。

    Args:
        data: JSON / YAML から読み込んだ生データ

    Returns:
        現行形式のドキュメント（変換不要なら入力そのもの）
    """
    if detect_format_version(data) != FORMAT_LEGACY_LANES:
        return data

    decoded = dict(data)
    decoded["lanes"] = migrate_lanes(data["lanes"])
    logger.debug("旧形式の lanes を名前付きレーンに変換しました (%d 本)", len(decoded["lanes"]))
    return decoded


def decode_server_document(data: Any) -> Any:
    """サーバー定義ドキュメント内の各ツール定義を現行形式に変換する。"""
    if not isinstance(data, dict) or not isinstance(data.get("tools"), list):
        return data
    decoded = dict(data)
    decoded["tools"] = [decode_tool_document(tool) for tool in data["tools"]]
    return decoded
