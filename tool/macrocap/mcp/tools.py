"""
MCP ツール実装 — サーバーに公開する操作の本体

FastMCP への登録は server.py が行い、ここでは JSON 互換の入出力を持つ
通常の関数として実装する（CLI からも同じ関数を利用する）。
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..config import CaptureConfig
from ..dom.page import Page, text_content
from ..dsl.parser import ToolSchemaValidationError, dump_tool_definition, parse_tool_definition
from ..dsl.schema import ToolDefinition
from ..dsl.template import parameters_to_json_schema, resolve_step, resolve_template
from ..picker.detection import ListCandidate, detect_list_candidates
from ..picker.element_picker import ElementPicker, PickerResult

logger = logging.getLogger(__name__)

# 候補一覧に含めるサンプルテキストの長さ
_SAMPLE_TEXT_LENGTH = 80


def validate_tool(definition: Any) -> dict[str, Any]:
    """ツール定義を検証し、結果を辞書で返す。"""
    try:
        tool = parse_tool_definition(definition)
    except ToolSchemaValidationError as e:
        return {
            "valid": False,
            "issues": [{"location": i.location, "message": i.message} for i in e.issues],
        }
    return {
        "valid": True,
        "issues": [],
        "name": tool.name,
        "steps": len(tool.steps),
        "lanes": len(tool.effective_lanes()),
    }


def tool_parameters_schema(definition: Any) -> dict[str, Any]:
    """ツール定義のパラメータを JSON Schema に変換する。

    Raises:
        ToolSchemaValidationError: 定義が不正な場合
    """
    return parameters_to_json_schema(parse_tool_definition(definition).parameters)


def render_tool(tool: ToolDefinition, args: Mapping[str, Any]) -> ToolDefinition:
    """全ステップ（レーン内を含む）のテンプレートを解決したツール定義を返す。"""
    updates: dict[str, Any] = {"steps": [resolve_step(s, args) for s in tool.steps]}
    if tool.lanes:
        updates["lanes"] = [
            lane.model_copy(update={"steps": [resolve_step(s, args) for s in lane.steps]})
            for lane in tool.lanes
        ]
    return tool.model_copy(update=updates)


def render_template(template: str, args: Optional[Mapping[str, Any]] = None) -> str:
    """単一のテンプレート文字列を解決する。"""
    return resolve_template(template, args or {})


def _describe_candidate(index: int, candidate: ListCandidate) -> dict[str, Any]:
    sample = text_content(candidate.items[0]).strip() if candidate.items else ""
    return {
        "index": index,
        "selector": candidate.selector,
        "kind": candidate.kind,
        "itemCount": len(candidate.items),
        "sharedClass": candidate.shared_class,
        "sample": " ".join(sample.split())[:_SAMPLE_TEXT_LENGTH],
    }


def detect_lists(
    html: str,
    url: str = "about:blank",
    config: Optional[CaptureConfig] = None,
) -> list[dict[str, Any]]:
    """HTML スナップショットからリスト候補を検出する。"""
    page = Page(html, url, config=config)
    return [_describe_candidate(i, c) for i, c in enumerate(detect_list_candidates(page, config))]


def pick_list(
    page: Page,
    candidate: int = 0,
    config: Optional[CaptureConfig] = None,
) -> PickerResult:
    """ページのリスト候補を1つ選び、ピッカーを通して抽出ステップを確定する。

    Raises:
        ValueError: 候補番号が範囲外の場合
    """
    picker = ElementPicker(page, config=config)
    results: list[PickerResult] = []
    picker.start("list", on_complete=results.append)

    candidates = picker.candidates
    if not 0 <= candidate < len(candidates):
        picker.cancel()
        raise ValueError(f"候補 {candidate} は存在しません（検出数: {len(candidates)}）")

    picker.select_candidate(candidates[candidate])
    return results[0]


def extract_list(
    html: str,
    candidate: int = 0,
    url: str = "about:blank",
    config: Optional[CaptureConfig] = None,
) -> dict[str, Any]:
    """HTML スナップショットのリスト候補から extract ステップとプレビューを作る。

    Raises:
        ValueError: 候補番号が範囲外の場合
    """
    result = pick_list(Page(html, url, config=config), candidate, config)
    return {
        "step": result.step.model_dump(mode="json", exclude_none=True),
        "preview": result.preview,
        "previewHtml": result.preview_html,
    }


def dump_rendered(tool: ToolDefinition, args: Mapping[str, Any]) -> dict[str, Any]:
    """テンプレート解決済みのツール定義を JSON 互換の辞書で返す。"""
    return dump_tool_definition(render_tool(tool, args))
