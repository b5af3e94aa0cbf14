"""
ツール定義ビルダー — 記録済みステップとパラメータ指定からツール定義を組み立てる

記録直後のステップは具体的な値（検索語や URL パス）を含んでいる。
ユーザーがパラメータ化を指定した値を {{name}} プレースホルダーに置き換え、
対応する ToolParameter を生成してからツール定義として検証する。

パラメータ指定のキー:
  - クエリパラメータ名      : navigate ステップの urlParams の値
  - "__path:<i>"            : navigate ステップの URL パスの i 番目のセグメント（0始まり）
  - "__input"               : type ステップの入力テキスト
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from .parser import parse_tool_definition
from .schema import ActionStep, Lane, NavigateStep, ToolDefinition, ToolParameter, TypeStep, Viewport
from .template import to_snake_case

logger = logging.getLogger(__name__)

INPUT_KEY = "__input"
PATH_KEY_PREFIX = "__path:"


# ---------------------------------------------------------------------------
# パラメータ指定
# ---------------------------------------------------------------------------

@dataclass
class ParamBinding:
    """1つの記録値をパラメータ化する指定。

    Attributes:
        step_index: 対象ステップの位置
        key: クエリパラメータ名、"__path:<i>"、または "__input"
        enabled: パラメータ化するか（False ならクエリ値を元の値に戻す）
        description: LLM 向けの説明（空ならパラメータ名を使う）
        original_value: 記録時の値
        param_name: パラメータ名の上書き（パスセグメント / 入力テキスト用）
    """

    step_index: int
    key: str
    enabled: bool = True
    description: str = ""
    original_value: str = ""
    param_name: Optional[str] = None

    @property
    def is_path(self) -> bool:
        return self.key.startswith(PATH_KEY_PREFIX)

    @property
    def is_input(self) -> bool:
        return self.key == INPUT_KEY

    @property
    def path_index(self) -> int:
        return int(self.key[len(PATH_KEY_PREFIX):])

    def parameter_name(self) -> str:
        """生成される ToolParameter の名前。"""
        if self.is_path:
            return self.param_name or f"path_{self.path_index}"
        if self.is_input:
            return self.param_name or "input_text"
        return to_snake_case(self.key)

    def source(self) -> str:
        if self.is_path:
            return "pathSegment"
        if self.is_input:
            return "input"
        return "urlParam"


# ---------------------------------------------------------------------------
# プレースホルダー置換
# ---------------------------------------------------------------------------

def _replace_path_segment(url: str, segment_index: int, placeholder: str) -> str:
    parts = urlsplit(url)
    segments = parts.path.split("/")
    # segments[0] は先頭の "/" より前の空文字列
    real_index = segment_index + 1
    if real_index >= len(segments):
        logger.warning("URL にパスセグメント %d がありません: %s", segment_index, url)
        return url
    segments[real_index] = placeholder
    return urlunsplit(parts._replace(path="/".join(segments)))


def _bind_navigate(step: NavigateStep, bindings: Sequence[ParamBinding]) -> NavigateStep:
    url = step.url
    url_params = dict(step.urlParams or {})

    for binding in bindings:
        if binding.is_input:
            continue
        if binding.is_path:
            if binding.enabled:
                url = _replace_path_segment(url, binding.path_index, f"{{{{{binding.parameter_name()}}}}}")
        elif binding.enabled:
            url_params[binding.key] = f"{{{{{binding.parameter_name()}}}}}"
        else:
            url_params[binding.key] = binding.original_value

    return step.model_copy(update={"url": url, "urlParams": url_params})


def _bind_type(step: TypeStep, bindings: Sequence[ParamBinding]) -> TypeStep:
    for binding in bindings:
        if binding.is_input and binding.enabled:
            return step.model_copy(update={"text": f"{{{{{binding.parameter_name()}}}}}"})
    return step


def apply_param_bindings(
    steps: Sequence[ActionStep],
    bindings: Sequence[ParamBinding],
) -> tuple[list[ActionStep], list[ToolParameter]]:
    """パラメータ指定をステップに適用し、ToolParameter の一覧を生成する。

    同名のパラメータは最初の1つだけを生成する。

    Returns:
        (置換後のステップ列, パラメータ一覧)
    """
    by_step: dict[int, list[ParamBinding]] = {}
    for binding in bindings:
        by_step.setdefault(binding.step_index, []).append(binding)

    final_steps: list[ActionStep] = []
    for i, step in enumerate(steps):
        step_bindings = by_step.get(i)
        if not step_bindings:
            final_steps.append(step)
        elif isinstance(step, NavigateStep):
            final_steps.append(_bind_navigate(step, step_bindings))
        elif isinstance(step, TypeStep):
            final_steps.append(_bind_type(step, step_bindings))
        else:
            final_steps.append(step)

    parameters: list[ToolParameter] = []
    seen: set[str] = set()
    for binding in bindings:
        if not binding.enabled:
            continue
        name = binding.parameter_name()
        if name in seen:
            continue
        seen.add(name)
        parameters.append(ToolParameter(
            name=name,
            type="string",
            description=binding.description or name,
            required=True,
            source=binding.source(),
            sourceKey=binding.key,
        ))

    logger.debug("パラメータを %d 件生成しました", len(parameters))
    return final_steps, parameters


# ---------------------------------------------------------------------------
# ツール定義の組み立て
# ---------------------------------------------------------------------------

def build_tool_definition(
    name: str,
    description: str,
    steps: Sequence[ActionStep],
    parameters: Sequence[ToolParameter] = (),
    *,
    lanes: Optional[Sequence[Lane]] = None,
    viewport: Optional[tuple[int, int]] = None,
    tool_id: Optional[str] = None,
    version: str = "1.0.0",
) -> ToolDefinition:
    """ステップとパラメータからツール定義を組み立てて検証する。

    Raises:
        ToolSchemaValidationError: 組み立てた定義がスキーマに違反している場合
    """
    data: dict[str, Any] = {
        "id": tool_id or str(uuid.uuid4()),
        "name": name,
        "description": description,
        "version": version,
        "parameters": [p.model_dump(exclude_none=True) for p in parameters],
        "steps": [s.model_dump(exclude_none=True) for s in steps],
    }
    if lanes is not None and len(lanes) > 1:
        data["lanes"] = [lane.model_dump(exclude_none=True) for lane in lanes]
    if viewport is not None:
        data["viewport"] = Viewport(width=viewport[0], height=viewport[1]).model_dump()

    tool = parse_tool_definition(data)
    logger.info("ツール定義を組み立てました: %s (steps=%d, lanes=%d)",
                tool.name, len(tool.steps), len(tool.lanes or []))
    return tool
