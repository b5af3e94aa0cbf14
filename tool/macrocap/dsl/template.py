"""
テンプレート解決 — {{param}} プレースホルダーの展開と JSON Schema 変換

実行エンジンに渡す直前に、ステップ内の {{identifier}} を引数値で置き換える。
未定義の引数は空文字列に置き換え、例外は送出しない。値が None の引数も未定義と同じ扱いで
空文字列になる（"null" という文字列にはしない）。MCP クライアントが任意引数を null で
送ってきても、未指定のときと同じ URL・入力値になる。

旧バージョンで保存されたツールには URL エンコードされたプレースホルダー
（%7B%7B...%7D%7D）が含まれることがあるため、先にデコードしてから解決する。
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional, TypeVar
from urllib.parse import unquote, urlencode

from pydantic import BaseModel

from .schema import NavigateStep, ToolParameter

logger = logging.getLogger(__name__)

StepT = TypeVar("StepT", bound=BaseModel)

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")
_ENCODED_PLACEHOLDER_RE = re.compile(r"%7B%7B([^%]+(?:%20[^%]+)*)%7D%7D", re.IGNORECASE)

# テンプレート解決の対象となるステップのフィールド
_TEMPLATE_FIELDS = ("text", "value", "url")


# ---------------------------------------------------------------------------
# 文字列ユーティリティ
# ---------------------------------------------------------------------------

def to_snake_case(value: str) -> str:
    """camelCase / PascalCase / kebab-case / 空白区切りを snake_case に変換する。

    >>> to_snake_case("searchQuery")
    'search_query'
    >>> to_snake_case("HTMLParser")
    'html_parser'
    """
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", value)
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", s)
    s = re.sub(r"[-\s]+", "_", s)
    return s.lower()


def stringify_arg(value: Any) -> str:
    """引数値をテンプレートに埋め込む文字列に変換する。

    真偽値は "true" / "false"、整数値の float は小数点なしで表現する。
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _lookup(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if value is None:
        logger.debug("テンプレート引数が未指定のため空文字列に置き換えます: %s", key)
        return ""
    return stringify_arg(value)


# ---------------------------------------------------------------------------
# テンプレート解決
# ---------------------------------------------------------------------------

def resolve_template(template: str, args: Mapping[str, Any]) -> str:
    """template 内の {{identifier}} を args の値で置き換える。

    未定義のキー（または値が None）は空文字列になる。

    Args:
        template: プレースホルダーを含む文字列
        args: 引数値

    Returns:
        解決済みの文字列
    """
    decoded = _ENCODED_PLACEHOLDER_RE.sub(
        lambda m: _lookup(args, to_snake_case(unquote(m.group(1)))), template,
    )
    return _PLACEHOLDER_RE.sub(lambda m: _lookup(args, m.group(1)), decoded)


def resolve_step(step: StepT, args: Mapping[str, Any]) -> StepT:
    """ステップの text / value / url / urlParams を解決したコピーを返す。"""
    updates: dict[str, Any] = {}
    for name in _TEMPLATE_FIELDS:
        value = getattr(step, name, None)
        if isinstance(value, str):
            updates[name] = resolve_template(value, args)

    url_params = getattr(step, "urlParams", None)
    if url_params:
        updates["urlParams"] = {k: resolve_template(v, args) for k, v in url_params.items()}

    return step.model_copy(update=updates, deep=True)


def build_navigate_url(step: NavigateStep, args: Optional[Mapping[str, Any]] = None) -> str:
    """navigate ステップの URL を組み立てる。

    urlParams のうち解決結果が空のものはクエリに含めない。
    """
    args = args or {}
    url = resolve_template(step.url, args)
    if not step.urlParams:
        return url

    params = [(k, resolve_template(v, args)) for k, v in step.urlParams.items()]
    query = urlencode([(k, v) for k, v in params if v])
    if not query:
        return url
    return f"{url}{'&' if '?' in url else '?'}{query}"


# ---------------------------------------------------------------------------
# JSON Schema 変換
# ---------------------------------------------------------------------------

def parameters_to_json_schema(params: list[ToolParameter]) -> dict[str, Any]:
    """ToolParameter のリストを LLM のツール呼び出し用 JSON Schema に変換する。

    required は各パラメータの値をそのまま使い、default の有無からは推論しない。
    """
    properties: dict[str, Any] = {}
    required: list[str] = []

    for param in params:
        prop: dict[str, Any] = {"type": param.type, "description": param.description}
        if param.enum is not None:
            prop["enum"] = list(param.enum)
        if param.default is not None:
            prop["default"] = param.default
        properties[param.name] = prop
        if param.required:
            required.append(param.name)

    return {"type": "object", "properties": properties, "required": required}
