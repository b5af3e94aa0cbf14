"""
macrocap MCP Server — ツール定義の検証・テンプレート解決・リスト抽出を提供する

FastMCP を使用して、LLM エージェントから以下の操作を呼び出せるようにする。

  - macrocap_validate: ツール定義のスキーマ検証
  - macrocap_parameters_schema: パラメータの JSON Schema 変換
  - macrocap_detect_lists: HTML スナップショットのリスト候補検出
  - macrocap_extract_list: リスト候補からの extract ステップ生成とプレビュー
  - macrocap_resolve_template: {{param}} テンプレートの解決
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastmcp import FastMCP

from ..config import CaptureConfig, load_config_from_env
from . import tools

logger = logging.getLogger(__name__)

SERVER_NAME = "macrocap"


def create_server(config: Optional[CaptureConfig] = None) -> FastMCP:
    """macrocap MCP サーバーを生成する。

    Args:
        config: キャプチャ設定。None の場合は環境変数から読み込む。

    Returns:
        設定済みの FastMCP サーバーインスタンス
    """
    if config is None:
        config = load_config_from_env()

    mcp = FastMCP(SERVER_NAME)

    @mcp.tool
    def macrocap_validate(definition: dict[str, Any]) -> dict[str, Any]:
        """ツール定義 JSON を検証し、問題箇所の一覧を返す。"""
        return tools.validate_tool(definition)

    @mcp.tool
    def macrocap_parameters_schema(definition: dict[str, Any]) -> dict[str, Any]:
        """ツール定義のパラメータを LLM ツール呼び出し用の JSON Schema に変換する。"""
        return tools.tool_parameters_schema(definition)

    @mcp.tool
    def macrocap_detect_lists(html: str, url: str = "about:blank") -> list[dict[str, Any]]:
        """HTML スナップショットから繰り返し構造（リスト / テーブル）を検出する。"""
        return tools.detect_lists(html, url, config)

    @mcp.tool
    def macrocap_extract_list(html: str, candidate: int = 0, url: str = "about:blank") -> dict[str, Any]:
        """リスト候補を選び、extract ステップと先頭要素のプレビューを返す。"""
        return tools.extract_list(html, candidate, url, config)

    @mcp.tool
    def macrocap_resolve_template(template: str, args: Optional[dict[str, Any]] = None) -> str:
        """{{param}} を引数値で置き換える。未指定の引数は空文字列になる。"""
        return tools.render_template(template, args)

    logger.info("MCP サーバーを生成しました: %s", SERVER_NAME)
    return mcp


def main() -> None:
    """stdio トランスポートで MCP サーバーを起動する。"""
    create_server().run()


if __name__ == "__main__":
    main()
