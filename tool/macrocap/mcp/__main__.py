"""
macrocap MCP Server エントリポイント

python -m macrocap.mcp で stdio トランスポートの MCP サーバーを起動する。
閾値等の設定は MACROCAP_* 環境変数で変更できる。
"""

from __future__ import annotations

from .server import main

main()
