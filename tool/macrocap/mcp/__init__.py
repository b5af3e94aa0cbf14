"""
macrocap MCP Server パッケージ

主な構成:
  - server: FastMCP サーバー本体
  - tools: 公開する操作の実装（CLI と共用）
"""
