"""ツール定義のスキーマ・パーサー・テンプレート解決。"""
