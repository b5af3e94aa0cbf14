"""操作レコーダーと記録セッション。"""
