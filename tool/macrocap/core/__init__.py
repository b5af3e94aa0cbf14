"""セレクタ生成・イベントチャネル・タイマー。"""
