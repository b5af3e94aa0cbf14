"""抽出対象ピッカー（リスト自動検出・フィールド自動検出・プレビュー）。"""
