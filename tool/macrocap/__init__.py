"""
macrocap — ブラウザ操作のキャプチャとツール定義エンジン

ページ上の操作を安定したセレクタ付きのステップ列として記録し、
繰り返し構造から抽出ステップを自動生成し、パラメータ付きの
ツール定義（マクロ）として検証する。
"""

__version__ = "0.1.0"
