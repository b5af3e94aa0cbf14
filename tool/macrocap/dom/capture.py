"""
ページキャプチャ — Playwright でライブページを開き、レイアウト付き HTML スナップショットを作る

各要素に getBoundingClientRect() と getComputedStyle().position を
data-macrocap-rect / data-macrocap-position 属性として書き込んでから
outerHTML を取得する。得られた HTML は Page に読み込むとそのまま
ピッカーのリスト検出やフィールド検出に使える。

Playwright はキャプチャ時にのみ遅延インポートする。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..config import CaptureConfig
from .page import POSITION_ATTR, RECT_ATTR, Page

logger = logging.getLogger(__name__)

# 全要素にレイアウト属性を書き込むスクリプト
_STAMP_LAYOUT_JS = """
([rectAttr, positionAttr]) => {
  for (const el of document.querySelectorAll('*')) {
    const r = el.getBoundingClientRect();
    el.setAttribute(rectAttr, [r.left, r.top, r.width, r.height].map(v => Math.round(v)).join(','));
    const position = getComputedStyle(el).position;
    if (position && position !== 'static') {
      el.setAttribute(positionAttr, position);
    }
  }
  return document.documentElement.outerHTML;
}
"""


def stamp_and_serialize(pw_page) -> str:
    """Playwright のページにレイアウト属性を書き込み、HTML 文字列を返す。"""
    html = pw_page.evaluate(_STAMP_LAYOUT_JS, [RECT_ATTR, POSITION_ATTR])
    return f"<!DOCTYPE html>\n{html}"


def capture_html(
    url: str,
    *,
    config: Optional[CaptureConfig] = None,
    wait_until: str = "load",
    headless: bool = True,
    timeout_ms: float = 30_000,
) -> tuple[str, str]:
    """URL を開いてレイアウト付き HTML を取得する。

    Args:
        url: キャプチャする URL
        config: ビューポートサイズ等の設定
        wait_until: 遷移完了の判定条件（load / domcontentloaded / networkidle）
        headless: ヘッドレスで起動するか
        timeout_ms: 遷移のタイムアウト

    Returns:
        (HTML 文字列, リダイレクト後の最終 URL)
    """
    from playwright.sync_api import sync_playwright

    config = config or CaptureConfig()
    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=headless)
        try:
            context = browser.new_context(
                viewport={"width": config.viewport_width, "height": config.viewport_height},
            )
            pw_page = context.new_page()
            pw_page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            html = stamp_and_serialize(pw_page)
            final_url = pw_page.url
        finally:
            browser.close()

    logger.info("ページをキャプチャしました: %s (%d bytes)", final_url, len(html))
    return html, final_url


def capture_page(url: str, *, config: Optional[CaptureConfig] = None, **kwargs) -> Page:
    """URL をキャプチャして Page を返す。"""
    html, final_url = capture_html(url, config=config, **kwargs)
    return Page(html, final_url, config=config)


def save_capture(url: str, output: Path, *, config: Optional[CaptureConfig] = None, **kwargs) -> Path:
    """URL をキャプチャして HTML ファイルに保存する。"""
    html, _ = capture_html(url, config=config, **kwargs)
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(html, encoding="utf-8")
    return output
