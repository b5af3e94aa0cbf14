"""
テスト共通フィクスチャ定義

全テストモジュールで共有するフィクスチャを提供する。
ページは BeautifulSoup 上の Page モデルで組み立て、デバウンスは
ManualScheduler の仮想時計で進める。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import pytest

from macrocap.config import CaptureConfig
from macrocap.core.timers import ManualScheduler
from macrocap.dom.page import Page


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> CaptureConfig:
    """既定値の CaptureConfig。"""
    return CaptureConfig()


@pytest.fixture
def scheduler() -> ManualScheduler:
    """仮想時計スケジューラ。"""
    return ManualScheduler()


@pytest.fixture
def make_page() -> Callable[..., Page]:
    """body の中身だけを渡して Page を生成するファクトリ。

    使用例::

        page = make_page('<button id="go">Go</button>', url="https://example.com/search?q=a")
    """

    def factory(body: str, url: str = "https://example.com/", **kwargs) -> Page:
        html = f"<!DOCTYPE html><html><head><title>t</title></head><body>{body}</body></html>"
        return Page(html, url, **kwargs)

    return factory


@pytest.fixture
def product_list_html() -> str:
    """共通クラスを持つ5件の商品リスト。"""
    items = "".join(
        f'<li class="item"><h3 class="title">Product {i}</h3>'
        f'<span class="price">${i},000</span>'
        f'<a href="/p/{i}">Detail</a></li>'
        for i in range(1, 6)
    )
    return f'<ul id="products">{items}</ul>'


@pytest.fixture
def data_table_html() -> str:
    """thead / tbody / th を持つデータテーブル。"""
    rows = "".join(
        f"<tr><td>Row {i}</td><td>{i * 10}</td><td><a href=\"/r/{i}\">Open</a></td></tr>"
        for i in range(1, 5)
    )
    return (
        '<table id="report"><thead><tr><th>Name</th><th>Score</th><th>Link</th></tr></thead>'
        f"<tbody>{rows}</tbody></table>"
    )


@pytest.fixture
def sample_tool_dict() -> dict:
    """サンプルのツール定義辞書データ。

    検索ページを開き、検索語を入力して結果リストを抽出する最小構成。
    """
    return {
        "id": "3f1c2a9e-0000-4000-8000-000000000001",
        "name": "search_products",
        "description": "商品を検索して結果一覧を返す",
        "version": "1.0.0",
        "parameters": [
            {
                "name": "query",
                "type": "string",
                "description": "検索語",
                "required": True,
                "source": "urlParam",
                "sourceKey": "q",
            },
        ],
        "steps": [
            {
                "action": "navigate",
                "url": "https://shop.example.com/search",
                "urlParams": {"q": "{{query}}"},
            },
            {"action": "type", "selector": "#search", "text": "{{query}}"},
            {"action": "click", "selector": '[data-testid="submit"]'},
            {
                "action": "extract",
                "name": "results",
                "mode": "list",
                "containerSelector": "#products > li.item",
                "fields": [
                    {"key": "title", "selector": ".title", "type": "text"},
                    {"key": "link", "selector": "a", "type": "attribute", "attribute": "href"},
                ],
            },
        ],
    }


@pytest.fixture
def tool_json_file(tmp_path: Path, sample_tool_dict: dict) -> Path:
    """サンプルのツール定義を書き込んだ JSON ファイル。"""
    path = tmp_path / "search_products.json"
    path.write_text(json.dumps(sample_tool_dict, ensure_ascii=False, indent=2), encoding="utf-8")
    return path

