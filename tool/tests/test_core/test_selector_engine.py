"""
セレクタエンジンのユニットテスト

優先順位（data-testid → id → aria-label → name → placeholder → 構造パス）、
一意性の検証、構造パスの :nth-of-type 付与、XPath 生成を検証する。
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from macrocap.core.selector import (
    build_structural_path,
    count_matches,
    css_escape,
    generate_selector,
    generate_xpath,
    quote_attr,
)
from macrocap.dom.page import Page


# id / クラス名に使う識別子
_IDENTS = st.from_regex(r"[a-z][a-z0-9-]{2,12}", fullmatch=True)


def _page(body: str) -> Page:
    return Page(f"<html><body>{body}</body></html>")


# ---------------------------------------------------------------------------
# 優先順位
# ---------------------------------------------------------------------------

class TestSelectorPriority:
    """属性ベースのセレクタの優先順位のテスト。"""

    def test_test_id_wins_over_id(self):
        """data-testid があれば id より優先されること。"""
        page = _page('<button id="go" data-testid="submit">Go</button>')
        el = page.query_selector("button")

        assert generate_selector(el) == '[data-testid="submit"]'

    def test_test_id_not_revalidated(self):
        """data-testid は重複していても採用されること。"""
        page = _page('<i data-testid="x"></i><b data-testid="x"></b>')

        assert generate_selector(page.query_selector("b")) == '[data-testid="x"]'

    def test_unique_id(self):
        """一意な id は #id になること。"""
        page = _page('<div><button id="go">Go</button></div>')

        assert generate_selector(page.query_selector("button")) == "#go"

    def test_duplicate_id_falls_back(self):
        """重複した id は採用されず構造パスに縮退すること。"""
        page = _page('<span id="dup">a</span><span id="dup">b</span>')
        second = page.query_selector_all("span")[1]

        assert generate_selector(second) == "body > span:nth-of-type(2)"

    def test_aria_label(self):
        """一意な aria-label は tag[aria-label] になること。"""
        page = _page('<button aria-label="Close">x</button><button>y</button>')

        assert generate_selector(page.query_selector("button")) == 'button[aria-label="Close"]'

    def test_name_attribute(self):
        """フォーム要素の name 属性が使われること。"""
        page = _page('<form><input name="email"><input name="password"></form>')

        assert generate_selector(page.query_selector_all("input")[0]) == 'input[name="email"]'

    def test_placeholder(self):
        """input の type + placeholder が使われること。"""
        page = _page('<input type="search" placeholder="Search"><input type="search">')

        assert generate_selector(page.query_selector("input")) == (
            'input[type="search"][placeholder="Search"]'
        )

    def test_attribute_value_is_quoted(self):
        """属性値のダブルクォートがエスケープされること。"""
        page = _page('<button aria-label=\'Say "hi"\'>x</button>')

        assert generate_selector(page.query_selector("button")) == 'button[aria-label="Say \\"hi\\""]'


# ---------------------------------------------------------------------------
# 構造パス
# ---------------------------------------------------------------------------

class TestStructuralPath:
    """構造パスのテスト。"""

    def test_single_child_has_no_index(self):
        """同一タグの兄弟がなければ :nth-of-type を付けないこと。"""
        page = _page("<div><span>a</span></div>")

        assert build_structural_path(page.query_selector("span")) == "body > div > span"

    def test_siblings_differ_only_by_index(self):
        """同一タグの兄弟は :nth-of-type の番号だけが異なること。"""
        page = _page("<div><p>a</p><p>b</p><p>c</p></div>")
        paths = [generate_selector(p) for p in page.query_selector_all("p")]

        assert paths == [
            "body > div > p:nth-of-type(1)",
            "body > div > p:nth-of-type(2)",
            "body > div > p:nth-of-type(3)",
        ]

    def test_path_resolves_to_element(self):
        """生成した構造パスで元の要素を一意に特定できること。"""
        page = _page("<ul><li>a</li><li><em>b</em></li></ul><ul><li>c</li></ul>")
        em = page.query_selector("em")
        selector = generate_selector(em)

        assert page.query_selector_all(selector) == [em]
        assert page.query_selector(selector) is em

    def test_body_itself(self):
        """body 要素自身は "body" になること。"""
        page = _page("<p>x</p>")

        assert build_structural_path(page.body) == "body"

    @given(ident=_IDENTS)
    @settings(max_examples=30)
    def test_unique_id_property(self, ident: str):
        """任意の一意な id は #id（エスケープ済み）になり、元の要素に解決されること。"""
        page = _page(f'<section><div id="{ident}">x</div><div>y</div></section>')
        el = page.query_selector_all("div")[0]
        selector = generate_selector(el)

        assert selector == f"#{css_escape(ident)}"
        assert page.query_selector(selector) is el


# ---------------------------------------------------------------------------
# XPath / 補助関数
# ---------------------------------------------------------------------------

class TestXPathAndHelpers:
    """XPath 生成と補助関数のテスト。"""

    def test_xpath_indexes_siblings(self):
        """同一タグの兄弟には [k] が付くこと。"""
        page = _page("<div><p>a</p><p>b</p></div>")

        assert generate_xpath(page.query_selector_all("p")[1]) == "/html/body/div/p[2]"

    def test_xpath_ignores_attributes(self):
        """id があっても XPath は構造のみで生成されること。"""
        page = _page('<div id="main"><span>x</span></div>')

        assert generate_xpath(page.query_selector("span")) == "/html/body/div/span"

    def test_count_matches_invalid_selector(self):
        """構文が不正なセレクタは 0 件として扱われること。"""
        page = _page("<p>x</p>")

        assert count_matches(page.soup, "p[[") == 0

    def test_quote_attr_escapes_backslash(self):
        """バックスラッシュとダブルクォートがエスケープされること。"""
        assert quote_attr('a\\b"c') == 'a\\\\b\\"c'

    def test_css_escape_leading_digit(self):
        """数字で始まる識別子がエスケープされること。"""
        assert css_escape("1abc") != "1abc"
        assert css_escape("abc") == "abc"
