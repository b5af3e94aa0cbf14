"""
ActionRecorder のユニットテスト

ManualScheduler の仮想時計でデバウンスを進め、記録規則
（開始時の navigate、クリック、入力のデバウンスと置換、select、
スクロールの閾値、一時停止 / 停止時の保留破棄）を検証する。
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from macrocap.config import CaptureConfig
from macrocap.core.events import RecordingStopped, StepRecorded, StepRemoved
from macrocap.core.timers import ManualScheduler
from macrocap.dom.page import Page
from macrocap.dsl.schema import ClickStep, NavigateStep, ScrollStep, SelectStep, TypeStep
from macrocap.recorder.action_recorder import ActionRecorder, RecorderStateError, describe_element
from macrocap.recorder.session import RecordingSession

_FORM = (
    '<form>'
    '<input id="q" type="search" placeholder="Search">'
    '<select id="sort"><option value="new">New</option><option value="price">Price</option></select>'
    '<button id="go">Go</button>'
    '</form>'
    '<div data-macrocap-ui="true"><button id="tool">Tool</button></div>'
)


# ---------------------------------------------------------------------------
# フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def page(make_page: Callable[..., Page]) -> Page:
    """検索フォームを持つページ。"""
    return make_page(_FORM, url="https://shop.example.com/search?q=shoes&empty=#results")


@pytest.fixture
def recorder(page: Page, scheduler: ManualScheduler) -> ActionRecorder:
    """記録を開始済みのレコーダー。"""
    rec = ActionRecorder(page, scheduler=scheduler)
    rec.start()
    return rec


def _events(recorder: ActionRecorder) -> list[Any]:
    received: list[Any] = []
    recorder.channel.subscribe(received.append)
    return received


# ---------------------------------------------------------------------------
# 開始 / navigate
# ---------------------------------------------------------------------------

class TestStart:
    """start() のテスト。"""

    def test_records_navigate(self, recorder: ActionRecorder):
        """開始時に現在の URL が navigate ステップとして記録されること。"""
        steps = recorder.get_steps()

        assert steps == [NavigateStep(
            url="https://shop.example.com/search",
            urlParams={"q": "shoes", "empty": ""},
        )]
        assert recorder.state == "recording"

    def test_start_twice_is_noop(self, recorder: ActionRecorder):
        """記録中の start() は無視されること。"""
        recorder.start()

        assert len(recorder.get_steps()) == 1

    def test_on_step_callback(self, page: Page, scheduler: ManualScheduler):
        """on_step に (step, index) が渡されること。"""
        calls: list[tuple[str, int]] = []
        rec = ActionRecorder(page, scheduler=scheduler)
        rec.start(on_step=lambda step, i: calls.append((step.action, i)))

        page.click(page.query_selector("#go"))

        assert calls == [("navigate", 0), ("click", 1)]

    def test_get_steps_returns_copy(self, recorder: ActionRecorder):
        """get_steps() の戻り値を変更しても記録に影響しないこと。"""
        recorder.get_steps().clear()

        assert len(recorder.get_steps()) == 1


# ---------------------------------------------------------------------------
# クリック / select
# ---------------------------------------------------------------------------

class TestClickAndSelect:
    """クリックと select の記録のテスト。"""

    def test_click(self, page: Page, recorder: ActionRecorder):
        """クリックがセレクタとラベル付きで記録されること。"""
        page.click(page.query_selector("#go"))

        assert recorder.get_steps()[-1] == ClickStep(selector="#go", label='button "Go"')

    def test_tool_ui_click_ignored(self, page: Page, recorder: ActionRecorder):
        """ツール UI 内のクリックは記録されないこと。"""
        page.click(page.query_selector("#tool"))

        assert len(recorder.get_steps()) == 1

    def test_select_recorded_once(self, page: Page, recorder: ActionRecorder):
        """select の変更はクリックと input を無視し、change で1回だけ記録されること。"""
        select = page.query_selector("#sort")

        page.click(select)
        page.select_option(select, "price")

        steps = recorder.get_steps()
        assert steps[1:] == [SelectStep(selector="#sort", value="price", label="Select: price")]


# ---------------------------------------------------------------------------
# テキスト入力
# ---------------------------------------------------------------------------

class TestTyping:
    """テキスト入力のデバウンスのテスト。"""

    def test_keystrokes_collapse(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """デバウンス内の連続入力が1つの type ステップになること。"""
        field = page.query_selector("#q")
        for value in ("a", "ab", "abc"):
            page.type_text(field, value)
            scheduler.advance(100)

        assert len(recorder.get_steps()) == 1
        scheduler.advance(500)

        steps = recorder.get_steps()
        assert len(steps) == 2
        assert isinstance(steps[1], TypeStep)
        assert steps[1].text == "abc"
        assert steps[1].clear is True
        assert steps[1].label == 'Type into input "Search"'

    def test_retype_replaces_previous(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """同じ要素への再入力は直前の type ステップを置き換えること。"""
        events = _events(recorder)
        field = page.query_selector("#q")

        page.type_text(field, "red")
        scheduler.advance(500)
        page.type_text(field, "red shoes")
        scheduler.advance(500)

        steps = recorder.get_steps()
        assert [s.action for s in steps] == ["navigate", "type"]
        assert steps[1].text == "red shoes"
        recorded = [e for e in events if isinstance(e, StepRecorded)]
        assert [(e.index, e.replaced) for e in recorded] == [(1, False), (1, True)]

    def test_type_after_click_not_replaced(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """間に別のステップがあれば置き換えずに追加されること。"""
        field = page.query_selector("#q")
        page.type_text(field, "a")
        scheduler.advance(500)
        page.click(page.query_selector("#go"))
        page.type_text(field, "b")
        scheduler.advance(500)

        assert [s.action for s in recorder.get_steps()] == ["navigate", "type", "click", "type"]

    def test_pause_drops_pending_input(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """一時停止すると未確定の入力が破棄されること。"""
        page.type_text(page.query_selector("#q"), "lost")
        recorder.pause()
        scheduler.advance(1000)

        assert recorder.state == "paused"
        assert len(recorder.get_steps()) == 1
        assert scheduler.pending == 0


# ---------------------------------------------------------------------------
# スクロール
# ---------------------------------------------------------------------------

class TestScroll:
    """スクロールのデバウンスと閾値のテスト。"""

    def test_small_scroll_discarded(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """閾値未満のスクロールは記録されないこと。"""
        page.scroll_to(30)
        scheduler.advance(300)

        assert len(recorder.get_steps()) == 1

    def test_scroll_recorded_after_debounce(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """連続スクロールが最終位置で1ステップにまとめられること。"""
        for y in (20, 50, 80):
            page.scroll_to(y)
            scheduler.advance(100)
        scheduler.advance(300)

        assert recorder.get_steps()[1:] == [ScrollStep(direction="down", amount=80, label="Scroll down 80px")]

    def test_threshold_relative_to_last_recorded(
        self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler,
    ):
        """閾値は最後に記録した位置からの移動量で判定されること。"""
        page.scroll_to(80)
        scheduler.advance(300)
        page.scroll_to(110)
        scheduler.advance(300)
        page.scroll_to(20)
        scheduler.advance(300)

        scrolls = [s for s in recorder.get_steps() if isinstance(s, ScrollStep)]
        assert [(s.direction, s.amount) for s in scrolls] == [("down", 80), ("up", 60)]


# ---------------------------------------------------------------------------
# 停止 / 再開 / 削除
# ---------------------------------------------------------------------------

class TestLifecycle:
    """stop() / resume() / remove_step() のテスト。"""

    def test_stop(self, page: Page, recorder: ActionRecorder, scheduler: ManualScheduler):
        """停止でステップのコピーが返り、リスナーが外れ、終端イベントが1回配送されること。"""
        events = _events(recorder)
        page.type_text(page.query_selector("#q"), "pending")

        steps = recorder.stop()
        recorder.stop()
        scheduler.advance(1000)
        page.click(page.query_selector("#go"))

        assert [s.action for s in steps] == ["navigate"]
        assert recorder.state == "idle"
        assert page.listener_count() == 0
        assert len([e for e in events if isinstance(e, RecordingStopped)]) == 1

    def test_resume_reattaches(self, page: Page, recorder: ActionRecorder):
        """一時停止中の操作は記録されず、再開後は記録されること。"""
        button = page.query_selector("#go")
        recorder.pause()
        page.click(button)
        recorder.resume()
        page.click(button)

        assert [s.action for s in recorder.get_steps()] == ["navigate", "click"]

    def test_beforeunload_records_nothing(self, page: Page, recorder: ActionRecorder):
        """ページ遷移（beforeunload）では何も記録されないこと。"""
        page.navigate("https://shop.example.com/item/1")

        assert len(recorder.get_steps()) == 1

    def test_remove_step(self, page: Page, recorder: ActionRecorder):
        """削除で StepRemoved が配送されること。"""
        events = _events(recorder)
        page.click(page.query_selector("#go"))

        removed = recorder.remove_step(1)

        assert removed.action == "click"
        assert isinstance(events[-1], StepRemoved)
        with pytest.raises(IndexError):
            recorder.remove_step(5)


class TestDescribeElement:
    """describe_element() のテスト。"""

    @pytest.mark.parametrize(
        ("html", "expected"),
        [
            ('<button aria-label="Close">x</button>', 'button "Close"'),
            ('<input placeholder="Email">', 'input "Email"'),
            ('<input name="qty">', "input [name=qty]"),
            ("<a>" + "x" * 40 + "</a>", 'a "' + "x" * 30 + '"'),
            ("<span></span>", "span"),
        ],
    )
    def test_label_priority(self, make_page: Callable[..., Page], html: str, expected: str):
        """aria-label → placeholder → name → テキスト → タグ名 の順に採用されること。"""
        page = make_page(html)

        assert describe_element(page.body.find(True)) == expected


# ---------------------------------------------------------------------------
# 既定スケジューラ（asyncio）
# ---------------------------------------------------------------------------

class TestDefaultScheduler:
    """スケジューラ省略時（AsyncioScheduler）の動作テスト。"""

    def test_start_without_loop_fails_fast(self, page: Page):
        """イベントループ外の start() が即座に失敗し、状態を変えないこと。"""
        rec = ActionRecorder(page)

        with pytest.raises(RecorderStateError, match="ManualScheduler"):
            rec.start()

        assert rec.state == "idle"
        assert rec.get_steps() == []
        assert page.listener_count() == 0

    def test_session_start_without_loop_fails_fast(self, page: Page):
        """RecordingSession でも同様に開始時点で失敗すること。"""
        session = RecordingSession(page)

        with pytest.raises(RecorderStateError):
            session.start()

        assert session.recorder.state == "idle"

    async def test_typing_debounced_on_running_loop(self, page: Page):
        """実行中のイベントループ上では入力のデバウンスが発火すること。"""
        rec = ActionRecorder(page, config=CaptureConfig(input_debounce_ms=10))
        rec.start()

        page.type_text(page.query_selector("#q"), "boots")
        await asyncio.sleep(0.05)

        steps = rec.get_steps()
        assert [s.action for s in steps] == ["navigate", "type"]
        assert steps[1].text == "boots"
