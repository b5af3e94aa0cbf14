"""
ツール定義ビルダーのユニットテスト

パラメータ指定（クエリ / パスセグメント / 入力テキスト）の適用、
パラメータの重複排除、ツール定義の組み立てと検証を検証する。
"""

from __future__ import annotations

import uuid

import pytest

from macrocap.dsl.builder import ParamBinding, apply_param_bindings, build_tool_definition
from macrocap.dsl.parser import ToolSchemaValidationError
from macrocap.dsl.schema import ClickStep, Lane, NavigateStep, TypeStep, WaitStep


@pytest.fixture
def recorded_steps() -> list:
    """記録直後の具体値を含むステップ列。"""
    return [
        NavigateStep(url="https://shop.example.com/category/shoes", urlParams={"searchQuery": "red", "page": "2"}),
        TypeStep(selector="#q", text="red shoes"),
        ClickStep(selector="#go"),
    ]


class TestParamBinding:
    """ParamBinding のテスト。"""

    @pytest.mark.parametrize(
        ("key", "expected_name", "expected_source"),
        [
            ("__path:1", "path_1", "pathSegment"),
            ("__input", "input_text", "input"),
            ("searchQuery", "search_query", "urlParam"),
        ],
    )
    def test_names_and_sources(self, key: str, expected_name: str, expected_source: str):
        """キーの種類に応じたパラメータ名と出所になること。"""
        binding = ParamBinding(step_index=0, key=key)

        assert binding.parameter_name() == expected_name
        assert binding.source() == expected_source

    def test_name_override(self):
        """パス / 入力のパラメータ名は上書きできること。"""
        assert ParamBinding(0, "__path:0", param_name="category").parameter_name() == "category"


class TestApplyParamBindings:
    """apply_param_bindings() のテスト。"""

    def test_query_path_and_input(self, recorded_steps: list):
        """クエリ・パス・入力テキストがプレースホルダーに置き換わること。"""
        bindings = [
            ParamBinding(0, "searchQuery", description="検索語", original_value="red"),
            ParamBinding(0, "page", enabled=False, original_value="2"),
            ParamBinding(0, "__path:1", param_name="category", original_value="shoes"),
            ParamBinding(1, "__input", param_name="keywords", original_value="red shoes"),
        ]

        steps, params = apply_param_bindings(recorded_steps, bindings)

        assert steps[0].url == "https://shop.example.com/category/{{category}}"
        assert steps[0].urlParams == {"searchQuery": "{{search_query}}", "page": "2"}
        assert steps[1].text == "{{keywords}}"
        assert steps[2] == recorded_steps[2]
        assert [(p.name, p.source, p.sourceKey) for p in params] == [
            ("search_query", "urlParam", "searchQuery"),
            ("category", "pathSegment", "__path:1"),
            ("keywords", "input", "__input"),
        ]
        assert params[0].description == "検索語"
        assert params[1].description == "category"
        assert all(p.type == "string" and p.required for p in params)

    def test_original_steps_unchanged(self, recorded_steps: list):
        """元のステップは変更されないこと。"""
        apply_param_bindings(recorded_steps, [ParamBinding(1, "__input")])

        assert recorded_steps[1].text == "red shoes"

    def test_duplicate_names_collapsed(self, recorded_steps: list):
        """同名のパラメータは1つだけ生成されること。"""
        steps = recorded_steps + [TypeStep(selector="#q2", text="blue")]
        bindings = [ParamBinding(1, "__input"), ParamBinding(3, "__input")]

        final_steps, params = apply_param_bindings(steps, bindings)

        assert [p.name for p in params] == ["input_text"]
        assert final_steps[1].text == final_steps[3].text == "{{input_text}}"

    def test_missing_path_segment_ignored(self, recorded_steps: list):
        """存在しないパスセグメントの指定は URL を変えないこと。"""
        steps, _ = apply_param_bindings(recorded_steps, [ParamBinding(0, "__path:9")])

        assert steps[0].url == recorded_steps[0].url


class TestBuildToolDefinition:
    """build_tool_definition() のテスト。"""

    def test_builds_valid_definition(self, recorded_steps: list):
        """id・ビューポート付きの定義が組み立てられること。"""
        tool = build_tool_definition("find_shoes", "靴を探す", recorded_steps, viewport=(1280, 720))

        assert uuid.UUID(tool.id)
        assert tool.viewport.width == 1280
        assert tool.lanes is None
        assert tool.version == "1.0.0"

    def test_single_lane_omitted(self, recorded_steps: list):
        """レーンが1本だけなら lanes は含めないこと。"""
        tool = build_tool_definition(
            "find_shoes", "d", recorded_steps, lanes=[Lane(name="Lane 1", steps=recorded_steps)],
        )

        assert tool.lanes is None

    def test_multiple_lanes(self, recorded_steps: list):
        """レーンが2本以上なら lanes が含まれること。"""
        lanes = [Lane(name="A", steps=recorded_steps), Lane(name="B", steps=[WaitStep(ms=10)])]

        tool = build_tool_definition("find_shoes", "d", recorded_steps, lanes=lanes, tool_id="fixed")

        assert tool.id == "fixed"
        assert [lane.name for lane in tool.lanes] == ["A", "B"]

    def test_invalid_name_rejected(self, recorded_steps: list):
        """不正なツール名は検証エラーになること。"""
        with pytest.raises(ToolSchemaValidationError):
            build_tool_definition("Find Shoes", "d", recorded_steps)
