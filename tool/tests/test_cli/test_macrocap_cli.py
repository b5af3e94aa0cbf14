"""
CLI テスト — typer.testing.CliRunner を使用した CLI コマンドのテスト

実際のブラウザ起動は行わず、capture はモックで代替する。
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from macrocap.cli import app
from macrocap.dsl.parser import ToolParser

runner = CliRunner()


@pytest.fixture
def product_page_file(tmp_path: Path, product_list_html: str) -> Path:
    """商品リストの HTML スナップショット。"""
    path = tmp_path / "products.html"
    path.write_text(f"<html><body>{product_list_html}</body></html>", encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# validate / schema
# ---------------------------------------------------------------------------

class TestValidateCommand:
    """validate コマンドのテスト。"""

    def test_valid_file(self, tool_json_file: Path):
        """正しい定義なら OK が表示され、終了コード 0 になること。"""
        result = runner.invoke(app, ["validate", str(tool_json_file)])

        assert result.exit_code == 0
        assert "スキーマ検証 OK" in result.output

    def test_invalid_file(self, tmp_path: Path, sample_tool_dict: dict):
        """スキーマ違反の箇所が表示され、終了コード 1 になること。"""
        sample_tool_dict["steps"] = []
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(sample_tool_dict), encoding="utf-8")

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "✗ steps" in result.output

    def test_missing_file(self, tmp_path: Path):
        """存在しないファイルはエラーになること。"""
        result = runner.invoke(app, ["validate", str(tmp_path / "none.json")])

        assert result.exit_code == 1
        assert "✗ file" in result.output


class TestSchemaCommand:
    """schema コマンドのテスト。"""

    def test_outputs_json_schema(self, tool_json_file: Path):
        """パラメータの JSON Schema が出力されること。"""
        result = runner.invoke(app, ["schema", str(tool_json_file)])

        assert result.exit_code == 0
        schema = json.loads(result.output)
        assert schema["type"] == "object"
        assert schema["required"] == ["query"]
        assert schema["properties"]["query"]["type"] == "string"


# ---------------------------------------------------------------------------
# migrate / render
# ---------------------------------------------------------------------------

class TestMigrateCommand:
    """migrate コマンドのテスト。"""

    def test_legacy_lanes(self, tmp_path: Path, sample_tool_dict: dict):
        """旧形式の lanes が名前付きレーンとして書き出されること。"""
        wait = {"action": "wait", "ms": 100}
        sample_tool_dict["lanes"] = [[wait], [wait]]
        source = tmp_path / "legacy.json"
        source.write_text(json.dumps(sample_tool_dict), encoding="utf-8")
        output = tmp_path / "out" / "migrated.yaml"

        result = runner.invoke(app, ["migrate", str(source), "-o", str(output)])

        assert result.exit_code == 0
        assert "旧形式の lanes を変換しました" in result.output
        data = ToolParser().read_raw(output)
        assert [lane["name"] for lane in data["lanes"]] == ["Lane 1", "Lane 2"]

    def test_current_format(self, tmp_path: Path, tool_json_file: Path):
        """現行形式ならそのまま書き出されること。"""
        output = tmp_path / "copy.json"

        result = runner.invoke(app, ["migrate", str(tool_json_file), "-o", str(output)])

        assert result.exit_code == 0
        assert "変換は不要でした" in result.output
        assert ToolParser().load(output).name == "search_products"


class TestRenderCommand:
    """render コマンドのテスト。"""

    def test_resolves_arguments(self, tool_json_file: Path):
        """--arg の値でテンプレートが解決されること。"""
        result = runner.invoke(app, ["render", str(tool_json_file), "--arg", "query=shoes"])

        assert result.exit_code == 0
        steps = json.loads(result.output)["steps"]
        assert steps[0]["urlParams"] == {"q": "shoes"}
        assert steps[1]["text"] == "shoes"

    def test_malformed_argument(self, tool_json_file: Path):
        """key=value 形式でない引数はエラーになること。"""
        result = runner.invoke(app, ["render", str(tool_json_file), "-a", "shoes"])

        assert result.exit_code == 1
        assert "エラー" in result.output


# ---------------------------------------------------------------------------
# detect / extract / capture
# ---------------------------------------------------------------------------

class TestDetectCommand:
    """detect コマンドのテスト。"""

    def test_lists_candidates(self, product_page_file: Path):
        """検出された候補が番号付きで表示されること。"""
        result = runner.invoke(app, ["detect", str(product_page_file)])

        assert result.exit_code == 0
        assert "[0] #products > li.item  (5 items, list)" in result.output
        assert "Product 1" in result.output

    def test_min_items_option(self, product_page_file: Path):
        """--min-items を超える要素数がなければ候補なしと表示されること。"""
        result = runner.invoke(app, ["detect", str(product_page_file), "--min-items", "6"])

        assert result.exit_code == 0
        assert "リスト候補は見つかりませんでした" in result.output


class TestExtractCommand:
    """extract コマンドのテスト。"""

    def test_outputs_step_and_preview(self, product_page_file: Path):
        """extract ステップとプレビューが JSON で出力されること。"""
        result = runner.invoke(app, ["extract", str(product_page_file), "-c", "0"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["step"]["action"] == "extract"
        assert data["step"]["containerSelector"] == "#products > li.item"
        assert data["preview"][0]["title"] == "Product 1"
        assert len(data["previewHtml"]) == 3

    def test_candidate_out_of_range(self, product_page_file: Path):
        """存在しない候補番号はエラーになること。"""
        result = runner.invoke(app, ["extract", str(product_page_file), "-c", "3"])

        assert result.exit_code == 1
        assert "エラー" in result.output


class TestCaptureCommand:
    """capture コマンドのテスト（ブラウザはモック）。"""

    def test_saves_snapshot(self, tmp_path: Path):
        """save_capture に設定が渡され、保存先が表示されること。"""
        output = tmp_path / "page.html"
        with patch("macrocap.dom.capture.save_capture", return_value=output) as mock_save:
            result = runner.invoke(
                app, ["capture", "https://example.com/", "-o", str(output), "--viewport", "800x600"],
            )

        assert result.exit_code == 0
        assert "スナップショットを保存しました" in result.output
        kwargs = mock_save.call_args.kwargs
        assert kwargs["headless"] is True
        assert (kwargs["config"].viewport_width, kwargs["config"].viewport_height) == (800, 600)

    def test_capture_failure(self, tmp_path: Path):
        """キャプチャ失敗時は終了コード 1 になること。"""
        with patch("macrocap.dom.capture.save_capture", side_effect=RuntimeError("boom")):
            result = runner.invoke(app, ["capture", "https://example.com/", "-o", str(tmp_path / "p.html")])

        assert result.exit_code == 1
        assert "boom" in result.output
