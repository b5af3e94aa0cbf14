"""
CLI エントリポイント — Typer ベースのコマンドラインインターフェース

macrocap コマンドとして以下のサブコマンドを提供する:
  - validate: ツール定義のスキーマ検証
  - schema: パラメータの JSON Schema 出力
  - migrate: 旧形式（名前なし lanes）のツール定義を現行形式で書き出す
  - render: {{param}} を解決したツール定義を出力
  - detect: HTML スナップショットのリスト候補一覧
  - extract: リスト候補から extract ステップとプレビューを生成
  - capture: Playwright でページを開き、レイアウト付き HTML を保存
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from .config import apply_cli_args, load_config_from_env

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "macrocap — ブラウザ操作をパラメータ付きツール定義として記録・検証するツール\n\n"
        "基本の流れ:\n"
        "  1. macrocap capture URL -o page.html   ページのスナップショットを保存\n"
        "  2. macrocap detect page.html          リスト候補を確認\n"
        "  3. macrocap extract page.html -c 0    抽出ステップとプレビューを生成\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="デバッグログを出力する"),
) -> None:
    """ログ出力を設定する。"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


def _parse_args(pairs: list[str]) -> dict[str, str]:
    """"key=value" 形式の引数リストを辞書に変換する。"""
    args: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"--arg は key=value 形式で指定してください: {pair}")
        args[key] = value
    return args


# ---------------------------------------------------------------------------
# validate コマンド
# ---------------------------------------------------------------------------

@app.command()
def validate(
    tool_file: Path = typer.Argument(..., help="検証するツール定義ファイル（.json / .yaml）"),
) -> None:
    """ツール定義ファイルのスキーマ検証を行う。"""
    from .dsl.parser import ToolParser

    issues = ToolParser().validate(tool_file)
    if not issues:
        typer.echo(f"✓ {tool_file}: スキーマ検証 OK")
        return

    for issue in issues:
        line_info = f" (行 {issue.line})" if issue.line else ""
        typer.echo(f"✗ {issue.location}{line_info}: {issue.message}", err=True)
    raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# schema コマンド
# ---------------------------------------------------------------------------

@app.command()
def schema(
    tool_file: Path = typer.Argument(..., help="ツール定義ファイル"),
) -> None:
    """ツール定義のパラメータを JSON Schema として出力する。"""
    from .dsl.parser import ToolParser
    from .dsl.template import parameters_to_json_schema

    try:
        tool = ToolParser().load(tool_file)
        _echo_json(parameters_to_json_schema(tool.parameters))
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# migrate コマンド
# ---------------------------------------------------------------------------

@app.command()
def migrate(
    tool_file: Path = typer.Argument(..., help="変換元のツール定義ファイル"),
    output: Path = typer.Option(..., "--output", "-o", help="出力先ファイル（.json / .yaml）"),
) -> None:
    """旧形式のツール定義を読み込み、現行形式で書き出す。"""
    from .dsl.migration import FORMAT_LEGACY_LANES, detect_format_version
    from .dsl.parser import ToolParser

    try:
        parser = ToolParser()
        raw = parser.read_raw(tool_file)
        legacy = detect_format_version(raw) == FORMAT_LEGACY_LANES
        tool = parser.load(tool_file)
        parser.dump(tool, output)
        status = "旧形式の lanes を変換しました" if legacy else "変換は不要でした"
        typer.echo(f"{status}: {output}")
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# render コマンド
# ---------------------------------------------------------------------------

@app.command()
def render(
    tool_file: Path = typer.Argument(..., help="ツール定義ファイル"),
    arg: Optional[list[str]] = typer.Option(
        None, "--arg", "-a", help="テンプレート引数（key=value、複数指定可）",
    ),
) -> None:
    """{{param}} を引数値で解決したツール定義を出力する。"""
    from .dsl.parser import ToolParser
    from .mcp.tools import dump_rendered

    try:
        tool = ToolParser().load(tool_file)
        _echo_json(dump_rendered(tool, _parse_args(arg or [])))
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# detect / extract コマンド
# ---------------------------------------------------------------------------

@app.command()
def detect(
    html_file: Path = typer.Argument(..., help="HTML スナップショット"),
    url: str = typer.Option("about:blank", "--url", help="スナップショットの URL"),
    min_items: Optional[int] = typer.Option(None, "--min-items", help="リスト候補の最小要素数"),
) -> None:
    """HTML スナップショットからリスト候補を検出して一覧表示する。"""
    from .mcp.tools import detect_lists

    try:
        config = apply_cli_args(load_config_from_env(), _Overrides(list_min_items=min_items))
        html = html_file.read_text(encoding="utf-8")
        candidates = detect_lists(html, url, config)
        if not candidates:
            typer.echo("リスト候補は見つかりませんでした。")
            return
        for c in candidates:
            typer.echo(f"[{c['index']}] {c['selector']}  ({c['itemCount']} items, {c['kind']})")
            if c["sample"]:
                typer.echo(f"      {c['sample']}")
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command()
def extract(
    html_file: Path = typer.Argument(..., help="HTML スナップショット"),
    candidate: int = typer.Option(0, "--candidate", "-c", help="使用するリスト候補の番号"),
    url: str = typer.Option("about:blank", "--url", help="スナップショットの URL"),
) -> None:
    """リスト候補から extract ステップとプレビューを生成して出力する。"""
    from .mcp.tools import extract_list

    try:
        html = html_file.read_text(encoding="utf-8")
        _echo_json(extract_list(html, candidate, url, load_config_from_env()))
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# capture コマンド
# ---------------------------------------------------------------------------

@app.command()
def capture(
    url: str = typer.Argument(..., help="キャプチャする URL"),
    output: Path = typer.Option(..., "--output", "-o", help="出力先 HTML ファイル"),
    viewport: Optional[str] = typer.Option(None, "--viewport", help="ビューポートサイズ (WIDTHxHEIGHT)"),
    wait_until: str = typer.Option("load", "--wait-until", help="load / domcontentloaded / networkidle"),
    headed: bool = typer.Option(False, "--headed", help="ブラウザを表示して実行する"),
) -> None:
    """Playwright でページを開き、レイアウト付き HTML スナップショットを保存する。"""
    from .dom.capture import save_capture

    try:
        config = apply_cli_args(load_config_from_env(), _Overrides(viewport=viewport))
        path = save_capture(url, output, config=config, wait_until=wait_until, headless=not headed)
        typer.echo(f"スナップショットを保存しました: {path}")
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


class _Overrides:
    """apply_cli_args に渡す CLI オプションの入れ物。"""

    def __init__(self, **values: Any) -> None:
        self.__dict__.update(values)
