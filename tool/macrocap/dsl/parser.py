"""
ツール定義パーサー — 読み込み・書き出し・検証

生データ（dict / JSON / YAML）を旧形式デコーダーに通した後、
Pydantic モデルで厳格に検証する。検証に失敗した定義は部分的にも適用しない。

ファイルの読み書きは拡張子で形式を判定する:
  - .json        : 標準 json モジュール
  - .yaml / .yml : ruamel.yaml（ラウンドトリップモード）
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .migration import decode_server_document, decode_tool_document
from .schema import RemoteToolManifest, ServerDefinition, ToolDefinition

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")


# ---------------------------------------------------------------------------
# バリデーションエラー表現
# ---------------------------------------------------------------------------

@dataclass
class SchemaIssue:
    """スキーマ検証で検出された1件の問題。

    Attributes:
        message: エラーメッセージ
        location: エラー箇所（フィールドパスを " -> " で連結したもの）
        line: ファイル内の行番号（取得可能な場合）
    """

    message: str
    location: str = ""
    line: Optional[int] = None

    def __str__(self) -> str:
        where = self.location or "unknown"
        if self.line is not None:
            where = f"{where} (行 {self.line})"
        return f"{where}: {self.message}"


class ToolSchemaValidationError(ValueError):
    """ツール定義のスキーマ検証エラー。

    Attributes:
        issues: 検出された問題の一覧
    """

    def __init__(self, issues: list[SchemaIssue], subject: str = "ツール定義") -> None:
        self.issues = issues
        lines = "\n".join(f"  - {issue}" for issue in issues)
        super().__init__(f"{subject}のスキーマ検証エラー ({len(issues)} 件):\n{lines}")


def issues_from_pydantic(error: PydanticValidationError) -> list[SchemaIssue]:
    """Pydantic の ValidationError を SchemaIssue のリストに変換する。"""
    issues: list[SchemaIssue] = []
    for err in error.errors():
        loc_parts = [str(part) for part in err.get("loc", [])]
        issues.append(SchemaIssue(
            message=err.get("msg", "不明なエラー"),
            location=" -> ".join(loc_parts) if loc_parts else "unknown",
        ))
    return issues


# ---------------------------------------------------------------------------
# パース関数
# ---------------------------------------------------------------------------

_TOOL_ARRAY_ADAPTER = TypeAdapter(list[ToolDefinition])


def parse_tool_definition(data: Any) -> ToolDefinition:
    """生データからツール定義を生成する。

    Raises:
        ToolSchemaValidationError: スキーマに違反している場合
    """
    try:
        return ToolDefinition.model_validate(decode_tool_document(data))
    except PydanticValidationError as e:
        raise ToolSchemaValidationError(issues_from_pydantic(e)) from e


def parse_server_definition(data: Any) -> ServerDefinition:
    """生データからサーバー定義を生成する。

    Raises:
        ToolSchemaValidationError: スキーマに違反している場合
    """
    try:
        return ServerDefinition.model_validate(decode_server_document(data))
    except PydanticValidationError as e:
        raise ToolSchemaValidationError(issues_from_pydantic(e), subject="サーバー定義") from e


def parse_tool_array(data: Any) -> list[ToolDefinition]:
    """ブリッジ経由で受け取ったツール定義の配列を再検証する。

    1件でも不正な定義があれば全体を拒否する。

    Raises:
        ToolSchemaValidationError: 配列でない、またはいずれかの定義が不正な場合
    """
    if isinstance(data, list):
        data = [decode_tool_document(item) for item in data]
    try:
        return _TOOL_ARRAY_ADAPTER.validate_python(data)
    except PydanticValidationError as e:
        raise ToolSchemaValidationError(issues_from_pydantic(e), subject="ツール定義配列") from e


def parse_manifest(data: Any) -> RemoteToolManifest:
    """配布用マニフェストを検証する。

    Raises:
        ToolSchemaValidationError: スキーマに違反している場合
    """
    try:
        return RemoteToolManifest.model_validate(data)
    except PydanticValidationError as e:
        raise ToolSchemaValidationError(issues_from_pydantic(e), subject="マニフェスト") from e


def dump_tool_definition(tool: ToolDefinition) -> dict[str, Any]:
    """ツール定義を JSON 互換の辞書に変換する（未設定の任意フィールドは省略）。"""
    return tool.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# ToolParser 本体
# ---------------------------------------------------------------------------

class ToolParser:
    """ツール定義ファイル（JSON / YAML）の読み込み・書き出し・検証を担当するパーサー。"""

    def __init__(self) -> None:
        """ruamel.yaml インスタンスを初期化する。"""
        self._yaml = YAML()
        self._yaml.preserve_quotes = True
        self._yaml.default_flow_style = False

    # ----- 読み込み -----

    def read_raw(self, path: Path) -> Any:
        """ファイルを読み込み、通常の dict / list に変換して返す。

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            ValueError: 構文エラーまたは空ファイルの場合
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"ツール定義ファイルが見つかりません: {path}")

        text = path.read_text(encoding="utf-8")
        if not text.strip():
            raise ValueError("ツール定義ファイルが空です")

        if path.suffix.lower() in _YAML_SUFFIXES:
            try:
                data = self._yaml.load(text)
            except YAMLError as e:
                line_info = ""
                mark = getattr(e, "problem_mark", None)
                if mark is not None:
                    line_info = f" (行 {mark.line + 1}, 列 {mark.column + 1})"
                raise ValueError(f"YAML 構文エラー{line_info}: {e}") from e
            if data is None:
                raise ValueError("ツール定義ファイルが空です")
            return self._to_plain(data)

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"JSON 構文エラー (行 {e.lineno}, 列 {e.colno}): {e.msg}") from e

    def load(self, path: Path) -> ToolDefinition:
        """ツール定義ファイルを読み込み、検証済みのモデルを返す。

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            ValueError: 構文エラーの場合
            ToolSchemaValidationError: スキーマ検証エラーの場合
        """
        tool = parse_tool_definition(self.read_raw(path))
        logger.info("ツール定義を読み込みました: %s (%s)", tool.name, path)
        return tool

    # ----- 書き出し -----

    def dump(self, tool: ToolDefinition, path: Path) -> None:
        """ツール定義をファイルに書き出す。形式は拡張子で決まる。"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = dump_tool_definition(tool)
        with open(path, "w", encoding="utf-8") as f:
            if path.suffix.lower() in _YAML_SUFFIXES:
                self._yaml.dump(data, f)
            else:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.write("\n")
        logger.info("ツール定義を書き出しました: %s", path)

    # ----- 検証 -----

    def validate(self, path: Path) -> list[SchemaIssue]:
        """ツール定義ファイルを検証し、問題の一覧を返す。問題がなければ空リスト。"""
        path = Path(path)
        if not path.exists():
            return [SchemaIssue(message=f"ツール定義ファイルが見つかりません: {path}", location="file")]

        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return [SchemaIssue(message="ツール定義ファイルが空です", location="file")]

        if path.suffix.lower() in _YAML_SUFFIXES:
            try:
                data = self._yaml.load(text)
            except YAMLError as e:
                mark = getattr(e, "problem_mark", None)
                return [SchemaIssue(
                    message=f"YAML 構文エラー: {e}",
                    location="yaml",
                    line=mark.line + 1 if mark is not None else None,
                )]
            data = self._to_plain(data)
        else:
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                return [SchemaIssue(message=f"JSON 構文エラー: {e.msg}", location="json", line=e.lineno)]

        try:
            parse_tool_definition(data)
        except ToolSchemaValidationError as e:
            return list(e.issues)
        return []

    # ----- ユーティリティ -----

    def _to_plain(self, data: object) -> object:
        """ruamel.yaml の CommentedMap / CommentedSeq を通常の dict / list に再帰変換する。"""
        if isinstance(data, dict):
            return {key: self._to_plain(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._to_plain(item) for item in data]
        return data
