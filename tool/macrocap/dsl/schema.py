"""
ツール定義スキーマ — Tool Definition の Pydantic v2 モデル

記録した操作を、パラメータ付きで再実行可能な「ツール定義」として表現する。
実行エンジン（外部）が受け取る唯一のデータ契約であり、以下で構成される:

  - メタデータ（id, name, description, version）
  - パラメータ（LLM が埋める入力値）
  - ステップ（action をタグとする判別共用体）
  - レーン（並列実行される名前付きステップ列、任意）

ステップは action フィールドによる discriminated union で表現し、
タグごとに有効な形状はちょうど1つとする。新しい操作は共用体への型追加で拡張し、
共通レコードへの任意フィールド追加では拡張しない。
"""

from __future__ import annotations

import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

# パラメータ名 / ツール名に使用できるパターン（snake_case）
NAME_PATTERN = r"^[a-z][a-z0-9_]*$"
_NAME_RE = re.compile(NAME_PATTERN)

# 旧 lanes 形式を自動で包む際のレーン名
DEFAULT_LANE_NAME = "Lane {index}"

# 整数はそのまま整数として保持する（500 が 500.0 にならない）
Number = Union[int, float]


# ---------------------------------------------------------------------------
# パラメータ定義
# ---------------------------------------------------------------------------

ParameterSource = Literal["urlParam", "input", "pathSegment"]
"""パラメータ値が実行時に注入される場所。

  - urlParam: URL クエリパラメータ
  - input: ステップ内の {{placeholder}}
  - pathSegment: URL パスのセグメント
"""


class ToolParameter(BaseModel):
    """LLM が値を与えるツールの入力パラメータ。"""

    name: str = Field(..., pattern=NAME_PATTERN, description="{{placeholder}} で参照するパラメータ名")
    type: Literal["string", "number", "boolean"] = Field(..., description="JSON Schema 型")
    description: str = Field(..., description="LLM 向けの説明")
    required: bool = Field(default=True, description="LLM が必ず指定する必要があるか")
    enum: Optional[list[str]] = Field(default=None, description="許可される値の一覧")
    default: Optional[Union[str, int, float, bool]] = Field(
        default=None, description="未指定時の既定値",
    )
    source: Optional[ParameterSource] = Field(default=None, description="記録時の値の出所")
    sourceKey: Optional[str] = Field(default=None, description="元のキー（クエリパラメータ名等）")


# ---------------------------------------------------------------------------
# 抽出フィールド定義
# ---------------------------------------------------------------------------

ExtractionType = Literal["text", "html", "attribute", "value", "regex", "nested", "nested_list"]


class ExtractionField(BaseModel):
    """コンテナ要素から取り出す1つの値。

    type が "attribute" の場合は attribute が意味上必須だが、スキーマでは強制しない。
    """

    key: str = Field(..., description="抽出結果のキー名")
    selector: str = Field(..., description="コンテナからの相対 CSS セレクタまたは XPath")
    type: ExtractionType = Field(default="text", description="抽出方法")
    attribute: Optional[str] = Field(default=None, description="属性名（type=attribute 時）")
    pattern: Optional[str] = Field(
        default=None, description="正規表現（type=regex 時。グループ1、なければ全体一致を返す）",
    )
    default: Optional[Union[str, int, float]] = Field(default=None, description="抽出失敗時の値")
    transform: Optional[Literal["trim", "lowercase", "uppercase", "number"]] = Field(
        default=None, description="抽出後の変換",
    )
    fields: Optional[list[ExtractionField]] = Field(
        default=None, description="nested / nested_list 用のサブフィールド",
    )


# ---------------------------------------------------------------------------
# ステップ定義
# ---------------------------------------------------------------------------

WaitUntil = Literal["load", "domcontentloaded", "networkidle"]


class BaseStep(BaseModel):
    """全ステップ共通のフィールド。"""

    label: Optional[str] = Field(default=None, description="人間向けのステップ名（任意）")
    continueOnError: Optional[bool] = Field(
        default=None, description="true なら失敗しても後続ステップを続行する",
    )


class NavigateStep(BaseStep):
    """指定 URL へ遷移するステップ。"""

    action: Literal["navigate"] = "navigate"
    url: str = Field(..., description="遷移先のベース URL")
    urlParams: Optional[dict[str, str]] = Field(
        default=None, description="クエリパラメータ（値に {{param}} を含めてよい）",
    )
    waitUntil: Optional[WaitUntil] = Field(default="load", description="遷移完了の判定条件")


class ClickStep(BaseStep):
    """要素をクリックするステップ。"""

    action: Literal["click"] = "click"
    selector: str = Field(..., description="CSS セレクタまたは XPath")


class TypeStep(BaseStep):
    """入力欄にテキストを入力するステップ。"""

    action: Literal["type"] = "type"
    selector: str = Field(..., description="CSS セレクタまたは XPath")
    text: str = Field(..., description="入力するテキスト（{{param}} を含めてよい）")
    clear: bool = Field(default=True, description="入力前に既存の値を消去するか")


class ScrollStep(BaseStep):
    """ページまたは要素をスクロールするステップ。"""

    action: Literal["scroll"] = "scroll"
    selector: Optional[str] = Field(default=None, description="対象要素。省略時はページ全体")
    direction: Literal["up", "down", "left", "right"] = Field(default="down", description="スクロール方向")
    amount: Number = Field(default=500, ge=0, description="スクロール量（px）")


class SelectStep(BaseStep):
    """select 要素のオプションを選択するステップ。"""

    action: Literal["select"] = "select"
    selector: str = Field(..., description="select 要素の CSS セレクタまたは XPath")
    value: str = Field(..., description="選択するオプションの値（{{param}} を含めてよい）")


class WaitStep(BaseStep):
    """指定時間待機するステップ。"""

    action: Literal["wait"] = "wait"
    ms: Number = Field(default=1000, ge=0, le=30_000, description="待機時間（ミリ秒）")


class WaitForSelectorStep(BaseStep):
    """要素が現れるまで待機するステップ。"""

    action: Literal["waitForSelector"] = "waitForSelector"
    selector: str = Field(..., description="待機対象の CSS セレクタまたは XPath")
    timeout: Number = Field(default=10_000, ge=0, description="タイムアウト（ミリ秒）")


class WaitForUrlStep(BaseStep):
    """URL が指定文字列を含むまで待機するステップ。"""

    action: Literal["waitForUrl"] = "waitForUrl"
    pattern: str = Field(..., description="待機する URL の部分文字列")
    timeout: Number = Field(default=10_000, ge=0, description="タイムアウト（ミリ秒）")


class WaitForLoadStep(BaseStep):
    """ページの読み込み完了を待機するステップ。"""

    action: Literal["waitForLoad"] = "waitForLoad"
    timeout: Number = Field(default=15_000, ge=0, description="タイムアウト（ミリ秒）")


class ExtractStep(BaseStep):
    """ページから構造化データを抽出するステップ。

    mode=list ではコンテナセレクタに一致する各要素から fields を取り出す。
    mode=single ではコンテナ要素1つから取り出す。
    """

    action: Literal["extract"] = "extract"
    name: str = Field(..., description="抽出結果の名前（統合出力のキー）")
    mode: Literal["single", "list"] = Field(..., description="単一要素かリストか")
    containerSelector: str = Field(default="", description="各要素（list）またはコンテナ（single）のセレクタ")
    fields: list[ExtractionField] = Field(..., min_length=1, description="抽出フィールド")
    itemCount: Optional[int] = Field(default=None, description="記録時点の要素数（list のみ、参考値）")
    extractionMethod: Optional[Literal["css", "role", "snapshot"]] = Field(
        default=None, description="抽出方式（既定は css）",
    )
    roles: Optional[list[str]] = Field(default=None, description="検索する ARIA ロール（role 方式）")
    roleName: Optional[str] = Field(default=None, description="アクセシブルネームの絞り込み（role 方式）")
    roleIncludeChildren: Optional[bool] = Field(default=None, description="子要素の内容を含めるか（role 方式）")


SimpleActionStep = Annotated[
    Union[
        NavigateStep,
        ClickStep,
        TypeStep,
        ScrollStep,
        SelectStep,
        WaitStep,
        WaitForSelectorStep,
        WaitForUrlStep,
        WaitForLoadStep,
        ExtractStep,
    ],
    Field(discriminator="action"),
]
"""forEachItem の detailSteps で使用できる（再帰しない）ステップの共用体。"""


class ForEachFilter(BaseModel):
    """forEachItem の要素フィルタ。全フィルタを満たさない要素はスキップされる。"""

    field: str = Field(..., description="判定に使う抽出フィールドのキー")
    op: Literal[
        "contains", "not_contains", "equals", "not_equals", "starts_with", "ends_with", "regex",
    ] = Field(..., description="比較演算子")
    value: str = Field(default="", description="比較値")


class ForEachItemStep(BaseStep):
    """抽出済みリストの各要素の詳細ページでステップ列を実行するステップ。"""

    action: Literal["forEachItem"] = "forEachItem"
    sourceExtract: str = Field(..., description="反復元となる extract ステップの name")
    openMethod: Literal["url", "click"] = Field(..., description="詳細ページの開き方")
    urlField: Optional[str] = Field(default=None, description="URL を持つフィールドのキー（url 方式）")
    clickSelector: Optional[str] = Field(default=None, description="要素内のクリック対象（click 方式）")
    containerSelector: Optional[str] = Field(default=None, description="要素を特定するコンテナセレクタ（click 方式）")
    detailSteps: list[SimpleActionStep] = Field(..., min_length=1, description="詳細ページで実行するステップ")
    concurrency: int = Field(default=3, ge=1, description="並列タブ数（1 で逐次）")
    maxItems: int = Field(default=0, ge=0, description="処理する最大要素数（0 で全件）")
    waitUntil: Optional[WaitUntil] = Field(default="load", description="詳細ページ遷移後の待機条件")
    filters: Optional[list[ForEachFilter]] = Field(default_factory=list, description="要素フィルタ（AND）")


ActionStep = Annotated[
    Union[
        NavigateStep,
        ClickStep,
        TypeStep,
        ScrollStep,
        SelectStep,
        WaitStep,
        WaitForSelectorStep,
        WaitForUrlStep,
        WaitForLoadStep,
        ExtractStep,
        ForEachItemStep,
    ],
    Field(discriminator="action"),
]
"""全ステップ型の判別共用体（action タグで判別）。"""


# ---------------------------------------------------------------------------
# レーン / ツール定義
# ---------------------------------------------------------------------------

class Lane(BaseModel):
    """独立して実行可能な名前付きステップ列。"""

    name: str = Field(..., min_length=1, description="レーン名")
    steps: list[ActionStep] = Field(..., min_length=1, description="レーン内のステップ列")


class Viewport(BaseModel):
    """記録時のビューポートサイズ。再実行時に同じ解像度を再現する。"""

    width: Number
    height: Number


class ToolDefinition(BaseModel):
    """パラメータ付きで再実行可能なツール定義（マクロ）。

    lanes が2本以上ある場合は lanes が優先され、各レーンが並列に実行される。
    steps は単一レーン実行と後方互換のために保持する。
    旧形式の lanes（ActionStep[][]）は parser の前処理で名前付きレーンへ変換される。
    """

    id: str = Field(..., description="一意な識別子（UUID）")
    name: str = Field(..., pattern=NAME_PATTERN, description="LLM が呼び出すツール名（snake_case）")
    description: str = Field(..., min_length=1, description="ツールの説明")
    version: str = Field(default="1.0.0", description="スキーマバージョン")
    parameters: list[ToolParameter] = Field(default_factory=list, description="入力パラメータ")
    steps: list[ActionStep] = Field(..., min_length=1, description="実行するステップ列")
    viewport: Optional[Viewport] = Field(default=None, description="記録時のビューポート")
    lanes: Optional[list[Lane]] = Field(default=None, description="並列実行する名前付きレーン")

    @field_validator("description", mode="before")
    @classmethod
    def default_blank_description(cls, v: object) -> object:
        """空白のみの説明を "No description" に置き換える。"""
        if isinstance(v, str) and v.strip() == "":
            return "No description"
        return v

    def effective_lanes(self) -> list[Lane]:
        """実行に用いるレーン一覧を返す。

        lanes が2本以上なら lanes を、それ以外は steps を1本のレーンとして返す。
        """
        if self.lanes and len(self.lanes) > 1:
            return list(self.lanes)
        return [Lane(name=DEFAULT_LANE_NAME.format(index=1), steps=list(self.steps))]

    def is_parallel(self) -> bool:
        """複数レーンの並列実行が要求されているか。"""
        return bool(self.lanes) and len(self.lanes) > 1


# ---------------------------------------------------------------------------
# サーバー定義 / リモートマニフェスト
# ---------------------------------------------------------------------------

class ServerDefinition(BaseModel):
    """ツール定義をまとめたサーバー定義。"""

    id: str = Field(..., description="サーバー識別子")
    name: str = Field(..., description="サーバー名")
    description: str = Field(..., description="サーバーの説明")
    category: str = Field(default="custom", description="グループ化用のカテゴリ")
    tools: list[ToolDefinition] = Field(..., min_length=1, description="所属するツール定義")


class ManifestServer(BaseModel):
    """リモートマニフェスト内のサーバー概要。"""

    id: str
    name: str
    description: str
    category: str
    tools: list[str] = Field(..., description="ツールファイル名（拡張子 .json なし）")


class RemoteToolManifest(BaseModel):
    """配布用のツールマニフェスト。"""

    version: str = Field(..., description="マニフェストバージョン")
    servers: list[ManifestServer] = Field(..., description="利用可能なサーバー一覧")


def is_valid_name(value: str) -> bool:
    """パラメータ名 / ツール名として有効か判定する。"""
    return bool(_NAME_RE.match(value))
