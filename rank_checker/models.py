"""データモデル定義."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Platform(str, Enum):
    """正規化済みプラットフォームキー."""

    COUPANG = "coupang"
    NAVER = "naver"
    ELEVENST = "11st"


class RankStatus(str, Enum):
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    NOT_FOUND_AT_CAP = "NOT_FOUND_AT_CAP"
    ERROR = "ERROR"


class WorkerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class Task:
    """keywords テーブルの1行（順位チェック依頼）を表す."""

    id: int | None  # REST モードでは None
    keyword: str
    link_url: str
    slot_type: str  # 未正規化のラベル (例: 쿠팡VIP)
    slot_sequence: int | str | None = None
    assigned_to: str | None = None
    assigned_at: str | None = None  # ISO 8601

    @classmethod
    def from_row(cls, row: dict) -> Task:
        """キュー行 (dict) から Task を生成する."""
        return cls(
            id=row.get("id"),
            keyword=row.get("keyword") or "",
            link_url=row.get("link_url") or "",
            slot_type=row.get("slot_type") or "",
            slot_sequence=row.get("slot_sequence"),
            assigned_to=row.get("assigned_to"),
            assigned_at=row.get("assigned_at"),
        )


@dataclass
class RankResult:
    """1タスク分の順位探索結果."""

    found: bool
    rank: int | None  # 1始まり。None = 圏外
    total_products_seen: int
    pages_checked: int
    status: RankStatus
    target_product_id: str = ""
    processing_ms: int = 0


@dataclass
class IdentitySession:
    """現在のネットワーク識別情報."""

    current_ip: str | None = None
    next_rotation_at: datetime | None = None


@dataclass
class WorkerStats:
    """ワーカーの累積カウンタ."""

    processed: int = 0
    errors: int = 0
    started_at: float | None = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return self.clock() - self.started_at

    @property
    def success_rate(self) -> int:
        """成功率（%）。未処理なら 0."""
        if self.processed == 0:
            return 0
        return round(self.processed / (self.processed + self.errors) * 100)

    def summary(self) -> str:
        hours, rest = divmod(int(self.elapsed), 3600)
        minutes = rest // 60
        return (
            f"実行時間: {hours}時間{minutes}分, 処理完了: {self.processed} 件, "
            f"エラー: {self.errors} 件, 成功率: {self.success_rate}%"
        )
