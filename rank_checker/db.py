"""Supabase データベース操作モジュール.

キュー (keywords テーブル) の claim と、順位記録 + キュー削除の
トランザクションはどちらもサーバ側関数 (sql/rank_checker.sql) で1回の
呼び出しとして実行する。クライアント側で select → update の2段階は行わない。
"""

from __future__ import annotations

import logging
import re

from postgrest.exceptions import APIError

from rank_checker.exceptions import TransactionError, ValidationError
from rank_checker.models import Task

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


def parse_int(value: object, name: str, *, allow_none: bool = False) -> int | None:
    """整数として解釈する. 解釈できなければ ValidationError.

    空文字・None は allow_none のとき None、それ以外はエラー。
    """
    if isinstance(value, str):
        value = value.strip()
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{name} が空です")
    if isinstance(value, bool):
        raise ValidationError(f"不正な {name} 値: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value))
    except ValueError:
        raise ValidationError(f"不正な {name} 値: {value!r}") from None


def _claim_order(task: Task) -> tuple:
    """(slot_sequence, id) 順のソートキー. slot_sequence なしは末尾."""
    try:
        sequence = parse_int(task.slot_sequence, "slot_sequence")
    except ValidationError:
        sequence = None
    return (sequence is None, sequence or 0, task.id or 0)


class SupabaseGateway:
    """キューの claim / 順位 commit を行うゲートウェイ."""

    def __init__(self, client, schema: str = "", lease_seconds: int = 1800) -> None:
        self._client = client
        self._schema = schema
        self._lease_seconds = lease_seconds

    def _db(self):
        """スキーマ指定があればそのスキーマのクライアントを返す."""
        if self._schema:
            return self._client.schema(self._schema)
        return self._client

    def _table(self, name: str):
        return self._db().table(name)

    def claim_batch(self, worker_id: str, limit: int) -> list[Task]:
        """未割り当て（またはリース切れ）のタスクを claim して返す.

        (slot_sequence, id) 順。claim 済みの行は他ワーカーから見えない。
        """
        try:
            resp = self._db().rpc(
                "claim_keywords",
                {
                    "p_worker_id": worker_id,
                    "p_limit": limit,
                    "p_lease_seconds": self._lease_seconds,
                },
            ).execute()
        except APIError as e:
            raise TransactionError(f"claim_keywords 失敗: {e}") from e

        tasks = [Task.from_row(row) for row in resp.data or []]
        # UPDATE ... RETURNING の返却順は不定
        tasks.sort(key=_claim_order)
        if tasks:
            logger.info("%d 件のタスクを claim: worker=%s", len(tasks), worker_id)
        return tasks

    def commit(
        self,
        table: str,
        slot_sequence: object,
        keyword: str,
        link_url: str,
        rank: object,
        task_id: object,
    ) -> None:
        """順位記録とキュー削除を1トランザクションで実行する.

        Args:
            table: 順位記録テーブル (例: slot_status)
            slot_sequence: 整数として解釈できること
            rank: None（圏外）または正の整数
            task_id: keywords.id

        Raises:
            ValidationError: 数値が不正（RPC 呼び出し前に検出）
            TransactionError: RPC 自体の失敗
        """
        if not _TABLE_NAME.match(table or ""):
            raise ValidationError(f"不正なテーブル名: {table!r}")
        slot_sequence_int = parse_int(slot_sequence, "slot_sequence")
        task_id_int = parse_int(task_id, "keyword_id")
        rank_int = parse_int(rank, "current_rank", allow_none=True)
        if rank_int is not None and rank_int < 1:
            raise ValidationError(f"current_rank は正の整数であること: {rank!r}")

        try:
            self._db().rpc(
                "update_rank_and_delete_keyword",
                {
                    "p_table": table,
                    "p_slot_sequence": slot_sequence_int,
                    "p_keyword": keyword,
                    "p_link_url": link_url,
                    "p_current_rank": rank_int,
                    "p_keyword_id": task_id_int,
                },
            ).execute()
        except APIError as e:
            raise TransactionError(f"update_rank_and_delete_keyword 失敗: {e}") from e

    def commit_task(self, task: Task, table: str, rank: int | None) -> None:
        self.commit(table, task.slot_sequence, task.keyword, task.link_url, rank, task.id)

    def release_claims(self, worker_id: str) -> None:
        """このワーカーが claim したまま残っているタスクをキューに戻す."""
        try:
            self._table("keywords").update(
                {"assigned_to": None, "assigned_at": None}
            ).eq("assigned_to", worker_id).execute()
        except APIError as e:
            raise TransactionError(f"claim 解放失敗: {e}") from e
        logger.info("claim を解放: worker=%s", worker_id)

    def platform_stats(self, slot_type: str, table: str = "slot_status") -> dict:
        """記録済み順位の集計を返す.

        Returns:
            {"total_checks", "avg_rank", "best_rank", "worst_rank", "avg_start_rank"}
        """
        resp = (
            self._table(table)
            .select("current_rank, start_rank, created_at")
            .eq("slot_type", slot_type)
            .execute()
        )
        rows = resp.data or []
        ranks = [r["current_rank"] for r in rows if r.get("current_rank") is not None]
        start_ranks = [r["start_rank"] for r in rows if r.get("start_rank") is not None]

        return {
            "total_checks": len(rows),
            "avg_rank": round(sum(ranks) / len(ranks)) if ranks else 0,
            "best_rank": min(ranks) if ranks else 0,
            "worst_rank": max(ranks) if ranks else 0,
            "avg_start_rank": round(sum(start_ranks) / len(start_ranks)) if start_ranks else 0,
        }

    def rank_history(
        self, keyword: str, url: str, slot_type: str, product_id: str, table: str = "slot_status"
    ) -> list[dict]:
        """指定キーワード・商品の順位記録を新しい順に返す（調査用）."""
        resp = (
            self._table(table)
            .select("*")
            .eq("keyword", keyword)
            .eq("url", url)
            .eq("slot_type", slot_type)
            .eq("product_id", product_id)
            .order("created_at", desc=True)
            .execute()
        )
        return resp.data or []
