"""REST API モードのキュー操作.

GET  /api/keywords     -> {"success", "data": [{keyword, link_url, slot_type, slot_sequence}]}
POST /api/rank-update  -> {"success", "error"?}
"""

from __future__ import annotations

import logging

import requests

from rank_checker.config import REQUEST_TIMEOUT
from rank_checker.exceptions import TransactionError
from rank_checker.models import Task

logger = logging.getLogger(__name__)


class RestGateway:
    """REST API 経由で SupabaseGateway と同じ claim / commit を提供する."""

    def __init__(self, base_url: str, session: requests.Session | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def claim_batch(self, worker_id: str, limit: int) -> list[Task]:
        """キーワード一覧を取得する. API 側が割り当てを管理するため worker_id は送らない."""
        try:
            resp = self._session.get(f"{self._base_url}/api/keywords", timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TransactionError(f"キーワード取得失敗: {e}") from e

        if not body.get("success"):
            raise TransactionError(f"キーワード取得失敗: {body.get('error')}")

        tasks = [
            Task(
                id=None,
                keyword=item.get("keyword") or "",
                link_url=item.get("link_url") or "",
                slot_type=item.get("slot_type") or "coupang",
                slot_sequence=item.get("slot_sequence"),
            )
            for item in body.get("data") or []
        ]
        return tasks[:limit]

    def commit_task(self, task: Task, table: str, rank: int | None) -> None:
        """順位を送信する. table は API 側で slot_type から決まるため使わない."""
        payload = {
            "keyword": task.keyword,
            "link_url": task.link_url,
            "slot_type": task.slot_type,
            "current_rank": rank,
            "slot_sequence": task.slot_sequence,
        }
        try:
            resp = self._session.post(
                f"{self._base_url}/api/rank-update", json=payload, timeout=REQUEST_TIMEOUT
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TransactionError(f"順位送信失敗: {e}") from e

        if not body.get("success"):
            raise TransactionError(f"順位送信失敗: {body.get('error')}")
        logger.info("順位送信成功: keyword=%s, slot=%s, rank=%s", task.keyword, task.slot_sequence, rank)

    def release_claims(self, worker_id: str) -> None:
        """REST モードには claim がないため何もしない."""
