"""検索結果ページの巡回と順位解決モジュール.

取得戦略（1ページ内）:
  1. 商品リンク URL パターン (a[href]) と data 属性からの抽出（主戦略）
  2. JSON-LD (schema.org/ItemList) パース（フォールバック）

順位は「ページをまたいで初めて出現した順」に重複を除いた ID 列の中での
位置（1始まり）。ページ内の位置ではない。
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Iterable
from typing import Protocol
from urllib.parse import quote

from bs4 import BeautifulSoup

from rank_checker.config import (
    EARLY_PAGE_LIMIT,
    EARLY_PAGE_RETRIES,
    MAX_PAGES,
    MAX_PRODUCTS,
    NAVIGATION_TIMEOUT_MS,
    SETTLE_DELAY_MS,
    STAGNATION_PAGE,
)
from rank_checker.exceptions import PageLoadError, ValidationError
from rank_checker.models import Platform, RankResult, RankStatus, Task

logger = logging.getLogger(__name__)


class PageSession(Protocol):
    """検索ページの HTML を返すブラウザセッション."""

    def fetch_html(self, url: str, timeout_ms: int, settle_ms: int) -> str: ...


class RankTracker:
    """初出順を保持する商品 ID の集合."""

    def __init__(self) -> None:
        self._ranks: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._ranks)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._ranks

    def add_all(self, product_ids: Iterable[str]) -> int:
        """ID を追加し、新規に増えた件数を返す."""
        before = len(self._ranks)
        for product_id in product_ids:
            if product_id not in self._ranks:
                self._ranks[product_id] = len(self._ranks) + 1
        return len(self._ranks) - before

    def rank_of(self, product_id: str) -> int | None:
        return self._ranks.get(product_id)

    def ids(self) -> list[str]:
        return list(self._ranks)


def extract_product_id(url: str, pattern: re.Pattern) -> str:
    """商品 URL からパターンの第1グループを取り出す.

    Returns:
        商品 ID。抽出失敗時は ""。
    """
    m = pattern.search(url or "")
    if m:
        return m.group(1)
    return ""


def parse_product_ids(
    html: str,
    url_pattern: re.Pattern,
    data_attributes: tuple[str, ...] = ("data-product-id",),
) -> list[str]:
    """検索結果 HTML から商品 ID を文書順（ページ内初出順）で抽出する.

    主戦略: a[href] の URL パターンと data 属性
    フォールバック: JSON-LD (schema.org/ItemList)
    """
    soup = BeautifulSoup(html, "html.parser")
    ids = _parse_from_dom(soup, url_pattern, data_attributes)
    if ids:
        return ids

    ids = _parse_from_json_ld(soup, url_pattern)
    if ids:
        logger.debug("DOM から抽出できず JSON-LD にフォールバック: %d 件", len(ids))
    return ids


def _parse_from_dom(
    soup: BeautifulSoup, url_pattern: re.Pattern, data_attributes: tuple[str, ...]
) -> list[str]:
    ids: list[str] = []
    seen: set[str] = set()
    for element in soup.find_all(True):
        product_id = ""
        if element.name == "a":
            product_id = extract_product_id(element.get("href") or "", url_pattern)
        if not product_id:
            for attr in data_attributes:
                value = element.get(attr)
                if value:
                    product_id = str(value).strip()
                    break
        if product_id and product_id not in seen:
            seen.add(product_id)
            ids.append(product_id)
    return ids


def _parse_from_json_ld(soup: BeautifulSoup, url_pattern: re.Pattern) -> list[str]:
    ids: list[str] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string)
        except (json.JSONDecodeError, TypeError):
            continue

        if not isinstance(data, dict) or data.get("@type") != "ItemList":
            continue

        entries = [e for e in data.get("itemListElement") or [] if isinstance(e, dict)]
        # position が読めない要素は文書順で末尾
        entries = sorted(entries, key=_list_position)
        for entry in entries:
            product = entry.get("item")
            if not isinstance(product, dict):
                product = {}
            url = product.get("url") or entry.get("url") or ""
            product_id = extract_product_id(url, url_pattern)
            if product_id and product_id not in ids:
                ids.append(product_id)
    return ids


def _list_position(entry: dict) -> tuple[int, int]:
    """ListItem.position を数値として読む. "2" のような文字列も許す."""
    try:
        return (0, int(entry.get("position")))
    except (TypeError, ValueError):
        return (1, 0)


class RankResolver:
    """1プラットフォーム分の検索・順位解決."""

    def __init__(
        self,
        platform: Platform,
        first_page_url: str,
        page_url: str,
        product_url_pattern: re.Pattern,
        data_attributes: tuple[str, ...] = ("data-product-id",),
        *,
        max_pages: int = MAX_PAGES,
        max_products: int = MAX_PRODUCTS,
        stagnation_page: int = STAGNATION_PAGE,
        early_page_limit: int = EARLY_PAGE_LIMIT,
        early_page_retries: int = EARLY_PAGE_RETRIES,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        settle_delay_ms: int = SETTLE_DELAY_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.platform = platform
        self.first_page_url = first_page_url
        self.page_url = page_url
        self.product_url_pattern = product_url_pattern
        self.data_attributes = data_attributes
        self.max_pages = max_pages
        self.max_products = max_products
        self.stagnation_page = stagnation_page
        self.early_page_limit = early_page_limit
        self.early_page_retries = early_page_retries
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self._clock = clock

    def search_url(self, keyword: str, page: int) -> str:
        template = self.first_page_url if page == 1 else self.page_url
        return template.format(keyword=quote(keyword, safe=""), page=page)

    def target_product_id(self, link_url: str) -> str:
        """link_url から対象商品 ID を導出する. 導出できなければ ValidationError."""
        product_id = extract_product_id(link_url, self.product_url_pattern)
        if not product_id:
            raise ValidationError(
                f"商品 ID を導出できません: platform={self.platform.value}, link_url={link_url!r}"
            )
        return product_id

    def resolve_rank(self, task: Task, session: PageSession) -> RankResult:
        """検索結果をページ送りし、対象商品の順位を求める.

        停止条件は次のいずれか:
          - 対象商品を発見 (FOUND)
          - 収集 ID 数が上限に到達 (NOT_FOUND_AT_CAP)
          - stagnation_page 以降で新規 ID が増えないページ (NOT_FOUND)
          - 序盤ページの読み込み失敗 (ERROR)
          - 最大ページ数まで到達 (NOT_FOUND)
        """
        target = self.target_product_id(task.link_url)
        started = self._clock()
        tracker = RankTracker()
        rank: int | None = None
        aborted = False
        pages_checked = 0

        for page in range(1, self.max_pages + 1):
            pages_checked = page
            try:
                html = self._fetch_page(session, task.keyword, page)
            except PageLoadError as e:
                if page <= self.early_page_limit:
                    logger.error(
                        "序盤ページ読み込み失敗のため中断: keyword=%s, page=%d, error=%s",
                        task.keyword, page, e,
                    )
                    aborted = True
                else:
                    logger.warning(
                        "ページ読み込み失敗、収集済みで打ち切り: keyword=%s, page=%d, error=%s",
                        task.keyword, page, e,
                    )
                break

            page_ids = parse_product_ids(html, self.product_url_pattern, self.data_attributes)
            new_count = tracker.add_all(page_ids)
            logger.info(
                "ページ %d/%d: %d 件 (新規 %d 件, 累計 %d 件)",
                page, self.max_pages, len(page_ids), new_count, len(tracker),
            )

            rank = tracker.rank_of(target)
            if rank is not None:
                logger.info("対象商品発見: keyword=%s, page=%d, rank=%d", task.keyword, page, rank)
                break

            if len(tracker) >= self.max_products:
                logger.info("収集上限 %d 件に到達", self.max_products)
                break

            if new_count == 0 and len(tracker) > 0 and page >= self.stagnation_page:
                logger.info("新規商品なし（page=%d）のため打ち切り", page)
                break

        if aborted:
            status = RankStatus.ERROR
        elif rank is not None:
            status = RankStatus.FOUND
        elif len(tracker) >= self.max_products:
            status = RankStatus.NOT_FOUND_AT_CAP
        else:
            status = RankStatus.NOT_FOUND

        return RankResult(
            found=rank is not None,
            rank=rank,
            total_products_seen=len(tracker),
            pages_checked=pages_checked,
            status=status,
            target_product_id=target,
            processing_ms=int((self._clock() - started) * 1000),
        )

    def _fetch_page(self, session: PageSession, keyword: str, page: int) -> str:
        url = self.search_url(keyword, page)
        attempts = 1
        if page <= self.early_page_limit:
            attempts += self.early_page_retries

        attempt = 1
        while True:
            try:
                return session.fetch_html(url, self.navigation_timeout_ms, self.settle_delay_ms)
            except PageLoadError as e:
                if attempt >= attempts:
                    raise
                logger.warning("ページ再読み込み (%d/%d): url=%s, error=%s", attempt, attempts, url, e)
                attempt += 1
