"""テスト共通ヘルパー."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from rank_checker.exceptions import PageLoadError
from rank_checker.models import Task

_PAGE_PARAMS = ("page", "pagingIndex", "pageNo")


def product_list_html(product_ids: list[str]) -> str:
    """商品リンクを並べた検索結果ページ HTML を作る."""
    items = "".join(
        f'<li class="search-product"><a href="https://www.coupang.com/vp/products/{pid}'
        f'?itemId=1">상품 {pid}</a></li>'
        for pid in product_ids
    )
    return f"<html><body><ul>{items}</ul></body></html>"


def page_ids(page: int, count: int = 50, prefix: str = "") -> list[str]:
    """ページごとに重複しない ID 列を作る (例: page=2 -> 2001, 2002, ...)."""
    return [f"{prefix}{page}{i:03d}" for i in range(1, count + 1)]


def page_of(url: str) -> int:
    query = parse_qs(urlparse(url).query)
    for name in _PAGE_PARAMS:
        if name in query:
            return int(query[name][0])
    return 1


class FakeSession:
    """ページ番号ごとの ID 列を HTML で返すセッション.

    failures: {page: 失敗回数}。-1 なら常に失敗。
    """

    def __init__(self, pages: list[list[str]] | None = None, failures: dict | None = None) -> None:
        self.pages = pages or []
        self.failures = dict(failures or {})
        self.calls: list[int] = []
        self.urls: list[str] = []
        self.started = False
        self.closed = False

    def start(self) -> FakeSession:
        self.started = True
        return self

    def close(self) -> None:
        self.closed = True

    def fetch_html(self, url: str, timeout_ms: int, settle_ms: int) -> str:
        page = page_of(url)
        self.calls.append(page)
        self.urls.append(url)
        remaining = self.failures.get(page, 0)
        if remaining:
            if remaining > 0:
                self.failures[page] = remaining - 1
            raise PageLoadError(f"timeout: {url}")
        ids = self.pages[page - 1] if page <= len(self.pages) else []
        return product_list_html(ids)


class RecordingSink:
    """emit されたイベントを記録する EventSink."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    def emit(self, level: str, message: str, **fields: object) -> None:
        self.events.append((level, message, fields))

    def messages(self, level: str | None = None) -> list[str]:
        return [m for lv, m, _ in self.events if level is None or lv == level]


def make_task(
    task_id: int | None = 1,
    keyword: str = "자전거 라이트",
    product_id: str = "8188782600",
    slot_type: str = "쿠팡",
    slot_sequence: int | str | None = 3,
) -> Task:
    return Task(
        id=task_id,
        keyword=keyword,
        link_url=f"https://www.coupang.com/vp/products/{product_id}?itemId=23425236059",
        slot_type=slot_type,
        slot_sequence=slot_sequence,
    )


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()
