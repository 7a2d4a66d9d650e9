"""プラットフォーム正規化と振り分け.

slot_type は自由入力に近いラベル（韓国語表記・旧表記を含む）のため、
既知ラベルの閉じた表で (正規化キー, 結果テーブル) に対応付ける。
表にないラベルは UnsupportedPlatformError とし、既定テーブルには書き込まない。
"""

from __future__ import annotations

import re
from collections import OrderedDict

from rank_checker.config import (
    COUPANG_SEARCH_PAGE_URL,
    COUPANG_SEARCH_URL,
    ELEVENST_SEARCH_PAGE_URL,
    ELEVENST_SEARCH_URL,
    NAVER_SEARCH_PAGE_URL,
    NAVER_SEARCH_URL,
)
from rank_checker.exceptions import UnsupportedPlatformError
from rank_checker.models import Platform, Task
from rank_checker.scraper import RankResolver

DEFAULT_TABLE = "slot_status"

# 小文字・前後空白除去後のラベル -> (プラットフォーム, 結果テーブル)
_LABELS: dict[str, tuple[Platform, str]] = {
    "쿠팡": (Platform.COUPANG, DEFAULT_TABLE),
    "coupang": (Platform.COUPANG, DEFAULT_TABLE),
    "coupang-web": (Platform.COUPANG, DEFAULT_TABLE),
    "쿠팡vip": (Platform.COUPANG, "slot_copangvip"),
    "coupangvip": (Platform.COUPANG, "slot_copangvip"),
    "쿠팡app": (Platform.COUPANG, "slot_copangapp"),
    "coupangapp": (Platform.COUPANG, "slot_copangapp"),
    "쿠팡순위체크": (Platform.COUPANG, "slot_copangrank"),
    "coupangrank": (Platform.COUPANG, "slot_copangrank"),
    "naver": (Platform.NAVER, DEFAULT_TABLE),
    "네이버": (Platform.NAVER, DEFAULT_TABLE),
    "11st": (Platform.ELEVENST, DEFAULT_TABLE),
    "11번가": (Platform.ELEVENST, DEFAULT_TABLE),
}

# coupang.com/vp/products/8473798698?itemId=...
_COUPANG_PRODUCT = re.compile(r"/(?:vp/)?products/(\d+)")
# smartstore.naver.com/{store}/products/123, search.shopping.naver.com/catalog/123, ?nvMid=123
_NAVER_PRODUCT = re.compile(r"(?:/products/|/catalog/|[?&]nvMid=)(\d+)")
# 11st.co.kr/products/123, 11st.co.kr/products/pa/123
_ELEVENST_PRODUCT = re.compile(r"/products/(?:pa/)?(\d+)")


def _key(raw_label: str | None) -> str:
    return str(raw_label or "").strip().lower()


def normalize(raw_label: str | None) -> Platform:
    """slot_type を正規化キーに変換する."""
    entry = _LABELS.get(_key(raw_label))
    if entry is None:
        raise UnsupportedPlatformError(f"未対応の slot_type: {raw_label!r}")
    return entry[0]


def result_table(raw_label: str | None) -> str:
    """slot_type に対応する順位記録テーブル名を返す."""
    entry = _LABELS.get(_key(raw_label))
    if entry is None:
        raise UnsupportedPlatformError(f"未対応の slot_type: {raw_label!r}")
    return entry[1]


def group_by_platform(
    tasks: list[Task],
) -> tuple[OrderedDict[Platform, list[Task]], list[Task]]:
    """タスクを正規化キーごとにまとめる（claim 順を維持）.

    未対応ラベルのタスクは呼び出し側で個別にエラー扱いできるよう
    グループに含めず、2番目の戻り値で返す。
    """
    grouped: OrderedDict[Platform, list[Task]] = OrderedDict()
    unsupported: list[Task] = []
    for task in tasks:
        try:
            platform = normalize(task.slot_type)
        except UnsupportedPlatformError:
            unsupported.append(task)
            continue
        grouped.setdefault(platform, []).append(task)
    return grouped, unsupported


def build_resolvers(**options) -> dict[Platform, RankResolver]:
    """全プラットフォームの RankResolver を生成する."""
    return {
        Platform.COUPANG: RankResolver(
            Platform.COUPANG,
            COUPANG_SEARCH_URL,
            COUPANG_SEARCH_PAGE_URL,
            _COUPANG_PRODUCT,
            ("data-product-id", "data-vendor-item-id", "data-item-id"),
            **options,
        ),
        Platform.NAVER: RankResolver(
            Platform.NAVER,
            NAVER_SEARCH_URL,
            NAVER_SEARCH_PAGE_URL,
            _NAVER_PRODUCT,
            ("data-nv-mid", "data-product-id"),
            **options,
        ),
        Platform.ELEVENST: RankResolver(
            Platform.ELEVENST,
            ELEVENST_SEARCH_URL,
            ELEVENST_SEARCH_PAGE_URL,
            _ELEVENST_PRODUCT,
            ("data-prd-no", "data-product-id"),
            **options,
        ),
    }


class PlatformDispatcher:
    """正規化キーから RankResolver を引く."""

    def __init__(self, resolvers: dict[Platform, RankResolver] | None = None) -> None:
        self._resolvers = resolvers if resolvers is not None else build_resolvers()

    def resolver_for(self, platform: Platform) -> RankResolver:
        resolver = self._resolvers.get(platform)
        if resolver is None:
            raise UnsupportedPlatformError(f"リゾルバ未登録のプラットフォーム: {platform}")
        return resolver

    def supported_platforms(self) -> list[str]:
        return [platform.value for platform in self._resolvers]
