"""platforms モジュールのテスト."""

import pytest
from conftest import make_task

from rank_checker.exceptions import UnsupportedPlatformError
from rank_checker.models import Platform
from rank_checker.platforms import (
    PlatformDispatcher,
    build_resolvers,
    group_by_platform,
    normalize,
    result_table,
)


class TestNormalize:
    """normalize のテスト."""

    @pytest.mark.parametrize(
        "label",
        ["쿠팡", "coupang", "Coupang-Web", " 쿠팡VIP ", "coupangapp", "쿠팡순위체크", "COUPANGRANK"],
    )
    def test_coupang_family(self, label):
        assert normalize(label) is Platform.COUPANG

    def test_naver(self):
        assert normalize("네이버") is Platform.NAVER
        assert normalize("Naver") is Platform.NAVER

    def test_11st(self):
        assert normalize("11번가") is Platform.ELEVENST
        assert normalize(" 11st") is Platform.ELEVENST

    @pytest.mark.parametrize("label", ["gmarket", "", None])
    def test_unknown_label_is_error(self, label):
        with pytest.raises(UnsupportedPlatformError):
            normalize(label)


class TestResultTable:
    """result_table のテスト."""

    def test_variant_tables(self):
        assert result_table("쿠팡") == "slot_status"
        assert result_table("쿠팡VIP") == "slot_copangvip"
        assert result_table("쿠팡APP") == "slot_copangapp"
        assert result_table("쿠팡순위체크") == "slot_copangrank"
        assert result_table("naver") == "slot_status"

    def test_unknown_label_has_no_default_table(self):
        with pytest.raises(UnsupportedPlatformError):
            result_table("unknown")


class TestGroupByPlatform:
    def test_preserves_claim_order(self):
        tasks = [
            make_task(1, slot_type="쿠팡"),
            make_task(2, slot_type="naver"),
            make_task(3, slot_type="쿠팡VIP"),
            make_task(4, slot_type="gmarket"),
        ]

        grouped, unsupported = group_by_platform(tasks)

        assert list(grouped) == [Platform.COUPANG, Platform.NAVER]
        assert [t.id for t in grouped[Platform.COUPANG]] == [1, 3]
        assert [t.id for t in grouped[Platform.NAVER]] == [2]
        assert [t.id for t in unsupported] == [4]


class TestPlatformDispatcher:
    def test_resolver_for_each_platform(self):
        dispatcher = PlatformDispatcher()

        for platform in Platform:
            assert dispatcher.resolver_for(platform).platform is platform

    def test_missing_resolver(self):
        resolvers = build_resolvers()
        del resolvers[Platform.ELEVENST]
        dispatcher = PlatformDispatcher(resolvers)

        with pytest.raises(UnsupportedPlatformError):
            dispatcher.resolver_for(Platform.ELEVENST)

    def test_supported_platforms(self):
        assert PlatformDispatcher().supported_platforms() == ["coupang", "naver", "11st"]


class TestTargetProductIds:
    """プラットフォーム別の商品 ID 導出."""

    def test_naver_smartstore(self):
        resolver = build_resolvers()[Platform.NAVER]
        assert resolver.target_product_id("https://smartstore.naver.com/shop/products/4826117811") == "4826117811"

    def test_naver_catalog(self):
        resolver = build_resolvers()[Platform.NAVER]
        assert resolver.target_product_id("https://search.shopping.naver.com/catalog/31280830622") == "31280830622"

    def test_11st(self):
        resolver = build_resolvers()[Platform.ELEVENST]
        assert resolver.target_product_id("https://www.11st.co.kr/products/pa/3811474416") == "3811474416"

    def test_naver_page_url(self):
        resolver = build_resolvers()[Platform.NAVER]
        assert resolver.search_url("lamp", 2).endswith("query=lamp&pagingIndex=2")
