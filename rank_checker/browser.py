"""Playwright ブラウザセッション.

起動時に1度だけ生成し、全タスク・全ページで同じページを使い回す。
"""

from __future__ import annotations

import logging

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Route, sync_playwright

from rank_checker.config import BROWSER_LOCALE, BROWSER_TIMEZONE, HEADLESS, USER_AGENT
from rank_checker.exceptions import PageLoadError

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
    "--disable-sync",
    "--disable-default-apps",
    "--disable-translate",
    "--disable-gpu",
    "--disable-http2",
    "--disable-quic",
    "--disable-notifications",
    "--no-first-run",
    "--mute-audio",
]

EXTRA_HEADERS = {
    "accept-language": "ko-KR,ko;q=0.9,en;q=0.8",
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "upgrade-insecure-requests": "1",
}

_HEAVY_IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".webp")
_BLOCKED_URL_WORDS = ("analytics", "tracking", "ads")


def should_block(resource_type: str, url: str) -> bool:
    """読み込みを中断するリクエストか（大きい画像・フォント・計測系）."""
    if resource_type == "image" and any(suffix in url for suffix in _HEAVY_IMAGE_SUFFIXES):
        return True
    if resource_type == "font":
        return True
    return any(word in url for word in _BLOCKED_URL_WORDS)


def _route_handler(route: Route) -> None:
    request = route.request
    if should_block(request.resource_type, request.url):
        route.abort()
    else:
        route.continue_()


class BrowserSession:
    """Chromium 1インスタンス・1コンテキスト・1ページのセッション."""

    def __init__(self, headless: bool = HEADLESS) -> None:
        self._headless = headless
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    @property
    def is_open(self) -> bool:
        return self._page is not None

    def start(self) -> BrowserSession:
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=self._headless, args=LAUNCH_ARGS
        )
        self._context = self._browser.new_context(
            user_agent=USER_AGENT,
            viewport={"width": 1920, "height": 1080},
            locale=BROWSER_LOCALE,
            timezone_id=BROWSER_TIMEZONE,
            extra_http_headers=EXTRA_HEADERS,
            ignore_https_errors=True,
        )
        self._context.add_init_script(
            "Object.defineProperty(navigator, 'webdriver', { get: () => false });"
        )
        self._page = self._context.new_page()
        self._page.route("**/*", _route_handler)
        logger.info("ブラウザ初期化完了 (headless=%s)", self._headless)
        return self

    def fetch_html(self, url: str, timeout_ms: int, settle_ms: int) -> str:
        """URL を開き、描画待ちの後 HTML を返す.

        Raises:
            PageLoadError: 遷移失敗・タイムアウト
        """
        if self._page is None:
            raise PageLoadError("ブラウザセッションが開始されていません")
        try:
            self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            self._page.wait_for_timeout(settle_ms)
            return self._page.content()
        except PlaywrightError as e:
            raise PageLoadError(f"{url}: {e}") from e

    def close(self) -> None:
        """ブラウザを閉じる. 2回目以降の呼び出しは何もしない."""
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.warning("ブラウザ終了時エラー: %s", e)
            logger.info("ブラウザ終了")
        if self._playwright is not None:
            self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    def __enter__(self) -> BrowserSession:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()
