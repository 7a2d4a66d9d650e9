"""順位チェッカー — メインエントリーポイント.

処理フロー:
  1. 設定検証・依存オブジェクト生成
  2. ブラウザ起動（必要なら IP ローテーションタイマー開始）
  3. claim → 順位解決 → commit を停止要求まで繰り返す
  4. 終了時はタイマー停止・ブラウザ終了・統計出力
"""

from __future__ import annotations

import logging
import signal
import sys
from datetime import datetime

from supabase import create_client

from rank_checker import config
from rank_checker.browser import BrowserSession
from rank_checker.db import SupabaseGateway
from rank_checker.events import LogEventSink
from rank_checker.exceptions import ConfigurationError
from rank_checker.identity import AdbIdentityProvider, IdentityRotator
from rank_checker.platforms import PlatformDispatcher
from rank_checker.rest import RestGateway
from rank_checker.worker import Worker


def setup_logging() -> None:
    """ロギングの初期設定."""
    log_file = config.LOG_DIR / f"rank_checker_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def build_gateway():
    """BACKEND_MODE に応じたキューゲートウェイを生成する."""
    if config.BACKEND_MODE == "rest":
        return RestGateway(config.API_BASE_URL)
    if config.BACKEND_MODE != "rpc":
        raise ConfigurationError(f"不正な BACKEND_MODE: {config.BACKEND_MODE!r}")
    if not config.SUPABASE_URL or not config.SUPABASE_KEY:
        raise ConfigurationError("SUPABASE_URL / SUPABASE_KEY が設定されていません")
    client = create_client(config.SUPABASE_URL, config.SUPABASE_KEY)
    return SupabaseGateway(client, config.SUPABASE_SCHEMA, config.CLAIM_LEASE_SECONDS)


def build_worker() -> Worker:
    sink = LogEventSink()
    rotator = None
    if config.AIRPLANE_MODE_ENABLED:
        rotator = IdentityRotator(
            AdbIdentityProvider(config.ADB_PATH),
            config.IP_CHANGE_INTERVAL_MINUTES * 60,
            sink=sink,
        )
    return Worker(
        build_gateway(),
        PlatformDispatcher(),
        BrowserSession(config.HEADLESS),
        worker_id=config.WORKER_ID,
        rotator=rotator,
        sink=sink,
    )


def install_signal_handlers(worker: Worker) -> None:
    """SIGINT / SIGTERM で停止を要求する."""

    def _handle(signum, frame) -> None:
        logging.getLogger(__name__).info("終了シグナル受信: %s", signal.Signals(signum).name)
        worker.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run() -> int:
    """メイン処理. 終了コードを返す."""
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("=== 順位チェッカー 開始 ===")

    try:
        worker = build_worker()
    except ConfigurationError as e:
        logger.error("設定エラー: %s", e)
        return 1

    install_signal_handlers(worker)
    try:
        worker.run()
    except Exception:
        logger.exception("予期しないエラーで終了します")
        worker.shutdown()
        return 1

    logger.info("=== 順位チェッカー 終了 ===")
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
