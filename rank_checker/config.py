"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Supabase ---
# 起動時に main で検証する（import 時には要求しない）
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY: str = os.environ.get("SUPABASE_KEY", "")
SUPABASE_SCHEMA: str = os.environ.get("SUPABASE_SCHEMA", "")

# --- ワーカー ---
WORKER_ID: str = os.environ.get("WORKER_ID", "worker-unknown")
BACKEND_MODE: str = os.environ.get("BACKEND_MODE", "rpc")  # rpc | rest
API_BASE_URL: str = os.environ.get("API_BASE_URL", "http://localhost:3000")

CLAIM_BATCH_SIZE = int(os.environ.get("CLAIM_BATCH_SIZE", "6"))
CLAIM_LEASE_SECONDS = int(os.environ.get("CLAIM_LEASE_SECONDS", "1800"))

EMPTY_QUEUE_BACKOFF_SECONDS = float(os.environ.get("EMPTY_QUEUE_BACKOFF_SECONDS", "10"))
ERROR_BACKOFF_SECONDS = float(os.environ.get("ERROR_BACKOFF_SECONDS", "30"))

# タスク間の待機（秒）
TASK_INTERVAL_MIN = float(os.environ.get("TASK_INTERVAL_MIN", "1.0"))
TASK_INTERVAL_MAX = float(os.environ.get("TASK_INTERVAL_MAX", "2.0"))

# --- 順位探索 ---
MAX_PAGES = 20
MAX_PRODUCTS = 2000
STAGNATION_PAGE = 15
EARLY_PAGE_LIMIT = 3
EARLY_PAGE_RETRIES = 1
NAVIGATION_TIMEOUT_MS = 6000
SETTLE_DELAY_MS = 600

# --- 検索 URL ---
COUPANG_SEARCH_URL = "https://www.coupang.com/search?q={keyword}"
COUPANG_SEARCH_PAGE_URL = "https://www.coupang.com/search?q={keyword}&page={page}"
NAVER_SEARCH_URL = "https://search.shopping.naver.com/search/all?query={keyword}"
NAVER_SEARCH_PAGE_URL = (
    "https://search.shopping.naver.com/search/all?query={keyword}&pagingIndex={page}"
)
ELEVENST_SEARCH_URL = "https://search.11st.co.kr/Search.tmall?kwd={keyword}"
ELEVENST_SEARCH_PAGE_URL = "https://search.11st.co.kr/Search.tmall?kwd={keyword}&pageNo={page}"

# --- ブラウザ ---
HEADLESS = _env_bool("HEADLESS", False)
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_LOCALE = "ko-KR"
BROWSER_TIMEZONE = "Asia/Seoul"

# --- IP ローテーション ---
AIRPLANE_MODE_ENABLED = _env_bool("AIRPLANE_MODE_ENABLED", False)
IP_CHANGE_INTERVAL_MINUTES = int(os.environ.get("IP_CHANGE_INTERVAL_MINUTES", "60"))
ADB_PATH: str = os.environ.get("ADB_PATH", "adb")
IP_SERVICE_URL: str = os.environ.get("IP_SERVICE_URL", "https://api.ipify.org?format=json")
IP_SERVICE_TIMEOUT = 10  # 秒
AIRPLANE_ON_SETTLE_SECONDS = 5
AIRPLANE_OFF_SETTLE_SECONDS = 10

# --- REST モード ---
REQUEST_TIMEOUT = 15  # 秒

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)
