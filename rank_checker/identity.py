"""ネットワーク識別 (IP) ローテーション.

端末の機内モードを ON → OFF して回線を再接続させ、新しい IP を
IP エコーサービスで確認する。タスク処理とは独立したタイマースレッドで動く。
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

import requests

from rank_checker.config import (
    AIRPLANE_OFF_SETTLE_SECONDS,
    AIRPLANE_ON_SETTLE_SECONDS,
    IP_SERVICE_TIMEOUT,
    IP_SERVICE_URL,
)
from rank_checker.events import EventSink, LogEventSink
from rank_checker.exceptions import RotationError
from rank_checker.models import IdentitySession

logger = logging.getLogger(__name__)


def fetch_current_ip(url: str = IP_SERVICE_URL, timeout: float = IP_SERVICE_TIMEOUT) -> str | None:
    """IP エコーサービスから現在の IP を取得する. 失敗時は None."""
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
        return resp.json().get("ip")
    except (requests.RequestException, ValueError) as e:
        logger.error("IP 取得失敗: %s", e)
        return None


class NetworkIdentityProvider:
    """接続遮断モードの ON/OFF を行うインターフェース."""

    def enable_blocking(self) -> None:
        raise NotImplementedError

    def disable_blocking(self) -> None:
        raise NotImplementedError


class AdbIdentityProvider(NetworkIdentityProvider):
    """adb 経由で Android 端末の機内モードを切り替える."""

    def __init__(self, adb_path: str = "adb", timeout: float = 30) -> None:
        self._adb_path = adb_path
        self._timeout = timeout

    def _airplane_mode(self, state: str) -> None:
        cmd = [self._adb_path, "shell", "cmd", "connectivity", "airplane-mode", state]
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=self._timeout)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise RotationError(f"機内モード {state} 失敗: {e}") from e
        logger.info("機内モード %s 完了", state)

    def enable_blocking(self) -> None:
        self._airplane_mode("enable")

    def disable_blocking(self) -> None:
        self._airplane_mode("disable")


class IdentityRotator:
    """IP ローテーションとその定期実行タイマー."""

    def __init__(
        self,
        provider: NetworkIdentityProvider,
        interval_seconds: float,
        sink: EventSink | None = None,
        ip_lookup: Callable[[], str | None] = fetch_current_ip,
        sleep: Callable[[float], object] | None = None,
        now: Callable[[], datetime] = datetime.now,
        on_settle_seconds: float = AIRPLANE_ON_SETTLE_SECONDS,
        off_settle_seconds: float = AIRPLANE_OFF_SETTLE_SECONDS,
    ) -> None:
        self._provider = provider
        self._interval = interval_seconds
        self._sink = sink or LogEventSink()
        self._ip_lookup = ip_lookup
        self._now = now
        self._on_settle = on_settle_seconds
        self._off_settle = off_settle_seconds
        self._stop_event = threading.Event()
        # 停止要求が来たら待機を打ち切り、すぐ接続を戻す
        self._sleep = sleep or self._stop_event.wait
        self._thread: threading.Thread | None = None
        self.session = IdentitySession()

    @property
    def current_ip(self) -> str | None:
        return self.session.current_ip

    def refresh_ip(self) -> str | None:
        self.session.current_ip = self._ip_lookup()
        return self.session.current_ip

    def rotate(self) -> str | None:
        """接続遮断 → 待機 → 復帰 → 待機 → 新 IP 確認.

        Raises:
            RotationError: 切替コマンドの失敗
        """
        self._sink.emit("info", "ip_rotation_started", previous_ip=self.session.current_ip)
        try:
            self._provider.enable_blocking()
            self._sleep(self._on_settle)
        finally:
            self._provider.disable_blocking()
        self._sleep(self._off_settle)
        new_ip = self.refresh_ip()
        self._sink.emit("info", "ip_rotation_finished", current_ip=new_ip)
        return new_ip

    def tick(self) -> None:
        """タイマー1回分. 失敗は記録のみで次回に持ち越す."""
        try:
            self.rotate()
        except RotationError as e:
            self._sink.emit("error", "ip_rotation_failed", error=e)
        self._schedule_next()

    def _schedule_next(self) -> None:
        self.session.next_rotation_at = self._now() + timedelta(seconds=self._interval)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.tick()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._schedule_next()
        self._thread = threading.Thread(target=self._run, name="ip-rotation", daemon=True)
        self._thread.start()
        self._sink.emit(
            "info", "ip_rotation_timer_started", interval_minutes=int(self._interval // 60)
        )

    def stop(self, timeout: float | None = 5) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.session.next_rotation_at = None
