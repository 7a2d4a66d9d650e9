"""タスク処理ループ.

claim → プラットフォーム別にまとめる → 1件ずつ順位解決 → commit を繰り返す。
タスクは1セッションで逐次処理し、並列化はしない。
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable

from rank_checker.config import (
    CLAIM_BATCH_SIZE,
    EMPTY_QUEUE_BACKOFF_SECONDS,
    ERROR_BACKOFF_SECONDS,
    TASK_INTERVAL_MAX,
    TASK_INTERVAL_MIN,
    WORKER_ID,
)
from rank_checker.events import EventSink, LogEventSink
from rank_checker.exceptions import ResolutionError
from rank_checker.identity import IdentityRotator
from rank_checker.models import Platform, RankResult, RankStatus, Task, WorkerState, WorkerStats
from rank_checker.platforms import PlatformDispatcher, group_by_platform, result_table

logger = logging.getLogger(__name__)


class Worker:
    """Idle → Running → (Processing → Running)* → Stopping → Stopped."""

    def __init__(
        self,
        gateway,
        dispatcher: PlatformDispatcher,
        session,
        *,
        worker_id: str = WORKER_ID,
        rotator: IdentityRotator | None = None,
        sink: EventSink | None = None,
        batch_size: int = CLAIM_BATCH_SIZE,
        empty_backoff_seconds: float = EMPTY_QUEUE_BACKOFF_SECONDS,
        error_backoff_seconds: float = ERROR_BACKOFF_SECONDS,
        task_interval: tuple[float, float] = (TASK_INTERVAL_MIN, TASK_INTERVAL_MAX),
        sleep: Callable[[float], object] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._session = session
        self._worker_id = worker_id
        self._rotator = rotator
        self._sink = sink or LogEventSink()
        self._batch_size = batch_size
        self._empty_backoff = empty_backoff_seconds
        self._error_backoff = error_backoff_seconds
        self._task_interval = task_interval
        self._stop_event = threading.Event()
        # 既定では停止要求で待機を打ち切る
        self._sleep = sleep or self._stop_event.wait
        self._clock = clock
        self._shutdown_done = False
        self.state = WorkerState.IDLE
        self.stats = WorkerStats(clock=clock)

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """ブラウザセッションを開き、必要ならローテーションタイマーを開始する."""
        self._sink.emit("info", "worker_starting", worker_id=self._worker_id)
        self._session.start()
        if self._rotator is not None:
            self._rotator.refresh_ip()
            self._sink.emit("info", "current_ip", ip=self._rotator.current_ip)
            self._rotator.start()
        self.stats.started_at = self._clock()
        self.state = WorkerState.RUNNING
        self._sink.emit(
            "info", "worker_started", platforms=",".join(self._dispatcher.supported_platforms())
        )

    def run(self) -> None:
        """stop() が呼ばれるまでループし、最後に必ず shutdown() する."""
        try:
            self.start()
            self.loop()
        finally:
            self.shutdown()

    def loop(self) -> None:
        while not self.stop_requested:
            try:
                handled = self.run_cycle()
            except Exception as e:  # noqa: BLE001
                self.state = WorkerState.RUNNING
                self.stats.errors += 1
                self._sink.emit(
                    "error", "cycle_failed", error=e, retry_in=self._error_backoff
                )
                self._sleep(self._error_backoff)
                continue
            if handled == 0:
                self._sink.emit("info", "queue_empty", retry_in=self._empty_backoff)
                self._sleep(self._empty_backoff)

    def run_cycle(self) -> int:
        """1サイクル分を処理し、claim したタスク数を返す."""
        tasks = self._gateway.claim_batch(self._worker_id, self._batch_size)
        if not tasks:
            return 0

        self.state = WorkerState.PROCESSING
        self._sink.emit("info", "batch_claimed", count=len(tasks))
        grouped, unsupported = group_by_platform(tasks)
        for task in unsupported:
            self.stats.errors += 1
            self._sink.emit(
                "error", "task_failed", task_id=task.id, keyword=task.keyword,
                error=f"未対応の slot_type: {task.slot_type!r}",
            )

        first = True
        for platform, platform_tasks in grouped.items():
            if self.stop_requested:
                break
            self._sink.emit("info", "platform_started", platform=platform.value, count=len(platform_tasks))
            for task in platform_tasks:
                if not first:
                    self._sleep(random.uniform(*self._task_interval))
                if self.stop_requested:
                    break
                first = False
                self.process_task(task, platform)

        self.state = WorkerState.RUNNING
        return len(tasks)

    def process_task(self, task: Task, platform: Platform) -> RankResult | None:
        """1タスク: 振り分け → 順位解決 → commit. 失敗は数えて None を返す."""
        self._sink.emit(
            "info", "task_started", task_id=task.id, keyword=task.keyword,
            slot_type=task.slot_type, platform=platform.value,
        )
        try:
            table = result_table(task.slot_type)
            resolver = self._dispatcher.resolver_for(platform)
            result = resolver.resolve_rank(task, self._session)
            if result.status is RankStatus.ERROR:
                raise ResolutionError(
                    f"検索ページ読み込み失敗で中断 (pages_checked={result.pages_checked})"
                )
            self._gateway.commit_task(task, table, result.rank)
        except Exception as e:  # noqa: BLE001
            self.stats.errors += 1
            self._sink.emit(
                "error", "task_failed", task_id=task.id, keyword=task.keyword,
                error_type=type(e).__name__, error=e,
                processed=self.stats.processed, errors=self.stats.errors,
            )
            return None

        self.stats.processed += 1
        self._sink.emit(
            "info", "task_done", task_id=task.id, keyword=task.keyword,
            status=result.status.value, rank=result.rank, table=table,
            total_products=result.total_products_seen, pages=result.pages_checked,
            processing_ms=result.processing_ms,
            processed=self.stats.processed, errors=self.stats.errors,
        )
        return result

    def stop(self) -> None:
        """停止を要求する. サイクル・タスクの境界で反映される."""
        if not self.stop_requested:
            self._sink.emit("info", "stop_requested")
        self._stop_event.set()
        if self.state is not WorkerState.STOPPED:
            self.state = WorkerState.STOPPING

    def shutdown(self) -> None:
        """タイマー停止・claim 解放・ブラウザ終了・統計出力. 2回目以降は何もしない."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self._stop_event.set()
        self.state = WorkerState.STOPPING

        if self._rotator is not None:
            self._rotator.stop()
        try:
            self._gateway.release_claims(self._worker_id)
        except Exception as e:  # noqa: BLE001
            self._sink.emit("warning", "release_claims_failed", error=e)
        self._session.close()

        self.state = WorkerState.STOPPED
        self._sink.emit(
            "info", "worker_stopped", processed=self.stats.processed,
            errors=self.stats.errors, elapsed_s=round(self.stats.elapsed, 1),
        )
        logger.info(self.stats.summary())

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "is_running": self.state in (WorkerState.RUNNING, WorkerState.PROCESSING),
            "processed": self.stats.processed,
            "errors": self.stats.errors,
            "runtime_s": self.stats.elapsed,
            "current_ip": self._rotator.current_ip if self._rotator else None,
            "next_rotation_at": (
                self._rotator.session.next_rotation_at if self._rotator else None
            ),
            "supported_platforms": self._dispatcher.supported_platforms(),
        }
