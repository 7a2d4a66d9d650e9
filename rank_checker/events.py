"""構造化イベント出力.

ワーカーの進捗・失敗を (level, message, fields) で通知する。
既定の実装は logging に `message key=value ...` 形式で書き出し、
fields は extra としても渡す（UI 側へのリレー用）。
"""

from __future__ import annotations

import logging

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class EventSink:
    """イベント出力先のインターフェース."""

    def emit(self, level: str, message: str, **fields: object) -> None:
        raise NotImplementedError


class LogEventSink(EventSink):
    """logging へ書き出す EventSink."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("rank_checker.events")

    def emit(self, level: str, message: str, **fields: object) -> None:
        levelno = _LEVELS.get(level, logging.INFO)
        text = format_event(message, fields)
        self._logger.log(levelno, text, extra={"event": message, "fields": fields})


def format_event(message: str, fields: dict) -> str:
    """`message key=value ...` 形式の1行に整形する."""
    if not fields:
        return message
    parts = " ".join(f"{key}={value}" for key, value in fields.items())
    return f"{message} {parts}"
