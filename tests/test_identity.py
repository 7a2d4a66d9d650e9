"""identity モジュールのテスト."""

import subprocess
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from rank_checker.exceptions import RotationError
from rank_checker.identity import (
    AdbIdentityProvider,
    IdentityRotator,
    NetworkIdentityProvider,
    fetch_current_ip,
)


class FakeProvider(NetworkIdentityProvider):
    def __init__(self, log, fail_enable=False):
        self.log = log
        self.fail_enable = fail_enable

    def enable_blocking(self):
        self.log.append("enable")
        if self.fail_enable:
            raise RotationError("adb: device offline")

    def disable_blocking(self):
        self.log.append("disable")


def _make_rotator(sink, fail_enable=False, ips=("1.1.1.1",)):
    log = []
    ip_iter = iter(ips)

    def lookup():
        log.append("lookup")
        return next(ip_iter)

    rotator = IdentityRotator(
        FakeProvider(log, fail_enable),
        3600,
        sink=sink,
        ip_lookup=lookup,
        sleep=lambda seconds: log.append(f"sleep:{seconds}"),
        now=lambda: datetime(2026, 10, 17, 12, 0, 0),
    )
    return rotator, log


class TestRotate:
    def test_sequence(self, sink):
        rotator, log = _make_rotator(sink, ips=("10.0.0.2",))

        new_ip = rotator.rotate()

        assert log == ["enable", "sleep:5", "disable", "sleep:10", "lookup"]
        assert new_ip == "10.0.0.2"
        assert rotator.current_ip == "10.0.0.2"
        assert "ip_rotation_finished" in sink.messages("info")

    def test_enable_failure_still_restores_connectivity(self, sink):
        rotator, log = _make_rotator(sink, fail_enable=True)

        with pytest.raises(RotationError):
            rotator.rotate()

        assert log == ["enable", "disable"]

    def test_tick_absorbs_failure(self, sink):
        rotator, _ = _make_rotator(sink, fail_enable=True)

        rotator.tick()

        assert "ip_rotation_failed" in sink.messages("error")
        assert rotator.session.next_rotation_at == datetime(2026, 10, 17, 13, 0, 0)

    def test_start_and_stop(self, sink):
        rotator, log = _make_rotator(sink)

        rotator.start()
        assert rotator.session.next_rotation_at == datetime(2026, 10, 17, 13, 0, 0)
        rotator.stop()

        assert rotator.session.next_rotation_at is None
        assert log == []  # 間隔内なので回転していない
        assert "ip_rotation_timer_started" in sink.messages("info")


class TestAdbIdentityProvider:
    @patch("rank_checker.identity.subprocess.run")
    def test_commands(self, mock_run):
        provider = AdbIdentityProvider("/opt/adb")

        provider.enable_blocking()
        provider.disable_blocking()

        commands = [call.args[0] for call in mock_run.call_args_list]
        assert commands == [
            ["/opt/adb", "shell", "cmd", "connectivity", "airplane-mode", "enable"],
            ["/opt/adb", "shell", "cmd", "connectivity", "airplane-mode", "disable"],
        ]

    @patch("rank_checker.identity.subprocess.run")
    def test_command_failure(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(1, "adb")

        with pytest.raises(RotationError):
            AdbIdentityProvider().enable_blocking()

    @patch("rank_checker.identity.subprocess.run")
    def test_adb_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("adb")

        with pytest.raises(RotationError):
            AdbIdentityProvider().disable_blocking()


class TestFetchCurrentIp:
    @patch("rank_checker.identity.requests.get")
    def test_ok(self, mock_get):
        mock_get.return_value = MagicMock(**{"json.return_value": {"ip": "203.0.113.7"}})

        assert fetch_current_ip("https://ip.example") == "203.0.113.7"
        assert mock_get.call_args.args[0] == "https://ip.example"

    @patch("rank_checker.identity.requests.get")
    def test_failure_returns_none(self, mock_get):
        mock_get.side_effect = requests.Timeout("slow")

        assert fetch_current_ip() is None
