"""main モジュールのテスト."""

import signal
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeSession, RecordingSink

from rank_checker import main
from rank_checker.db import SupabaseGateway
from rank_checker.exceptions import ConfigurationError
from rank_checker.models import WorkerState
from rank_checker.platforms import PlatformDispatcher
from rank_checker.rest import RestGateway
from rank_checker.worker import Worker


class TestBuildGateway:
    @patch("rank_checker.main.create_client")
    @patch.multiple(
        "rank_checker.main.config",
        BACKEND_MODE="rpc",
        SUPABASE_URL="https://x.supabase.co",
        SUPABASE_KEY="key",
        SUPABASE_SCHEMA="",
    )
    def test_rpc(self, mock_create_client):
        gateway = main.build_gateway()

        assert isinstance(gateway, SupabaseGateway)
        mock_create_client.assert_called_once_with("https://x.supabase.co", "key")

    @patch.multiple("rank_checker.main.config", BACKEND_MODE="rpc", SUPABASE_URL="", SUPABASE_KEY="")
    def test_rpc_without_credentials(self):
        with pytest.raises(ConfigurationError):
            main.build_gateway()

    @patch.multiple("rank_checker.main.config", BACKEND_MODE="rest", API_BASE_URL="http://api.local")
    def test_rest(self):
        assert isinstance(main.build_gateway(), RestGateway)

    @patch.multiple("rank_checker.main.config", BACKEND_MODE="grpc")
    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            main.build_gateway()


@patch("rank_checker.main.install_signal_handlers")
@patch("rank_checker.main.setup_logging")
class TestRun:
    @patch("rank_checker.main.build_worker")
    def test_configuration_error(self, mock_build_worker, mock_setup_logging, mock_signals):
        mock_build_worker.side_effect = ConfigurationError("SUPABASE_URL")

        assert main.run() == 1
        mock_signals.assert_not_called()

    @patch("rank_checker.main.build_worker")
    def test_normal_exit(self, mock_build_worker, mock_setup_logging, mock_signals):
        worker = MagicMock()
        mock_build_worker.return_value = worker

        assert main.run() == 0
        worker.run.assert_called_once()
        mock_signals.assert_called_once_with(worker)

    @patch("rank_checker.main.build_worker")
    def test_unexpected_error(self, mock_build_worker, mock_setup_logging, mock_signals):
        worker = MagicMock()
        worker.run.side_effect = RuntimeError("browser crashed")
        mock_build_worker.return_value = worker

        assert main.run() == 1
        worker.shutdown.assert_called_once()


class TestSignalHandlers:
    @patch("rank_checker.main.signal.signal")
    def test_sigint_and_sigterm_request_stop(self, mock_signal):
        worker = MagicMock()

        main.install_signal_handlers(worker)

        handlers = {c.args[0]: c.args[1] for c in mock_signal.call_args_list}
        assert set(handlers) == {signal.SIGINT, signal.SIGTERM}
        handlers[signal.SIGTERM](signal.SIGTERM, None)
        worker.stop.assert_called_once()

    @patch("rank_checker.main.signal.signal")
    @patch("rank_checker.main.setup_logging")
    @patch("rank_checker.main.build_worker")
    def test_sigterm_during_run_shuts_down_and_exits_zero(
        self, mock_build_worker, mock_setup_logging, mock_signal
    ):
        """実行中の SIGTERM で停止し、終了処理をすべて行って 0 で終わること."""
        handlers = {}
        mock_signal.side_effect = lambda signum, handler: handlers.__setitem__(signum, handler)

        def claim_batch(worker_id, limit):
            handlers[signal.SIGTERM](signal.SIGTERM, None)
            return []

        gateway = MagicMock()
        gateway.claim_batch.side_effect = claim_batch
        session = FakeSession()
        worker = Worker(gateway, PlatformDispatcher(), session, worker_id="w1", sink=RecordingSink())
        mock_build_worker.return_value = worker

        assert main.run() == 0
        assert session.started is True
        assert session.closed is True
        gateway.release_claims.assert_called_once_with("w1")
        assert worker.state is WorkerState.STOPPED
