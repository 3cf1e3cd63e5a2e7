"""
Unit tests for the entry point (apicompare/main.py)
"""

import json
import logging
import threading
from unittest.mock import MagicMock, Mock, patch

import pytest

from apicompare.config.settings import Settings
from apicompare.exceptions import FatalError, SubscriptionError
from apicompare.main import build_manager, main, parse_args, resolve_start_height
from tests.fakes import tipset_json


class RpcSession:
    """requests.Session stand-in answering JSON-RPC posts from a method table."""

    def __init__(self, results):
        self.results = results
        self.requests = []

    def post(self, url, headers=None, data=None, timeout=None):
        payload = json.loads(data)
        method = payload["method"].split(".", 1)[1]
        self.requests.append((url, method, payload["params"]))

        response = Mock()
        response.status_code = 200
        value = self.results.get(method)
        if isinstance(value, Exception):
            error = {"code": 1, "message": str(value)}
            response.json.return_value = {"id": payload["id"], "error": error}
        else:
            result = value(*payload["params"]) if callable(value) else value
            response.json.return_value = {"id": payload["id"], "result": result}
        return response


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo level changes made by main()."""
    root_level = logging.getLogger().level
    package_level = logging.getLogger("apicompare").level
    yield
    logging.getLogger().setLevel(root_level)
    logging.getLogger("apicompare").setLevel(package_level)


class TestResolveStartHeight:
    """Tests for the starting checkpoint height."""

    def test_default_is_head_minus_confidence(self):
        """Test no explicit start height stays `confidence` behind the head."""
        assert resolve_start_height(1000, None, 5) == 995

    def test_explicit_start_height(self):
        """Test an explicit height is used as is."""
        assert resolve_start_height(1000, 200, 5) == 200

    def test_start_height_capped_at_head(self):
        """Test heights above the head are capped."""
        assert resolve_start_height(1000, 5000, 5) == 1000

    def test_never_negative(self):
        """Test young chains start at genesis."""
        assert resolve_start_height(3, None, 5) == 0


class TestParseArgs:
    """Tests for command-line parsing."""

    def test_flags(self):
        """Test every flag maps to its attribute."""
        args = parse_args(
            [
                "--reference-url", "/ip4/10.0.0.1/tcp/3453",
                "--candidate-token", "tok",
                "--start-height", "100",
                "--concurrency", "8",
                "--confidence", "2",
                "--log-level", "debug",
            ]
        )
        assert args.reference_url == "/ip4/10.0.0.1/tcp/3453"
        assert args.candidate_token == "tok"
        assert args.start_height == 100
        assert args.concurrency == 8
        assert args.confidence == 2
        assert args.log_level == "debug"
        assert args.config is None

    def test_defaults_are_none(self):
        """Test unset flags do not override other sources."""
        args = parse_args([])
        assert args.start_height is None
        assert args.concurrency is None


class TestBuildManager:
    """Tests for component wiring."""

    def test_starting_checkpoint(self):
        """Test the manager starts at the checkpoint after head - confidence."""
        session = RpcSession(
            {
                "ChainHead": tipset_json(1000),
                "ChainGetTipSetAfterHeight": lambda h, key: tipset_json(h),
            }
        )
        settings = Settings(confidence=5)
        stop_event = threading.Event()

        manager, dispatcher = build_manager(settings, stop_event, session=session)
        try:
            assert manager.current.height == 995
            assert manager.stop_event is stop_event
            assert dispatcher.concurrency == settings.concurrency
            assert len(manager.registry) > 40
            assert manager.metrics is None
        finally:
            dispatcher.close()

        assert ("http://127.0.0.1:3453/rpc/v1", "ChainGetTipSetAfterHeight", [995, []]) in (
            session.requests
        )

    def test_unreachable_reference_is_fatal(self):
        """Test a failed head lookup raises FatalError."""
        session = RpcSession({"ChainHead": RuntimeError("no head")})

        with pytest.raises(FatalError, match="starting checkpoint"):
            build_manager(Settings(), threading.Event(), session=session)

    @patch("apicompare.main.ComparisonMetricsPublisher")
    def test_metrics_enabled(self, mock_publisher):
        """Test the metrics publisher is built for the configured region."""
        session = RpcSession(
            {
                "ChainHead": tipset_json(10),
                "ChainGetTipSetAfterHeight": lambda h, key: tipset_json(h),
            }
        )
        settings = Settings(metrics_enabled=True, aws_region="eu-west-1")

        manager, dispatcher = build_manager(settings, threading.Event(), session=session)
        dispatcher.close()

        mock_publisher.assert_called_once_with(region_name="eu-west-1")
        assert manager.metrics is mock_publisher.return_value


@patch("apicompare.main.signal.signal")
class TestMain:
    """Tests for main()."""

    def test_configuration_error_exits_1(self, mock_signal):
        """Test invalid configuration returns exit code 1."""
        assert main(["--log-level", "LOUD"]) == 1

    @patch("apicompare.main.build_manager")
    def test_fatal_error_exits_1(self, mock_build, mock_signal):
        """Test a fatal bootstrap error returns exit code 1."""
        mock_build.side_effect = FatalError("no node")

        assert main([]) == 1

    @patch("apicompare.main.build_manager")
    def test_clean_run(self, mock_build, mock_signal):
        """Test a completed run returns 0 and shuts the dispatcher down."""
        manager = MagicMock()
        manager.passes_completed = 3
        dispatcher = MagicMock()
        mock_build.return_value = (manager, dispatcher)

        assert main(["--concurrency", "2"]) == 0

        manager.start.assert_called_once()
        dispatcher.close.assert_called_once()
        settings, stop_event = mock_build.call_args[0]
        assert settings.concurrency == 2
        assert stop_event.is_set()

    @patch("apicompare.main.build_manager")
    def test_subscription_error_exits_1(self, mock_build, mock_signal):
        """Test a listener failure surfacing from start() returns 1 after cleanup."""
        manager = MagicMock()
        manager.start.side_effect = SubscriptionError("listener died")
        dispatcher = MagicMock()
        mock_build.return_value = (manager, dispatcher)

        assert main([]) == 1
        dispatcher.close.assert_called_once()

    @patch("apicompare.main.build_manager")
    def test_signal_handlers_set_stop(self, mock_build, mock_signal):
        """Test SIGINT/SIGTERM handlers set the stop event."""
        mock_build.return_value = (MagicMock(), MagicMock())

        main([])

        handler = mock_signal.call_args_list[0][0][1]
        stop_event = mock_build.call_args[0][1]
        stop_event.clear()
        handler(2, None)
        assert stop_event.is_set()
