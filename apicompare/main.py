"""
apicompare - Main entry point

Bootstraps the comparison engine: loads configuration, connects to the
reference and candidate nodes, picks the starting checkpoint and runs the
scheduler until SIGINT/SIGTERM.
"""

import argparse
import signal
import sys
import threading
from typing import Any, List, Optional, Tuple

import requests

from apicompare.api.chain_notify import HeadChangeFeed
from apicompare.api.rpc_client import RpcClient, Target
from apicompare.compare.operations import ChainAPICompare
from apicompare.compare.registry import OperationRegistry
from apicompare.config.settings import ConfigurationError, Settings, setup_logging_redaction
from apicompare.dispatch.dispatcher import Dispatcher
from apicompare.domain.chain import EMPTY_TSK, TipSet
from apicompare.exceptions import FatalError
from apicompare.monitoring.comparison import ComparisonLogger, ComparisonMetricsPublisher
from apicompare.scheduler.compare_manager import CompareManager
from apicompare.scheduler.data_provider import DataProvider
from apicompare.utils.logger import configure_logging, get_logger, mask_token

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="apicompare",
        description="Compare the JSON-RPC results of two Filecoin nodes as the chain advances.",
    )
    parser.add_argument("--reference-url", help="reference node API (multiaddr or URL)")
    parser.add_argument("--reference-token", help="reference node API token")
    parser.add_argument("--candidate-url", help="candidate node API (multiaddr or URL)")
    parser.add_argument("--candidate-token", help="candidate node API token")
    parser.add_argument("--start-height", type=int, help="first height to compare")
    parser.add_argument("--concurrency", type=int, help="max requests in flight")
    parser.add_argument("--confidence", type=int, help="epochs to stay behind the head")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


def resolve_start_height(head_height: int, start_height: Optional[int], confidence: int) -> int:
    """
    Explicit start heights are capped at the head; otherwise start
    `confidence` epochs behind it. Never below zero.
    """
    if start_height is not None:
        height = min(start_height, head_height)
    else:
        height = head_height - confidence
    return max(height, 0)


def build_manager(
    settings: Settings,
    stop_event: threading.Event,
    session: Any = None,
) -> Tuple[CompareManager, Dispatcher]:
    """
    Wire every component together. The dispatcher is returned so the caller
    can shut its pools down.

    Raises:
        FatalError: If the starting checkpoint cannot be read from the reference node
    """
    reference_client = RpcClient(
        settings.reference_url,
        settings.reference_token,
        timeout=settings.request_timeout,
        session=session or requests.Session(),
    )
    candidate_client = RpcClient(
        settings.candidate_url,
        settings.candidate_token,
        timeout=settings.request_timeout,
        session=session or requests.Session(),
    )

    try:
        head = TipSet.from_json(reference_client.call("ChainHead"))
        start_height = resolve_start_height(
            head.height, settings.start_height, settings.confidence
        )
        current = TipSet.from_json(
            reference_client.call("ChainGetTipSetAfterHeight", start_height, EMPTY_TSK)
        )
    except (RuntimeError, ValueError) as e:
        raise FatalError(f"failed to read the starting checkpoint: {e}") from e

    logger.info(
        "Starting checkpoint selected",
        operation="bootstrap",
        context={"head": head.height, "start": current.height},
    )

    data_provider = DataProvider(reference_client)
    dispatcher = Dispatcher(
        Target("reference", reference_client),
        Target("candidate", candidate_client),
        concurrency=settings.concurrency,
        stop_event=stop_event,
    )

    registry = OperationRegistry()
    registry.build_from_methods(
        ChainAPICompare(dispatcher, data_provider, reference_client, stop_event)
    )

    metrics = None
    if settings.metrics_enabled:
        metrics = ComparisonMetricsPublisher(region_name=settings.aws_region)

    manager = CompareManager(
        reference_client,
        candidate_client,
        data_provider,
        registry,
        HeadChangeFeed(reference_client, settings.poll_interval, stop_event),
        current,
        confidence=settings.confidence,
        stop_event=stop_event,
        trigger_capacity=settings.trigger_capacity,
        comparison_logger=ComparisonLogger(),
        metrics=metrics,
    )
    return manager, dispatcher


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        settings = Settings.load(
            config_path=args.config,
            overrides={
                "reference_url": args.reference_url,
                "reference_token": args.reference_token,
                "candidate_url": args.candidate_url,
                "candidate_token": args.candidate_token,
                "start_height": args.start_height,
                "concurrency": args.concurrency,
                "confidence": args.confidence,
                "log_level": args.log_level,
            },
        )
    except ConfigurationError as e:
        logger.error("Invalid configuration", operation="bootstrap", error=str(e))
        return EXIT_FATAL

    configure_logging(settings.log_level)
    setup_logging_redaction(settings.tokens())
    logger.info(
        "apicompare starting",
        operation="bootstrap",
        context={
            "reference_url": settings.reference_url,
            "reference_token": mask_token(settings.reference_token),
            "candidate_url": settings.candidate_url,
            "candidate_token": mask_token(settings.candidate_token),
            "concurrency": settings.concurrency,
            "confidence": settings.confidence,
        },
    )

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}, stopping", operation="shutdown")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    dispatcher = None
    try:
        manager, dispatcher = build_manager(settings, stop_event)
        manager.start()
    except FatalError as e:
        logger.error("Fatal error", operation="shutdown", error=str(e))
        return EXIT_FATAL
    finally:
        stop_event.set()
        if dispatcher is not None:
            dispatcher.close()

    logger.info(
        "apicompare stopped",
        operation="shutdown",
        context={"passes_completed": manager.passes_completed},
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
