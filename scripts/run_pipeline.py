#!/usr/bin/env python3
"""
Pipeline Runner
===============

Run the stage workers and the source scheduler in one process.

Usage:
    python scripts/run_pipeline.py
    python scripts/run_pipeline.py --collect-only
    python scripts/run_pipeline.py --once

`--once` schedules due sources, drains every queue and exits.

Version: 0.1.0
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.config import PipelineMode, settings
from shared.logging import bind_context, clear_context, get_logger, setup_logging

setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="regulatory-truth-pipeline",
)
logger = get_logger(__name__)


async def main(args: argparse.Namespace) -> int:
    from services.regulatory_truth.container import build_container
    from shared.database import DatabaseClient, KafkaClient, RedisClient

    mode = PipelineMode.COLLECT_ONLY if args.collect_only else None
    container = build_container(
        DatabaseClient.get_session_factory(),
        RedisClient.get_client(),
        mode=mode,
    )
    bind_context(pipeline_mode=container.pipeline.mode.value)
    logger.info("pipeline_starting", once=args.once)

    try:
        if args.once:
            await container.scheduler.run_once()
            processed = await container.pipeline.drain()
            logger.info("pipeline_drained", processed={k.value: v for k, v in processed.items()})
            return 0

        def shutdown() -> None:
            container.scheduler.stop()
            container.pipeline.stop()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown)

        await asyncio.gather(
            container.pipeline.run(),
            container.scheduler.run_loop(),
        )
        return 0
    finally:
        logger.info("pipeline_shutting_down")
        clear_context()
        await container.close()
        await KafkaClient.close()
        await RedisClient.close()
        await DatabaseClient.close()


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Run the regulatory truth pipeline")
    parser.add_argument(
        "--collect-only",
        action="store_true",
        help="Capture evidence without extracting or composing",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one scheduling pass, drain the queues and exit",
    )
    return parser.parse_args()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
