#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the pipeline schema and load the source registry.

Usage:
    python scripts/init_database.py
    python scripts/init_database.py --registry config/sources.json
    python scripts/init_database.py --schema-only

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)

DEFAULT_REGISTRY = Path(__file__).parent.parent / "config" / "sources.json"


async def init_schema() -> bool:
    """Create all tables."""
    # Importing the models registers them on Base.metadata
    import services.regulatory_truth.models  # noqa: F401
    from shared.database import DatabaseClient

    try:
        await DatabaseClient.create_schema()
        logger.info("schema_created")
        return True
    except Exception as e:
        logger.error("schema_creation_failed", error=str(e))
        return False


async def load_sources(path: Path) -> bool:
    """Upsert the source registry."""
    from services.regulatory_truth.registry import load_registry, sync_registry
    from shared.database import DatabaseClient, db_session

    try:
        definitions = load_registry(path)
        async with db_session(DatabaseClient.get_session_factory()) as session:
            await sync_registry(session, definitions)
        return True
    except Exception as e:
        logger.error("registry_load_failed", path=str(path), error=str(e))
        return False


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    from shared.config import settings
    from shared.database import DatabaseClient

    results = {"schema": await init_schema()}
    if not args.schema_only and results["schema"]:
        registry = args.registry or settings.scheduler.registry_file or DEFAULT_REGISTRY
        results["registry"] = await load_sources(Path(registry))

    await DatabaseClient.close()

    failed = [name for name, ok in results.items() if not ok]
    if failed:
        logger.error("initialization_failed", steps=failed)
        return 1

    logger.info("initialization_complete", steps=list(results))
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize the regulatory truth database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--registry",
        type=Path,
        default=None,
        help="Source registry JSON file",
    )
    parser.add_argument(
        "--schema-only",
        action="store_true",
        help="Create tables without loading sources",
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
