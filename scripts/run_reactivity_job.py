from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from reactivity_engine.config import ConfigurationError, load_config
from reactivity_engine.logging_setup import configure_logging
from reactivity_engine.runtime import open_engine

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recompute stored song reactivity scores for every tracked artist"
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        required=True,
        help="Path to the engine configuration YAML file",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before running",
    )
    return parser.parse_args(argv)


async def _run(config, create_schema: bool) -> int:
    async with open_engine(config, create_schema=create_schema) as engine:
        summary = await engine.run_reactivity_batch()
    return 0 if summary.errors == 0 else 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config_path)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR)
        LOGGER.error("Configuration error: %s", exc)
        return 2

    configure_logging(config.logging)
    return asyncio.run(_run(config, args.create_schema))


if __name__ == "__main__":
    sys.exit(main())
