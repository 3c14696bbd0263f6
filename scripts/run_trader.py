#!/usr/bin/env python
"""Run the trading engine for every configured trader.

Usage:
    PRIVATE_KEYS=key1,key2 python scripts/run_trader.py --config config.yaml
    python scripts/run_trader.py --keys-file ~/.rsitrader_keys.json --log-level DEBUG
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from rsitrader.config import BotConfig
from rsitrader.logging_setup import logger, setup_logging
from rsitrader.runner import BotRunner
from rsitrader.secrets import load_traders


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RSI limit-order trading engine")
    parser.add_argument("--config", default=None, help="YAML config file (defaults used if omitted)")
    parser.add_argument("--keys-file", default=None, help="JSON file with private_keys")
    parser.add_argument("--log-level", default=None, help="Override configured log level")
    parser.add_argument("--log-file", default=None, help="Override configured log file")
    parser.add_argument("--no-console", action="store_true", help="Disable console logging")
    parser.add_argument("--iterations", type=int, default=None, help="Stop each trader after N cycles")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = BotConfig.from_yaml(args.config) if args.config else BotConfig()
    setup_logging(
        log_file=args.log_file or config.logging.log_file,
        level=args.log_level or config.logging.log_level,
        enable_console=not args.no_console,
    )

    try:
        traders = load_traders(args.keys_file)
    except ValueError as e:
        logger.error(f"Failed to load trader keys: {e}")
        return 2

    logger.info(f"Starting {len(traders)} trader(s) | pair={config.feed.symbol} market={config.venue.market}")
    runner = BotRunner(config, traders)
    try:
        failures = asyncio.run(runner.run(max_iterations=args.iterations))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0
    return 1 if failures and len(failures) == len(traders) else 0


if __name__ == "__main__":
    sys.exit(main())
