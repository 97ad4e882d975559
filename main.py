# Pulse - Headless host
# Runs the draw clock, the pollers and the telemetry cache, and logs the view.

# Load environment variables FIRST (before any other imports)
from dotenv import load_dotenv
load_dotenv()

import argparse
import asyncio
import json
import logging
import sys

from config import load_settings
from core.display import format_usd
from core.errors import ConfigError
from core.kv_store import SqliteKeyValueStore
from core.runtime import PulseRuntime

logger = logging.getLogger("main")


def summarize(view: dict) -> str:
    clock = view["clock"]
    price = view["price"]
    stats = view["stats"]
    price_text = format_usd(price["pool_usd"]) if price["available"] else "unavailable"
    return (
        f"{view['campaign']['title']} | next draw in {clock['countdown']} | "
        f"pool {price_text} | peak {format_usd(price['session_peak_usd'])} | {stats['observed_label']}"
    )


async def run_once(runtime: PulseRuntime) -> dict:
    """Poll both sources once and return a fresh view."""
    await runtime.price_driver.poll_once()
    await runtime.draw_driver.poll_once()
    runtime.tick_stats()
    return runtime.view()


async def run_forever(runtime: PulseRuntime, report_seconds: float) -> None:
    await runtime.start()
    try:
        while True:
            await asyncio.sleep(report_seconds)
            logger.info(summarize(runtime.view()))
    finally:
        await runtime.stop()


def main():
    parser = argparse.ArgumentParser(description="Pulse draw clock and price telemetry")
    parser.add_argument("--once", action="store_true", help="Poll once, print the view as JSON and exit")
    parser.add_argument("--report-seconds", type=float, default=30.0, help="Log a summary this often")
    parser.add_argument("--db", default=None, help="Override the SQLite path")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    runtime = PulseRuntime(settings, SqliteKeyValueStore(args.db or settings.database_path))

    if args.once:
        view = asyncio.run(run_once(runtime))
        print(json.dumps(view, indent=2))
        return

    try:
        asyncio.run(run_forever(runtime, args.report_seconds))
    except KeyboardInterrupt:
        logger.info("Stopping")


if __name__ == "__main__":
    main()
