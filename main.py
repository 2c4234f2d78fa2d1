#!/usr/bin/env python3
"""
SiteWatch v3.0
Continuous reachability and latency monitoring of dual-line sites
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from sitewatch.core import Settings, SiteMonitor
from sitewatch.storage import create_store
from sitewatch.utils.logger import setup_logger


async def run(settings: Settings, store) -> None:
    """Run the monitor until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still cancels asyncio.run
            pass

    monitor = SiteMonitor(settings, store)
    await monitor.run_until(stop_event)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="SiteWatch site monitor")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"))
    parser.add_argument("--sites", type=Path, default=Path("sites.yaml"))
    args = parser.parse_args(argv)

    logger = setup_logger()
    logger.info("=" * 50)
    logger.info("SiteWatch v3.0 - Starting")
    logger.info("=" * 50)

    store = None
    try:
        settings = Settings.load(args.config, args.sites)
        setup_logger(Path(settings.get('logging.dir')), settings.get('logging.level'))
        store = create_store(settings)
        logger.info(f"Loaded {len(settings.sites)} sites")
        asyncio.run(run(settings, store))
        return 0

    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        if store is not None:
            store.close()
        logger.info("Application shutdown")


if __name__ == "__main__":
    sys.exit(main())
