#!/usr/bin/env python3
"""
Feed Reader entry point.

Modes:
- run: pull every configured feed once, storing new enriched articles
- scheduled: repeat the pull every FETCH_INTERVAL_MINUTES
- serve: expose stored articles over HTTP
- status: print store statistics
"""

import asyncio
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
import argparse

from articles import ARTICLE_PREFIX, CHANNEL_PREFIX, count_by_status
from config import config, get_logger
from fetcher import FeedFetcher
from models import DatabaseQueue
from server import serve
from summarizer import SUMMARY_PREFIX
from telemetry import init_telemetry, trace_span
from utils import format_duration

# Module-specific logger
logger = get_logger("orchestrator")
init_telemetry("feed-reader")


class FeedProcessingOrchestrator:
    """Runs the ingestion pipeline and the auxiliary modes."""

    async def run_fetcher(self, only_slugs: Optional[List[str]] = None) -> bool:
        """Run one ingestion pass."""
        logger.info("📡 Running feed fetcher")
        try:
            return await self._run_fetcher_impl(only_slugs)
        except Exception as e:
            logger.error(f"❌ Feed fetcher failed: {e}")
            return False

    @trace_span("run_fetcher", tracer_name="orchestrator", attr_from_args=lambda self, only_slugs=None: {"feed.only_slugs": ",".join(only_slugs) if only_slugs else ""})
    async def _run_fetcher_impl(self, only_slugs: Optional[List[str]] = None) -> bool:
        start_time = time.time()
        fetcher = FeedFetcher()
        try:
            await fetcher.initialize()
            reports = await fetcher.fetch_all_feeds(only_slugs=only_slugs)
        finally:
            await fetcher.close()
        for report in reports:
            marker = "⚠️" if report.errors else "✅"
            logger.info(f"{marker} {report.slug}: {report.new} new, {report.skipped} known, {report.failed} failed")
        logger.info(f"🎉 Fetch pass completed in {format_duration(time.time() - start_time)}")
        return True

    async def run_scheduled(self, only_slugs: Optional[List[str]] = None) -> None:
        """Repeat ingestion passes at the configured interval."""
        interval = config.FETCH_INTERVAL_MINUTES * 60
        logger.info(f"🕐 Starting scheduled mode (every {config.FETCH_INTERVAL_MINUTES} minutes)")
        while True:
            await self.run_fetcher(only_slugs)
            logger.info(f"💤 Sleeping for {format_duration(interval)} until next run")
            await asyncio.sleep(interval)

    async def run_server(self) -> None:
        db = DatabaseQueue(config.DATABASE_PATH)
        await db.start()
        try:
            await serve(db)
        finally:
            await db.stop()

    async def check_status(self) -> dict:
        """Collect store statistics.

        Returns:
            Dictionary with status information
        """
        logger.info("📊 Checking system status")
        status = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'feeds_configured': len(config.FEED_SOURCES),
        }
        if not Path(config.DATABASE_PATH).exists():
            status['database'] = {'status': 'missing', 'message': 'Database file not found'}
            return status

        db = DatabaseQueue(config.DATABASE_PATH)
        try:
            await db.start()
            status['database'] = {
                'status': 'ok',
                'articles': await db.execute('count_prefix', prefix=ARTICLE_PREFIX),
                'channels': await db.execute('count_prefix', prefix=CHANNEL_PREFIX),
                'summaries': await db.execute('count_prefix', prefix=SUMMARY_PREFIX),
                'read_status': await count_by_status(db),
            }
        except Exception as e:
            status['database'] = {'status': 'error', 'message': str(e)}
        finally:
            await db.stop()
        return status

    def print_status(self, status: dict) -> None:
        """Print formatted status information."""
        print("\n📊 Feed Reader Status")
        print(f"⏰ {status['timestamp']}")
        print(f"📡 Feeds configured: {status['feeds_configured']}")
        db = status['database']
        if db['status'] != 'ok':
            print(f"\n💾 Database: {db['status'].upper()} - {db.get('message', 'Unknown error')}")
            return
        print("\n💾 Database:")
        print(f"   📰 Articles: {db['articles']}")
        print(f"   🏷️  Channels: {db['channels']}")
        print(f"   📝 Summaries: {db['summaries']}")
        for name, count in db['read_status'].items():
            print(f"   • {name}: {count}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Feed Reader')
    parser.add_argument('mode', choices=['run', 'scheduled', 'serve', 'status'], help='Operation mode')
    parser.add_argument('--only', nargs='+', metavar='SLUG',
                        help='Restrict run/scheduled modes to these feed slugs')
    args = parser.parse_args()

    orchestrator = FeedProcessingOrchestrator()

    try:
        if args.mode == 'run':
            success = asyncio.run(orchestrator.run_fetcher(only_slugs=args.only))
            sys.exit(0 if success else 1)

        elif args.mode == 'scheduled':
            asyncio.run(orchestrator.run_scheduled(only_slugs=args.only))

        elif args.mode == 'serve':
            asyncio.run(orchestrator.run_server())

        elif args.mode == 'status':
            status = asyncio.run(orchestrator.check_status())
            orchestrator.print_status(status)

    except KeyboardInterrupt:
        logger.info("👋 Shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
