"""
Main CLI entry point for the live auction tracker.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from . import config


def setup_logging(verbose: bool = False):
    """
    Configure logging for the application.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Live Auction Tracker',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Track the 2026 auction, resuming the last saved mode
  python -m src.main --year 2026

  # Go live straight away and serve the status API
  python -m src.main --year 2026 --mode live --serve

  # Poll every 30 seconds
  python -m src.main --year 2026 --mode live --interval 30
        """
    )

    parser.add_argument(
        '--year',
        type=int,
        default=datetime.now().year,
        help='League year of the auction (default: current year)'
    )

    parser.add_argument(
        '--league-id',
        type=str,
        default=config.MFL_LEAGUE_ID,
        help=f'MFL league ID (default: {config.MFL_LEAGUE_ID})'
    )

    parser.add_argument(
        '--interval',
        type=float,
        default=config.DEFAULT_POLL_INTERVAL,
        help=f'Polling interval in seconds (default: {config.DEFAULT_POLL_INTERVAL})'
    )

    parser.add_argument(
        '--mode',
        choices=['live', 'planning'],
        default=None,
        help='Start in this mode instead of restoring the saved one'
    )

    parser.add_argument(
        '--mode-file',
        type=str,
        default=config.MODE_STATE_FILE,
        help='Where the current mode is persisted'
    )

    parser.add_argument(
        '--serve',
        action='store_true',
        help='Serve the status API'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser.parse_args(argv)


async def run_live_session(args):
    """Run a live auction session until interrupted."""
    from .live_auction.feed_client import MFLFeedClient
    from .live_auction.mode_manager import JsonModeStore
    from .live_auction.session import LiveAuctionSession

    logger = logging.getLogger(__name__)

    def log_notification(command):
        logger.info(f"[{command.severity.value.upper()}] {command.title}: {command.body}")

    def log_health(health):
        if health.degraded:
            logger.warning(f"Feed degraded (breaker {health.breaker_state.value})")
        else:
            logger.info("Feed healthy")

    feed = MFLFeedClient(year=args.year, league_id=args.league_id)
    session = LiveAuctionSession(
        feed=feed,
        session_id=args.league_id,
        mode_store=JsonModeStore(Path(args.mode_file)),
        notification_sink=log_notification,
        poll_interval=args.interval,
        on_health_change=log_health
    )

    logger.info("="*60)
    logger.info("LIVE AUCTION TRACKER")
    logger.info("="*60)
    logger.info(f"League: {args.league_id} ({args.year})")
    logger.info(f"Poll interval: {args.interval}s")

    if args.mode:
        session.set_mode(args.mode)
    else:
        session.restore()

    logger.info(f"Mode: {session.mode.value}")
    logger.info("Press Ctrl+C to stop")
    logger.info("="*60)

    try:
        if args.serve:
            import uvicorn
            from .live_auction.api_server import create_app

            server = uvicorn.Server(uvicorn.Config(
                create_app(session),
                host=config.API_HOST,
                port=config.API_PORT,
                log_level='info'
            ))
            await server.serve()
        else:
            await asyncio.Event().wait()
    finally:
        session.close()
        state = session.get_state()
        logger.info("="*60)
        logger.info("LIVE AUCTION SESSION ENDED")
        logger.info(f"Completed lots tracked: {len(state.completed_lots)}")
        logger.info(f"Total fetches: {session.poller.fetch_count}")
        logger.info("="*60)


def main(argv=None):
    """Main execution function."""
    args = parse_arguments(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        asyncio.run(run_live_session(args))
    except KeyboardInterrupt:
        logger.info("\nLive auction session interrupted by user")
    except Exception as e:
        logger.exception(f"Error during live auction session: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
