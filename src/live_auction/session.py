"""
Main orchestrator for live auction tracking.

The LiveAuctionSession coordinates all components:
- Polls the transaction feed for new auction records
- Reduces them into the auction state
- Derives UI highlights and notification commands from each state diff
- Switches between planning and live mode
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from .. import config
from .auction_event import AuctionState, StateDiff
from .highlight_tracker import Classification, HighlightEntry, HighlightTracker
from .mode_manager import AuctionMode, ModeManager
from .notification_dispatcher import NotificationCommand, NotificationDispatcher
from .poller import AuctionPoller, FetchOutcome, PollerHealth
from .preferences import NotificationPreference
from .price_comparison import summarize_price_accuracy
from .scheduler import AsyncioScheduler, Clock, system_clock
from .state_store import AuctionStateStore, StoreLimits

logger = logging.getLogger(__name__)


class LiveAuctionSession:
    """One user's live view of one auction."""

    def __init__(
        self,
        feed,
        session_id: Optional[str] = None,
        preferences_provider: Optional[Callable[[], NotificationPreference]] = None,
        watchlist_provider: Optional[Callable[[], Iterable[str]]] = None,
        mode_store=None,
        clock: Clock = system_clock,
        scheduler=None,
        notification_sink: Optional[Callable[[NotificationCommand], None]] = None,
        player_lookup: Optional[Dict[str, str]] = None,
        team_lookup: Optional[Dict[str, str]] = None,
        predicted_prices: Optional[Dict[str, float]] = None,
        poll_interval: float = config.DEFAULT_POLL_INTERVAL,
        fetch_timeout: float = config.FETCH_TIMEOUT,
        max_failures: int = config.MAX_CONSECUTIVE_FAILURES,
        breaker_cooldown: Optional[float] = config.BREAKER_COOLDOWN,
        limits: Optional[StoreLimits] = None,
        on_health_change: Optional[Callable[[PollerHealth], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        """
        Wire up a live auction session.

        Args:
            feed: Transaction feed (see MFLFeedClient)
            session_id: Auction identifier passed to the feed
            preferences_provider: Snapshot accessor for notification preferences
            watchlist_provider: Snapshot accessor for the user's watchlist
            mode_store: Persistence for the planning/live mode
            clock: Time source
            scheduler: Timer source (asyncio if None)
            notification_sink: Receives every admitted notification command
            player_lookup: player_id -> display name
            team_lookup: franchise id -> display name
            predicted_prices: player_id -> predicted winning bid
        """
        self.clock = clock
        self.scheduler = scheduler or AsyncioScheduler()
        self.predicted_prices = predicted_prices or {}

        self.store = AuctionStateStore(limits=limits)
        self.highlights = HighlightTracker(
            watchlist_provider=watchlist_provider,
            clock=clock,
            scheduler=self.scheduler
        )
        self.notifications = NotificationDispatcher(
            preferences_provider=preferences_provider,
            watchlist_provider=watchlist_provider,
            clock=clock,
            sink=notification_sink,
            player_lookup=player_lookup,
            team_lookup=team_lookup,
            predicted_prices=self.predicted_prices
        )
        self.poller = AuctionPoller(
            feed=feed,
            store=self.store,
            session_id=session_id,
            clock=clock,
            scheduler=self.scheduler,
            poll_interval=poll_interval,
            fetch_timeout=fetch_timeout,
            max_failures=max_failures,
            breaker_cooldown=breaker_cooldown,
            on_health_change=on_health_change,
            on_error=on_error
        )
        self.mode_manager = ModeManager(
            poller=self.poller,
            highlight_tracker=self.highlights,
            dispatcher=self.notifications,
            mode_store=mode_store
        )

        self.store.subscribe(self.highlights.on_state_change)
        self.store.subscribe(self.notifications.on_state_change)

    @property
    def mode(self) -> AuctionMode:
        return self.mode_manager.mode

    def get_state(self) -> AuctionState:
        return self.store.get_state()

    def subscribe(self, listener: Callable[[StateDiff], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def get_highlight(self, entity_id: str) -> Optional[Classification]:
        return self.highlights.classify(entity_id)

    def active_highlights(self) -> List[HighlightEntry]:
        return self.highlights.active_highlights()

    def health(self) -> PollerHealth:
        return self.poller.health()

    async def refresh(self) -> FetchOutcome:
        return await self.poller.refresh()

    def restore(self) -> AuctionMode:
        return self.mode_manager.restore()

    def set_mode(self, mode) -> bool:
        return self.mode_manager.set_mode(mode)

    def price_summary(self) -> dict:
        return summarize_price_accuracy(self.get_state().completed_lots, self.predicted_prices)

    def is_active(self) -> bool:
        """Whether a lot is open with recent activity."""
        return self.get_state().is_active(self.clock(), self.store.limits.stale_lot_threshold)

    def restart(self) -> None:
        """
        Restart the session from scratch.

        The state and watermark are reset, so the next fetch replays the
        feed's full retention window. A fetch already in flight is
        discarded when it returns, since it was asked for the old
        watermark.
        """
        logger.info("Restarting live auction session")
        was_running = self.poller.running
        self.poller.stop()
        self.store.reset()
        self.highlights.clear()
        self.notifications.reset_rate_limit()
        if was_running:
            self.poller.start()

    def close(self) -> None:
        """Stop timers and release the feed."""
        self.poller.stop()
        self.highlights.stop_sweeping()
        close = getattr(self.poller.feed, 'close', None)
        if close:
            close()
