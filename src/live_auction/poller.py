"""
Poll the auction feed and feed new records into the state store.

The AuctionPoller owns:
- The polling schedule (one timer, every poll_interval seconds)
- Exponential backoff after failed fetches
- A circuit breaker that halts scheduled polling after repeated failures
- The health signal shown as the "feed degraded" indicator

The only suspension point is the fetch itself. Once records arrive they
are parsed, sorted and applied synchronously, so no observer ever sees a
partially applied batch.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .. import config
from .auction_event import RawTransactionRecord, StateDiff
from .errors import CircuitOpen, FeedUnavailable, OutOfOrderEvent
from .scheduler import AsyncioScheduler, Clock, system_clock
from .state_store import AuctionStateStore
from .transaction_parser import parse_batch

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = 'CLOSED'
    OPEN = 'OPEN'
    HALF_OPEN = 'HALF_OPEN'


# OPEN never goes straight back to CLOSED; it has to pass a half-open trial fetch
_ALLOWED_TRANSITIONS = {
    BreakerState.CLOSED: {BreakerState.OPEN},
    BreakerState.OPEN: {BreakerState.HALF_OPEN},
    BreakerState.HALF_OPEN: {BreakerState.CLOSED, BreakerState.OPEN},
}


@dataclass(frozen=True)
class PollerHealth:
    """Health signal for status indicators."""

    consecutive_failures: int
    breaker_state: BreakerState
    next_allowed_attempt_at: Optional[float]
    last_success_at: Optional[float]

    @property
    def degraded(self) -> bool:
        return self.breaker_state != BreakerState.CLOSED

    def to_dict(self) -> dict:
        return {
            'consecutive_failures': self.consecutive_failures,
            'breaker_state': self.breaker_state.value,
            'next_allowed_attempt_at': self.next_allowed_attempt_at,
            'last_success_at': self.last_success_at,
            'degraded': self.degraded,
        }


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one refresh cycle."""

    success: bool
    manual: bool
    records_received: int = 0
    events_applied: int = 0
    malformed: int = 0
    diff: Optional[StateDiff] = None
    error: Optional[str] = None
    breaker_state: BreakerState = BreakerState.CLOSED

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'manual': self.manual,
            'records_received': self.records_received,
            'events_applied': self.events_applied,
            'malformed': self.malformed,
            'error': self.error,
            'breaker_state': self.breaker_state.value,
        }


class AuctionPoller:
    """Schedules fetch cycles against the auction feed."""

    def __init__(
        self,
        feed,
        store: AuctionStateStore,
        session_id: Optional[str] = None,
        clock: Clock = system_clock,
        scheduler=None,
        poll_interval: float = config.DEFAULT_POLL_INTERVAL,
        fetch_timeout: float = config.FETCH_TIMEOUT,
        max_delay: float = config.BACKOFF_MAX_DELAY,
        max_failures: int = config.MAX_CONSECUTIVE_FAILURES,
        breaker_cooldown: Optional[float] = config.BREAKER_COOLDOWN,
        on_health_change: Optional[Callable[[PollerHealth], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        """
        Initialize poller.

        Args:
            feed: Object with fetch_transactions(session_id, since), sync or async
            store: State store the fetched events are applied to
            session_id: Auction session passed through to the feed
            clock: Time source
            scheduler: Timer source (asyncio scheduler if None)
            poll_interval: Seconds between scheduled fetches, also the backoff base
            fetch_timeout: Seconds before a fetch counts as failed
            max_delay: Cap on the backoff delay
            max_failures: Consecutive failures that open the breaker
            breaker_cooldown: Seconds before an automatic half-open trial fetch
                              (None: wait for a manual refresh)
            on_health_change: Called with the new health on breaker transitions
            on_error: Called with every fetch failure and out-of-order report
        """
        self.feed = feed
        self.store = store
        self.session_id = session_id
        self.clock = clock
        self.scheduler = scheduler or AsyncioScheduler()
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout
        self.max_delay = max_delay
        self.max_failures = max_failures
        self.breaker_cooldown = breaker_cooldown
        self.on_health_change = on_health_change
        self.on_error = on_error

        self._running = False
        self._timer = None
        self._lock = asyncio.Lock()

        self._consecutive_failures = 0
        self._breaker = BreakerState.CLOSED
        self._next_allowed_attempt_at: Optional[float] = None
        self._last_success_at: Optional[float] = None

        # Performance tracking
        self.fetch_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def breaker_state(self) -> BreakerState:
        return self._breaker

    def health(self) -> PollerHealth:
        return PollerHealth(
            consecutive_failures=self._consecutive_failures,
            breaker_state=self._breaker,
            next_allowed_attempt_at=self._next_allowed_attempt_at,
            last_success_at=self._last_success_at
        )

    def start(self) -> None:
        """Start scheduled polling. The first fetch happens right away."""
        if self._running:
            logger.warning("Auction poller already running")
            return

        logger.info(f"Starting live auction polling every {self.poll_interval}s")
        self._running = True

        if self._breaker == BreakerState.OPEN:
            # Restarting counts as a trial fetch
            self._transition(BreakerState.HALF_OPEN)

        self._schedule(0)

    def stop(self) -> None:
        """
        Stop scheduled polling.

        Only the next scheduled fetch is cancelled; a fetch already in
        flight completes and its records are still applied.
        """
        if not self._running:
            return

        logger.info("Stopping live auction polling")
        self._running = False
        self._cancel_timer()

    async def refresh(self) -> FetchOutcome:
        """
        Fetch and apply new records now.

        Works while the breaker is open: the call becomes the half-open
        trial fetch, and success closes the breaker and resumes the schedule.
        """
        return await self._refresh(manual=True)

    async def _run_scheduled(self) -> None:
        self._timer = None
        if not self._running:
            return
        await self._refresh(manual=False)

    async def _run_trial_fetch(self) -> None:
        self._timer = None
        if not self._running or self._breaker != BreakerState.OPEN:
            return
        logger.info("Breaker cooldown elapsed, trying the feed again")
        self._transition(BreakerState.HALF_OPEN)
        await self._refresh(manual=False)

    async def _refresh(self, manual: bool) -> FetchOutcome:
        async with self._lock:
            if self._breaker == BreakerState.OPEN:
                if not manual:
                    logger.debug("Breaker open, skipping scheduled fetch")
                    return FetchOutcome(
                        success=False,
                        manual=manual,
                        error="circuit open",
                        breaker_state=self._breaker
                    )
                self._transition(BreakerState.HALF_OPEN)

            since = self.store.state.watermark
            generation = self.store.generation
            self.fetch_count += 1
            logger.debug(f"Fetch #{self.fetch_count} ({'manual' if manual else 'scheduled'}) since {since}")

            error: Optional[Exception] = None
            records: List[RawTransactionRecord] = []
            try:
                records = await self._fetch(since)
            except asyncio.TimeoutError:
                error = FeedUnavailable(f"Fetch timed out after {self.fetch_timeout}s")
            except FeedUnavailable as e:
                error = e
            except Exception as e:
                logger.error(f"Unexpected error while fetching feed: {e}", exc_info=True)
                error = e

            if self.store.generation != generation:
                # The store was reset mid-fetch, so these records answer a stale watermark
                logger.info(f"Discarding fetch #{self.fetch_count} started before the session restart")
                return FetchOutcome(
                    success=False,
                    manual=manual,
                    error="session restarted",
                    breaker_state=self._breaker
                )

            if error is not None:
                return self._record_failure(error, manual)

            events, malformed = parse_batch(records)
            diff = self._apply(events)
            self._record_success()

            return FetchOutcome(
                success=True,
                manual=manual,
                records_received=len(records),
                events_applied=diff.events_applied,
                malformed=malformed,
                diff=diff,
                breaker_state=self._breaker
            )

    def _apply(self, events) -> StateDiff:
        """
        Apply a fetched batch to the store.

        A cycle that brought no new events still expires buffered bids
        against the clock, so orphan bids are dropped while the feed is
        quiet. A strict store's OutOfOrderEvent is reported through
        on_error; the batch is already applied by then, so the cycle still
        counts as a success.
        """
        try:
            diff = self.store.apply_batch(events)
            if not diff.events_applied:
                diff = self.store.expire_pending(int(self.clock()))
        except OutOfOrderEvent as e:
            logger.warning(f"Out-of-order events in fetch #{self.fetch_count}: {e}")
            self._notify_error(e)
            diff = e.diff
        return diff

    async def _fetch(self, since: int) -> List[RawTransactionRecord]:
        fetch = self.feed.fetch_transactions
        if inspect.iscoroutinefunction(fetch):
            call = fetch(self.session_id, since)
        else:
            call = asyncio.to_thread(fetch, self.session_id, since)
        return list(await asyncio.wait_for(call, timeout=self.fetch_timeout))

    def _record_success(self) -> None:
        now = self.clock()
        self._consecutive_failures = 0
        self._last_success_at = now

        if self._breaker == BreakerState.HALF_OPEN:
            logger.info("Feed recovered, closing breaker")
            self._transition(BreakerState.CLOSED)

        if self._running:
            self._schedule(self.poll_interval)
        else:
            self._next_allowed_attempt_at = now

    def _record_failure(self, error: Exception, manual: bool) -> FetchOutcome:
        now = self.clock()
        self._consecutive_failures += 1

        logger.error(
            f"Auction polling error ({self._consecutive_failures}/{self.max_failures}"
            f"{', manual' if manual else ''}): {error}"
        )
        self._notify_error(error)

        if self._breaker == BreakerState.HALF_OPEN:
            self._open_breaker(now)
        elif self._consecutive_failures >= self.max_failures:
            self._open_breaker(now)
        else:
            delay = min(
                self.poll_interval * 2 ** (self._consecutive_failures - 1),
                self.max_delay
            )
            logger.info(
                f"Retrying in {delay}s "
                f"(attempt {self._consecutive_failures}/{self.max_failures})"
            )
            if self._running:
                self._schedule(delay)
            else:
                self._next_allowed_attempt_at = now + delay

        return FetchOutcome(
            success=False,
            manual=manual,
            error=str(error),
            breaker_state=self._breaker
        )

    def _open_breaker(self, now: float) -> None:
        self._cancel_timer()
        self._transition(BreakerState.OPEN)

        logger.error(
            f"Circuit breaker triggered: {self._consecutive_failures} consecutive "
            f"failures. Feed unavailable, scheduled polling halted."
        )
        self._notify_error(CircuitOpen(
            f"Feed unavailable after {self._consecutive_failures} consecutive failures"
        ))

        if self.breaker_cooldown is None:
            self._next_allowed_attempt_at = None
            return

        self._next_allowed_attempt_at = now + self.breaker_cooldown
        if self._running:
            self._timer = self.scheduler.call_later(self.breaker_cooldown, self._run_trial_fetch)

    def _transition(self, new_state: BreakerState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self._breaker]:
            raise RuntimeError(f"Illegal breaker transition {self._breaker.value} -> {new_state.value}")

        logger.info(f"Breaker {self._breaker.value} -> {new_state.value}")
        self._breaker = new_state

        if self.on_health_change:
            try:
                self.on_health_change(self.health())
            except Exception as e:
                logger.error(f"Health callback failed: {e}", exc_info=True)

    def _schedule(self, delay: float) -> None:
        self._cancel_timer()
        self._next_allowed_attempt_at = self.clock() + delay
        self._timer = self.scheduler.call_later(delay, self._run_scheduled)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify_error(self, error: Exception) -> None:
        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"Error callback failed: {e}", exc_info=True)
