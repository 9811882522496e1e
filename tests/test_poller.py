import asyncio

import pytest

from src.live_auction.auction_event import AnomalyKind
from src.live_auction.errors import CircuitOpen, FeedUnavailable, OutOfOrderEvent
from src.live_auction.poller import AuctionPoller, BreakerState
from src.live_auction.state_store import AuctionStateStore

from conftest import ManualClock, ManualScheduler, record


def make_poller(feed, clock, scheduler, store=None, **kwargs):
    options = dict(
        poll_interval=15,
        max_delay=60,
        max_failures=3,
        fetch_timeout=5,
    )
    options.update(kwargs)
    return AuctionPoller(
        feed=feed,
        store=store or AuctionStateStore(),
        session_id='13522',
        clock=clock,
        scheduler=scheduler,
        **options
    )


async def test_scheduled_fetch_applies_records(feed, clock, scheduler):
    feed.script = [[record('INIT', 'A', 5, timestamp=100), record('BID', 'A', 6, timestamp=101)]]
    poller = make_poller(feed, clock, scheduler)

    poller.start()
    await scheduler.advance(0)

    assert poller.store.state.current_lot.current_bid == 6
    assert poller.health().last_success_at == clock()
    assert scheduler.next_delay() == 15


async def test_next_fetch_asks_from_watermark(feed, clock, scheduler):
    feed.script = [[record('INIT', 'A', 5, timestamp=100)]]
    poller = make_poller(feed, clock, scheduler)

    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)

    assert feed.calls == [('13522', 0), ('13522', 100)]


async def test_breaker_opens_after_max_failures(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down")] * 3
    errors = []
    poller = make_poller(feed, clock, scheduler, on_error=errors.append)

    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)
    await scheduler.advance(30)

    assert poller.breaker_state == BreakerState.OPEN
    assert len(feed.calls) == 3
    assert isinstance(errors[-1], CircuitOpen)

    # No fourth scheduled fetch, however long we wait
    await scheduler.advance(3600)
    assert len(feed.calls) == 3
    assert scheduler.pending == []
    assert poller.health().degraded


async def test_backoff_doubles_up_to_max_delay(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down")] * 5
    poller = make_poller(feed, clock, scheduler, max_failures=10)

    poller.start()
    delays = []
    await scheduler.advance(0)
    for _ in range(4):
        delay = scheduler.next_delay()
        delays.append(delay)
        await scheduler.advance(delay)

    assert delays == [15, 30, 60, 60]
    assert poller.health().consecutive_failures == 5
    assert poller.breaker_state == BreakerState.CLOSED


async def test_success_resets_failure_count(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down"), FeedUnavailable("down"), []]
    poller = make_poller(feed, clock, scheduler)

    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)
    await scheduler.advance(30)

    assert poller.health().consecutive_failures == 0
    assert poller.breaker_state == BreakerState.CLOSED
    assert scheduler.next_delay() == 15


async def test_manual_refresh_closes_open_breaker_and_resumes(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down")] * 3
    transitions = []
    poller = make_poller(
        feed, clock, scheduler,
        on_health_change=lambda health: transitions.append(health.breaker_state)
    )
    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)
    await scheduler.advance(30)
    assert poller.breaker_state == BreakerState.OPEN

    feed.script = [[record('INIT', 'A', 5, timestamp=100)]]
    outcome = await poller.refresh()

    assert outcome.success
    assert outcome.manual
    assert poller.breaker_state == BreakerState.CLOSED
    assert transitions == [BreakerState.OPEN, BreakerState.HALF_OPEN, BreakerState.CLOSED]
    assert poller.store.state.current_lot.player_id == 'A'
    assert scheduler.next_delay() == 15


async def test_failed_manual_refresh_reopens_breaker(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down")] * 4
    poller = make_poller(feed, clock, scheduler)
    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)
    await scheduler.advance(30)

    outcome = await poller.refresh()

    assert not outcome.success
    assert poller.breaker_state == BreakerState.OPEN
    assert scheduler.pending == []


async def test_cooldown_trial_fetch_recovers(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down")] * 3
    poller = make_poller(feed, clock, scheduler, breaker_cooldown=120)
    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)
    await scheduler.advance(30)
    assert poller.health().next_allowed_attempt_at == clock() + 120

    await scheduler.advance(120)

    assert len(feed.calls) == 4
    assert poller.breaker_state == BreakerState.CLOSED


async def test_restart_while_open_retries_feed(feed, clock, scheduler):
    feed.script = [FeedUnavailable("down")] * 3
    poller = make_poller(feed, clock, scheduler)
    poller.start()
    await scheduler.advance(0)
    await scheduler.advance(15)
    await scheduler.advance(30)
    poller.stop()

    poller.start()
    assert poller.breaker_state == BreakerState.HALF_OPEN
    await scheduler.advance(0)

    assert poller.breaker_state == BreakerState.CLOSED


async def test_stop_lets_in_flight_fetch_complete(feed, clock, scheduler):
    feed.script = [[record('INIT', 'A', 5, timestamp=100)]]
    feed.gate = asyncio.Event()
    poller = make_poller(feed, clock, scheduler)

    poller.start()
    task = asyncio.create_task(scheduler.advance(0))
    for _ in range(5):
        await asyncio.sleep(0)
    assert len(feed.calls) == 1

    poller.stop()
    feed.gate.set()
    await task

    assert poller.store.state.current_lot.player_id == 'A'
    assert not poller.running
    assert scheduler.pending == []


async def test_stop_cancels_next_scheduled_fetch(feed, clock, scheduler):
    poller = make_poller(feed, clock, scheduler)
    poller.start()
    await scheduler.advance(0)

    poller.stop()
    await scheduler.advance(60)

    assert len(feed.calls) == 1


async def test_timeout_counts_as_failure(feed, clock, scheduler):
    feed.hang = True
    poller = make_poller(feed, clock, scheduler, fetch_timeout=0.05)

    outcome = await poller.refresh()

    assert not outcome.success
    assert 'timed out' in outcome.error
    assert poller.health().consecutive_failures == 1


async def test_malformed_records_are_skipped(feed, clock, scheduler):
    feed.script = [[
        record('INIT', 'A', 5, timestamp=100),
        record('BID', None, None, payload='A|lots|', timestamp=101),
        record('BID', 'A', 8, actor='0002', timestamp=102),
    ]]
    poller = make_poller(feed, clock, scheduler)

    outcome = await poller.refresh()

    assert outcome.success
    assert outcome.records_received == 3
    assert outcome.malformed == 1
    assert outcome.events_applied == 2
    assert poller.store.state.current_lot.current_bid == 8


async def test_sync_feed_runs_in_worker_thread(clock, scheduler):
    class SyncFeed:
        def fetch_transactions(self, session_id=None, since=0):
            return [record('INIT', 'A', 5, timestamp=100)]

    poller = make_poller(SyncFeed(), clock, scheduler)

    outcome = await poller.refresh()

    assert outcome.success
    assert poller.store.state.current_lot.player_id == 'A'


def test_breaker_rejects_illegal_transition(feed, clock, scheduler):
    poller = make_poller(feed, clock, scheduler)
    with pytest.raises(RuntimeError):
        poller._transition(BreakerState.HALF_OPEN)


async def test_strict_store_error_is_reported_and_polling_continues(feed, clock, scheduler):
    feed.script = [[
        record('BID', 'Z', 10, actor='0002', timestamp=100),
        record('INIT', 'B', 5, timestamp=500),
    ]]
    errors = []
    store = AuctionStateStore(strict=True)
    poller = make_poller(feed, clock, scheduler, store=store, on_error=errors.append)

    poller.start()
    await scheduler.advance(0)

    assert [type(e) for e in errors] == [OutOfOrderEvent]
    assert store.state.current_lot.player_id == 'B'
    assert poller.health().consecutive_failures == 0
    assert scheduler.next_delay() == 15

    await scheduler.advance(15)
    assert feed.calls == [('13522', 0), ('13522', 500)]


async def test_strict_store_error_on_manual_refresh_still_succeeds(feed, clock, scheduler):
    feed.script = [[
        record('BID', 'Z', 10, actor='0002', timestamp=100),
        record('INIT', 'B', 5, timestamp=500),
    ]]
    poller = make_poller(feed, clock, scheduler, store=AuctionStateStore(strict=True))

    outcome = await poller.refresh()

    assert outcome.success
    assert outcome.events_applied == 2
    assert outcome.diff.anomalies[0].kind == AnomalyKind.OUT_OF_ORDER_BID_DROPPED


async def test_quiet_feed_still_expires_buffered_bids(feed):
    clock = ManualClock(now=150)
    scheduler = ManualScheduler(clock)
    feed.script = [[record('BID', 'Z', 10, actor='0002', timestamp=150)]]
    poller = make_poller(feed, clock, scheduler)

    poller.start()
    await scheduler.advance(0)
    assert len(poller.store.state.pending_bids) == 1

    await scheduler.advance(15)
    assert len(poller.store.state.pending_bids) == 1

    await scheduler.advance(15)
    assert len(poller.store.state.pending_bids) == 1

    await scheduler.advance(15)
    assert poller.store.state.pending_bids == ()
    assert poller.store.anomalies[-1].kind == AnomalyKind.OUT_OF_ORDER_BID_DROPPED
    assert poller.store.state.watermark == 150


async def test_fetch_outliving_a_reset_is_discarded(feed, clock, scheduler):
    feed.script = [[record('INIT', 'A', 5, timestamp=100)]]
    feed.gate = asyncio.Event()
    poller = make_poller(feed, clock, scheduler)

    task = asyncio.create_task(poller.refresh())
    for _ in range(5):
        await asyncio.sleep(0)
    poller.store.reset()
    feed.gate.set()
    outcome = await task

    assert not outcome.success
    assert outcome.error == "session restarted"
    assert poller.store.state.current_lot is None
    assert poller.store.state.watermark == 0
    assert poller.health().consecutive_failures == 0
