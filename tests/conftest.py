"""
Shared fakes for the live auction tests.

ManualClock and ManualScheduler stand in for wall-clock time and asyncio
timers so backoff, TTL expiry and polling cadence run deterministically.
"""

import asyncio
import inspect
from typing import List

import pytest

from src.live_auction.auction_event import EventType, ParsedAuctionEvent, RawTransactionRecord


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    def __init__(self, when: float, seq: int, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records call_later requests and fires them when the clock is advanced."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.timers: List[ManualTimer] = []
        self._seq = 0

    def call_later(self, delay, callback) -> ManualTimer:
        self._seq += 1
        timer = ManualTimer(self.clock() + delay, self._seq, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def next_delay(self):
        """Seconds until the earliest pending timer, or None."""
        pending = self.pending
        if not pending:
            return None
        return min(t.when for t in pending) - self.clock()

    async def advance(self, seconds: float = 0) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.clock.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self.clock.now = max(self.clock.now, timer.when)
            timer.fired = True
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        self.clock.now = target


class FakeFeed:
    """
    Scripted async feed.

    Each entry of `script` is either a list of records (returned) or an
    exception instance (raised). Once the script runs out, every fetch
    returns an empty list. Setting `gate` to an asyncio.Event holds every
    fetch until the event is set.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = []
        self.gate = None
        self.hang = False

    async def fetch_transactions(self, session_id=None, since=0):
        self.calls.append((session_id, since))
        if self.hang:
            await asyncio.sleep(3600)
        if self.gate is not None:
            await self.gate.wait()

        if not self.script:
            return []
        entry = self.script.pop(0)
        if isinstance(entry, Exception):
            raise entry
        return entry


def record(event_type, player_id, amount, actor='0001', timestamp=100, payload=None):
    """Build a raw feed record."""
    return RawTransactionRecord(
        event_type=EventType(event_type),
        actor_id=actor,
        payload=payload if payload is not None else f"{player_id}|{amount}|",
        timestamp=timestamp
    )


def event(event_type, player_id, amount, actor='0001', timestamp=100):
    """Build a parsed event."""
    return ParsedAuctionEvent(
        event_type=EventType(event_type),
        player_id=player_id,
        amount=amount,
        actor_id=actor,
        timestamp=timestamp
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def feed():
    return FakeFeed()
