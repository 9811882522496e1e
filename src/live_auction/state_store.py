"""
Reduce ordered auction events into the current auction state.

The AuctionStateStore is responsible for:
- Folding parsed events into a new AuctionState (pure reducer)
- Advancing the watermark so replayed events are never applied twice
- Buffering bids that arrive before the INIT of their lot
- Publishing one StateDiff per applied batch to subscribers

The store has exactly one writer (the poller's fetch-completion path), so
no locking is needed. Everything else only reads snapshots or listens to
diffs.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Deque, Iterable, List, Optional, Set, Tuple

from .. import config
from .auction_event import (
    Anomaly,
    AnomalyKind,
    AuctionState,
    Bid,
    CompletedLot,
    EventType,
    Lot,
    ParsedAuctionEvent,
    StateDiff,
)
from .errors import OutOfOrderEvent

logger = logging.getLogger(__name__)

StateListener = Callable[[StateDiff], None]


@dataclass(frozen=True)
class StoreLimits:
    """Tunables for the reducer."""

    recent_bids_cap: int = config.RECENT_BIDS_CAP
    completed_lots_cap: int = config.COMPLETED_LOTS_CAP
    stale_lot_threshold: int = config.STALE_LOT_THRESHOLD
    pending_bid_window: int = config.PENDING_BID_WINDOW


@dataclass(frozen=True)
class Transition:
    """Result of applying a single event."""

    state: AuctionState
    anomalies: Tuple[Anomaly, ...] = ()
    opened_lot: Optional[Lot] = None
    closed_lot_id: Optional[str] = None
    new_bids: Tuple[Bid, ...] = ()
    completion: Optional[CompletedLot] = None


def apply_event(
    state: AuctionState,
    event: ParsedAuctionEvent,
    limits: StoreLimits = StoreLimits()
) -> Transition:
    """
    Apply one event to an auction state.

    This never raises: inconsistencies in the feed are reported as
    anomalies on the returned Transition and the event is still applied
    as far as bookkeeping allows. The watermark is left untouched; the
    store advances it.

    Args:
        state: State before the event
        event: Event to apply
        limits: Buffer caps and time windows

    Returns:
        Transition holding the new state and what changed
    """
    pending, anomalies = _expire_pending(state.pending_bids, event.timestamp, limits)
    state = replace(state, pending_bids=pending)

    if event.event_type == EventType.INIT:
        transition = _apply_init(state, event, limits)
    elif event.event_type == EventType.BID:
        transition = _apply_bid(state, event, limits)
    else:
        transition = _apply_won(state, event, limits)

    if anomalies:
        transition = replace(transition, anomalies=tuple(anomalies) + transition.anomalies)
    return transition


def _expire_pending(
    pending: Tuple[Bid, ...],
    now: int,
    limits: StoreLimits
) -> Tuple[Tuple[Bid, ...], List[Anomaly]]:
    """Drop buffered bids whose lot never opened within the window."""
    kept = []
    anomalies = []
    for bid in pending:
        if now - bid.timestamp > limits.pending_bid_window:
            logger.warning(
                f"Dropping bid on unopened lot {bid.player_id} "
                f"(${bid.amount} by {bid.bidder_id} at {bid.timestamp}): no INIT "
                f"within {limits.pending_bid_window}s"
            )
            anomalies.append(Anomaly(
                kind=AnomalyKind.OUT_OF_ORDER_BID_DROPPED,
                player_id=bid.player_id,
                timestamp=bid.timestamp,
                detail=f"bid of {bid.amount} by {bid.bidder_id} never matched an INIT"
            ))
        else:
            kept.append(bid)
    return tuple(kept), anomalies


def _apply_init(state: AuctionState, event: ParsedAuctionEvent, limits: StoreLimits) -> Transition:
    anomalies = []
    closed_lot_id = None

    previous = state.current_lot
    if previous is not None:
        closed_lot_id = previous.player_id
        idle = event.timestamp - previous.last_activity_at
        if idle > limits.stale_lot_threshold:
            # A WON record was probably missed during a feed gap
            logger.info(
                f"Closing abandoned lot {previous.player_id} "
                f"(idle {idle}s) before opening {event.player_id}"
            )
            kind = AnomalyKind.LOT_ABANDONED
        else:
            logger.warning(
                f"Lot {event.player_id} opened while {previous.player_id} "
                f"was still active (idle {idle}s)"
            )
            kind = AnomalyKind.LOT_SUPERSEDED
        anomalies.append(Anomaly(
            kind=kind,
            player_id=previous.player_id,
            timestamp=event.timestamp,
            detail=f"replaced by INIT for {event.player_id}"
        ))

    lot = Lot(
        player_id=event.player_id,
        opening_bid=event.amount,
        current_bid=event.amount,
        current_bidder_id=None,
        opened_at=event.timestamp,
        last_activity_at=event.timestamp
    )

    # Bids for this player that arrived ahead of the INIT now have a lot
    waiting = [bid for bid in state.pending_bids if bid.player_id == event.player_id]
    remaining = tuple(bid for bid in state.pending_bids if bid.player_id != event.player_id)
    recent_bids = state.recent_bids
    for bid in waiting:
        lot = replace(
            lot,
            current_bid=bid.amount,
            current_bidder_id=bid.bidder_id,
            last_activity_at=max(lot.last_activity_at, bid.timestamp)
        )
        recent_bids = ((bid,) + recent_bids)[:limits.recent_bids_cap]

    if waiting:
        logger.debug(f"Resolved {len(waiting)} buffered bid(s) for lot {event.player_id}")

    logger.debug(f"Lot opened: {event.player_id} at ${event.amount}")

    return Transition(
        state=replace(state, current_lot=lot, recent_bids=recent_bids, pending_bids=remaining),
        anomalies=tuple(anomalies),
        opened_lot=lot,
        closed_lot_id=closed_lot_id,
        new_bids=tuple(waiting)
    )


def _apply_bid(state: AuctionState, event: ParsedAuctionEvent, limits: StoreLimits) -> Transition:
    bid = Bid(
        player_id=event.player_id,
        bidder_id=event.actor_id,
        amount=event.amount,
        timestamp=event.timestamp
    )

    lot = state.current_lot
    if lot is not None and lot.player_id == event.player_id:
        lot = replace(
            lot,
            current_bid=event.amount,
            current_bidder_id=event.actor_id,
            last_activity_at=event.timestamp
        )
        recent_bids = ((bid,) + state.recent_bids)[:limits.recent_bids_cap]
        logger.debug(f"Bid on {event.player_id}: ${event.amount} by {event.actor_id}")
        return Transition(
            state=replace(state, current_lot=lot, recent_bids=recent_bids),
            new_bids=(bid,)
        )

    if event.player_id in state.completed_player_ids():
        # Late bid on a closed lot cannot change the outcome
        logger.debug(
            f"Ignoring late bid on completed lot {event.player_id} "
            f"(${event.amount} by {event.actor_id})"
        )
        return Transition(state=state)

    logger.debug(f"Buffering bid on unopened lot {event.player_id} (${event.amount})")
    pending = (state.pending_bids + (bid,))[-limits.recent_bids_cap:]
    return Transition(state=replace(state, pending_bids=pending))


def _apply_won(state: AuctionState, event: ParsedAuctionEvent, limits: StoreLimits) -> Transition:
    anomalies = []
    completion = CompletedLot(
        player_id=event.player_id,
        winner_id=event.actor_id,
        winning_bid=event.amount,
        timestamp=event.timestamp
    )
    completed = ((completion,) + state.completed_lots)[:limits.completed_lots_cap]

    lot = state.current_lot
    closed_lot_id = None
    if lot is not None and lot.player_id == event.player_id:
        lot = None
        closed_lot_id = event.player_id
    else:
        logger.warning(
            f"WON for {event.player_id} does not match the open lot "
            f"({lot.player_id if lot else 'none'}); recording anyway"
        )
        anomalies.append(Anomaly(
            kind=AnomalyKind.UNKNOWN_LOT_WON,
            player_id=event.player_id,
            timestamp=event.timestamp,
            detail=f"won by {event.actor_id} for {event.amount}"
        ))

    # Buffered bids for a lot that has already closed can never resolve
    pending = tuple(bid for bid in state.pending_bids if bid.player_id != event.player_id)

    logger.debug(f"Lot won: {event.player_id} by {event.actor_id} for ${event.amount}")

    return Transition(
        state=replace(state, current_lot=lot, completed_lots=completed, pending_bids=pending),
        anomalies=tuple(anomalies),
        closed_lot_id=closed_lot_id,
        completion=completion
    )


class AuctionStateStore:
    """Single-writer holder of the live AuctionState."""

    def __init__(
        self,
        initial_state: Optional[AuctionState] = None,
        limits: Optional[StoreLimits] = None,
        anomalies_cap: int = config.ANOMALIES_CAP,
        strict: bool = False
    ):
        """
        Initialize the store.

        Args:
            initial_state: Starting state (fresh state if None)
            limits: Reducer caps and windows (config defaults if None)
            anomalies_cap: Number of recent anomalies to keep for inspection
            strict: Raise OutOfOrderEvent when a buffered bid is dropped
        """
        self.limits = limits or StoreLimits()
        self._state = initial_state or AuctionState()
        self._keys_at_watermark: Set[Tuple] = set()
        self._subscribers: List[StateListener] = []
        self._anomalies_cap = anomalies_cap
        self.strict = strict
        self.anomalies: Deque[Anomaly] = deque(maxlen=anomalies_cap)
        # Bumped by reset(); a fetch started under an older generation is stale
        self.generation = 0

    @property
    def state(self) -> AuctionState:
        return self._state

    def get_state(self) -> AuctionState:
        """Read-only snapshot of the current state."""
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener for state diffs.

        Returns:
            Function that removes the listener again
        """
        self._subscribers.append(listener)

        def unsubscribe() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return unsubscribe

    def apply(self, event: ParsedAuctionEvent) -> StateDiff:
        """Apply a single event and publish the resulting diff."""
        return self.apply_batch([event])

    def apply_batch(self, events: Iterable[ParsedAuctionEvent]) -> StateDiff:
        """
        Apply a batch of events in ascending timestamp order.

        The sort is stable, so events sharing a timestamp keep their feed
        order. Subscribers are notified once, after the whole batch has
        been applied, and only if something changed.

        Args:
            events: Parsed events in any order

        Returns:
            StateDiff describing the batch

        Raises:
            OutOfOrderEvent: In strict mode, after the batch is applied and
                             published, if a buffered bid was dropped
        """
        previous = self._state
        opened: List[Lot] = []
        closed: List[str] = []
        new_bids: List[Bid] = []
        completions: List[CompletedLot] = []
        anomalies: List[Anomaly] = []
        applied = 0

        for event in sorted(events, key=lambda e: e.timestamp):
            transition = self._apply_one(event)
            if transition is None:
                continue

            applied += 1
            if transition.opened_lot is not None:
                opened.append(transition.opened_lot)
            if transition.closed_lot_id is not None:
                closed.append(transition.closed_lot_id)
            if transition.completion is not None:
                completions.append(transition.completion)
            new_bids.extend(transition.new_bids)
            anomalies.extend(transition.anomalies)

        self.anomalies.extend(anomalies)

        diff = StateDiff(
            previous=previous,
            current=self._state,
            opened_lots=tuple(opened),
            closed_lot_ids=tuple(closed),
            new_bids=tuple(new_bids),
            new_completions=tuple(completions),
            anomalies=tuple(anomalies),
            events_applied=applied
        )

        if applied:
            lot = self._state.current_lot
            logger.info(
                f"Applied {applied} event(s) | "
                f"On block: {lot.player_id if lot else 'none'} | "
                f"{len(new_bids)} bid(s), {len(completions)} completion(s) | "
                f"watermark {self._state.watermark}"
            )

        if not diff.is_empty:
            self._publish(diff)

        self._check_strict(diff)
        return diff

    def expire_pending(self, now: int) -> StateDiff:
        """
        Drop buffered bids that have waited longer than the pending window.

        Expiry normally happens as later events are applied. This covers a
        feed that has gone quiet, so an orphan bid is still dropped and
        reported. The watermark is not touched.

        Args:
            now: Current time on the feed's clock (Unix seconds)

        Returns:
            StateDiff carrying the drop anomalies (empty if nothing expired)

        Raises:
            OutOfOrderEvent: In strict mode, after publishing, if a bid was dropped
        """
        previous = self._state
        pending, anomalies = _expire_pending(previous.pending_bids, now, self.limits)
        if not anomalies:
            return StateDiff(previous=previous, current=previous)

        self._state = replace(previous, pending_bids=pending)
        self.anomalies.extend(anomalies)
        diff = StateDiff(previous=previous, current=self._state, anomalies=tuple(anomalies))
        self._publish(diff)

        self._check_strict(diff)
        return diff

    def reset(self) -> None:
        """Start a fresh session: empty state, watermark back to zero."""
        self._state = AuctionState()
        self._keys_at_watermark = set()
        self.anomalies = deque(maxlen=self._anomalies_cap)
        self.generation += 1
        logger.info(f"Auction state reset (generation {self.generation})")

    def _check_strict(self, diff: StateDiff) -> None:
        if not self.strict:
            return
        dropped = [a for a in diff.anomalies if a.kind == AnomalyKind.OUT_OF_ORDER_BID_DROPPED]
        if dropped:
            raise OutOfOrderEvent(
                f"{len(dropped)} bid(s) referenced lots that never opened: "
                f"{', '.join(a.player_id for a in dropped)}",
                diff=diff
            )

    def _apply_one(self, event: ParsedAuctionEvent) -> Optional[Transition]:
        """Apply an event unless the watermark says it was already applied."""
        watermark = self._state.watermark
        key = event.key()

        if event.timestamp < watermark or (
            event.timestamp == watermark and key in self._keys_at_watermark
        ):
            logger.debug(
                f"Skipping already-applied {event.event_type.value} for "
                f"{event.player_id} at {event.timestamp} (watermark {watermark})"
            )
            return None

        transition = apply_event(self._state, event, self.limits)

        if event.timestamp > watermark:
            self._keys_at_watermark = {key}
        else:
            self._keys_at_watermark.add(key)

        self._state = replace(transition.state, watermark=event.timestamp)
        return replace(transition, state=self._state)

    def _publish(self, diff: StateDiff) -> None:
        for listener in list(self._subscribers):
            try:
                listener(diff)
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {e}", exc_info=True)
