"""
Core data structures for auction events and auction state.

These dataclasses represent a live, time-boxed auction as reconstructed
from the transaction feed: the raw records, the parsed events, the lot
currently on the block, and the bounded history of bids and completions.
All of them are immutable; the state store produces a new AuctionState
for every applied event.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple
import json


class EventType(str, Enum):
    INIT = 'INIT'
    BID = 'BID'
    WON = 'WON'


@dataclass(frozen=True)
class RawTransactionRecord:
    """A single auction transaction exactly as supplied by the feed."""

    event_type: EventType
    actor_id: str             # Franchise that nominated, bid or won
    payload: str              # "playerId|amount|"
    timestamp: int            # Unix seconds

    def to_dict(self) -> dict:
        return {
            'event_type': self.event_type.value,
            'actor_id': self.actor_id,
            'payload': self.payload,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class ParsedAuctionEvent:
    """A typed auction event derived from a RawTransactionRecord."""

    event_type: EventType
    player_id: str
    amount: int
    actor_id: str
    timestamp: int

    def key(self) -> Tuple[str, str, int, str]:
        """Identity of the event within a single feed second."""
        return (self.event_type.value, self.player_id, self.amount, self.actor_id)

    def to_dict(self) -> dict:
        return {
            'event_type': self.event_type.value,
            'player_id': self.player_id,
            'amount': self.amount,
            'actor_id': self.actor_id,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class Lot:
    """The player currently up for bid."""

    player_id: str
    opening_bid: int
    current_bid: int
    current_bidder_id: Optional[str]
    opened_at: int
    last_activity_at: int

    def to_dict(self) -> dict:
        return {
            'player_id': self.player_id,
            'opening_bid': self.opening_bid,
            'current_bid': self.current_bid,
            'current_bidder_id': self.current_bidder_id,
            'opened_at': self.opened_at,
            'last_activity_at': self.last_activity_at,
        }


@dataclass(frozen=True)
class Bid:
    """One entry of the recent bids feed."""

    player_id: str
    bidder_id: str
    amount: int
    timestamp: int

    def to_dict(self) -> dict:
        return {
            'player_id': self.player_id,
            'bidder_id': self.bidder_id,
            'amount': self.amount,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class CompletedLot:
    """A lot that closed with a winner."""

    player_id: str
    winner_id: str
    winning_bid: int
    timestamp: int

    def to_dict(self) -> dict:
        return {
            'player_id': self.player_id,
            'winner_id': self.winner_id,
            'winning_bid': self.winning_bid,
            'timestamp': self.timestamp,
        }


class AnomalyKind(str, Enum):
    OUT_OF_ORDER_BID_DROPPED = 'OUT_OF_ORDER_BID_DROPPED'
    UNKNOWN_LOT_WON = 'UNKNOWN_LOT_WON'
    LOT_ABANDONED = 'LOT_ABANDONED'
    LOT_SUPERSEDED = 'LOT_SUPERSEDED'


@dataclass(frozen=True)
class Anomaly:
    """A feed inconsistency noticed while reducing events."""

    kind: AnomalyKind
    player_id: str
    timestamp: int
    detail: str = ''

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'player_id': self.player_id,
            'timestamp': self.timestamp,
            'detail': self.detail,
        }


@dataclass(frozen=True)
class AuctionState:
    """Complete reconstructed state of the live auction."""

    current_lot: Optional[Lot] = None
    recent_bids: Tuple[Bid, ...] = ()             # most recent first
    completed_lots: Tuple[CompletedLot, ...] = () # most recent first
    watermark: int = 0
    pending_bids: Tuple[Bid, ...] = ()            # bids awaiting their INIT, oldest first

    def is_active(self, now: float, stale_after: float) -> bool:
        """Active if a lot is open and its last activity is recent."""
        if self.current_lot is None:
            return False
        return now - self.current_lot.last_activity_at < stale_after

    def completed_player_ids(self) -> List[str]:
        return [lot.player_id for lot in self.completed_lots]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'current_lot': self.current_lot.to_dict() if self.current_lot else None,
            'recent_bids': [bid.to_dict() for bid in self.recent_bids],
            'completed_lots': [lot.to_dict() for lot in self.completed_lots],
            'watermark': self.watermark,
            'pending_bids': [bid.to_dict() for bid in self.pending_bids],
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


@dataclass(frozen=True)
class StateDiff:
    """
    Everything that changed while applying one batch of events.

    Observers (highlights, notifications) derive their effects from diffs
    rather than from full states, so a batch is observed exactly once and
    only after it has been completely applied.
    """

    previous: AuctionState
    current: AuctionState
    opened_lots: Tuple[Lot, ...] = ()
    closed_lot_ids: Tuple[str, ...] = ()
    new_bids: Tuple[Bid, ...] = ()                 # in application order
    new_completions: Tuple[CompletedLot, ...] = () # in application order
    anomalies: Tuple[Anomaly, ...] = ()
    events_applied: int = 0

    @property
    def is_empty(self) -> bool:
        return not (
            self.opened_lots or self.closed_lot_ids or self.new_bids
            or self.new_completions or self.anomalies
        )

    def to_dict(self) -> Dict[str, list]:
        return {
            'opened_lots': [lot.to_dict() for lot in self.opened_lots],
            'closed_lot_ids': list(self.closed_lot_ids),
            'new_bids': [bid.to_dict() for bid in self.new_bids],
            'new_completions': [lot.to_dict() for lot in self.new_completions],
            'anomalies': [anomaly.to_dict() for anomaly in self.anomalies],
        }
