"""
Live auction tracking subsystem.

This package polls the league's transaction feed during a live auction,
reconstructs the current auction state, and turns state changes into
rate-limited notifications and time-bounded UI highlights.
"""

from .auction_event import (
    AuctionState,
    Bid,
    CompletedLot,
    EventType,
    Lot,
    ParsedAuctionEvent,
    RawTransactionRecord,
    StateDiff,
)
from .errors import CircuitOpen, FeedUnavailable, MalformedPayload, OutOfOrderEvent
from .transaction_parser import parse_record
from .state_store import AuctionStateStore
from .feed_client import MFLFeedClient
from .poller import AuctionPoller, BreakerState, FetchOutcome, PollerHealth
from .highlight_tracker import Classification, HighlightTracker
from .preferences import NotificationPreference, NotifyScope
from .notification_dispatcher import NotificationCommand, NotificationDispatcher
from .mode_manager import AuctionMode, JsonModeStore, ModeManager
from .session import LiveAuctionSession

__all__ = [
    'AuctionState',
    'Bid',
    'CompletedLot',
    'EventType',
    'Lot',
    'ParsedAuctionEvent',
    'RawTransactionRecord',
    'StateDiff',
    'CircuitOpen',
    'FeedUnavailable',
    'MalformedPayload',
    'OutOfOrderEvent',
    'parse_record',
    'AuctionStateStore',
    'MFLFeedClient',
    'AuctionPoller',
    'BreakerState',
    'FetchOutcome',
    'PollerHealth',
    'Classification',
    'HighlightTracker',
    'NotificationPreference',
    'NotifyScope',
    'NotificationCommand',
    'NotificationDispatcher',
    'AuctionMode',
    'JsonModeStore',
    'ModeManager',
    'LiveAuctionSession',
]
