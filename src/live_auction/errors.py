"""
Error taxonomy for live auction tracking.

None of these cross the public API of the session: parsing and reduction
errors are contained where they happen, and feed failures surface only
through the poller's health signal.
"""


class LiveAuctionError(Exception):
    """Base class for live auction errors."""


class MalformedPayload(LiveAuctionError, ValueError):
    """A single feed record could not be parsed. The record is skipped."""

    def __init__(self, message: str, payload: str = ''):
        super().__init__(message)
        self.payload = payload


class FeedUnavailable(LiveAuctionError):
    """The external feed could not be reached or returned garbage."""


class CircuitOpen(LiveAuctionError):
    """Scheduled polling is paused after repeated feed failures."""


class OutOfOrderEvent(LiveAuctionError):
    """A bid referenced a lot that was never opened.

    Raised only by a strict store, after the batch is already applied;
    diff is the published StateDiff for that batch.
    """

    def __init__(self, message: str, diff=None):
        super().__init__(message)
        self.diff = diff
