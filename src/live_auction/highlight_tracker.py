"""
Player Highlight Tracker

Derives short-lived UI classifications for players in the auction table
from state diffs: the player on the block, players who just received a
bid, and players who just sold. Watchlisted players fall back to a
permanent TARGET highlight.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .. import config
from .auction_event import AuctionState, StateDiff
from .scheduler import AsyncioScheduler, Clock, PeriodicTimer, system_clock

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    ON_BLOCK = 'ON_BLOCK'
    RECENT_BID = 'RECENT_BID'
    SOLD = 'SOLD'
    TARGET = 'TARGET'


# Highest priority first
PRIORITY = (
    Classification.ON_BLOCK,
    Classification.RECENT_BID,
    Classification.SOLD,
    Classification.TARGET,
)

# CSS class for each classification in the auction table
ROW_CLASSES = {
    Classification.ON_BLOCK: 'player-row-current-auction',
    Classification.RECENT_BID: 'player-row-recent-bid',
    Classification.SOLD: 'player-row-sold',
    Classification.TARGET: 'player-row-target',
}


@dataclass(frozen=True)
class HighlightEntry:
    entity_id: str
    classification: Classification
    expires_at: Optional[float]   # None: lasts until the lot closes

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            'entity_id': self.entity_id,
            'classification': self.classification.value,
            'expires_at': self.expires_at,
        }


class HighlightTracker:
    """Tracks which players should be highlighted in the UI."""

    def __init__(
        self,
        watchlist_provider: Optional[Callable[[], Iterable[str]]] = None,
        clock: Clock = system_clock,
        scheduler=None,
        recent_bid_ttl: float = config.RECENT_BID_TTL,
        sold_ttl: float = config.SOLD_TTL,
        sweep_interval: float = config.HIGHLIGHT_SWEEP_INTERVAL
    ):
        self.watchlist_provider = watchlist_provider or (lambda: ())
        self.clock = clock
        self.recent_bid_ttl = recent_bid_ttl
        self.sold_ttl = sold_ttl

        self.enabled = True
        self._entries: Dict[str, Dict[Classification, HighlightEntry]] = {}
        self._sweeper = PeriodicTimer(scheduler or AsyncioScheduler(), sweep_interval, self.sweep)

    def on_state_change(self, diff: StateDiff) -> None:
        """Update highlights from a state diff."""
        if not self.enabled:
            return

        now = self.clock()
        self._sync_on_block(diff.current)

        for bid in diff.new_bids:
            self._set(bid.player_id, Classification.RECENT_BID, now + self.recent_bid_ttl)

        for completion in diff.new_completions:
            self._set(completion.player_id, Classification.SOLD, now + self.sold_ttl)

    def sync(self, state: AuctionState) -> None:
        """
        Put the open lot of an existing state on the block.

        Used when highlighting is switched on after the state was already
        reduced, e.g. a lot opened while in planning mode. Only ON_BLOCK is
        derived; bid and sale highlights need the diff that produced them.
        """
        if not self.enabled:
            return
        self._sync_on_block(state)

    def _sync_on_block(self, state: AuctionState) -> None:
        current = state.current_lot

        # Only the open lot stays on the block
        for entity_id, entries in list(self._entries.items()):
            if Classification.ON_BLOCK in entries and (
                current is None or current.player_id != entity_id
            ):
                self._remove(entity_id, Classification.ON_BLOCK)

        if current is not None:
            self._set(current.player_id, Classification.ON_BLOCK, None)

    def classify(self, entity_id: str) -> Optional[Classification]:
        """
        Highest-priority live classification for a player.

        Expired entries are ignored even before the sweep removes them.
        """
        now = self.clock()
        entries = self._entries.get(entity_id, {})
        for classification in PRIORITY:
            entry = entries.get(classification)
            if entry is not None and not entry.is_expired(now):
                return classification

        if entity_id in set(self.watchlist_provider()):
            return Classification.TARGET
        return None

    def get_row_class(self, entity_id: str) -> str:
        classification = self.classify(entity_id)
        return ROW_CLASSES[classification] if classification else ''

    def active_highlights(self) -> List[HighlightEntry]:
        """All unexpired live highlights plus watchlist targets."""
        highlights = []
        seen = set()
        for entity_id in self._entries:
            classification = self.classify(entity_id)
            if classification is None:
                continue
            seen.add(entity_id)
            entry = self._entries[entity_id].get(classification)
            highlights.append(entry or HighlightEntry(entity_id, classification, None))

        for entity_id in self.watchlist_provider():
            if entity_id not in seen:
                highlights.append(HighlightEntry(entity_id, Classification.TARGET, None))

        return sorted(highlights, key=lambda h: (PRIORITY.index(h.classification), h.entity_id))

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self.clock()
        removed = 0
        for entity_id, entries in list(self._entries.items()):
            for classification, entry in list(entries.items()):
                if entry.is_expired(now):
                    self._remove(entity_id, classification)
                    removed += 1

        if removed:
            logger.debug(f"Swept {removed} expired highlight(s)")
        return removed

    def clear(self) -> None:
        """Drop all live highlights. Watchlist targets are unaffected."""
        self._entries.clear()
        logger.debug("Cleared live highlights")

    def start_sweeping(self) -> None:
        self._sweeper.start()

    def stop_sweeping(self) -> None:
        self._sweeper.cancel()

    def _set(self, entity_id: str, classification: Classification, expires_at: Optional[float]) -> None:
        self._entries.setdefault(entity_id, {})[classification] = HighlightEntry(
            entity_id=entity_id,
            classification=classification,
            expires_at=expires_at
        )

    def _remove(self, entity_id: str, classification: Classification) -> None:
        entries = self._entries.get(entity_id)
        if not entries:
            return
        entries.pop(classification, None)
        if not entries:
            del self._entries[entity_id]
