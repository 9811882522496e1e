"""
Auction Notification Dispatcher

Turns state diffs into notification commands for the hosting
application's presentation layer (toasts and sounds).
Candidates are filtered by user preferences and deduplicated per polling
cycle before a sliding-window rate limit is applied. The window is
half-open, (now - rate_limit_window, now]. Candidates over the limit are
dropped, not queued.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple

from .. import config
from .auction_event import EventType, StateDiff
from .preferences import NotificationPreference
from .price_comparison import prediction_verdict
from .scheduler import Clock, system_clock

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = 'info'
    SUCCESS = 'success'
    WARNING = 'warning'


@dataclass(frozen=True)
class NotificationCommand:
    """Instruction for the presentation layer to show one notification."""

    title: str
    body: str
    severity: Severity
    sound_id: Optional[str] = None
    player_id: str = ''
    event_type: EventType = EventType.BID
    amount: int = 0

    def dedup_key(self) -> Tuple[str, int, str]:
        return (self.player_id, self.amount, self.event_type.value)

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'body': self.body,
            'severity': self.severity.value,
            'sound_id': self.sound_id,
            'player_id': self.player_id,
            'event_type': self.event_type.value,
            'amount': self.amount,
        }


def format_currency(amount: int) -> str:
    """Format an auction amount: $2.0M, $425k, $900."""
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:.0f}k"
    return f"${amount}"


class NotificationDispatcher:
    """Filters, deduplicates and rate-limits auction notifications."""

    def __init__(
        self,
        preferences_provider: Optional[Callable[[], NotificationPreference]] = None,
        watchlist_provider: Optional[Callable[[], Iterable[str]]] = None,
        clock: Clock = system_clock,
        sink: Optional[Callable[[NotificationCommand], None]] = None,
        player_lookup: Optional[Dict[str, str]] = None,
        team_lookup: Optional[Dict[str, str]] = None,
        predicted_prices: Optional[Dict[str, float]] = None,
        rate_limit_window: float = config.RATE_LIMIT_WINDOW
    ):
        """
        Initialize dispatcher.

        Args:
            preferences_provider: Returns the current preference snapshot
            watchlist_provider: Returns the current watchlist snapshot
            clock: Time source for the rate limiter
            sink: Optional callable receiving every admitted command
            player_lookup: player_id -> display name
            team_lookup: franchise id -> display name
            predicted_prices: player_id -> predicted winning bid
            rate_limit_window: Length of the sliding window in seconds
        """
        self.preferences_provider = preferences_provider or NotificationPreference
        self.watchlist_provider = watchlist_provider or (lambda: ())
        self.clock = clock
        self.sink = sink
        self.player_lookup = player_lookup or {}
        self.team_lookup = team_lookup or {}
        self.predicted_prices = predicted_prices or {}
        self.rate_limit_window = rate_limit_window

        self.enabled = True
        self._sent_at: Deque[float] = deque()
        self.dropped_count = 0

    def on_state_change(self, diff: StateDiff) -> List[NotificationCommand]:
        """
        Derive notification commands from one state diff.

        Returns:
            Admitted commands in event order (also handed to the sink)
        """
        if not self.enabled:
            return []

        # Snapshots for the whole cycle
        preferences = self.preferences_provider()
        watchlist = frozenset(self.watchlist_provider())

        if not preferences.enabled:
            return []

        candidates = self._unique(self._candidates(diff, preferences, watchlist))
        if not candidates:
            return []

        # Freshest candidates get the remaining budget first
        now = self.clock()
        admitted = []
        dropped = 0
        for command in reversed(candidates):
            if self._admit(now, preferences.max_per_minute):
                admitted.append(command)
            else:
                dropped += 1
        admitted.reverse()

        if dropped:
            self.dropped_count += dropped
            logger.warning(
                f"Notification rate limit reached ({preferences.max_per_minute}/min), "
                f"dropped {dropped} notification(s)"
            )

        if self.sink:
            for command in admitted:
                try:
                    self.sink(command)
                except Exception as e:
                    logger.error(f"Notification sink failed: {e}", exc_info=True)

        return admitted

    def reset_rate_limit(self) -> None:
        self._sent_at.clear()

    def _candidates(
        self,
        diff: StateDiff,
        preferences: NotificationPreference,
        watchlist: frozenset
    ) -> List[NotificationCommand]:
        candidates = []
        threshold = preferences.min_amount_threshold

        for lot in diff.opened_lots:
            is_target = lot.player_id in watchlist
            if (preferences.notify_all or is_target) and lot.opening_bid >= threshold:
                candidates.append(self._nomination(lot.player_id, lot.opening_bid, is_target, preferences))

        for bid in diff.new_bids:
            is_target = bid.player_id in watchlist
            if (preferences.notify_all or is_target) and bid.amount >= threshold:
                candidates.append(self._bid(bid.player_id, bid.bidder_id, bid.amount, is_target, preferences))

        for completion in diff.new_completions:
            is_target = completion.player_id in watchlist
            # Watchlisted completions ignore the amount threshold
            if is_target or (preferences.notify_all and completion.winning_bid >= threshold):
                candidates.append(self._completion(
                    completion.player_id, completion.winner_id, completion.winning_bid,
                    is_target, preferences
                ))

        return candidates

    @staticmethod
    def _unique(candidates: List[NotificationCommand]) -> List[NotificationCommand]:
        seen = set()
        unique = []
        for command in candidates:
            key = command.dedup_key()
            if key in seen:
                continue
            seen.add(key)
            unique.append(command)
        return unique

    def _admit(self, now: float, max_per_minute: int) -> bool:
        """
        Take one slot in the rate limit window, if one is free.

        The window is half-open, (now - rate_limit_window, now]: a send
        exactly rate_limit_window seconds ago has already left it.
        """
        cutoff = now - self.rate_limit_window
        while self._sent_at and self._sent_at[0] <= cutoff:
            self._sent_at.popleft()

        if len(self._sent_at) >= max_per_minute:
            return False

        self._sent_at.append(now)
        return True

    def _player_name(self, player_id: str) -> str:
        return self.player_lookup.get(player_id, f"Player {player_id}")

    def _team_name(self, team_id: str) -> str:
        return self.team_lookup.get(team_id, f"Team {team_id}")

    def _nomination(self, player_id, amount, is_target, preferences) -> NotificationCommand:
        return NotificationCommand(
            title="On the block",
            body=f"{self._player_name(player_id)} on auction block (starting at {format_currency(amount)})",
            severity=Severity.INFO,
            sound_id='nomination' if preferences.sound_enabled and is_target else None,
            player_id=player_id,
            event_type=EventType.INIT,
            amount=amount
        )

    def _bid(self, player_id, bidder_id, amount, is_target, preferences) -> NotificationCommand:
        return NotificationCommand(
            title="Target player bid" if is_target else "New bid",
            body=f"{self._team_name(bidder_id)} bid {format_currency(amount)} on {self._player_name(player_id)}",
            severity=Severity.WARNING if is_target else Severity.INFO,
            sound_id='bid' if preferences.sound_enabled and is_target else None,
            player_id=player_id,
            event_type=EventType.BID,
            amount=amount
        )

    def _completion(self, player_id, winner_id, amount, is_target, preferences) -> NotificationCommand:
        body = f"{self._team_name(winner_id)} signed {self._player_name(player_id)} for {format_currency(amount)}"

        predicted = self.predicted_prices.get(player_id)
        verdict = prediction_verdict(amount, predicted)
        if verdict == 'accurate':
            body += f" (predicted: {format_currency(int(predicted))} ✓)"
        elif verdict is not None:
            percent = abs((amount - predicted) / predicted * 100)
            body += f" ({percent:.0f}% {verdict} predicted)"

        return NotificationCommand(
            title="Auction won",
            body=body,
            severity=Severity.SUCCESS,
            sound_id='won' if preferences.sound_enabled and is_target else None,
            player_id=player_id,
            event_type=EventType.WON,
            amount=amount
        )
