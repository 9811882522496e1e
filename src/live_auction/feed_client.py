"""
MyFantasyLeague client for polling auction transactions.

Integrates with the MFL export endpoint:
- export?TYPE=transactions: full transaction log for the league year

The export has no incremental mode, so the `since` filter is applied
client-side (inclusive, since several events can share a second) and the
store's watermark discards anything already applied.
"""

import logging
from typing import Dict, List, Optional

import requests

from .. import config
from .auction_event import EventType, RawTransactionRecord
from .errors import FeedUnavailable

logger = logging.getLogger(__name__)


class MFLFeedClient:
    """Client for polling the MFL transaction feed."""

    def __init__(
        self,
        year: int,
        league_id: str = config.MFL_LEAGUE_ID,
        host: str = config.MFL_HOST,
        timeout: float = config.FETCH_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize MFL client.

        Args:
            year: League year of the auction
            league_id: MFL league identifier (used when no session id is given)
            host: MFL API host
            timeout: Per-request timeout in seconds
            session: Optional requests session (a pooled one is created if None)
        """
        self.year = year
        self.league_id = league_id
        self.host = host.rstrip('/')
        self.timeout = timeout

        # Session for connection pooling
        self.session = session or requests.Session()
        self.session.headers['User-Agent'] = config.MFL_USER_AGENT

    def fetch_transactions(
        self,
        session_id: Optional[str] = None,
        since: int = 0
    ) -> List[RawTransactionRecord]:
        """
        Fetch auction transactions at or after `since`.

        Args:
            session_id: League whose auction is tracked (defaults to league_id)
            since: Only records with timestamp >= since are returned

        Returns:
            Auction records in feed order

        Raises:
            FeedUnavailable: On network failure, HTTP error or undecodable body
        """
        league_id = session_id or self.league_id
        endpoint = f"{self.host}/{self.year}/export"
        params = {'TYPE': 'transactions', 'L': league_id, 'JSON': 1}

        try:
            logger.debug(f"GET {endpoint} (league {league_id}, since {since})")
            response = self.session.get(endpoint, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Failed to fetch transactions: {e}")
            raise FeedUnavailable(f"MFL request failed: {e}") from e
        except ValueError as e:
            logger.error(f"MFL returned a body that is not JSON: {e}")
            raise FeedUnavailable(f"Undecodable MFL response: {e}") from e

        records = self.normalize_to_records(data, since=since)
        logger.debug(f"Fetched {len(records)} auction record(s) since {since}")
        return records

    def normalize_to_records(self, raw_data: Dict, since: int = 0) -> List[RawTransactionRecord]:
        """
        Convert an MFL transactions export into auction records.

        Args:
            raw_data: Parsed JSON from the export endpoint
            since: Only records with timestamp >= since are kept

        Returns:
            List of RawTransactionRecords in feed order
        """
        transactions = (raw_data or {}).get('transactions') or {}
        entries = transactions.get('transaction', []) if isinstance(transactions, dict) else []

        # A single transaction is returned as an object, not a list
        if isinstance(entries, dict):
            entries = [entries]

        records = []
        for entry in entries:
            event_type = config.AUCTION_TRANSACTION_TYPES.get(entry.get('type'))
            if event_type is None:
                continue

            try:
                record = RawTransactionRecord(
                    event_type=EventType(event_type),
                    actor_id=str(entry.get('franchise', '')),
                    payload=entry['transaction'],
                    timestamp=int(entry['timestamp'])
                )
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable auction transaction: {e}\nData: {entry}")
                continue

            if record.timestamp >= since:
                records.append(record)

        return records

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
