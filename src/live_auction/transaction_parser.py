"""
Parse raw feed records into typed auction events.

The feed encodes each auction transaction as "playerId|amount|". Parsing
is pure and stateless, so it is safe to call from anywhere.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from .. import config
from .auction_event import EventType, ParsedAuctionEvent, RawTransactionRecord
from .errors import MalformedPayload

logger = logging.getLogger(__name__)


def parse_record(
    record: RawTransactionRecord,
    separator: str = config.PAYLOAD_SEPARATOR
) -> ParsedAuctionEvent:
    """
    Convert one raw feed record into a ParsedAuctionEvent.

    Args:
        record: Record supplied by the feed
        separator: Field separator inside the payload

    Returns:
        ParsedAuctionEvent

    Raises:
        MalformedPayload: If the payload does not carry a player id and a
                          non-negative integer amount
    """
    payload = record.payload or ''
    parts = payload.split(separator)

    # "playerId|amount|" splits into three parts; the trailing one is empty
    if len(parts) < 2:
        raise MalformedPayload(
            f"Expected 'playerId{separator}amount{separator}', got {payload!r}",
            payload
        )

    player_id = parts[0].strip()
    amount_str = parts[1].strip()

    if not player_id:
        raise MalformedPayload(f"Missing player id in {payload!r}", payload)

    if not amount_str.isdecimal():
        raise MalformedPayload(
            f"Amount must be a non-negative integer in {payload!r}",
            payload
        )

    try:
        event_type = EventType(record.event_type)
    except ValueError:
        raise MalformedPayload(f"Unknown event type {record.event_type!r}", payload)

    return ParsedAuctionEvent(
        event_type=event_type,
        player_id=player_id,
        amount=int(amount_str),
        actor_id=record.actor_id,
        timestamp=record.timestamp
    )


def try_parse(record: RawTransactionRecord) -> Optional[ParsedAuctionEvent]:
    """Parse a record, logging and returning None if it is malformed."""
    try:
        return parse_record(record)
    except MalformedPayload as e:
        logger.warning(f"Skipping malformed {record.event_type} record at {record.timestamp}: {e}")
        return None


def parse_batch(
    records: Iterable[RawTransactionRecord]
) -> Tuple[List[ParsedAuctionEvent], int]:
    """
    Parse a batch of records, skipping the malformed ones.

    Returns:
        Tuple of (parsed events in input order, number of records skipped)
    """
    events = []
    skipped = 0
    for record in records:
        event = try_parse(record)
        if event is None:
            skipped += 1
            continue
        events.append(event)

    if skipped:
        logger.warning(f"Skipped {skipped} malformed record(s) of {skipped + len(events)}")

    return events, skipped
