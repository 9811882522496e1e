"""
Compare completed auctions against predicted prices.

Predicted prices come from the hosting application's pricing model; this
module only measures how close the winning bids landed.
"""

import logging
from typing import Dict, Iterable, Optional

import pandas as pd

from .. import config
from .auction_event import CompletedLot

logger = logging.getLogger(__name__)

COMPARISON_COLUMNS = [
    'player_id', 'winner_id', 'predicted', 'actual', 'diff_pct', 'accuracy', 'verdict'
]


def prediction_verdict(
    actual: int,
    predicted: Optional[float],
    tolerance: float = config.PREDICTION_ACCURACY_TOLERANCE
) -> Optional[str]:
    """
    Classify a winning bid against its prediction.

    Returns:
        'accurate', 'over' or 'under', or None without a usable prediction
    """
    if not predicted or predicted <= 0:
        return None

    difference = actual - predicted
    if abs(difference) <= predicted * tolerance:
        return 'accurate'
    return 'over' if difference > 0 else 'under'


def price_comparison_frame(
    completed_lots: Iterable[CompletedLot],
    predicted_prices: Dict[str, float],
    tolerance: float = config.PREDICTION_ACCURACY_TOLERANCE
) -> pd.DataFrame:
    """
    Build one row per completed lot with prediction accuracy.

    Args:
        completed_lots: Completed lots, most recent first
        predicted_prices: player_id -> predicted winning bid
        tolerance: Fraction of the prediction that still counts as accurate

    Returns:
        DataFrame with COMPARISON_COLUMNS; predicted/diff/accuracy are NaN
        for lots without a prediction
    """
    rows = []
    for lot in completed_lots:
        predicted = predicted_prices.get(lot.player_id)
        verdict = prediction_verdict(lot.winning_bid, predicted, tolerance)
        if verdict is None:
            predicted = None
        rows.append({
            'player_id': lot.player_id,
            'winner_id': lot.winner_id,
            'predicted': predicted,
            'actual': lot.winning_bid,
            'verdict': verdict,
        })

    df = pd.DataFrame(rows, columns=['player_id', 'winner_id', 'predicted', 'actual', 'verdict'])
    df = df.astype({'predicted': 'float64', 'actual': 'int64'})
    df['diff_pct'] = (df['actual'] - df['predicted']) / df['predicted'] * 100
    df['accuracy'] = 100 - df['diff_pct'].abs()

    return df[COMPARISON_COLUMNS]


def summarize_price_accuracy(
    completed_lots: Iterable[CompletedLot],
    predicted_prices: Dict[str, float],
    tolerance: float = config.PREDICTION_ACCURACY_TOLERANCE
) -> dict:
    """
    Dashboard numbers for the live panel.

    Returns:
        Dict with total_auctions, with_predictions, avg_accuracy (None if no
        predictions), within_tolerance
    """
    df = price_comparison_frame(completed_lots, predicted_prices, tolerance)
    predicted = df[df['verdict'].notna()]

    summary = {
        'total_auctions': int(len(df)),
        'with_predictions': int(len(predicted)),
        'avg_accuracy': round(float(predicted['accuracy'].mean()), 1) if len(predicted) else None,
        'within_tolerance': int((predicted['verdict'] == 'accurate').sum()),
    }

    logger.debug(
        f"Price comparison: {summary['with_predictions']}/{summary['total_auctions']} "
        f"with predictions, avg accuracy {summary['avg_accuracy']}"
    )
    return summary
