"""
FastAPI server for live auction status.

Exposes the session's read-only state, highlights and feed health to the
hosting application's frontend, plus mode switching and a manual refresh.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .mode_manager import AuctionMode
from .session import LiveAuctionSession

logger = logging.getLogger(__name__)


# ===== Pydantic Models =====

class ModeRequest(BaseModel):
    """Request model for switching modes."""
    mode: str = Field(..., description="'live' or 'planning'")


class ModeResponse(BaseModel):
    mode: str = Field(..., description="Current mode")
    changed: bool = Field(False, description="Whether the request changed the mode")


class HealthResponse(BaseModel):
    breaker_state: str = Field(..., description="CLOSED, OPEN or HALF_OPEN")
    consecutive_failures: int
    next_allowed_attempt_at: Optional[float] = None
    last_success_at: Optional[float] = None
    degraded: bool = Field(..., description="Show the 'feed degraded' indicator")


class HighlightResponse(BaseModel):
    player_id: str
    classification: Optional[str] = None


class RefreshResponse(BaseModel):
    success: bool
    records_received: int
    events_applied: int
    malformed: int
    error: Optional[str] = None
    breaker_state: str


def create_app(session: LiveAuctionSession) -> FastAPI:
    """
    Build the status API around a live session.

    Args:
        session: Session whose state is served

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="Live Auction Tracker API",
        description="Live auction state, highlights and feed health",
        version="1.0.0"
    )
    router = APIRouter(prefix="/live-auction", tags=["Live Auction"])

    @router.get("/state")
    def get_state() -> Dict:
        """Current auction state snapshot."""
        state = session.get_state().to_dict()
        state['is_active'] = session.is_active()
        return state

    @router.get("/highlights", response_model=List[HighlightResponse])
    def get_highlights():
        """All players with an active highlight."""
        return [
            HighlightResponse(player_id=h.entity_id, classification=h.classification.value)
            for h in session.active_highlights()
        ]

    @router.get("/highlights/{player_id}", response_model=HighlightResponse)
    def get_highlight(player_id: str):
        """Highlight classification for one player (null if none)."""
        classification = session.get_highlight(player_id)
        return HighlightResponse(
            player_id=player_id,
            classification=classification.value if classification else None
        )

    @router.get("/health", response_model=HealthResponse)
    def get_health():
        """Feed health for the status indicator."""
        health = session.health()
        return HealthResponse(
            breaker_state=health.breaker_state.value,
            consecutive_failures=health.consecutive_failures,
            next_allowed_attempt_at=health.next_allowed_attempt_at,
            last_success_at=health.last_success_at,
            degraded=health.degraded
        )

    @router.get("/mode", response_model=ModeResponse)
    def get_mode():
        return ModeResponse(mode=session.mode.value)

    @router.post("/mode", response_model=ModeResponse)
    async def set_mode(request: ModeRequest):
        """
        Switch between planning and live mode.

        Raises:
            400 Bad Request: If the mode is unknown
        """
        try:
            changed = session.set_mode(request.mode)
        except ValueError:
            valid = ', '.join(m.value for m in AuctionMode)
            raise HTTPException(status_code=400, detail=f"Unknown mode {request.mode!r} (expected {valid})")

        return ModeResponse(mode=session.mode.value, changed=changed)

    @router.post("/refresh", response_model=RefreshResponse)
    async def refresh():
        """Fetch the feed now, also when the breaker is open."""
        try:
            outcome = await session.refresh()
        except Exception as e:
            logger.error(f"Manual refresh failed: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Refresh failed: {e}")

        return RefreshResponse(
            success=outcome.success,
            records_received=outcome.records_received,
            events_applied=outcome.events_applied,
            malformed=outcome.malformed,
            error=outcome.error,
            breaker_state=outcome.breaker_state.value
        )

    @router.get("/price-comparison")
    def get_price_comparison() -> Dict:
        """Prediction accuracy for completed auctions."""
        try:
            return session.price_summary()
        except Exception as e:
            logger.error(f"Failed to compute price comparison: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to compute price comparison: {e}")

    app.include_router(router)

    @app.get("/health")
    def health_check():
        """Simple health check endpoint."""
        return {
            "status": "ok",
            "service": "Live Auction Tracker API",
            "version": "1.0.0"
        }

    return app
