"""
Live Mode Manager

Manages the transition between Planning Mode and Live Mode. Live mode
runs the poller and lets highlights and notifications through; planning
mode stops polling, clears live highlights and mutes notifications. The
mode itself is persisted by the hosting application so a reload comes
back in the same mode.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .. import config

logger = logging.getLogger(__name__)


class AuctionMode(str, Enum):
    PLANNING = 'planning'
    LIVE = 'live'


class InMemoryModeStore:
    """Mode persistence that lives as long as the process."""

    def __init__(self, mode: Optional[str] = None):
        self._mode = mode

    def load_mode(self) -> Optional[str]:
        return self._mode

    def save_mode(self, mode: str) -> None:
        self._mode = mode


class JsonModeStore:
    """Persist the mode to a small JSON file."""

    def __init__(self, filepath: Path = Path(config.MODE_STATE_FILE)):
        self.filepath = Path(filepath)

    def load_mode(self) -> Optional[str]:
        if not self.filepath.exists():
            return None

        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                return json.load(f).get('mode')
        except (json.JSONDecodeError, IOError, AttributeError) as e:
            logger.warning(f"Failed to read saved mode from {self.filepath}: {e}")
            return None

    def save_mode(self, mode: str) -> None:
        self.filepath.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: temp file + rename
        temp_path = self.filepath.with_suffix('.tmp')
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump({'mode': mode, 'saved_at': datetime.now().isoformat()}, f)

        temp_path.replace(self.filepath)
        logger.debug(f"Saved mode '{mode}' → {self.filepath}")


class ModeManager:
    """Two-state machine switching between planning and live tracking."""

    def __init__(self, poller, highlight_tracker, dispatcher, mode_store=None):
        """
        Initialize in planning mode.

        Args:
            poller: AuctionPoller started and stopped with live mode
            highlight_tracker: HighlightTracker enabled only while live
            dispatcher: NotificationDispatcher muted outside live mode
            mode_store: Object with load_mode()/save_mode(mode)
        """
        self.poller = poller
        self.highlight_tracker = highlight_tracker
        self.dispatcher = dispatcher
        self.mode_store = mode_store or InMemoryModeStore()

        self._mode = AuctionMode.PLANNING
        self._listeners: List[Callable[[AuctionMode], None]] = []

        self.highlight_tracker.enabled = False
        self.dispatcher.enabled = False

    @property
    def mode(self) -> AuctionMode:
        return self._mode

    def on_mode_change(self, listener: Callable[[AuctionMode], None]) -> None:
        self._listeners.append(listener)

    def restore(self) -> AuctionMode:
        """
        Restore the last persisted mode on cold start.

        A saved live mode starts the poller immediately.
        """
        saved = self.mode_store.load_mode()
        try:
            mode = AuctionMode(saved) if saved else AuctionMode.PLANNING
        except ValueError:
            logger.warning(f"Ignoring unknown saved mode {saved!r}, starting in planning mode")
            mode = AuctionMode.PLANNING

        logger.info(f"Restoring {mode.value} mode")
        if mode == AuctionMode.LIVE:
            self._enter_live()
        return self._mode

    def set_mode(self, mode) -> bool:
        """
        Switch modes.

        Args:
            mode: AuctionMode or its string value

        Returns:
            True if the mode changed

        Raises:
            ValueError: If mode is not a known mode
        """
        mode = AuctionMode(mode)
        if mode == self._mode:
            return False

        logger.info(f"Switching from {self._mode.value} to {mode.value} mode")
        if mode == AuctionMode.LIVE:
            self._enter_live()
        else:
            self._enter_planning()

        self.mode_store.save_mode(mode.value)
        return True

    def _enter_live(self) -> None:
        self._mode = AuctionMode.LIVE
        self.highlight_tracker.enabled = True
        self.dispatcher.enabled = True
        # A lot opened during planning has no diff left to highlight it
        self.highlight_tracker.sync(self.poller.store.get_state())
        self.highlight_tracker.start_sweeping()
        self.poller.start()
        self._notify()

    def _enter_planning(self) -> None:
        self._mode = AuctionMode.PLANNING
        self.poller.stop()
        self.highlight_tracker.stop_sweeping()
        self.highlight_tracker.clear()
        self.highlight_tracker.enabled = False
        self.dispatcher.enabled = False
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._mode)
            except Exception as e:
                logger.error(f"Mode listener failed: {e}", exc_info=True)
