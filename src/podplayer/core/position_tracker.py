"""
Position Persistence
====================

Periodically writes the resume position of the playing episode to the episode
store, and marks an episode complete once playback passes the completion
threshold.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from podplayer.core.interfaces import PlaybackState
from podplayer.utils.audio_utils import AudioUtils


class PersistResult(Enum):
    SKIPPED = "skipped"
    SAVED = "saved"
    COMPLETED = "completed"
    FAILED = "failed"


class PositionTracker:
    """
    Saves playback progress for the current item.

    Store failures are logged and reported as PersistResult.FAILED; they are
    never raised to the caller.
    """

    def __init__(self, state: PlaybackState, store, interval: float = 10.0,
                 completion_threshold: float = 0.95, logger: Optional[logging.Logger] = None):
        """
        Args:
            state: Playback state shared with the player service
            store: Episode store providing update_progress and mark_complete
            interval: Seconds between periodic saves
            completion_threshold: position/duration ratio treated as finished
            logger: Logger instance for debugging
        """
        self.state = state
        self.store = store
        self.interval = interval
        self.completion_threshold = completion_threshold
        self.logger = logger or logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None
        self._completed: Set[int] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """(Re)start periodic saving for the current item"""
        self.stop()
        item = self.state.current_item
        if item is None:
            return
        self._completed.discard(item.item_id)
        self._task = asyncio.create_task(self._run())
        self.logger.debug(f"Position tracking started for episode {item.item_id}")

    def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def persist(self) -> PersistResult:
        """Persist the position of the current item"""
        item = self.state.current_item
        if item is None:
            return PersistResult.SKIPPED
        return await self.persist_snapshot(item.item_id, self.state.position, self.state.duration)

    async def persist_snapshot(self, item_id: Optional[int], position: float, duration: float) -> PersistResult:
        """
        Persist an explicit snapshot, e.g. of the item being switched away from.

        Returns:
            PersistResult: What was written, if anything
        """
        if item_id is None or position is None or position <= 0 or item_id in self._completed:
            return PersistResult.SKIPPED

        try:
            if duration and duration > 0 and position / duration >= self.completion_threshold:
                await self.store.mark_complete(item_id)
                self._completed.add(item_id)
                self.logger.info(f"Episode {item_id} marked as complete at "
                                 f"{AudioUtils.format_duration(position)}/{AudioUtils.format_duration(duration)}")
                return PersistResult.COMPLETED

            await self.store.update_progress(item_id, int(position))
            return PersistResult.SAVED

        except Exception as e:
            self.logger.error(f"Failed to save position for episode {item_id}: {e}")
            return PersistResult.FAILED

    def mark_completed(self, item_id: int):
        """Record that item_id was completed elsewhere (end of file)"""
        self._completed.add(item_id)

    def reset_completed(self):
        """Forget completed ids at the end of an mpv session"""
        self._completed.clear()

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            result = await self.persist()
            if result == PersistResult.COMPLETED:
                self.logger.debug("Position tracking stopped after completion")
                self._task = None
                return
