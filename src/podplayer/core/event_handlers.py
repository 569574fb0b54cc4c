"""
Event Handlers for the Podcast Player
Turns mpv property changes and playback events into player state updates
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from podplayer.core.interfaces import PlaybackState
from podplayer.core.notifications import NotificationHub
from podplayer.core.position_tracker import PositionTracker
from podplayer.core.queue_manager import QueueManager
from podplayer.utils.constants import OBSERVED_PROPERTIES
from podplayer.utils.ipc_protocol import EndFileReason, MpvEvent, Notification, end_file_reason

logger = logging.getLogger(__name__)


class PlayerEventHandlers:
    """
    Handles mpv events for the player service.

    Track changes and end of queue reported by mpv are applied to the queue
    and playback state unless a compound operation has suppressed them while
    it rearranges the native playlist itself.
    """

    def __init__(self, transport, queue: QueueManager, state: PlaybackState,
                 tracker: PositionTracker, store, notifier: NotificationHub):
        self.transport = transport
        self.queue = queue
        self.state = state
        self.tracker = tracker
        self.store = store
        self.notifier = notifier

        self._observers: Dict[str, int] = {}
        self._next_observer_id = 1
        self._suppress_depth = 0

        self._property_handlers = {
            'time-pos': self._on_time_pos,
            'duration': self._on_duration,
            'pause': self._on_pause,
            'volume': self._on_volume,
            'playlist-pos': self._on_playlist_pos,
            'idle-active': self._on_idle_active,
        }

    def register(self):
        """Attach the handlers to the transport"""
        self.transport.register_event_handler(MpvEvent.PROPERTY_CHANGE, self.on_property_change)
        self.transport.register_event_handler(MpvEvent.END_FILE, self.on_end_file)

    # Property observation

    @property
    def observers(self) -> Dict[str, int]:
        return dict(self._observers)

    async def observe(self, name: str) -> int:
        """
        Observe a property once; repeated calls return the existing id.

        Returns:
            int: The observer id
        """
        if name in self._observers:
            return self._observers[name]

        observer_id = self._next_observer_id
        self._next_observer_id += 1
        await self.transport.observe_property(observer_id, name)
        self._observers[name] = observer_id
        logger.debug(f"Observing {name} (id {observer_id})")
        return observer_id

    async def observe_all(self):
        for name in OBSERVED_PROPERTIES:
            await self.observe(name)

    def reset_observers(self):
        """Forget registrations; a new mpv connection has none"""
        self._observers.clear()

    # Suppression

    @property
    def is_suppressed(self) -> bool:
        return self._suppress_depth > 0

    @contextmanager
    def suppressed(self):
        """Ignore mpv-reported track changes and idle transitions in this block"""
        self._suppress_depth += 1
        try:
            yield
        finally:
            self._suppress_depth -= 1

    # Event handlers

    async def on_property_change(self, message: Dict[str, Any]):
        handler = self._property_handlers.get(message.get('name'))
        if handler:
            await handler(message.get('data'))

    async def on_end_file(self, message: Dict[str, Any]):
        """
        Handle the end of a file.

        Args:
            message: end-file event carrying reason and, on failure, file_error
        """
        reason = end_file_reason(message)
        item = self.state.current_item

        if reason == EndFileReason.EOF:
            if item is None:
                return
            logger.info(f"Finished episode {item.item_id}: {item.title}")
            self.tracker.stop()
            try:
                await self.store.mark_complete(item.item_id)
            except Exception as e:
                logger.error(f"Failed to mark episode {item.item_id} as completed: {e}")
            self.tracker.mark_completed(item.item_id)
            self.notifier.notify(Notification.EPISODE_COMPLETED, {'episode_id': item.item_id})

        elif reason == EndFileReason.ERROR:
            error = message.get('file_error', 'unknown error')
            logger.error(f"mpv failed to play {item.title if item else 'file'}: {error}")
            self.notifier.notify(Notification.ERROR, {
                'error': error,
                'episode_id': item.item_id if item else None
            })

        else:
            logger.debug(f"end-file ({reason.value}) left to the player service")

    async def _on_time_pos(self, data: Optional[float]):
        if data is None or self.state.current_item is None:
            return
        self.state.update_position(data)
        self.notifier.notify(Notification.TIME_UPDATE, {
            'position': self.state.position,
            'duration': self.state.duration
        })

    async def _on_duration(self, data: Optional[float]):
        if data is None or self.state.current_item is None:
            return
        self.state.update_duration(data)

    async def _on_pause(self, data: Optional[bool]):
        if data is None or self.state.current_item is None:
            return
        self.state.set_paused(bool(data))
        self.notifier.notify(Notification.STATUS, self.state.to_dict())

    async def _on_volume(self, data: Optional[float]):
        if data is None:
            return
        self.state.volume = float(data)
        self.notifier.notify(Notification.VOLUME_CHANGE, {'volume': self.state.volume})

    async def _on_playlist_pos(self, data: Optional[int]):
        if self.is_suppressed or data is None or data < 0 or data == self.queue.current_index:
            return
        if data >= len(self.queue):
            logger.warning(f"mpv reported playlist-pos {data} beyond queue length {len(self.queue)}")
            return

        previous = self.state.current_item
        if previous is not None:
            await self.tracker.persist_snapshot(previous.item_id, self.state.position, self.state.duration)

        was_paused = self.state.is_paused
        self.queue.set_current(data)
        item = self.queue.current_item
        self.state.begin(item)
        self.state.set_paused(was_paused)
        self.tracker.start()

        logger.info(f"Track changed to {data}: {item.title}")
        self.notifier.notify(Notification.TRACK_CHANGED, {'episode': item.to_dict(), 'index': data})
        self.notifier.notify(Notification.QUEUE_UPDATE, self.queue.get_queue_info())

    async def _on_idle_active(self, data: Optional[bool]):
        if self.is_suppressed or not data or self.state.current_item is None:
            return

        logger.info("Queue finished")
        await self.tracker.persist()
        self.tracker.stop()
        self.state.clear()
        self.queue.set_current(-1)
        self.notifier.notify(Notification.STATUS, self.state.to_dict())
        self.notifier.notify(Notification.QUEUE_FINISHED)
