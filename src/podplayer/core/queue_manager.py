"""
Queue Management for the Podcast Player
Keeps an ordered list of episodes in step with mpv's native playlist
"""

import asyncio
import logging
import math
import random
from typing import Any, Dict, List, Optional

from podplayer.core.interfaces import QueueItem
from podplayer.utils.constants import MESSAGES, SORT_DIRECTIONS, SORT_KEY_ALIASES
from podplayer.utils.exceptions import (
    CannotRemovePlaying, DuplicateItem, InvalidIndex, InvalidSortSpec, PlayerControlError, RemoteCommandError
)
from podplayer.utils.ipc_protocol import (
    LoadMode, SeekMode, create_loadfile_command, create_playlist_clear_command,
    create_playlist_move_command, create_playlist_next_command, create_playlist_prev_command,
    create_playlist_remove_command, create_seek_command, create_set_property_command
)

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Ordered queue of episodes mirrored onto the mpv playlist.

    Every mutation issues the native command first and only then updates the
    local list, so a rejected command leaves the model untouched. At the end
    of each call the local order equals the native playlist order.
    """

    def __init__(self, transport, rng: Optional[random.Random] = None, settle_delay: float = 0.3):
        self.transport = transport
        self.rng = rng or random.Random()
        self.settle_delay = settle_delay

        # Queue state
        self._items: List[QueueItem] = []
        self.current_index: int = -1

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> List[QueueItem]:
        return list(self._items)

    @property
    def current_item(self) -> Optional[QueueItem]:
        if 0 <= self.current_index < len(self._items):
            return self._items[self.current_index]
        return None

    def index_of(self, item_id: int) -> int:
        """Return the index of item_id, or -1 when it is not queued"""
        for index, item in enumerate(self._items):
            if item.item_id == item_id:
                return index
        return -1

    def __contains__(self, item_id: int) -> bool:
        return self.index_of(item_id) != -1

    def item_at(self, index: int) -> QueueItem:
        self._check_index(index)
        return self._items[index]

    async def append(self, item: QueueItem, auto_play: bool = False) -> int:
        """
        Add an item to the end of the queue.

        Args:
            item: Item to add
            auto_play: Start playing it right away when the queue was empty

        Returns:
            int: Index of the new item
        """
        if item.item_id in self:
            raise DuplicateItem()

        start = auto_play and not self._items
        mode = LoadMode.APPEND_PLAY if start else LoadMode.APPEND
        await self.transport.send_request(create_loadfile_command(item.media.file_path, mode))

        self._items.append(item)
        if start:
            self.current_index = 0
        logger.info(f"[QUEUE] Added: {item.title} | Queue size now: {len(self._items)}")
        return len(self._items) - 1

    async def replace(self, item: QueueItem):
        """Make item the only entry and start playing it"""
        await self.transport.send_request(create_loadfile_command(item.media.file_path, LoadMode.REPLACE))
        self._items = [item]
        self.current_index = 0
        logger.info(f"[QUEUE] Replaced queue with: {item.title}")

    async def insert(self, index: int, item: QueueItem) -> int:
        """Insert an item at index (0..len), shifting later items back"""
        if item.item_id in self:
            raise DuplicateItem()
        if not 0 <= index <= len(self._items):
            raise InvalidIndex(MESSAGES['INVALID_INDEX'])

        tail = len(self._items)
        await self.transport.send_request(create_loadfile_command(item.media.file_path, LoadMode.APPEND))
        if index != tail:
            await self.transport.send_request(create_playlist_move_command(tail, index))

        self._items.insert(index, item)
        if self.current_index >= 0 and index <= self.current_index:
            self.current_index += 1
        logger.info(f"[QUEUE] Inserted at {index}: {item.title}")
        return index

    async def remove(self, index: int) -> QueueItem:
        """
        Remove the item at index.

        Raises:
            InvalidIndex: If index is out of range
            CannotRemovePlaying: If index is the current item
        """
        self._check_index(index)
        if index == self.current_index:
            raise CannotRemovePlaying()

        await self.transport.send_request(create_playlist_remove_command(index))

        removed = self._items.pop(index)
        if index < self.current_index:
            self.current_index -= 1
        logger.info(f"[QUEUE] Removed: {removed.title} | Queue size now: {len(self._items)}")
        return removed

    async def move(self, from_index: int, to_index: int):
        """Move one item; the current index follows the playing item"""
        self._check_index(from_index)
        self._check_index(to_index)
        if from_index == to_index:
            return

        await self.transport.send_request(create_playlist_move_command(from_index, to_index))

        item = self._items.pop(from_index)
        self._items.insert(to_index, item)

        current = self.current_index
        if from_index == current:
            self.current_index = to_index
        elif from_index < current <= to_index:
            self.current_index -= 1
        elif to_index <= current < from_index:
            self.current_index += 1
        logger.info(f"[QUEUE] Moved {item.title} from {from_index} to {to_index}")

    def set_current(self, index: int):
        """Point current_index at index (-1 clears it) without touching mpv"""
        if index != -1:
            self._check_index(index)
        self.current_index = index

    async def jump_native(self, index: int):
        """Make mpv play the entry at index"""
        self._check_index(index)
        await self.transport.send_request(create_set_property_command('playlist-pos', index))
        self.current_index = index

    def check_step(self, direction: int) -> int:
        """
        Validate a move of one entry forward (+1) or back (-1).

        Returns:
            int: The index the step would land on
        """
        if not self._items:
            raise InvalidIndex(MESSAGES['QUEUE_EMPTY'])

        target = self.current_index + direction
        if target >= len(self._items):
            raise InvalidIndex(MESSAGES['QUEUE_END'])
        if target < 0:
            raise InvalidIndex(MESSAGES['QUEUE_START'])
        return target

    async def step_native(self, direction: int) -> int:
        """
        Advance (+1) or go back (-1) one entry.

        Returns:
            int: The new current index
        """
        target = self.check_step(direction)

        if self.current_index < 0:
            await self.jump_native(target)
            return target

        command = create_playlist_next_command() if direction > 0 else create_playlist_prev_command()
        await self.transport.send_request(command)
        self.current_index = target
        return target

    async def shuffle(self, position: float = 0.0, paused: bool = False):
        """
        Randomize the order. A playing item is kept current and moved to the
        front; the rest are shuffled with Fisher-Yates.
        """
        if len(self._items) <= 1:
            logger.debug("[QUEUE] Queue too short to shuffle")
            return

        current = self.current_item
        rest = [item for item in self._items if item is not current]
        for i in range(len(rest) - 1, 0, -1):
            j = self.rng.randint(0, i)
            rest[i], rest[j] = rest[j], rest[i]

        if current is not None:
            await self._reorder([current] + rest, 0, position, paused)
        else:
            await self._reorder(rest, -1, position, paused)
        logger.info(f"[QUEUE] Shuffled {len(self._items)} items")

    async def sort(self, key: str = 'publish_time', direction: str = 'asc',
                   position: float = 0.0, paused: bool = False):
        """
        Sort by publish_time or acquisition_time; missing timestamps count as
        the oldest. The sort is stable and the current item keeps playing.
        """
        field = SORT_KEY_ALIASES.get(key)
        if field is None:
            raise InvalidSortSpec(f"Invalid sort field: {key}. Must be one of: publish_time, acquisition_time")
        direction = str(direction).lower()
        if direction not in SORT_DIRECTIONS:
            raise InvalidSortSpec(f"Invalid sort order: {direction}. Must be one of: {', '.join(SORT_DIRECTIONS)}")

        if len(self._items) <= 1:
            logger.debug("[QUEUE] Queue too short to sort")
            return

        def sort_value(item: QueueItem) -> float:
            if field == 'publish_time':
                value = item.metadata.published_at
            else:
                value = item.metadata.acquired_at
            return -math.inf if value is None else value

        current = self.current_item
        items = sorted(self._items, key=sort_value, reverse=(direction == 'desc'))
        index = items.index(current) if current is not None else -1
        await self._reorder(items, index, position, paused)
        logger.info(f"[QUEUE] Sorted by {field} {direction}")

    async def clear_native(self):
        """
        Empty mpv's playlist. playlist-clear keeps the playing entry, so it is
        removed separately.
        """
        await self.transport.send_request(create_playlist_clear_command())
        if self.current_index >= 0:
            try:
                await self.transport.send_request(create_playlist_remove_command(0))
            except RemoteCommandError as e:
                # Nothing was left after stop
                logger.debug(f"[QUEUE] No surviving playlist entry to remove: {e}")

    def reset(self):
        """Empty the local queue"""
        self._items.clear()
        self.current_index = -1
        logger.info("[QUEUE] Queue cleared")

    async def rebuild(self, position: float = 0.0, paused: bool = False):
        """
        Replace mpv's playlist with the local order and restore playback of
        the current item at position.
        """
        await self.clear_native()
        for item in self._items:
            await self.transport.send_request(create_loadfile_command(item.media.file_path, LoadMode.APPEND))

        if self.current_index < 0:
            logger.debug(f"[QUEUE] Rebuilt native playlist with {len(self._items)} items")
            return

        await self.transport.send_request(create_set_property_command('playlist-pos', self.current_index))
        await self._settle()
        if position > 0:
            await self.transport.send_request(create_seek_command(position, SeekMode.ABSOLUTE))
        await self.transport.send_request(create_set_property_command('pause', bool(paused)))
        logger.debug(f"[QUEUE] Rebuilt native playlist with {len(self._items)} items, "
                     f"resumed index {self.current_index} at {position:.1f}s")

    async def _reorder(self, items: List[QueueItem], current_index: int, position: float, paused: bool):
        """Adopt a new order and rebuild; on failure the previous order is rebuilt"""
        previous = (self._items, self.current_index)
        self._items, self.current_index = items, current_index
        try:
            await self.rebuild(position=position, paused=paused)
        except PlayerControlError as e:
            logger.error(f"[QUEUE] Rebuild failed, restoring previous order: {e}")
            self._items, self.current_index = previous
            await self.rebuild(position=position, paused=paused)
            raise

    def get_queue_info(self) -> Dict[str, Any]:
        """
        Get queue information.

        Returns:
            Dict: Queue items and the current index
        """
        return {
            'items': [
                {
                    'index': index,
                    'episode_id': item.item_id,
                    'title': item.title,
                    'subscription_id': item.metadata.subscription_id,
                    'published_at': item.metadata.published_at,
                    'duration': item.media.duration_hint,
                    'is_playing': index == self.current_index
                }
                for index, item in enumerate(self._items)
            ],
            'current_index': self.current_index,
            'length': len(self._items)
        }

    async def _settle(self):
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)

    def _check_index(self, index: int):
        if not isinstance(index, int) or not 0 <= index < len(self._items):
            raise InvalidIndex(MESSAGES['INVALID_INDEX'])
