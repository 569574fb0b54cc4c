"""
Media Player Service
====================

The command facade of the podcast player. It owns the mpv transport, the
queue, the playback state and the position tracker, and exposes the
operations the outer layers (command socket, HTTP API, ...) invoke.

Operations that issue several mpv commands in a row run under the operation
lock, so their intermediate states never interleave. While they rearrange the
native playlist, the track changes mpv reports are suppressed; the service
applies the resulting state itself.
"""

import asyncio
import logging
import os
import random
from typing import Any, Dict, List, Optional

from podplayer.core.event_handlers import PlayerEventHandlers
from podplayer.core.interfaces import PlaybackState, QueueItem
from podplayer.core.mpv_process import MpvProcess
from podplayer.core.notifications import NotificationHub
from podplayer.core.operation_lock import OperationLock
from podplayer.core.position_tracker import PositionTracker
from podplayer.core.queue_manager import QueueManager
from podplayer.utils.audio_utils import AudioUtils
from podplayer.utils.constants import DEFAULTS, MAX_VOLUME, MESSAGES, MIN_VOLUME
from podplayer.utils.database import Episode
from podplayer.utils.exceptions import ContentUnavailable, InvalidIndex, NothingPlaying, PlayerControlError
from podplayer.utils.ipc_protocol import (
    Notification, SeekMode, create_playlist_clear_command, create_seek_command, create_stop_command
)


class MediaPlayerService:
    """
    Podcast playback on top of a long-lived mpv process

    One instance per process; it is the only writer of the queue and the
    playback state apart from the mpv event handlers it registers.
    """

    def __init__(self, transport, store, config: Optional[dict] = None,
                 notifier: Optional[NotificationHub] = None, process: Optional[MpvProcess] = None,
                 rng: Optional[random.Random] = None, logger: Optional[logging.Logger] = None):
        """
        Initialize the Media Player Service

        Args:
            transport: Connected-on-demand mpv IPC client
            store: Episode store (get_playable_by_id, update_progress, mark_complete)
            config: Application configuration
            notifier: Receives outbound notifications
            process: mpv process to start on initialize, if the service owns it
            rng: Random source for shuffling
            logger: Logger instance
        """
        self.transport = transport
        self.store = store
        self.config = {**DEFAULTS, **(config or {})}
        self.notifier = notifier or NotificationHub()
        self.process = process
        self.logger = logger or logging.getLogger(__name__)

        self.settle_delay = float(self.config['settle_delay'])
        self.load_settle_delay = float(self.config['load_settle_delay'])
        self.verify_files = bool(self.config['verify_files'])

        # Playback state
        self.state = PlaybackState()
        self.queue = QueueManager(transport, rng=rng, settle_delay=self.settle_delay)
        self.lock = OperationLock(self.logger)
        self.tracker = PositionTracker(
            self.state, store,
            interval=float(self.config['position_save_interval']),
            completion_threshold=float(self.config['completion_threshold']),
            logger=self.logger
        )
        self.events = PlayerEventHandlers(transport, self.queue, self.state, self.tracker, store, self.notifier)

        self.ready = False

        self.events.register()
        self.transport.register_disconnect_handler(self.handle_disconnect)
        if self.process:
            self.process.on_exit(self._on_mpv_exit)

    async def initialize(self):
        """
        Start mpv (when owned), connect and observe the playback properties.

        Calling it again after a disconnect reconnects. An mpv that was already
        running is stopped and its playlist cleared, matching the empty queue.

        Raises:
            TransportError: If mpv or its socket is unavailable
        """
        self.logger.info("Initializing media player service...")

        started = False
        if self.process and not self.process.running:
            await self.process.start()
            started = True

        await self.transport.connect()
        self.events.reset_observers()
        await self.events.observe_all()
        if not started:
            await self._resync_native()

        try:
            volume = await self.transport.get_property('volume')
            if volume is not None:
                self.state.volume = float(volume)
        except PlayerControlError as e:
            self.logger.warning(f"Could not read volume: {e}")

        self.ready = True
        self.logger.info("Media player service initialized")

    def is_ready(self) -> bool:
        return self.ready and self.transport.connected

    # Playback commands

    async def play_episode(self, episode_id: int) -> dict:
        """
        Replace the queue with one episode and play it, resuming from its
        saved position.

        Args:
            episode_id: Episode to play

        Returns:
            dict: The episode played and the position it resumed from
        """
        async with self.lock.hold('play-episode'):
            episode = await self._get_playable_episode(episode_id)
            item = QueueItem.from_episode(episode)
            self.logger.info(f"Playing episode: {item.title} ({item.media.file_path})")

            await self._stop_tracking()
            with self.events.suppressed():
                await self.queue.replace(item)
                self.state.begin(item)
                await self.transport.set_property('pause', False)
                resumed_from = await self._after_load(item, self.load_settle_delay, episode)
            self._begin_tracking()

            await self._send_track_changed(item)
            await self._send_queue_update()

            return {
                'episode': {
                    'id': item.item_id,
                    'title': item.title,
                    'duration': self.state.duration,
                    'resumed_from': resumed_from
                }
            }

    async def add_to_queue(self, episode_id: int, position: Optional[int] = None) -> dict:
        """
        Append an episode, or insert it at position; playback starts when the
        queue was empty and nothing was playing.

        Returns:
            dict: The queue position of the episode and the queue length
        """
        async with self.lock.hold('add-to-queue'):
            episode = await self._get_playable_episode(episode_id)
            item = QueueItem.from_episode(episode)

            if len(self.queue) == 0 and not self.state.is_active:
                with self.events.suppressed():
                    index = await self.queue.append(item, auto_play=True)
                    self.state.begin(item)
                    await self.transport.set_property('pause', False)
                    await self._after_load(item, self.load_settle_delay, episode)
                self._begin_tracking()
                await self._send_track_changed(item)
            elif position is None:
                index = await self.queue.append(item)
            else:
                index = await self.queue.insert(position, item)

            await self._send_queue_update()
            return {'queue_position': index, 'queue_length': len(self.queue)}

    async def add_multiple_to_queue(self, episode_ids: List[int]) -> dict:
        """
        Append several episodes; failures are collected rather than raised.

        Returns:
            dict: Count of added episodes, per-episode errors and queue length
        """
        added = 0
        errors = []
        for episode_id in episode_ids:
            try:
                await self.add_to_queue(episode_id)
                added += 1
            except PlayerControlError as e:
                self.logger.warning(f"Could not queue episode {episode_id}: {e.message}")
                errors.append({'episode_id': episode_id, 'error': e.message})

        return {'added': added, 'errors': errors, 'queue_length': len(self.queue)}

    async def play_next(self) -> dict:
        async with self.lock.hold('next'):
            self.queue.check_step(1)
            return await self._switch_to(step=1)

    async def play_previous(self) -> dict:
        async with self.lock.hold('previous'):
            self.queue.check_step(-1)
            return await self._switch_to(step=-1)

    async def jump_to(self, index: int) -> dict:
        """
        Play the queue entry at index.

        Raises:
            InvalidIndex: If index is out of range
        """
        async with self.lock.hold('jump-to-index'):
            self.queue.item_at(index)
            return await self._switch_to(index=index)

    # Queue commands

    async def remove_from_queue(self, index: int) -> dict:
        async with self.lock.hold('remove'):
            removed = await self.queue.remove(index)
            await self._send_queue_update()
            return {'removed': removed.item_id, 'queue_length': len(self.queue)}

    async def remove_by_item_id(self, item_id: int) -> dict:
        """
        Remove an episode by id, stopping playback first when it is playing.

        Returns:
            dict: The removed id, whether it was playing and the queue length
        """
        async with self.lock.hold('remove-by-id'):
            index = self.queue.index_of(item_id)
            if index == -1:
                raise InvalidIndex(MESSAGES['NOT_IN_QUEUE'])

            was_playing = index == self.queue.current_index
            if was_playing:
                await self._stop_tracking()
                with self.events.suppressed():
                    await self.transport.send_request(create_stop_command(keep_playlist=True))
                    self.state.clear()
                    self.queue.set_current(-1)

            await self.queue.remove(index)

            if was_playing:
                await self._send_status()
            await self._send_queue_update()
            return {'removed': item_id, 'was_playing': was_playing, 'queue_length': len(self.queue)}

    async def move_in_queue(self, from_index: int, to_index: int) -> dict:
        async with self.lock.hold('move'):
            await self.queue.move(from_index, to_index)
            await self._send_queue_update()
            return {'queue_length': len(self.queue)}

    async def shuffle_queue(self) -> dict:
        async with self.lock.hold('shuffle'):
            with self.events.suppressed():
                await self.queue.shuffle(position=self.state.position, paused=self.state.is_paused)
            await self._send_queue_update()
            return {'queue_length': len(self.queue)}

    async def sort_queue(self, sort_by: str = 'publish_time', order: str = 'asc') -> dict:
        async with self.lock.hold('sort'):
            with self.events.suppressed():
                await self.queue.sort(sort_by, order, position=self.state.position, paused=self.state.is_paused)
            await self._send_queue_update()
            return {'queue_length': len(self.queue), 'sort_by': sort_by, 'order': order}

    async def clear_queue(self) -> dict:
        """Stop playback and empty the queue"""
        async with self.lock.hold('clear'):
            was_active = self.state.is_active
            await self._stop_tracking()
            with self.events.suppressed():
                if was_active:
                    await self.transport.send_request(create_stop_command())
                    self.state.clear()
                    self.queue.set_current(-1)
                await self.queue.clear_native()
                self.queue.reset()

            self.logger.info("Queue cleared")
            await self._send_status()
            await self._send_queue_update()
            return {'queue_length': 0}

    # Transport controls

    async def toggle_pause(self) -> dict:
        self._require_current()
        paused = not self.state.is_paused
        await self.transport.set_property('pause', paused)
        self.state.set_paused(paused)
        return {'paused': paused}

    async def pause(self) -> dict:
        self._require_current()
        await self.transport.set_property('pause', True)
        self.state.set_paused(True)
        return {'paused': True}

    async def resume(self) -> dict:
        self._require_current()
        await self.transport.set_property('pause', False)
        self.state.set_paused(False)
        return {'paused': False}

    async def stop(self) -> dict:
        """Stop playback; the queue is kept"""
        async with self.lock.hold('stop'):
            if not self.state.is_active:
                return {'stopped': False}

            await self._stop_tracking()
            with self.events.suppressed():
                await self.transport.send_request(create_stop_command(keep_playlist=True))
                self.state.clear()
                self.queue.set_current(-1)

            self.logger.info("Playback stopped")
            await self._send_status()
            return {'stopped': True}

    async def seek(self, position: float) -> dict:
        self._require_current()
        position = max(0.0, float(position))
        await self.transport.send_request(create_seek_command(position, SeekMode.ABSOLUTE))
        self.state.update_position(position)
        self.notifier.notify(Notification.TIME_UPDATE, {
            'position': self.state.position,
            'duration': self.state.duration,
            'episode_id': self.state.current_item.item_id
        })
        return {'position': self.state.position}

    async def seek_relative(self, offset: float) -> dict:
        self._require_current()
        await self.transport.send_request(create_seek_command(float(offset), SeekMode.RELATIVE))
        self.state.update_position(self.state.position + float(offset))
        return {'position': self.state.position}

    async def set_volume(self, level: float) -> dict:
        volume = max(MIN_VOLUME, min(MAX_VOLUME, float(level)))
        await self.transport.set_property('volume', volume)
        self.state.volume = volume
        self.notifier.notify(Notification.VOLUME_CHANGE, {'volume': volume})
        return {'volume': volume}

    # Queries

    def get_status(self) -> Dict[str, Any]:
        return {
            **self.state.to_dict(),
            'queue_position': self.queue.current_index,
            'queue_length': len(self.queue),
            'mpv_connected': self.transport.connected
        }

    def get_queue(self) -> Dict[str, Any]:
        return self.queue.get_queue_info()

    def get_health(self) -> Dict[str, Any]:
        connected = self.transport.connected
        mpv_running = self.process.running if self.process else connected
        if self.ready and connected:
            status = 'ok'
        elif mpv_running:
            status = 'degraded'
        else:
            status = 'unavailable'
        return {
            'status': status,
            'mpv_running': mpv_running,
            'socket_connected': connected,
            'current_operation': self.lock.current_operation,
            'waiting_operations': self.lock.waiting
        }

    # Connection lifecycle

    async def handle_disconnect(self, reason: str = "connection lost"):
        """
        Forget all playback state after mpv or its socket went away.

        The queue cannot be trusted any more, so it is cleared as well.
        """
        if not self.ready:
            return

        self.logger.warning(f"mpv disconnected: {reason}")
        self.ready = False

        # Tear down before the first await; the caller may be cancelled
        item = self.state.current_item
        position, duration = self.state.position, self.state.duration
        self.tracker.stop()
        self.state.clear()
        self.queue.reset()
        self.events.reset_observers()
        self.notifier.notify(Notification.DISCONNECTED, {'reason': reason})

        try:
            if item is not None:
                await self.tracker.persist_snapshot(item.item_id, position, duration)
        finally:
            self.tracker.reset_completed()

    async def cleanup(self):
        """Clean up all resources"""
        self.logger.info("Cleaning up media player service")
        await self._stop_tracking()
        self.ready = False

        await self.transport.disconnect()
        if self.process:
            await self.process.stop()

        self.state.clear()
        self.queue.reset()
        await self.notifier.drain()

    async def _on_mpv_exit(self, code: Optional[int]):
        await self.transport.disconnect()
        await self.handle_disconnect(f"mpv exited with code {code}")

    # Internal helpers

    async def _get_playable_episode(self, episode_id: int) -> Episode:
        episode = await self.store.get_playable_by_id(episode_id)
        if episode is None:
            raise ContentUnavailable(MESSAGES['EPISODE_NOT_FOUND'], code=404)
        if not episode.is_downloaded:
            raise ContentUnavailable(MESSAGES['EPISODE_NOT_DOWNLOADED'], code=400)
        if self.verify_files and not os.path.exists(episode.file_path):
            raise ContentUnavailable(MESSAGES['EPISODE_FILE_MISSING'], code=404)
        return episode

    def _require_current(self):
        if self.state.current_item is None:
            raise NothingPlaying()

    async def _switch_to(self, index: Optional[int] = None, step: int = 0) -> dict:
        """Persist the outgoing item, make mpv play the target and resume it"""
        await self._stop_tracking()
        with self.events.suppressed():
            if step:
                await self.queue.step_native(step)
            else:
                await self.queue.jump_native(index)
            item = self.queue.current_item
            self.state.begin(item)
            await self.transport.set_property('pause', False)
            resumed_from = await self._after_load(item, self.settle_delay)
        self._begin_tracking()

        await self._send_track_changed(item)
        await self._send_queue_update()
        return {'index': self.queue.current_index, 'episode_id': item.item_id, 'resumed_from': resumed_from}

    async def _after_load(self, item: QueueItem, delay: float, episode: Optional[Episode] = None) -> float:
        """
        Wait for mpv to load the file, read its duration and seek to the
        saved position of a partly played episode.

        Returns:
            float: The position playback resumed from
        """
        await self._settle(delay)

        try:
            duration = await self.transport.get_property('duration')
            self.state.update_duration(duration if duration is not None else item.media.duration_hint)
        except PlayerControlError as e:
            self.logger.warning(f"Could not get duration: {e}")
            self.state.update_duration(item.media.duration_hint or 0)

        if episode is None:
            try:
                episode = await self.store.get_playable_by_id(item.item_id)
            except Exception as e:
                self.logger.warning(f"Could not read saved position of episode {item.item_id}: {e}")

        resume_at = 0
        if episode is not None and episode.playback_position > 0 and not episode.playback_completed:
            resume_at = episode.playback_position
            self.logger.info(f"Resuming from position: {AudioUtils.format_duration(resume_at)}")
            await self.transport.send_request(create_seek_command(resume_at, SeekMode.ABSOLUTE))
        self.state.update_position(resume_at)
        self.state.set_playing()
        return resume_at

    async def _resync_native(self):
        """Empty the playlist of an mpv that outlived the previous session"""
        with self.events.suppressed():
            await self.transport.send_request(create_stop_command())
            await self.transport.send_request(create_playlist_clear_command())
        self.logger.info("Cleared playlist left over in mpv")

    async def _settle(self, delay: float):
        # mpv does not acknowledge playlist/seek transitions
        if delay > 0:
            await asyncio.sleep(delay)

    async def _stop_tracking(self):
        """Save the position of the current item and stop periodic saves"""
        if self.state.current_item is not None:
            await self.tracker.persist()
        self.tracker.stop()

    def _begin_tracking(self):
        self.tracker.start()

    # Notification sending methods

    async def _send_status(self):
        self.notifier.notify(Notification.STATUS, self.get_status())

    async def _send_queue_update(self):
        self.notifier.notify(Notification.QUEUE_UPDATE, self.queue.get_queue_info())

    async def _send_track_changed(self, item: QueueItem):
        await self._send_status()
        self.notifier.notify(Notification.TRACK_CHANGED, {
            'episode': {
                'id': item.item_id,
                'title': item.title,
                'subscription_id': item.metadata.subscription_id,
                'duration': self.state.duration
            },
            'queue_position': self.queue.current_index,
            'queue_length': len(self.queue)
        })
