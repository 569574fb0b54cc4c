import pytest

from podplayer.core.event_handlers import PlayerEventHandlers
from podplayer.core.interfaces import MediaRef, PlaybackState, PlayerStatus, QueueItem
from podplayer.core.notifications import NotificationHub
from podplayer.core.position_tracker import PositionTracker
from podplayer.core.queue_manager import QueueManager
from podplayer.utils.constants import OBSERVED_PROPERTIES


class Harness:
    def __init__(self, transport, store):
        self.transport = transport
        self.store = store
        self.messages = []
        self.state = PlaybackState()
        self.queue = QueueManager(transport, settle_delay=0)
        self.tracker = PositionTracker(self.state, store, interval=3600)
        self.handlers = PlayerEventHandlers(
            transport, self.queue, self.state, self.tracker, store, NotificationHub([self.messages.append])
        )
        self.handlers.register()

    async def play(self, *item_ids, position=0.0):
        for item_id in item_ids:
            await self.queue.append(QueueItem(item_id, MediaRef(f"/media/{item_id}.mp3")), auto_play=True)
        self.state.begin(self.queue.current_item, duration=100)
        self.state.update_position(position)
        self.state.set_playing()

    def types(self):
        return [message['type'] for message in self.messages]


@pytest.fixture
def harness(transport, store):
    h = Harness(transport, store)
    yield h
    h.tracker.stop()


@pytest.mark.asyncio
async def test_observe_all_registers_each_property_once(harness, transport):
    await harness.handlers.observe_all()
    await harness.handlers.observe_all()

    observed = [command for command in transport.commands if command[0] == 'observe_property']
    assert [command[2] for command in observed] == list(OBSERVED_PROPERTIES)
    assert [command[1] for command in observed] == list(range(1, len(OBSERVED_PROPERTIES) + 1))


@pytest.mark.asyncio
async def test_observers_are_registered_again_after_reset(harness, transport):
    await harness.handlers.observe('time-pos')
    harness.handlers.reset_observers()
    await harness.handlers.observe('time-pos')

    assert transport.verbs().count('observe_property') == 2


@pytest.mark.asyncio
async def test_time_pos_updates_position(harness, transport):
    await harness.play(1)

    await transport.property_change('time-pos', 42.5)

    assert harness.state.position == 42.5
    assert harness.messages[-1] == {'type': 'media:time-update', 'position': 42.5, 'duration': 100.0}


@pytest.mark.asyncio
async def test_pause_changes_status(harness, transport):
    await harness.play(1)

    await transport.property_change('pause', True)
    assert harness.state.status == PlayerStatus.PAUSED
    assert harness.messages[-1]['type'] == 'media:status'

    await transport.property_change('pause', False)
    assert harness.state.status == PlayerStatus.PLAYING


@pytest.mark.asyncio
async def test_pause_without_item_keeps_idle(harness, transport):
    await transport.property_change('pause', False)

    assert harness.state.status == PlayerStatus.IDLE
    assert harness.messages == []


@pytest.mark.asyncio
async def test_volume_change(harness, transport):
    await transport.property_change('volume', 55.0)

    assert harness.state.volume == 55.0
    assert harness.messages[-1] == {'type': 'media:volume-change', 'volume': 55.0}


@pytest.mark.asyncio
async def test_external_track_change(harness, transport, store):
    await harness.play(1, 2, 3, position=30)

    await transport.property_change('playlist-pos', 1)

    assert store.progress == {1: [30]}
    assert harness.queue.current_index == 1
    assert harness.state.current_item.item_id == 2
    assert harness.state.position == 0
    assert harness.tracker.running
    assert 'media:track-changed' in harness.types()


@pytest.mark.asyncio
async def test_track_change_ignored_while_suppressed(harness, transport, store):
    await harness.play(1, 2, position=30)

    with harness.handlers.suppressed():
        await transport.property_change('playlist-pos', 1)

    assert harness.queue.current_index == 0
    assert harness.state.current_item.item_id == 1
    assert store.progress == {}


@pytest.mark.asyncio
async def test_playlist_pos_matching_queue_is_ignored(harness, transport):
    await harness.play(1, 2)

    await transport.property_change('playlist-pos', 0)
    await transport.property_change('playlist-pos', -1)

    assert harness.messages == []


@pytest.mark.asyncio
async def test_idle_with_current_item_finishes_queue(harness, transport):
    await harness.play(1, 2)

    await transport.property_change('idle-active', True)

    assert harness.state.current_item is None
    assert harness.state.status == PlayerStatus.IDLE
    assert harness.queue.current_index == -1
    assert len(harness.queue) == 2
    assert harness.types()[-2:] == ['media:status', 'media:queue-finished']


@pytest.mark.asyncio
async def test_idle_without_current_item_is_ignored(harness, transport):
    await transport.property_change('idle-active', True)

    assert harness.messages == []


@pytest.mark.asyncio
async def test_end_of_file_marks_episode_complete(harness, transport, store):
    await harness.play(1, 2, position=99)

    await transport.emit({'event': 'end-file', 'reason': 'eof'})

    assert store.completed == [1]
    assert harness.messages[-1] == {'type': 'media:episode-completed', 'episode_id': 1}

    # The auto-advance does not save the finished episode again
    await transport.property_change('playlist-pos', 1)
    assert store.progress == {}
    assert harness.state.current_item.item_id == 2


@pytest.mark.asyncio
async def test_end_file_error_is_reported(harness, transport):
    await harness.play(1)

    await transport.emit({'event': 'end-file', 'reason': 'error', 'file_error': 'unrecognized file format'})

    assert harness.messages[-1] == {
        'type': 'media:error', 'error': 'unrecognized file format', 'episode_id': 1
    }
    assert harness.state.current_item.item_id == 1


@pytest.mark.asyncio
async def test_end_file_stop_is_left_alone(harness, transport, store):
    await harness.play(1)

    await transport.emit({'event': 'end-file', 'reason': 'stop'})

    assert harness.messages == []
    assert store.completed == []
