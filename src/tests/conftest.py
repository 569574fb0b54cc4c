import asyncio
import random

import pytest

from podplayer.core.media_player_service import MediaPlayerService
from podplayer.core.notifications import NotificationHub
from podplayer.utils.database import Episode


class FakeTransport:
    """Records native commands and answers them like an idle mpv"""

    def __init__(self):
        self.commands = []
        self.connected = False
        self.event_handlers = {}
        self.disconnect_handlers = []
        self.properties = {'duration': 3600.0, 'volume': 80.0}
        self.fail_on = {}
        self.fail_once = {}

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.connected = False

    async def send_request(self, command):
        self.commands.append(list(command))
        verb = command[0]
        if verb in self.fail_on:
            raise self.fail_on[verb]
        if verb in self.fail_once:
            raise self.fail_once.pop(verb)
        if verb == 'get_property':
            return self.properties.get(command[1])
        if verb == 'set_property':
            self.properties[command[1]] = command[2]
        return None

    async def get_property(self, name):
        return await self.send_request(['get_property', name])

    async def set_property(self, name, value):
        return await self.send_request(['set_property', name, value])

    async def observe_property(self, observer_id, name):
        return await self.send_request(['observe_property', observer_id, name])

    def register_event_handler(self, event, handler):
        self.event_handlers[getattr(event, 'value', event)] = handler

    def register_disconnect_handler(self, handler):
        self.disconnect_handlers.append(handler)

    async def emit(self, message):
        handler = self.event_handlers.get(message['event'])
        if handler:
            await handler(message)

    async def property_change(self, name, data):
        await self.emit({'event': 'property-change', 'name': name, 'data': data})

    def verbs(self):
        return [command[0] for command in self.commands]


class FakeEpisodeStore:
    def __init__(self, episodes=()):
        self.episodes = {episode.id: episode for episode in episodes}
        self.progress = {}
        self.completed = []
        self.fail = False

    async def get_playable_by_id(self, episode_id):
        return self.episodes.get(episode_id)

    async def update_progress(self, episode_id, position):
        if self.fail:
            raise RuntimeError("database is locked")
        self.progress.setdefault(episode_id, []).append(position)

    async def mark_complete(self, episode_id):
        if self.fail:
            raise RuntimeError("database is locked")
        self.completed.append(episode_id)


def make_episode(episode_id, **overrides):
    fields = dict(
        id=episode_id,
        subscription_id=1,
        title=f"Episode {episode_id}",
        file_path=f"/media/{episode_id}.mp3",
        downloaded_at=1700000000 + episode_id,
        pub_date=f"Mon, 0{episode_id} Jan 2024 08:00:00 +0000",
        duration="01:00:00",
    )
    fields.update(overrides)
    return Episode(**fields)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return FakeEpisodeStore([
        make_episode(1),
        make_episode(2),
        make_episode(3, playback_position=120),
        make_episode(4),
        make_episode(5, playback_position=300, playback_completed=True),
        make_episode(6, file_path=None, downloaded_at=None),
    ])


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def player_config():
    return {
        'settle_delay': 0,
        'load_settle_delay': 0,
        'verify_files': False,
        'position_save_interval': 3600,
        'completion_threshold': 0.95,
    }


@pytest.fixture
async def service(transport, store, notifications, player_config):
    player = MediaPlayerService(
        transport, store, player_config,
        notifier=NotificationHub([notifications.append]),
        rng=random.Random(1234)
    )
    await player.initialize()
    yield player
    await player.cleanup()


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout=2.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return _wait
