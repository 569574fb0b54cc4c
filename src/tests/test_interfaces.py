from podplayer.core.interfaces import MediaRef, PlaybackState, PlayerStatus, QueueItem
from podplayer.utils.database import Episode


def test_queue_item_from_episode():
    episode = Episode(
        id=9, subscription_id=3, title="Pilot", file_path="/media/9.mp3",
        downloaded_at=1700000000, pub_date="Tue, 02 Jan 2024 08:00:00 +0000", duration="42:30"
    )

    item = QueueItem.from_episode(episode)

    assert item.item_id == 9
    assert item.title == "Pilot"
    assert item.media == MediaRef("/media/9.mp3", 2550)
    assert item.metadata.subscription_id == 3
    assert item.metadata.published_at == 1704182400.0
    assert item.metadata.acquired_at == 1700000000.0


def test_queue_item_without_metadata():
    item = QueueItem.from_episode(Episode(id=1, subscription_id=1, file_path="/media/1.mp3"))

    assert item.title == "Unknown"
    assert item.media.duration_hint is None
    assert item.metadata.published_at is None
    assert item.to_dict()['id'] == 1


def test_begin_uses_duration_hint():
    state = PlaybackState()
    state.begin(QueueItem(1, MediaRef("/media/1.mp3", 600)))

    assert state.status == PlayerStatus.LOADING
    assert state.duration == 600.0
    assert state.position == 0.0

    state.set_playing()
    assert state.is_playing and not state.is_paused


def test_position_is_clamped():
    state = PlaybackState()
    state.begin(QueueItem(1, MediaRef("/media/1.mp3")), duration=100)

    state.update_position(-4)
    assert state.position == 0.0
    state.update_position(250)
    assert state.position == 100.0

    state.update_duration(80)
    assert state.position == 80.0


def test_unknown_duration_does_not_clamp():
    state = PlaybackState()
    state.begin(QueueItem(1, MediaRef("/media/1.mp3")))

    state.update_position(5000)

    assert state.duration == 0.0
    assert state.position == 5000.0


def test_idle_state_ignores_pause():
    state = PlaybackState(volume=40.0)

    state.set_paused(True)
    state.set_playing()

    assert state.status == PlayerStatus.IDLE
    assert state.to_dict()['current_episode'] is None


def test_clear_keeps_volume():
    state = PlaybackState(volume=40.0)
    state.begin(QueueItem(1, MediaRef("/media/1.mp3")), position=20, duration=100)
    state.set_paused(True)

    state.clear()

    assert state.to_dict() == {
        'status': 'idle',
        'is_playing': False,
        'is_paused': False,
        'current_episode': None,
        'position': 0.0,
        'duration': 0.0,
        'volume': 40.0,
    }
