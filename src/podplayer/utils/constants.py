# mpv launch configuration
MPV_ARGS = [
    '--idle=yes',
    '--no-video',
    '--audio-display=no',
    '--keep-open=no',
    '--hr-seek=yes',
    '--no-terminal',
    '--msg-level=all=info',
]

# Properties observed for the lifetime of an mpv session
OBSERVED_PROPERTIES = (
    'time-pos',
    'duration',
    'pause',
    'volume',
    'playlist-pos',
    'idle-active',
)

# Controller defaults (overridable from .env / config.yaml)
DEFAULTS = {
    'mpv_path': 'mpv',
    'socket_path': '/tmp/podplayer/mpv.sock',
    'audio_output': None,
    'startup_timeout': 10.0,        # seconds to wait for the IPC socket
    'connect_timeout': 5.0,         # seconds to open the socket
    'command_timeout': 5.0,         # seconds before a request is abandoned
    'position_save_interval': 10.0,  # seconds between periodic saves
    'completion_threshold': 0.95,   # position/duration ratio considered finished
    'settle_delay': 0.3,            # wait after playlist-pos / seek changes
    'load_settle_delay': 0.5,       # wait after loadfile before reading duration
    'db_path': 'data/podplayer.db',
    'command_address': 'tcp://127.0.0.1:5555',
    'event_address': 'tcp://127.0.0.1:5556',
    'log_level': 'INFO',
    'log_dir': 'logs',
    'verify_files': True,
}

# Volume bounds accepted by set_volume
MIN_VOLUME = 0
MAX_VOLUME = 100

# Sort specs accepted by the queue engine
SORT_KEY_ALIASES = {
    'publish_time': 'publish_time',
    'publishTime': 'publish_time',
    'pub_date': 'publish_time',
    'acquisition_time': 'acquisition_time',
    'acquisitionTime': 'acquisition_time',
    'downloaded_at': 'acquisition_time',
}
SORT_DIRECTIONS = ('asc', 'desc')

# Episode error messages
MESSAGES = {
    'EPISODE_NOT_FOUND': "Episode not found",
    'EPISODE_NOT_DOWNLOADED': "Episode not downloaded",
    'EPISODE_FILE_MISSING': "Episode file not found",
    'QUEUE_EMPTY': "Queue is empty",
    'QUEUE_END': "Already at end of queue",
    'QUEUE_START': "Already at start of queue",
    'INVALID_INDEX': "Invalid queue index",
    'NOT_IN_QUEUE': "Episode is not in the queue",
}
