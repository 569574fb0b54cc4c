"""
mpv JSON IPC Protocol
=====================

This module defines the wire format spoken with the mpv process over its
control socket, plus the names of the notifications the controller emits to
its own subscribers.

Message Format:
Every message is one JSON object terminated by a newline.

Request (controller -> mpv):
{
    "command": ["verb", arg, ...],
    "request_id": int
}

Response (mpv -> controller):
{
    "request_id": int,
    "error": "success" | "<message>",
    "data": <any>
}

Event (mpv -> controller, unsolicited):
{
    "event": "event-name",
    ...fields
}
Property changes carry "id", "name" and "data"; end-file carries "reason"
and, for failures, "file_error".

Command (caller -> controller, command socket):
{
    "action": "ADD_TO_QUEUE",
    "data": {"episode_id": 42}
}
"""

import json
from enum import Enum
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, field


class MpvEvent(Enum):
    PROPERTY_CHANGE = "property-change"
    END_FILE = "end-file"
    START_FILE = "start-file"
    FILE_LOADED = "file-loaded"
    SEEK = "seek"
    PLAYBACK_RESTART = "playback-restart"
    IDLE = "idle"
    LOG_MESSAGE = "log-message"
    SHUTDOWN = "shutdown"


class EndFileReason(Enum):
    EOF = "eof"
    STOP = "stop"
    QUIT = "quit"
    ERROR = "error"
    REDIRECT = "redirect"
    UNKNOWN = "unknown"


class LoadMode(Enum):
    REPLACE = "replace"
    APPEND = "append"
    APPEND_PLAY = "append-play"


class SeekMode(Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"


class Notification(Enum):
    STATUS = "media:status"
    TIME_UPDATE = "media:time-update"
    TRACK_CHANGED = "media:track-changed"
    QUEUE_UPDATE = "media:queue-update"
    QUEUE_FINISHED = "media:queue-finished"
    EPISODE_COMPLETED = "media:episode-completed"
    ERROR = "media:error"
    VOLUME_CHANGE = "media:volume-change"
    DISCONNECTED = "media:disconnected"


class Command(Enum):
    PLAY_EPISODE = "PLAY_EPISODE"
    ADD_TO_QUEUE = "ADD_TO_QUEUE"
    ADD_MULTIPLE_TO_QUEUE = "ADD_MULTIPLE_TO_QUEUE"
    PLAY_NEXT = "PLAY_NEXT"
    PLAY_PREVIOUS = "PLAY_PREVIOUS"
    JUMP_TO = "JUMP_TO"
    REMOVE_FROM_QUEUE = "REMOVE_FROM_QUEUE"
    REMOVE_BY_ID = "REMOVE_BY_ID"
    MOVE_IN_QUEUE = "MOVE_IN_QUEUE"
    SHUFFLE_QUEUE = "SHUFFLE_QUEUE"
    SORT_QUEUE = "SORT_QUEUE"
    CLEAR_QUEUE = "CLEAR_QUEUE"
    TOGGLE_PAUSE = "TOGGLE_PAUSE"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    STOP = "STOP"
    SEEK = "SEEK"
    SEEK_RELATIVE = "SEEK_RELATIVE"
    SET_VOLUME = "SET_VOLUME"
    GET_STATUS = "GET_STATUS"
    GET_QUEUE = "GET_QUEUE"
    GET_HEALTH = "GET_HEALTH"


SUCCESS = "success"


@dataclass
class MpvRequest:
    """A single command sent to mpv"""
    command: List[Any]
    request_id: int

    def to_json(self) -> str:
        """Convert request to one newline-terminated JSON line"""
        return json.dumps(asdict(self)) + "\n"


@dataclass
class CommandMessage:
    """Command received on the controller's command socket"""
    action: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def command(self) -> Command:
        return Command(self.action)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, json_str: str) -> 'CommandMessage':
        """Create message from JSON string"""
        payload = json.loads(json_str)
        if not isinstance(payload, dict) or 'action' not in payload:
            raise ValueError("Command message must be an object with an action")
        return cls(action=payload['action'], data=payload.get('data') or {})


def parse_message(line: str) -> Dict[str, Any]:
    """
    Parse one line received from mpv.

    Args:
        line: Raw line without the trailing newline

    Returns:
        The decoded JSON object

    Raises:
        ValueError: If the line is not a JSON object
    """
    message = json.loads(line)
    if not isinstance(message, dict):
        raise ValueError(f"Expected a JSON object, got {type(message).__name__}")
    return message


def is_response(message: Dict[str, Any]) -> bool:
    return "request_id" in message


def is_event(message: Dict[str, Any]) -> bool:
    return "event" in message


def end_file_reason(message: Dict[str, Any]) -> EndFileReason:
    """Map the end-file reason string onto EndFileReason"""
    try:
        return EndFileReason(message.get("reason"))
    except ValueError:
        return EndFileReason.UNKNOWN


# Helper functions for creating common commands

def create_observe_command(observer_id: int, property_name: str) -> List[Any]:
    """Create an observe_property command"""
    return ["observe_property", observer_id, property_name]


def create_get_property_command(property_name: str) -> List[Any]:
    """Create a get_property command"""
    return ["get_property", property_name]


def create_set_property_command(property_name: str, value: Any) -> List[Any]:
    """Create a set_property command"""
    return ["set_property", property_name, value]


def create_loadfile_command(path: str, mode: LoadMode = LoadMode.REPLACE) -> List[Any]:
    """Create a loadfile command"""
    return ["loadfile", path, mode.value]


def create_seek_command(offset: float, mode: SeekMode = SeekMode.ABSOLUTE) -> List[Any]:
    """Create a seek command"""
    return ["seek", offset, mode.value]


def create_playlist_next_command() -> List[Any]:
    return ["playlist-next"]


def create_playlist_prev_command() -> List[Any]:
    return ["playlist-prev"]


def create_playlist_remove_command(index: int) -> List[Any]:
    """Create a playlist-remove command"""
    return ["playlist-remove", index]


def create_playlist_move_command(from_index: int, to_index: int) -> List[Any]:
    """
    Create a playlist-move command that leaves the entry at to_index.

    mpv moves the entry in front of the entry currently at the target index,
    so moving forward needs the index after the target.
    """
    target = to_index + 1 if from_index < to_index else to_index
    return ["playlist-move", from_index, target]


def create_playlist_clear_command() -> List[Any]:
    return ["playlist-clear"]


def create_stop_command(keep_playlist: bool = False) -> List[Any]:
    """Create a stop command, optionally keeping the native playlist"""
    if keep_playlist:
        return ["stop", "keep-playlist"]
    return ["stop"]


def create_notification(event: Notification, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create the message delivered to notification subscribers"""
    return {"type": event.value, **(payload or {})}
