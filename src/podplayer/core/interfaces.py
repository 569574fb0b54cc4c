"""
Interfaces and data structures shared by the player components
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

from podplayer.utils.audio_utils import AudioUtils


class PlayerStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True)
class MediaRef:
    file_path: str
    duration_hint: Optional[float] = None


@dataclass(frozen=True)
class SourceMetadata:
    title: str = "Unknown"
    subscription_id: Optional[int] = None
    published_at: Optional[float] = None
    acquired_at: Optional[float] = None


@dataclass(frozen=True)
class QueueItem:
    """One playable entry of the queue, immutable once enqueued"""
    item_id: int
    media: MediaRef
    metadata: SourceMetadata = field(default_factory=SourceMetadata)

    @property
    def title(self) -> str:
        return self.metadata.title

    @classmethod
    def from_episode(cls, episode) -> 'QueueItem':
        """Build a queue item from an episode store record"""
        return cls(
            item_id=episode.id,
            media=MediaRef(
                file_path=episode.file_path,
                duration_hint=AudioUtils.parse_duration(episode.duration)
            ),
            metadata=SourceMetadata(
                title=episode.title or "Unknown",
                subscription_id=episode.subscription_id,
                published_at=AudioUtils.parse_pub_date(episode.pub_date),
                acquired_at=float(episode.downloaded_at) if episode.downloaded_at is not None else None
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.item_id,
            'title': self.metadata.title,
            'subscription_id': self.metadata.subscription_id,
            'file_path': self.media.file_path,
            'duration': self.media.duration_hint,
            'published_at': self.metadata.published_at,
            'acquired_at': self.metadata.acquired_at,
        }


@dataclass
class PlaybackState:
    """
    What the controller believes mpv is doing.

    With no current item the status is always IDLE; playing and paused are
    both derived from the single status field.
    """
    status: PlayerStatus = PlayerStatus.IDLE
    current_item: Optional[QueueItem] = None
    position: float = 0.0
    duration: float = 0.0
    volume: float = 100.0

    @property
    def is_playing(self) -> bool:
        return self.status == PlayerStatus.PLAYING

    @property
    def is_paused(self) -> bool:
        return self.status == PlayerStatus.PAUSED

    @property
    def is_active(self) -> bool:
        return self.current_item is not None

    def begin(self, item: QueueItem, position: float = 0.0, duration: Optional[float] = None):
        """Start tracking a newly loaded item"""
        self.current_item = item
        self.status = PlayerStatus.LOADING
        self.duration = float(duration if duration is not None else (item.media.duration_hint or 0.0))
        self.position = 0.0
        self.update_position(position)

    def set_playing(self):
        if self.current_item is not None:
            self.status = PlayerStatus.PLAYING

    def set_paused(self, paused: bool):
        if self.current_item is None:
            return
        self.status = PlayerStatus.PAUSED if paused else PlayerStatus.PLAYING

    def update_position(self, position: Optional[float]):
        if position is None:
            return
        position = max(0.0, float(position))
        if self.duration > 0:
            position = min(position, self.duration)
        self.position = position

    def update_duration(self, duration: Optional[float]):
        if duration is None:
            return
        self.duration = max(0.0, float(duration))
        if self.duration > 0 and self.position > self.duration:
            self.position = self.duration

    def clear(self):
        """Forget the current item; volume survives"""
        self.status = PlayerStatus.IDLE
        self.current_item = None
        self.position = 0.0
        self.duration = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'is_playing': self.is_playing,
            'is_paused': self.is_paused,
            'current_episode': self.current_item.to_dict() if self.current_item else None,
            'position': self.position,
            'duration': self.duration,
            'volume': self.volume,
        }
