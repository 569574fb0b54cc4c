"""
Episode Store for the Podcast Player
====================================

This module provides async database operations for the podcast episodes the
player controller plays, and for persisting their playback progress using
SQLite.

Schema:
- episodes table:
  - id (INTEGER, PRIMARY KEY): Episode ID (the queue item id)
  - subscription_id (INTEGER, NOT NULL): Owning podcast subscription
  - guid (TEXT, NOT NULL): Feed GUID, unique per subscription
  - title, pub_date, duration (TEXT): Feed metadata
  - file_path (TEXT): Local media file, NULL until downloaded
  - downloaded_at (INTEGER): Epoch seconds of the download
  - playback_position (INTEGER): Saved resume offset in whole seconds
  - playback_completed (INTEGER): 1 once the episode was played through
  - last_played_at (INTEGER): Epoch seconds of the last progress update
"""

import aiosqlite
import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class Episode:
    """Data class for an episode record"""
    id: int
    subscription_id: int
    title: Optional[str] = None
    file_path: Optional[str] = None
    downloaded_at: Optional[int] = None
    pub_date: Optional[str] = None
    duration: Optional[str] = None
    guid: Optional[str] = None
    playback_position: int = 0
    playback_completed: bool = False
    last_played_at: Optional[int] = None

    @property
    def is_downloaded(self) -> bool:
        return bool(self.file_path) and self.downloaded_at is not None

    @classmethod
    def from_row(cls, row) -> 'Episode':
        return cls(
            id=row['id'],
            subscription_id=row['subscription_id'],
            title=row['title'],
            file_path=row['file_path'],
            downloaded_at=row['downloaded_at'],
            pub_date=row['pub_date'],
            duration=row['duration'],
            guid=row['guid'],
            playback_position=row['playback_position'] or 0,
            playback_completed=bool(row['playback_completed']),
            last_played_at=row['last_played_at']
        )


_EPISODE_COLUMNS = '''
    id, subscription_id, guid, title, pub_date, duration, file_path, downloaded_at,
    playback_position, playback_completed, last_played_at
'''


class DatabaseManager:
    """
    Async episode store

    This class handles the database operations the player needs: looking up
    playable episodes and recording playback progress and completion.
    """

    def __init__(self, db_path: str = "data/podplayer.db", logger: Optional[logging.Logger] = None):
        """
        Initialize the database manager

        Args:
            db_path: Path to the SQLite database file
            logger: Logger instance for debugging
        """
        self.db_path = Path(db_path)
        self.logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()

        # Create data directory if it doesn't exist
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self):
        """
        Initialize the database and create tables if they don't exist
        """
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    await db.execute('''
                        CREATE TABLE IF NOT EXISTS episodes (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            subscription_id INTEGER NOT NULL,
                            guid TEXT NOT NULL,
                            title TEXT,
                            pub_date TEXT,
                            duration TEXT,
                            file_path TEXT,
                            downloaded_at INTEGER,
                            playback_position INTEGER DEFAULT 0,
                            playback_completed INTEGER DEFAULT 0,
                            last_played_at INTEGER,
                            created_at INTEGER DEFAULT (strftime('%s', 'now')),
                            UNIQUE(subscription_id, guid)
                        )
                    ''')

                    await db.execute('''
                        CREATE INDEX IF NOT EXISTS idx_episodes_last_played_at
                        ON episodes(last_played_at)
                    ''')

                    await db.commit()

                self.logger.info("Database initialized successfully")

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to initialize database: {e}")
                raise

    async def add_episode(self, episode: Episode) -> int:
        """
        Insert or replace an episode record

        Args:
            episode: Episode to store. A falsy id lets SQLite assign one.

        Returns:
            The id of the stored episode
        """
        guid = episode.guid or f"episode-{episode.id or time.time_ns()}"
        async with self._lock:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute('''
                    INSERT OR REPLACE INTO episodes
                    (id, subscription_id, guid, title, pub_date, duration, file_path, downloaded_at,
                     playback_position, playback_completed, last_played_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', (episode.id or None, episode.subscription_id, guid, episode.title, episode.pub_date,
                      episode.duration, episode.file_path, episode.downloaded_at,
                      episode.playback_position, int(episode.playback_completed), episode.last_played_at))

                await db.commit()
                episode_id = cursor.lastrowid

        self.logger.debug(f"Stored episode {episode_id}: {episode.title}")
        return episode_id

    async def get_playable_by_id(self, episode_id: int) -> Optional[Episode]:
        """
        Get an episode by ID

        The record is returned whether or not it is downloaded; callers check
        Episode.is_downloaded before playing it.

        Args:
            episode_id: Episode ID

        Returns:
            Episode object if found, None otherwise
        """
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    db.row_factory = aiosqlite.Row

                    async with db.execute(f'''
                        SELECT {_EPISODE_COLUMNS}
                        FROM episodes
                        WHERE id = ?
                    ''', (episode_id,)) as cursor:

                        row = await cursor.fetchone()

                        if row:
                            return Episode.from_row(row)
                        else:
                            return None

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to get episode {episode_id}: {e}")
                return None

    async def update_progress(self, episode_id: int, position: float):
        """
        Save the resume position of an episode

        Args:
            episode_id: Episode ID
            position: Position in seconds, stored as whole seconds
        """
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    await db.execute('''
                        UPDATE episodes
                        SET playback_position = ?, last_played_at = ?
                        WHERE id = ?
                    ''', (int(position), int(time.time()), episode_id))

                    await db.commit()

                self.logger.debug(f"Saved position {int(position)}s for episode {episode_id}")

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to save position for episode {episode_id}: {e}")
                raise

    async def mark_complete(self, episode_id: int):
        """
        Mark an episode as played through and clear its resume position

        Args:
            episode_id: Episode ID
        """
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    await db.execute('''
                        UPDATE episodes
                        SET playback_completed = 1, playback_position = 0, last_played_at = ?
                        WHERE id = ?
                    ''', (int(time.time()), episode_id))

                    await db.commit()

                self.logger.info(f"Marked episode {episode_id} as completed")

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to mark episode {episode_id} as completed: {e}")
                raise

    async def reset_playback_state(self, episode_id: int) -> bool:
        """
        Mark an episode as unplayed

        Args:
            episode_id: Episode ID

        Returns:
            True if the episode existed, False otherwise
        """
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    cursor = await db.execute('''
                        UPDATE episodes
                        SET playback_position = 0, playback_completed = 0, last_played_at = NULL
                        WHERE id = ?
                    ''', (episode_id,))

                    await db.commit()

                    if cursor.rowcount > 0:
                        self.logger.info(f"Reset playback state for episode {episode_id}")
                        return True
                    else:
                        self.logger.warning(f"No episode found to reset: {episode_id}")
                        return False

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to reset playback state for {episode_id}: {e}")
                return False

    async def get_playback_state(self, episode_id: int) -> Optional[Dict[str, Any]]:
        """
        Get the saved playback state of an episode

        Returns:
            Dict with playback_position, playback_completed and last_played_at,
            or None if the episode does not exist
        """
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    db.row_factory = aiosqlite.Row

                    async with db.execute('''
                        SELECT playback_position, playback_completed, last_played_at
                        FROM episodes WHERE id = ?
                    ''', (episode_id,)) as cursor:
                        row = await cursor.fetchone()

                if row is None:
                    return None
                return {
                    'playback_position': row['playback_position'] or 0,
                    'playback_completed': bool(row['playback_completed']),
                    'last_played_at': row['last_played_at']
                }

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to get playback state for {episode_id}: {e}")
                return None

    async def get_recently_played(self, limit: int = 10) -> List[Episode]:
        """
        Get the most recently played episodes, newest first
        """
        return await self._select_episodes('''
            WHERE last_played_at IS NOT NULL
            ORDER BY last_played_at DESC
            LIMIT ?
        ''', (limit,))

    async def get_in_progress(self, limit: int = 10) -> List[Episode]:
        """
        Get downloaded episodes that were started but not finished
        """
        return await self._select_episodes('''
            WHERE playback_position > 0
              AND playback_completed = 0
              AND downloaded_at IS NOT NULL
            ORDER BY last_played_at DESC
            LIMIT ?
        ''', (limit,))

    async def _select_episodes(self, where_clause: str, params: tuple) -> List[Episode]:
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    db.row_factory = aiosqlite.Row

                    async with db.execute(f'''
                        SELECT {_EPISODE_COLUMNS}
                        FROM episodes
                        {where_clause}
                    ''', params) as cursor:
                        rows = await cursor.fetchall()

                return [Episode.from_row(row) for row in rows]

            except aiosqlite.Error as e:
                self.logger.error(f"Failed to query episodes: {e}")
                return []
