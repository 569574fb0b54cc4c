"""
mpv Process Launcher
====================

Starts mpv in idle mode with its JSON IPC server enabled, waits for the
control socket to appear, relays mpv's output to the log and reports an
unexpected exit to registered handlers.
"""

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

import async_timeout

from podplayer.utils.constants import MPV_ARGS
from podplayer.utils.exceptions import TransportError

SOCKET_POLL_INTERVAL = 0.1
STOP_TIMEOUT = 5.0


class MpvProcess:
    """Owns the mpv child process"""

    def __init__(self, mpv_path: str = 'mpv', socket_path: str = '/tmp/podplayer/mpv.sock',
                 startup_timeout: float = 10.0, audio_output: Optional[str] = None,
                 extra_args: Optional[List[str]] = None, logger: Optional[logging.Logger] = None):
        """
        Args:
            mpv_path: mpv executable
            socket_path: Path passed to --input-ipc-server
            startup_timeout: Seconds allowed for the socket to appear
            audio_output: Optional --ao value (e.g. pulse, alsa)
            extra_args: Additional mpv arguments
            logger: Logger instance for debugging
        """
        self.mpv_path = mpv_path
        self.socket_path = socket_path
        self.startup_timeout = startup_timeout
        self.audio_output = audio_output
        self.extra_args = list(extra_args or [])
        self.logger = logger or logging.getLogger(__name__)

        self.process: Optional[asyncio.subprocess.Process] = None
        self.exit_handlers: List[Callable[[Optional[int]], object]] = []
        self._relay_tasks: List[asyncio.Task] = []
        self._exit_task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def on_exit(self, handler: Callable[[Optional[int]], object]):
        """Register a callback receiving the exit code when mpv dies unexpectedly"""
        self.exit_handlers.append(handler)

    def build_command(self) -> List[str]:
        command = [self.mpv_path, *MPV_ARGS, f'--input-ipc-server={self.socket_path}']
        if self.audio_output:
            command.append(f'--ao={self.audio_output}')
        command.extend(self.extra_args)
        return command

    async def start(self):
        """
        Spawn mpv and wait for its control socket.

        Raises:
            TransportError: If mpv cannot be started or the socket does not
                appear within startup_timeout
        """
        self._prepare_socket_path()
        command = self.build_command()
        self.logger.info(f"Starting mpv: {' '.join(command)}")

        self._stopping = False
        try:
            self.process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            self.logger.error(f"Failed to start mpv: {e}")
            raise TransportError(f"Failed to start mpv: {e}") from e

        self._relay_tasks = [
            asyncio.create_task(self._relay(self.process.stdout, 'stdout')),
            asyncio.create_task(self._relay(self.process.stderr, 'stderr')),
        ]

        try:
            async with async_timeout.timeout(self.startup_timeout):
                while not os.path.exists(self.socket_path):
                    if self.process.returncode is not None:
                        raise TransportError(f"mpv exited during startup with code {self.process.returncode}")
                    await asyncio.sleep(SOCKET_POLL_INTERVAL)
        except asyncio.TimeoutError:
            await self.stop()
            raise TransportError(f"mpv socket {self.socket_path} not created within {self.startup_timeout}s")
        except TransportError:
            await self.stop()
            raise

        self._exit_task = asyncio.create_task(self._watch_exit())
        self.logger.info(f"mpv started (pid {self.process.pid})")

    async def stop(self):
        """Terminate mpv and remove its socket"""
        self._stopping = True

        if self.running:
            self.logger.info("Stopping mpv...")
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=STOP_TIMEOUT)
            except asyncio.TimeoutError:
                self.logger.warning("mpv did not exit, killing it")
                self.process.kill()
                await self.process.wait()

        for task in [*self._relay_tasks, self._exit_task]:
            if task and not task.done():
                task.cancel()
        self._relay_tasks = []
        self._exit_task = None

        self._remove_socket()

    def _prepare_socket_path(self):
        Path(self.socket_path).parent.mkdir(parents=True, exist_ok=True)
        self._remove_socket()

    def _remove_socket(self):
        if os.path.exists(self.socket_path):
            try:
                os.unlink(self.socket_path)
            except OSError as e:
                self.logger.warning(f"Could not remove socket {self.socket_path}: {e}")

    async def _relay(self, stream: asyncio.StreamReader, name: str):
        async for raw in stream:
            line = raw.decode('utf-8', errors='replace').rstrip()
            if line:
                self.logger.debug(f"[mpv {name}] {line}")

    async def _watch_exit(self):
        code = await self.process.wait()
        if self._stopping:
            return

        self.logger.warning(f"mpv exited unexpectedly with code {code}")
        for handler in list(self.exit_handlers):
            try:
                result = handler(code)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.exception(f"Error in mpv exit handler: {e}")
