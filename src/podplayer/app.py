"""
Player Service Application
==========================

Headless host process for the podcast player. It starts mpv, drives it
through the MediaPlayerService and talks to the rest of the system over
ZeroMQ:

- a REP command socket receiving CommandMessage JSON and answering with
  {"status": "success", "data": ...} or {"status": "error", "message": ...}
- a PUB event socket relaying every player notification

Usage: podplayer   (or python player_main.py)
"""

import asyncio
import inspect
import json
import logging
import signal
import sys
from typing import Optional

import zmq
import zmq.asyncio

from podplayer.core.media_player_service import MediaPlayerService
from podplayer.core.mpv_process import MpvProcess
from podplayer.core.notifications import NotificationHub, ZmqNotificationPublisher
from podplayer.utils.config import load_config
from podplayer.utils.database import DatabaseManager
from podplayer.utils.exceptions import PlayerControlError, TransportError
from podplayer.utils.ipc_client import MpvIPCClient
from podplayer.utils.ipc_protocol import Command, CommandMessage
from podplayer.utils.logging_config import setup_logging

# Command -> (service method, accepted data keys)
COMMAND_HANDLERS = {
    Command.PLAY_EPISODE: ('play_episode', ('episode_id',)),
    Command.ADD_TO_QUEUE: ('add_to_queue', ('episode_id', 'position')),
    Command.ADD_MULTIPLE_TO_QUEUE: ('add_multiple_to_queue', ('episode_ids',)),
    Command.PLAY_NEXT: ('play_next', ()),
    Command.PLAY_PREVIOUS: ('play_previous', ()),
    Command.JUMP_TO: ('jump_to', ('index',)),
    Command.REMOVE_FROM_QUEUE: ('remove_from_queue', ('index',)),
    Command.REMOVE_BY_ID: ('remove_by_item_id', ('item_id',)),
    Command.MOVE_IN_QUEUE: ('move_in_queue', ('from_index', 'to_index')),
    Command.SHUFFLE_QUEUE: ('shuffle_queue', ()),
    Command.SORT_QUEUE: ('sort_queue', ('sort_by', 'order')),
    Command.CLEAR_QUEUE: ('clear_queue', ()),
    Command.TOGGLE_PAUSE: ('toggle_pause', ()),
    Command.PAUSE: ('pause', ()),
    Command.RESUME: ('resume', ()),
    Command.STOP: ('stop', ()),
    Command.SEEK: ('seek', ('position',)),
    Command.SEEK_RELATIVE: ('seek_relative', ('offset',)),
    Command.SET_VOLUME: ('set_volume', ('level',)),
    Command.GET_STATUS: ('get_status', ()),
    Command.GET_QUEUE: ('get_queue', ()),
    Command.GET_HEALTH: ('get_health', ()),
}


class PlayerServiceApp:
    """Main Player Service Application"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.config = None
        self.context = None
        self.command_socket = None
        self.publisher: Optional[ZmqNotificationPublisher] = None
        self.store: Optional[DatabaseManager] = None
        self.player: Optional[MediaPlayerService] = None
        self.running = False
        self.logger = logging.getLogger("player_service")

    async def initialize(self):
        """Initialize the Player Service"""
        self.config = load_config(self.config_path)

        # Setup logging
        setup_logging(self.config['log_level'], self.config['log_dir'])
        self.logger.info("Initializing Player Service...")

        # Initialize ZeroMQ context
        self.context = zmq.asyncio.Context()

        # Setup command socket (receives commands from the API layer)
        self.command_socket = self.context.socket(zmq.REP)
        self.command_socket.bind(self.config['command_address'])
        self.logger.info(f"Command socket bound to {self.config['command_address']}")

        # Setup event socket (publishes player notifications)
        self.publisher = ZmqNotificationPublisher(self.config['event_address'], self.context)
        self.publisher.start()

        self.store = DatabaseManager(self.config['db_path'])
        await self.store.initialize()

        process = MpvProcess(
            mpv_path=self.config['mpv_path'],
            socket_path=self.config['socket_path'],
            startup_timeout=self.config['startup_timeout'],
            audio_output=self.config['audio_output']
        )
        transport = MpvIPCClient(
            self.config['socket_path'],
            command_timeout=self.config['command_timeout'],
            connect_timeout=self.config['connect_timeout']
        )
        self.player = MediaPlayerService(
            transport, self.store, self.config,
            notifier=NotificationHub([self.publisher.publish]),
            process=process
        )

        try:
            await self.player.initialize()
        except TransportError as e:
            # The command socket still answers; playback commands fail until restart
            self.logger.error(f"mpv unavailable, playback disabled: {e.message}")

        self.logger.info("Player Service initialized successfully")

    async def start(self):
        """Start the Player Service"""
        await self.initialize()
        self.running = True
        self.logger.info("Player Service started")

        # Start the command processing loop
        await self.command_loop()

    async def command_loop(self):
        """Main command processing loop"""
        self.logger.info("Starting command processing loop...")

        while self.running:
            try:
                message_data = await self.command_socket.recv_string(zmq.NOBLOCK)
            except zmq.Again:
                # No message available, wait a bit
                await asyncio.sleep(0.01)
                continue

            response = await self.process_command(message_data)
            await self.command_socket.send_string(response)

    async def process_command(self, message_data: str) -> str:
        """Process one command message and build the JSON reply"""
        try:
            message = CommandMessage.from_json(message_data)
            command = message.command
        except ValueError as e:
            return json.dumps({"status": "error", "message": f"Invalid command: {e}"})

        self.logger.debug(f"Processing command {command.value}")

        try:
            result = await self.dispatch(command, message.data)
        except PlayerControlError as e:
            self.logger.warning(f"Command {command.value} failed: {e.message}")
            return json.dumps({"status": "error", "message": e.message, "code": e.code})
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Command {command.value} rejected: {e}")
            return json.dumps({"status": "error", "message": f"Invalid arguments for {command.value}: {e}", "code": 400})

        return json.dumps({"status": "success", "data": result}, default=str)

    async def dispatch(self, command: Command, data: dict):
        method_name, arg_names = COMMAND_HANDLERS[command]
        kwargs = {name: data[name] for name in arg_names if name in data}
        result = getattr(self.player, method_name)(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def shutdown(self):
        """Shutdown the Player Service"""
        self.logger.info("Shutting down Player Service...")
        self.running = False

        if self.player:
            try:
                await self.player.cleanup()
            except PlayerControlError as e:
                self.logger.error(f"Error cleaning up player: {e}")
            self.player = None

        # Close sockets
        if self.command_socket:
            self.command_socket.close(linger=0)
            self.command_socket = None
        if self.publisher:
            self.publisher.close()
            self.publisher = None

        # Terminate context
        if self.context:
            self.context.term()
            self.context = None

        self.logger.info("Player Service shutdown complete")


async def run(config_path: Optional[str] = None) -> int:
    app = PlayerServiceApp(config_path)

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: setattr(app, 'running', False))

    try:
        await app.start()
    except (PlayerControlError, ValueError, OSError, zmq.ZMQError) as e:
        app.logger.error(f"Fatal error: {e}")
        return 1
    finally:
        await app.shutdown()

    return 0


def main():
    """Console entry point"""
    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(run(config_path)))
