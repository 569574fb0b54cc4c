"""
IPC Client for the mpv Control Socket
=====================================

This module provides the transport that lets the controller talk to a running
mpv process over its JSON IPC Unix socket. It sends commands, correlates the
responses by request id and hands unsolicited events to registered handlers.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import async_timeout

from podplayer.utils.exceptions import RemoteCommandError, RequestTimeout, TransportError
from podplayer.utils.ipc_protocol import (
    MpvEvent, MpvRequest, SUCCESS, create_get_property_command, create_observe_command,
    create_set_property_command, is_event, is_response, parse_message
)

READ_CHUNK_SIZE = 65536
DRAIN_TIMEOUT = 5.0

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]
DisconnectHandler = Callable[[str], Union[Awaitable[None], None]]


@dataclass
class PendingRequest:
    """A request waiting for its response"""
    request_id: int
    command: List[Any]
    future: asyncio.Future


# Marks the point in the event stream where the connection was lost
_CONNECTION_LOST = object()


class MpvIPCClient:
    """
    IPC Client for communicating with mpv

    This class owns the socket connection and provides a high-level
    interface for sending commands and receiving events.
    """

    def __init__(self, socket_path: str, command_timeout: float = 5.0,
                 connect_timeout: float = 5.0, logger: Optional[logging.Logger] = None):
        """
        Initialize the IPC Client

        Args:
            socket_path: Path of the mpv --input-ipc-server socket
            command_timeout: Seconds to wait for a response before giving up
            connect_timeout: Seconds allowed to open the socket
            logger: Logger instance for debugging
        """
        self.logger = logger or logging.getLogger(__name__)
        self.socket_path = socket_path
        self.command_timeout = command_timeout
        self.connect_timeout = connect_timeout
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.event_handlers: Dict[str, EventHandler] = {}
        self.disconnect_handlers: List[DisconnectHandler] = []
        self.reader_task = None
        self.event_worker_task = None
        self.connected = False
        self._request_id = 0
        self._pending: Dict[int, PendingRequest] = {}
        self._events: Optional[asyncio.Queue] = None
        self._buffer = b""
        self._disconnect_reason = "connection lost"
        self._draining = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def last_request_id(self) -> int:
        return self._request_id

    async def connect(self):
        """Open the mpv control socket and start the reader tasks"""
        if self.connected:
            return

        self.logger.info(f"Connecting to mpv at {self.socket_path}...")
        try:
            async with async_timeout.timeout(self.connect_timeout):
                self.reader, self.writer = await asyncio.open_unix_connection(self.socket_path)
        except (OSError, asyncio.TimeoutError) as e:
            self.logger.error(f"Failed to connect to mpv socket {self.socket_path}: {e}")
            raise TransportError(f"Cannot open mpv socket {self.socket_path}: {e}") from e

        self.connected = True
        self._draining = False
        self._buffer = b""
        self._events = asyncio.Queue()
        self.reader_task = asyncio.create_task(self._read_loop())
        self.event_worker_task = asyncio.create_task(self._event_worker())
        self.logger.info("Successfully connected to mpv")

    async def disconnect(self):
        """Close the connection without notifying disconnect handlers"""
        self.logger.info("Disconnecting from mpv...")

        # Set disconnected state first
        self.connected = False

        if self._draining and self.event_worker_task is not asyncio.current_task():
            # Disconnect handlers for an earlier connection loss are running
            await asyncio.wait({self.event_worker_task}, timeout=DRAIN_TIMEOUT)

        for task in (self.reader_task, self.event_worker_task):
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await asyncio.wait_for(task, timeout=2.0)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    self.logger.debug("IPC task cancelled or timed out")
        self.reader_task = None
        self.event_worker_task = None

        self._fail_pending(TransportError("Disconnected from mpv"))
        await self._close_writer()
        self.logger.info("Disconnected from mpv")

    async def send_request(self, command: List[Any]) -> Any:
        """
        Send a command to mpv and wait for its response

        Args:
            command: Command array, e.g. ["get_property", "duration"]

        Returns:
            The "data" field of the matching response

        Raises:
            TransportError: If the socket is not connected or the write fails
            RemoteCommandError: If mpv rejects the command
            RequestTimeout: If no response arrives within command_timeout
        """
        if not self.connected or self.writer is None:
            raise TransportError("Not connected to mpv")

        self._request_id += 1
        request = MpvRequest(command=list(command), request_id=self._request_id)
        future = asyncio.get_running_loop().create_future()
        self._pending[request.request_id] = PendingRequest(request.request_id, request.command, future)

        try:
            try:
                self.writer.write(request.to_json().encode("utf-8"))
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise TransportError(f"Failed to send {request.command[0]!r} to mpv: {e}") from e

            try:
                async with async_timeout.timeout(self.command_timeout):
                    return await future
            except asyncio.TimeoutError:
                self.logger.warning(f"Request {request.request_id} ({request.command[0]}) timed out "
                                    f"after {self.command_timeout}s")
                raise RequestTimeout(f"Command timeout: {request.command[0]}", request_id=request.request_id)
        finally:
            self._pending.pop(request.request_id, None)

    async def command(self, *args: Any) -> Any:
        return await self.send_request(list(args))

    async def get_property(self, name: str) -> Any:
        return await self.send_request(create_get_property_command(name))

    async def set_property(self, name: str, value: Any) -> Any:
        return await self.send_request(create_set_property_command(name, value))

    async def observe_property(self, observer_id: int, name: str) -> Any:
        return await self.send_request(create_observe_command(observer_id, name))

    def register_event_handler(self, event: Union[MpvEvent, str], handler: EventHandler):
        """
        Register an event handler

        Args:
            event: mpv event to handle
            handler: Async function called with the raw event message
        """
        name = event.value if isinstance(event, MpvEvent) else event
        self.event_handlers[name] = handler
        self.logger.debug(f"Registered handler for mpv event: {name}")

    def register_disconnect_handler(self, handler: DisconnectHandler):
        """Register a callback invoked once when the connection is lost"""
        self.disconnect_handlers.append(handler)

    async def _read_loop(self):
        """Background task reading newline-delimited JSON from mpv"""
        reason = "socket closed by mpv"
        try:
            while True:
                data = await self.reader.read(READ_CHUNK_SIZE)
                if not data:
                    break
                self._buffer += data
                while b"\n" in self._buffer:
                    raw, self._buffer = self._buffer.split(b"\n", 1)
                    self._handle_line(raw)
        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError) as e:
            reason = f"socket error: {e}"

        await self._connection_lost(reason)

    def _handle_line(self, raw: bytes):
        """Parse one line and route it to the pending table or the event queue"""
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return

        try:
            message = parse_message(line)
        except ValueError as e:
            self.logger.error(f"Failed to parse mpv message: {e} ({line[:200]!r})")
            return

        if is_response(message):
            self._resolve(message)
        if is_event(message):
            self._events.put_nowait(message)

    def _resolve(self, message: Dict[str, Any]):
        pending = self._pending.pop(message.get("request_id"), None)
        if pending is None or pending.future.done():
            self.logger.debug(f"Dropping response for unknown request {message.get('request_id')}")
            return

        error = message.get("error", SUCCESS)
        if error != SUCCESS:
            pending.future.set_exception(RemoteCommandError(str(error), command=pending.command))
        else:
            pending.future.set_result(message.get("data"))

    async def _event_worker(self):
        """Background task handing events to handlers one at a time"""
        while True:
            message = await self._events.get()
            if message is _CONNECTION_LOST:
                try:
                    await self._notify_disconnect()
                finally:
                    self._draining = False
                break
            await self._handle_event(message)

    async def _handle_event(self, message: Dict[str, Any]):
        """
        Handle an event from mpv

        Args:
            message: Event message from mpv
        """
        event_type = message.get("event")
        handler = self.event_handlers.get(event_type)
        if handler is None:
            self.logger.debug(f"No handler registered for mpv event: {event_type}")
            return

        try:
            await handler(message)
        except Exception as e:
            self.logger.exception(f"Error handling mpv event {event_type}: {e}")

    async def _connection_lost(self, reason: str):
        if not self.connected:
            return

        self.connected = False
        self.logger.warning(f"Connection to mpv lost: {reason}")
        self._disconnect_reason = reason
        self._draining = True
        self._events.put_nowait(_CONNECTION_LOST)
        self._fail_pending(TransportError(f"Connection to mpv lost: {reason}"))
        await self._close_writer()

    async def _notify_disconnect(self):
        for handler in list(self.disconnect_handlers):
            try:
                result = handler(self._disconnect_reason)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.exception(f"Error in disconnect handler: {e}")

    def _fail_pending(self, error: TransportError):
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(error)
        if pending:
            self.logger.warning(f"Rejected {len(pending)} pending mpv request(s): {error.message}")

    async def _close_writer(self):
        if self.writer is None:
            return
        writer, self.writer = self.writer, None
        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            self.logger.debug(f"Error closing mpv socket: {e}")
