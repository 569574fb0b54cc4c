"""
Outbound Notifications
======================

The player service reports state changes (track changed, time updates, queue
updates, ...) to subscribers. Subscribers are plain callables or coroutine
functions taking one message dict; delivery is fire-and-forget and a failing
subscriber never affects the player.

ZmqNotificationPublisher is the subscriber used by the host application: it
relays each message as JSON on a ZeroMQ PUB socket.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import zmq
import zmq.asyncio

from podplayer.utils.ipc_protocol import Notification, create_notification

Subscriber = Callable[[Dict[str, Any]], Any]


class NotificationHub:
    """Fans notifications out to every subscriber"""

    def __init__(self, subscribers: Optional[Iterable[Subscriber]] = None,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.subscribers: List[Subscriber] = list(subscribers or [])
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber):
        self.subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber):
        if subscriber in self.subscribers:
            self.subscribers.remove(subscriber)

    def notify(self, event: Notification, payload: Optional[Dict[str, Any]] = None):
        """
        Deliver a notification to all subscribers without waiting for them

        Args:
            event: Notification type
            payload: Extra fields merged into the message
        """
        message = create_notification(event, payload)
        for subscriber in list(self.subscribers):
            try:
                result = subscriber(message)
            except Exception as e:
                self.logger.error(f"Notification subscriber failed on {event.value}: {e}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_delivered)

    async def drain(self):
        """Wait until every scheduled delivery has finished"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_delivered(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Notification delivery failed: {error}")


class ZmqNotificationPublisher:
    """Publishes notifications on a ZeroMQ PUB socket"""

    def __init__(self, address: str, context: Optional[zmq.asyncio.Context] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            address: Address to bind, e.g. tcp://127.0.0.1:5556
            context: Shared zmq.asyncio context; one is created when omitted
            logger: Logger instance for debugging
        """
        self.address = address
        self.logger = logger or logging.getLogger(__name__)
        self._owns_context = context is None
        self.context = context or zmq.asyncio.Context()
        self.socket = None

    def start(self):
        self.socket = self.context.socket(zmq.PUB)
        self.socket.bind(self.address)
        self.logger.info(f"Event socket bound to {self.address}")

    async def publish(self, message: Dict[str, Any]):
        if self.socket is None:
            return
        try:
            await self.socket.send_string(json.dumps(message, default=str))
        except zmq.ZMQError as e:
            self.logger.error(f"Error sending event: {e}")

    def close(self):
        if self.socket is not None:
            self.socket.close(linger=0)
            self.socket = None
        if self._owns_context:
            self.context.term()
