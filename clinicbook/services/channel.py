"""
Real-time push channel - STOMP over WebSocket.

One channel is shared by every session of the application. Subscriptions
may be requested before the connection is up; they are kept pending and
sent to the broker once it acknowledges the connection, and again after
every reconnect.
"""

import asyncio
import inspect
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import urlsplit

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from clinicbook.stomp import (
    Frame,
    FrameError,
    connect_frame,
    disconnect_frame,
    parse_frames,
    subscribe_frame,
    unsubscribe_frame,
)

STOMP_SUBPROTOCOLS = ["v12.stomp", "v11.stomp"]

MessageHandler = Callable[[Any], Union[None, Awaitable[None]]]
Connector = Callable[..., Awaitable[Any]]


class Subscription:
    """
    Handle for one topic subscription.

    ``unsubscribe`` may be called any number of times, whether or not the
    channel is connected.
    """

    def __init__(self, channel: "RealtimeChannel", subscription_id: str, topic: str, handler: MessageHandler):
        self._channel = channel
        self.id = subscription_id
        self.topic = topic
        self.handler = handler
        self.live = False
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._channel._remove(self)

    def __repr__(self) -> str:
        state = "live" if self.live else ("pending" if self.active else "closed")
        return f"Subscription(id={self.id!r}, topic={self.topic!r}, {state})"


class RealtimeChannel:
    """
    Client side of the push broker.

    Args:
        url: WebSocket URL of the broker endpoint
        reconnect_delay: Seconds to wait before reconnecting after a drop
        connector: Coroutine function opening the socket (``websockets.connect`` by default)
    """

    def __init__(
        self,
        url: str,
        reconnect_delay: float = 5.0,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websockets.connect
        self._host = urlsplit(url).hostname or "localhost"

        self._ids = itertools.count(1)
        self._subscriptions: Dict[str, Subscription] = {}
        self._runner: Optional[asyncio.Task] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._socket: Any = None
        self._connected = asyncio.Event()
        self._closing = False

    # ==================== Public API ====================

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    def connect(self) -> asyncio.Task:
        """
        Start the connection loop if it is not already running.

        Returns:
            The task running the connection loop
        """
        if self._runner is not None and not self._runner.done():
            return self._runner
        self._closing = False
        logger.info(f"Opening push channel to {self.url}")
        self._runner = asyncio.get_running_loop().create_task(self._run())
        return self._runner

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """Wait until the broker has acknowledged the connection."""
        await asyncio.wait_for(self._connected.wait(), timeout)

    def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        """
        Subscribe ``handler`` to ``topic``.

        Args:
            topic: Broker destination, e.g. ``/topic/slots``
            handler: Called with each decoded JSON payload; may be a coroutine function

        Returns:
            A handle whose ``unsubscribe`` stops delivery
        """
        subscription = Subscription(self, f"sub-{next(self._ids)}", topic, handler)
        self._subscriptions[subscription.id] = subscription
        if self.is_connected:
            self._materialize(subscription)
        else:
            logger.debug(f"Queued subscription to {topic} until the channel connects")
        return subscription

    async def disconnect(self) -> None:
        """Close the connection and forget every subscription."""
        self._closing = True
        socket = self._socket
        if socket is not None and self.is_connected:
            try:
                await socket.send(disconnect_frame().encode())
            except ConnectionClosed:
                pass

        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)

        for subscription in self._subscriptions.values():
            subscription.active = False
            subscription.live = False
        self._subscriptions.clear()
        self._reset_connection()
        logger.info("Push channel disconnected")

    # ==================== Connection loop ====================

    async def _run(self) -> None:
        while not self._closing:
            try:
                await self._session()
                logger.warning("Push channel closed by broker")
            except asyncio.CancelledError:
                raise
            except (ConnectionClosed, OSError, FrameError) as e:
                logger.warning(f"Push channel connection lost: {e}")
            except Exception as e:
                logger.error(f"Unexpected push channel error: {e}")
            finally:
                self._reset_connection()

            if self._closing:
                break
            logger.info(f"Reconnecting push channel in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)

    async def _session(self) -> None:
        socket = await self._connector(self.url, subprotocols=STOMP_SUBPROTOCOLS)
        outbox: asyncio.Queue = asyncio.Queue()
        self._socket = socket
        self._outbox = outbox
        writer = asyncio.create_task(self._write(socket, outbox))
        try:
            await socket.send(connect_frame(self._host).encode())
            async for message in socket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                for frame in parse_frames(message):
                    await self._handle_frame(frame)
        finally:
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
            await socket.close()

    async def _write(self, socket: Any, outbox: asyncio.Queue) -> None:
        while True:
            frame: Frame = await outbox.get()
            await socket.send(frame.encode())

    def _reset_connection(self) -> None:
        self._connected.clear()
        self._socket = None
        self._outbox = None
        for subscription in self._subscriptions.values():
            subscription.live = False

    # ==================== Frames ====================

    async def _handle_frame(self, frame: Frame) -> None:
        if frame.command == "CONNECTED":
            self._connected.set()
            pending = [s for s in self._subscriptions.values() if not s.live]
            logger.info(f"Push channel connected, subscribing to {len(pending)} topic(s)")
            for subscription in pending:
                self._materialize(subscription)
        elif frame.command == "MESSAGE":
            subscription = self._subscriptions.get(frame.header("subscription", ""))
            if subscription is None or not subscription.active:
                logger.debug(f"Dropping message for closed subscription on {frame.header('destination')}")
                return
            await self._dispatch(subscription, frame)
        elif frame.command == "ERROR":
            logger.error(f"Broker reported error: {frame.header('message', '')}")
            if frame.body:
                logger.debug(f"Broker error details: {frame.body}")
        else:
            logger.debug(f"Ignoring {frame.command} frame")

    async def _dispatch(self, subscription: Subscription, frame: Frame) -> None:
        try:
            payload = json.loads(frame.body)
        except ValueError as e:
            logger.error(f"Failed to parse message on {subscription.topic}: {e}")
            return

        try:
            result = subscription.handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Handler for {subscription.topic} failed: {e}")

    def _materialize(self, subscription: Subscription) -> None:
        self._send(subscribe_frame(subscription.id, subscription.topic))
        subscription.live = True
        logger.debug(f"Subscribed to {subscription.topic} as {subscription.id}")

    def _remove(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is None:
            return
        if subscription.live and self.is_connected:
            self._send(unsubscribe_frame(subscription.id))
        subscription.live = False
        logger.debug(f"Unsubscribed from {subscription.topic}")

    def _send(self, frame: Frame) -> None:
        if self._outbox is not None:
            self._outbox.put_nowait(frame)
