"""
Shared fixtures: an in-memory STOMP broker socket for the push channel.
"""

import asyncio
from typing import List, Optional

import pytest

from clinicbook.stomp import Frame, message_frame, parse_frames


class FakeBrokerSocket:
    """
    Stands in for a WebSocket connection to a STOMP broker.

    Frames sent by the client are recorded; CONNECT is answered with
    CONNECTED. Tests push server frames with ``deliver`` and end the
    connection with ``drop``.
    """

    def __init__(self, auto_connect: bool = True):
        self.auto_connect = auto_connect
        self.sent: List[Frame] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self._message_ids = 0

    async def send(self, data: str) -> None:
        for frame in parse_frames(data):
            self.sent.append(frame)
            if frame.command == "CONNECT" and self.auto_connect:
                self.incoming.put_nowait(Frame(command="CONNECTED", headers={"version": "1.2"}).encode())

    def commands(self, command: str) -> List[Frame]:
        return [f for f in self.sent if f.command == command]

    def deliver(self, subscription_id: str, destination: str, body: str) -> None:
        self._message_ids += 1
        self.incoming.put_nowait(message_frame(destination, subscription_id, str(self._message_ids), body).encode())

    def deliver_frame(self, frame: Frame) -> None:
        self.incoming.put_nowait(frame.encode())

    def drop(self) -> None:
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item: Optional[str] = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Opens a new FakeBrokerSocket per connection attempt."""

    def __init__(self):
        self.sockets: List[FakeBrokerSocket] = []
        self.calls = []

    async def __call__(self, url: str, **kwargs) -> FakeBrokerSocket:
        self.calls.append((url, kwargs))
        socket = FakeBrokerSocket()
        self.sockets.append(socket)
        return socket

    @property
    def socket(self) -> FakeBrokerSocket:
        return self.sockets[-1]


@pytest.fixture
def connector():
    return FakeConnector()
