"""
In-memory loopback transport.

:class:`LoopbackHub` hands out fake connections that negotiate with each
other through their (fake) SDP blobs and deliver channel frames on the
running event loop, in order. Tests use it to drive two real
:class:`~peerdrop.session.PeerSession` objects against each other::

    hub = LoopbackHub()
    alice = PeerSession(connection_factory=hub.create_connection)
    bob = PeerSession(connection_factory=hub.create_connection)
"""

import asyncio
import itertools
import re
from typing import Dict, List, Optional, Union

from .config import SessionConfig
from .transport import Channel, Connection, SessionDescription

_SDP_ORIGIN = re.compile(r"^o=loopback (\d+)$", re.MULTILINE)


async def settle(rounds: int = 10) -> None:
    """Let scheduled deliveries run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


class LoopbackChannel(Channel):
    """Channel whose frames land on its peer via ``loop.call_soon``"""

    def __init__(self, label: str):
        super().__init__()
        self._label = label
        self._ready_state = "connecting"
        self._buffered_amount = 0
        self._threshold = 0
        self.peer: Optional["LoopbackChannel"] = None
        self.sent: List[Union[str, bytes]] = []

    @property
    def label(self) -> str:
        return self._label

    @property
    def ready_state(self) -> str:
        return self._ready_state

    @property
    def buffered_amount(self) -> int:
        return self._buffered_amount

    @buffered_amount.setter
    def buffered_amount(self, value: int) -> None:
        """Tests set this to simulate a full send buffer"""
        self._buffered_amount = value

    @property
    def buffered_amount_low_threshold(self) -> int:
        return self._threshold

    @buffered_amount_low_threshold.setter
    def buffered_amount_low_threshold(self, value: int) -> None:
        self._threshold = value

    @property
    def binary_frames(self) -> List[bytes]:
        return [f for f in self.sent if isinstance(f, bytes)]

    @property
    def text_frames(self) -> List[str]:
        return [f for f in self.sent if isinstance(f, str)]

    def send(self, data: Union[str, bytes]) -> None:
        if self._ready_state != "open":
            raise ConnectionError(f"channel is {self._ready_state}")
        if isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        self.sent.append(data)
        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer._deliver, data)

    def drain(self) -> None:
        """Empty the simulated buffer and fire ``bufferedamountlow``"""
        previous = self._buffered_amount
        self._buffered_amount = 0
        if previous > self._threshold:
            self.emit("bufferedamountlow")

    def close(self) -> None:
        if self._ready_state in ("closing", "closed"):
            return
        self._ready_state = "closed"
        loop = asyncio.get_running_loop()
        loop.call_soon(self.emit, "close")
        if self.peer is not None:
            loop.call_soon(self.peer._remote_closed)

    def _open(self) -> None:
        self._ready_state = "open"
        self.emit("open")

    def _deliver(self, data: Union[str, bytes]) -> None:
        if self._ready_state == "open":
            self.emit("message", data)

    def _remote_closed(self) -> None:
        if self._ready_state in ("closing", "closed"):
            return
        self._ready_state = "closed"
        self.emit("close")


class LoopbackConnection(Connection):
    """Fake peer connection registered with a :class:`LoopbackHub`"""

    def __init__(self, hub: "LoopbackHub", connection_id: int, config: SessionConfig):
        super().__init__()
        self.hub = hub
        self.id = connection_id
        self.config = config
        self.peer: Optional["LoopbackConnection"] = None
        self.channels: List[LoopbackChannel] = []
        self.closed = False
        self._state = "new"
        self._local: Optional[SessionDescription] = None
        self._remote: Optional[SessionDescription] = None
        self._connected = False

    @property
    def connection_state(self) -> str:
        return self._state

    @property
    def local_description(self) -> Optional[SessionDescription]:
        return self._local

    @property
    def remote_description(self) -> Optional[SessionDescription]:
        return self._remote

    def create_channel(self, label: str) -> Channel:
        channel = LoopbackChannel(label)
        self.channels.append(channel)
        return channel

    async def create_offer(self) -> SessionDescription:
        self._check_not_closed()
        await asyncio.sleep(0)
        return SessionDescription(type="offer", sdp=self._sdp())

    async def create_answer(self) -> SessionDescription:
        self._check_not_closed()
        await asyncio.sleep(0)
        if self._remote is None or self._remote.type != "offer":
            raise RuntimeError("Cannot create an answer without a remote offer")
        return SessionDescription(type="answer", sdp=self._sdp())

    async def set_local_description(self, description: SessionDescription) -> None:
        self._check_not_closed()
        await asyncio.sleep(0)
        self._local = description
        self.emit("icegatheringcomplete", description)
        self._maybe_connect()

    async def set_remote_description(self, description: SessionDescription) -> None:
        self._check_not_closed()
        await asyncio.sleep(0)
        if description.type == "answer" and (self._local is None or self._local.type != "offer"):
            raise RuntimeError("Cannot apply an answer without a local offer")
        peer = self.hub.lookup(description.sdp)
        self._remote = description
        self.peer = peer
        self._maybe_connect()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for channel in self.channels:
            channel.close()
        self._set_state("closed")

    def fail(self) -> None:
        """Simulate the transport giving up on the connection"""
        self._set_state("failed")

    def _sdp(self) -> str:
        return f"v=0\r\no=loopback {self.id}\r\ns=-\r\n"

    def _check_not_closed(self) -> None:
        if self.closed:
            raise RuntimeError("Connection is closed")

    def _set_state(self, state: str) -> None:
        if self._state == state:
            return
        self._state = state
        self.emit("connectionstatechange", state)

    def _maybe_connect(self) -> None:
        peer = self.peer
        if peer is None or peer.peer is not self or self._connected:
            return
        if None in (self._local, self._remote, peer._local, peer._remote):
            return
        offerer, answerer = (self, peer) if self._local.type == "offer" else (peer, self)
        self._connected = peer._connected = True
        asyncio.get_running_loop().call_soon(self.hub._link, offerer, answerer)


class LoopbackHub:
    """Factory and rendezvous point for loopback connections"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.connections: Dict[int, LoopbackConnection] = {}

    def create_connection(self, config: SessionConfig) -> LoopbackConnection:
        connection = LoopbackConnection(self, next(self._ids), config)
        self.connections[connection.id] = connection
        return connection

    def lookup(self, sdp: str) -> LoopbackConnection:
        match = _SDP_ORIGIN.search(sdp.replace("\r\n", "\n"))
        if match is None:
            raise ValueError("SDP does not describe a loopback endpoint")
        connection = self.connections.get(int(match.group(1)))
        if connection is None or connection.closed:
            raise ValueError(f"No open loopback endpoint {match.group(1)}")
        return connection

    def _link(self, offerer: LoopbackConnection, answerer: LoopbackConnection) -> None:
        if offerer.closed or answerer.closed:
            return
        for connection in (offerer, answerer):
            connection._set_state("connecting")
            connection._set_state("connected")

        for channel in list(offerer.channels):
            remote = LoopbackChannel(channel.label)
            channel.peer, remote.peer = remote, channel
            answerer.channels.append(remote)
            answerer.emit("datachannel", remote)
            channel._open()
            remote._open()
