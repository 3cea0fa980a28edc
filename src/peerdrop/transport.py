"""
Peer connection and data channel collaborators.

The session layer talks to the network only through :class:`Connection`
and :class:`Channel`. Both are event emitters; the events used are:

Connection
    ``icegatheringcomplete(description)``, ``connectionstatechange(state)``,
    ``datachannel(channel)``
Channel
    ``open``, ``close``, ``message(unit)``, ``bufferedamountlow``

:class:`AiortcConnection` and :class:`AiortcChannel` adapt aiortc's
``RTCPeerConnection`` / ``RTCDataChannel`` to that surface.
"""

import json
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional, Union

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from pyee.asyncio import AsyncIOEventEmitter

from .config import SessionConfig
from .errors import NegotiationError

logger = logging.getLogger(__name__)

DESCRIPTION_TYPES = ("offer", "answer")


@dataclass
class SessionDescription:
    """Offer or answer, serialized the way browsers serialize RTCSessionDescription"""
    type: str
    sdp: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "sdp": self.sdp}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def parse_description(blob: str, expected_type: str) -> SessionDescription:
    """
    Parse a pasted session description blob.

    Args:
        blob: JSON text as produced by :meth:`SessionDescription.to_json`
        expected_type: ``"offer"`` or ``"answer"``

    Returns:
        Parsed SessionDescription

    Raises:
        NegotiationError: If the blob is malformed or of the wrong type
    """
    if not isinstance(blob, str) or not blob.strip():
        raise NegotiationError(f"Empty session {expected_type}")
    try:
        data = json.loads(blob)
    except ValueError as e:
        raise NegotiationError(
            f"Session {expected_type} is not valid JSON",
            {"position": getattr(e, "pos", None)}
        ) from None

    if not isinstance(data, dict):
        raise NegotiationError(f"Session {expected_type} must be a JSON object")

    kind = data.get("type")
    sdp = data.get("sdp")
    if kind != expected_type:
        raise NegotiationError(
            f"Expected a session {expected_type}, got {kind!r}",
            {"expected": expected_type, "received": kind}
        )
    if not isinstance(sdp, str) or not sdp.strip():
        raise NegotiationError(f"Session {expected_type} has no SDP")
    return SessionDescription(type=kind, sdp=sdp)


class Channel(AsyncIOEventEmitter):
    """Ordered, reliable message channel"""

    @property
    def label(self) -> str:
        raise NotImplementedError

    @property
    def ready_state(self) -> str:
        """``connecting``, ``open``, ``closing`` or ``closed``"""
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        return self.ready_state == "open"

    @property
    def buffered_amount(self) -> int:
        """Bytes queued for sending but not yet handed to the network"""
        raise NotImplementedError

    @property
    def buffered_amount_low_threshold(self) -> int:
        raise NotImplementedError

    @buffered_amount_low_threshold.setter
    def buffered_amount_low_threshold(self, value: int) -> None:
        raise NotImplementedError

    def send(self, data: Union[str, bytes]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class Connection(AsyncIOEventEmitter):
    """Peer connection handle"""

    @property
    def connection_state(self) -> str:
        raise NotImplementedError

    @property
    def local_description(self) -> Optional[SessionDescription]:
        raise NotImplementedError

    def create_channel(self, label: str) -> Channel:
        raise NotImplementedError

    async def create_offer(self) -> SessionDescription:
        raise NotImplementedError

    async def create_answer(self) -> SessionDescription:
        raise NotImplementedError

    async def set_local_description(self, description: SessionDescription) -> None:
        """Apply the local description and gather every candidate before returning"""
        raise NotImplementedError

    async def set_remote_description(self, description: SessionDescription) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class AiortcChannel(Channel):
    """Channel backed by an aiortc RTCDataChannel"""

    def __init__(self, channel: RTCDataChannel):
        super().__init__()
        self._channel = channel
        for event in ("open", "close", "bufferedamountlow"):
            channel.on(event, partial(self.emit, event))
        channel.on("message", partial(self.emit, "message"))

    @property
    def label(self) -> str:
        return self._channel.label

    @property
    def ready_state(self) -> str:
        return self._channel.readyState

    @property
    def buffered_amount(self) -> int:
        return self._channel.bufferedAmount

    @property
    def buffered_amount_low_threshold(self) -> int:
        return self._channel.bufferedAmountLowThreshold

    @buffered_amount_low_threshold.setter
    def buffered_amount_low_threshold(self, value: int) -> None:
        self._channel.bufferedAmountLowThreshold = value

    def send(self, data: Union[str, bytes]) -> None:
        self._channel.send(data)

    def close(self) -> None:
        self._channel.close()


class AiortcConnection(Connection):
    """Connection backed by an aiortc RTCPeerConnection"""

    def __init__(self, config: SessionConfig):
        super().__init__()
        ice_servers = [RTCIceServer(urls=url) for url in config.ice_servers]
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))
        self._pc.on("connectionstatechange", self._on_connection_state_change)
        self._pc.on("datachannel", self._on_datachannel)

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    @property
    def local_description(self) -> Optional[SessionDescription]:
        description = self._pc.localDescription
        if description is None:
            return None
        return SessionDescription(type=description.type, sdp=description.sdp)

    def create_channel(self, label: str) -> Channel:
        return AiortcChannel(self._pc.createDataChannel(label))

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        # aiortc gathers all candidates inside setLocalDescription
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        local = self.local_description
        if local is not None:
            logger.debug(f"Candidate gathering complete for local {local.type}")
            self.emit("icegatheringcomplete", local)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def close(self) -> None:
        await self._pc.close()

    def _on_connection_state_change(self):
        state = self._pc.connectionState
        logger.debug(f"Peer connection state: {state}")
        self.emit("connectionstatechange", state)

    def _on_datachannel(self, channel: RTCDataChannel):
        logger.debug(f"Incoming data channel: {channel.label}")
        self.emit("datachannel", AiortcChannel(channel))


def create_connection(config: SessionConfig) -> Connection:
    """Default connection factory"""
    return AiortcConnection(config)
