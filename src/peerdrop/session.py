"""
Peer session state machine.

Drives a manual (copy/paste) offer/answer exchange and owns the peer
connection and its single data channel::

    DISCONNECTED --create_offer / create_answer--> CONNECTING
    CONNECTING   --channel open-----------------> CONNECTED
    any          --negotiation/transport failure--> FAILED
    any          --reset / channel close----------> DISCONNECTED

Candidates are gathered completely before a description is surfaced, so
each side hands over exactly one blob. Failures never escape the public
methods: they move the session to FAILED and set ``last_error``.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .codec import FrameType, decode_frame, encode_text
from .config import SessionConfig
from .errors import ConnectionFailedError, describe_error
from .files import FileSource
from .messages import FileMessage, MessageLog, Sender, TextMessage
from .receiver import FileReceiver, FileTransferState
from .sender import FileSender
from .transport import (
    Channel,
    Connection,
    SessionDescription,
    create_connection,
    parse_description,
)

logger = logging.getLogger(__name__)

OFFER_FAILED_MESSAGE = "Could not create a session offer."
INVALID_OFFER_MESSAGE = "Invalid session offer. Please copy the entire offer text and try again."
INVALID_ANSWER_MESSAGE = "Invalid session answer. Please copy the entire answer text and try again."
CONNECTION_FAILED_MESSAGE = "Connection failed. This could be due to a network issue or firewall."
SEND_FAILED_MESSAGE = "Sending over the channel failed."
TRANSFER_FAILED_MESSAGE = "File transfer failed."


class ConnectionState(Enum):
    """Session states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class Role(Enum):
    """Negotiation role, fixed once negotiation starts"""
    UNSET = "unset"
    OFFERER = "offerer"
    ANSWERER = "answerer"

    def __str__(self) -> str:
        return self.value


SessionListener = Callable[["PeerSession"], None]


class PeerSession:
    """
    One peer-to-peer session: negotiation, channel lifecycle and transfers.

    The connection and channel handles are owned exclusively by the
    session. Every asynchronous step re-checks an attempt counter after
    each await, so a reset (or failure) while a step is pending makes the
    step a no-op instead of mutating the next attempt.
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        connection_factory: Optional[Callable[[SessionConfig], Connection]] = None
    ):
        self.config = config or SessionConfig()
        self._connection_factory = connection_factory or create_connection

        self.messages = MessageLog()
        self._receiver = FileReceiver(on_file=self.messages.append)

        self._listeners: List[SessionListener] = []
        self._waiters: List[Tuple[frozenset, asyncio.Future]] = []
        self._transfers: Dict[asyncio.Task, FileSender] = {}
        self._background: Set[asyncio.Task] = set()
        # One file on the wire at a time
        self._send_lock = asyncio.Lock()
        self._attempt = 0

        self._clear_fields()

    def _clear_fields(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.role = Role.UNSET
        self.local_description: Optional[SessionDescription] = None
        self.remote_description: Optional[SessionDescription] = None
        self.offer: Optional[str] = None
        self.answer: Optional[str] = None
        self.last_error: Optional[str] = None
        self._connection: Optional[Connection] = None
        self._channel: Optional[Channel] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def channel(self) -> Optional[Channel]:
        return self._channel

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.is_open

    @property
    def incoming_transfer(self) -> Optional[FileTransferState]:
        return self._receiver.transfer

    @property
    def outgoing_transfers(self) -> List[FileSender]:
        return list(self._transfers.values())

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener(session)`` after every observable change"""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    async def wait_for_state(self, *states: ConnectionState, timeout: Optional[float] = None) -> ConnectionState:
        """
        Wait until the session is in one of ``states``

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        if self.state in states:
            return self.state

        future = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), future)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    def snapshot(self) -> Dict[str, Any]:
        transfer = self._receiver.transfer
        return {
            "state": self.state.value,
            "role": self.role.value,
            "offer": self.offer,
            "answer": self.answer,
            "last_error": self.last_error,
            "messages": len(self.messages),
            "receiving": transfer.info.name if transfer else None,
            "sending": [s.info.name for s in self._transfers.values()],
        }

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

        for states, future in list(self._waiters):
            if self.state in states and not future.done():
                future.set_result(self.state)

    def _set_state(self, state: ConnectionState) -> None:
        if self.state is state:
            return
        logger.info(f"Session state: {self.state} -> {state}")
        self.state = state
        self._notify()

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    async def create_offer(self) -> None:
        """
        Start a session as the offering side.

        Resets any previous session first. The offer blob appears in
        :attr:`offer` once candidate gathering completes.
        """
        await self.reset()
        connection = self._create_connection()
        self.role = Role.OFFERER
        attempt = self._attempt
        self._attach_channel(connection.create_channel(self.config.channel_label))

        try:
            offer = await connection.create_offer()
            if self._stale(attempt):
                return
            await connection.set_local_description(offer)
        except Exception as e:
            if not self._stale(attempt):
                self._fail(OFFER_FAILED_MESSAGE, e)
            return

        if not self._stale(attempt):
            self._set_state(ConnectionState.CONNECTING)

    async def create_answer(self, offer_blob: str) -> None:
        """
        Answer a pasted offer.

        Only valid from DISCONNECTED with no role assigned. A malformed or
        rejected offer moves the session to FAILED. The answer blob appears
        in :attr:`answer` once candidate gathering completes.
        """
        if self.state is not ConnectionState.DISCONNECTED or self.role is not Role.UNSET:
            logger.warning(f"create_answer ignored: session is {self.state} as {self.role}")
            return

        if self._connection is None:
            await self.reset()
            self._create_connection()
        connection = self._connection
        attempt = self._attempt

        try:
            offer = parse_description(offer_blob, "offer")
            self.role = Role.ANSWERER
            self.remote_description = offer
            await connection.set_remote_description(offer)
            if self._stale(attempt):
                return
            answer = await connection.create_answer()
            if self._stale(attempt):
                return
            await connection.set_local_description(answer)
        except Exception as e:
            if not self._stale(attempt):
                self._fail(INVALID_OFFER_MESSAGE, e)
            return

        if not self._stale(attempt) and self.state is ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.CONNECTING)

    async def set_remote_answer(self, answer_blob: str) -> None:
        """
        Complete negotiation on the offering side.

        A no-op without a connection, or if a remote description was
        already applied in this attempt.
        """
        connection = self._connection
        if connection is None:
            logger.debug("set_remote_answer ignored: no connection")
            return
        if self.remote_description is not None:
            logger.warning("set_remote_answer ignored: remote description already applied")
            return

        attempt = self._attempt
        try:
            answer = parse_description(answer_blob, "answer")
            self.remote_description = answer
            await connection.set_remote_description(answer)
        except Exception as e:
            if not self._stale(attempt):
                self._fail(INVALID_ANSWER_MESSAGE, e)
            return

        if not self._stale(attempt):
            logger.info("Remote answer applied")
            self._notify()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_text(self, content: str) -> Optional[TextMessage]:
        """Send a text message; returns None if the channel is not open"""
        channel = self._channel
        if channel is None or not channel.is_open:
            logger.debug("send_text ignored: channel not open")
            return None

        message = TextMessage(content=content, sender=Sender.LOCAL)
        try:
            channel.send(encode_text(message))
        except Exception as e:
            self._fail(SEND_FAILED_MESSAGE, e)
            return None
        return self.messages.append(message)

    def send_file(self, source: FileSource) -> Optional["asyncio.Task[Optional[FileMessage]]"]:
        """
        Queue a chunked file transfer.

        Files go out one at a time in call order: a file's meta record is
        sent only once the previous file's end record is out. The returned
        task resolves to the local FileMessage. Returns None if the channel
        is not open.
        """
        channel = self._channel
        if channel is None or not channel.is_open:
            logger.debug("send_file ignored: channel not open")
            return None

        sender = FileSender(
            channel,
            source,
            on_complete=self.messages.append,
            chunk_size=self.config.chunk_size
        )
        task = asyncio.ensure_future(self._run_sender(sender, self._attempt))
        self._transfers[task] = sender
        return task

    async def _run_sender(self, sender: FileSender, attempt: int) -> Optional[FileMessage]:
        try:
            async with self._send_lock:
                if self._stale(attempt):
                    return None
                return await sender.run()
        except asyncio.CancelledError:
            logger.info(f"Transfer of {sender.info.name!r} cancelled after {sender.chunks_sent} chunks")
            raise
        except Exception as e:
            if not self._stale(attempt):
                self._fail(TRANSFER_FAILED_MESSAGE, e)
            return None
        finally:
            self._transfers.pop(asyncio.current_task(), None)

    # ------------------------------------------------------------------
    # Reset / failure
    # ------------------------------------------------------------------

    async def reset(self) -> None:
        """Close everything and return to DISCONNECTED with an empty log"""
        connection = self._release()
        if connection is not None:
            await self._close_connection(connection)

    async def __aenter__(self) -> "PeerSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.reset()

    def _release(self) -> Optional[Connection]:
        """Drop handles and transient state; returns the connection left to close"""
        self._attempt += 1
        self._cancel_transfers()

        channel, connection = self._channel, self._connection
        if channel is not None:
            self._close_channel(channel)
        if connection is not None:
            connection.remove_all_listeners()

        self._receiver.clear()
        self.messages.clear()
        changed = self.state is not ConnectionState.DISCONNECTED or connection is not None
        self._clear_fields()
        if changed:
            logger.info("Session reset")
            self._notify()
        return connection

    def _fail(self, message: str, error: Optional[Exception] = None) -> None:
        if error is not None:
            logger.error(f"{message} ({describe_error(error)})")
        else:
            logger.error(message)

        self._attempt += 1
        self._cancel_transfers()
        channel = self._channel
        if channel is not None:
            self._channel = None
            self._close_channel(channel)
        self._receiver.clear()

        self.last_error = message
        self._set_state(ConnectionState.FAILED)

    def _stale(self, attempt: int) -> bool:
        return attempt != self._attempt

    def _cancel_transfers(self) -> None:
        current = asyncio.current_task() if _loop_running() else None
        for task in list(self._transfers):
            if task is not current:
                task.cancel()
        self._transfers.clear()

    def _close_channel(self, channel: Channel) -> None:
        channel.remove_all_listeners()
        if channel.ready_state not in ("closing", "closed"):
            channel.close()

    async def _close_connection(self, connection: Connection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"Error closing connection: {describe_error(e)}")

    # ------------------------------------------------------------------
    # Connection and channel wiring
    # ------------------------------------------------------------------

    def _create_connection(self) -> Connection:
        connection = self._connection_factory(self.config)
        connection.on("icegatheringcomplete", self._on_ice_gathering_complete)
        connection.on("connectionstatechange", self._on_connection_state_change)
        connection.on("datachannel", self._on_datachannel)
        self._connection = connection
        return connection

    def _attach_channel(self, channel: Channel) -> None:
        self._channel = channel
        channel.buffered_amount_low_threshold = self.config.buffered_amount_low_threshold
        channel.on("open", self._on_channel_open)
        channel.on("close", self._on_channel_close)
        channel.on("message", self._on_channel_message)
        # Remotely created channels may already be open when announced
        if channel.is_open:
            self._on_channel_open()

    def _on_ice_gathering_complete(self, description: SessionDescription) -> None:
        self.local_description = description
        blob = description.to_json()
        if self.role is Role.ANSWERER or (self.role is Role.UNSET and description.type == "answer"):
            self.answer = blob
        else:
            self.offer = blob
        logger.info(f"Local {description.type} ready ({len(blob)} chars)")
        self._notify()

    def _on_connection_state_change(self, state: str) -> None:
        if state == "failed" and self.state is not ConnectionState.FAILED:
            self._fail(
                CONNECTION_FAILED_MESSAGE,
                ConnectionFailedError(f"Peer connection state is {state!r}", {"state": state})
            )

    def _on_datachannel(self, channel: Channel) -> None:
        if self._channel is not None:
            logger.warning(f"Ignoring extra data channel {channel.label!r}")
            return
        logger.info(f"Peer opened channel {channel.label!r}")
        self._attach_channel(channel)

    def _on_channel_open(self) -> None:
        if self.state is ConnectionState.FAILED:
            return
        logger.info("Channel open")
        self._set_state(ConnectionState.CONNECTED)

    def _on_channel_close(self) -> None:
        logger.info("Channel closed")
        connection = self._release()
        if connection is not None:
            task = asyncio.ensure_future(self._close_connection(connection))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    def _on_channel_message(self, unit) -> None:
        frame = decode_frame(unit)
        if frame.type is FrameType.TEXT:
            self.messages.append(frame.to_message())
        elif frame.type in (FrameType.FILE_META, FrameType.CHUNK, FrameType.FILE_END):
            self._receiver.handle(frame)
        else:
            logger.debug(f"Ignoring frame: {frame.reason}")


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
