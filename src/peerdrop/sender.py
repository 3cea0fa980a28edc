"""
Chunked file sending with backpressure.

A file goes out as one ``file-meta`` record, ``ceil(size / chunk_size)``
binary frames and one ``file-end`` record. Before every chunk the sender
checks the channel's ``buffered_amount``; above the low-water threshold it
suspends until the channel fires ``bufferedamountlow``. Between chunks it
yields to the event loop so a large file never starves other handlers.
"""

import asyncio
import logging
from typing import Callable, Optional

from .codec import encode_file_end, encode_file_meta
from .config import CHUNK_SIZE
from .errors import ChannelNotOpenError, SenderBusyError
from .files import FileSource
from .messages import BlobHandle, FileInfo, FileMessage, Sender
from .transport import Channel

logger = logging.getLogger(__name__)


class FileSender:
    """
    Sends one file over a channel.

    The suspension state is explicit: ``awaiting_drain`` is set when the
    sender parks on a full buffer and is cleared only by the drain signal
    (or by cancellation). Asking to suspend again while already suspended
    raises :class:`SenderBusyError`.
    """

    def __init__(
        self,
        channel: Channel,
        source: FileSource,
        on_complete: Optional[Callable[[FileMessage], None]] = None,
        chunk_size: int = CHUNK_SIZE
    ):
        self.channel = channel
        self.source = source
        self.info: FileInfo = source.info
        self.chunk_size = chunk_size
        self.on_complete = on_complete

        self.awaiting_drain = False
        self.meta_sent = False
        self.finished = False
        self.chunks_sent = 0
        self.bytes_sent = 0
        self.drain_waits = 0
        self._drained: Optional[asyncio.Future] = None

    def send_meta(self) -> None:
        """Announce the file. Called synchronously before :meth:`run`."""
        self._send(encode_file_meta(self.info))
        self.meta_sent = True
        logger.info(f"Sending {self.info.name!r} ({self.info.size} bytes)")

    async def run(self) -> FileMessage:
        """
        Send the body and the end marker.

        Returns:
            The local FileMessage, also passed to ``on_complete``

        Raises:
            ChannelNotOpenError: If the channel closes mid-transfer
        """
        if not self.meta_sent:
            self.send_meta()

        buffer = await self.source.read_all()
        if len(buffer) != self.info.size:
            logger.warning(
                f"{self.info.name!r}: announced {self.info.size} bytes, read {len(buffer)}"
            )

        for offset in range(0, len(buffer), self.chunk_size):
            while self.channel.buffered_amount > self.channel.buffered_amount_low_threshold:
                await self._wait_for_drain()

            chunk = buffer[offset:offset + self.chunk_size]
            self._send(chunk)
            self.chunks_sent += 1
            self.bytes_sent += len(chunk)
            logger.debug(f"{self.info.name!r}: chunk {self.chunks_sent} ({len(chunk)} bytes)")

            await asyncio.sleep(0)

        self._send(encode_file_end())
        self.finished = True
        logger.info(f"Sent {self.info.name!r} in {self.chunks_sent} chunks")

        # Optimistic: the reliable channel is the delivery guarantee
        message = FileMessage(
            file_info=self.info,
            payload=BlobHandle(data=bytes(buffer), mime_type=self.info.mime_type),
            sender=Sender.LOCAL
        )
        if self.on_complete is not None:
            self.on_complete(message)
        return message

    def on_buffered_amount_low(self) -> None:
        """Drain signal; consumes the suspension exactly once"""
        if not self.awaiting_drain:
            return
        self.awaiting_drain = False
        if self._drained is not None and not self._drained.done():
            self._drained.set_result(None)

    async def _wait_for_drain(self) -> None:
        if self.awaiting_drain:
            raise SenderBusyError(self.info.name)

        loop = asyncio.get_running_loop()
        self._drained = loop.create_future()
        self.awaiting_drain = True
        self.drain_waits += 1
        self.channel.once("bufferedamountlow", self.on_buffered_amount_low)
        logger.debug(
            f"{self.info.name!r}: suspended, {self.channel.buffered_amount} bytes buffered"
        )
        try:
            await self._drained
        finally:
            if self.awaiting_drain:
                # Cancelled while suspended
                self.awaiting_drain = False
                self._remove_drain_listener()
            self._drained = None

    def _remove_drain_listener(self) -> None:
        try:
            self.channel.remove_listener("bufferedamountlow", self.on_buffered_amount_low)
        except KeyError:
            pass

    def _send(self, data) -> None:
        if not self.channel.is_open:
            raise ChannelNotOpenError(self.channel.ready_state)
        self.channel.send(data)
