#!/usr/bin/env python3
"""
File sender tests

Covers chunk boundaries, the file-meta / file-end framing and suspension
on a full send buffer.
"""

import asyncio
import json

import pytest

from peerdrop.errors import ChannelNotOpenError, SenderBusyError
from peerdrop.files import BytesFileSource
from peerdrop.messages import Sender
from peerdrop.sender import FileSender
from peerdrop.testing import LoopbackChannel, settle


@pytest.fixture
def channel():
    channel = LoopbackChannel("sendChannel")
    channel.buffered_amount_low_threshold = 65536
    channel._open()
    return channel


def _records(channel):
    return [json.loads(frame) for frame in channel.text_frames]


class TestChunking:
    """Chunk boundaries and framing"""

    @pytest.mark.asyncio
    async def test_40000_bytes(self, channel):
        data = bytes(range(256)) * 156 + bytes(64)
        assert len(data) == 40000

        sender = FileSender(channel, BytesFileSource("data.bin", data))
        message = await sender.run()

        assert [len(c) for c in channel.binary_frames] == [16384, 16384, 7232]
        assert b"".join(channel.binary_frames) == data
        assert sender.chunks_sent == 3
        assert sender.bytes_sent == 40000
        assert message.sender is Sender.LOCAL
        assert message.payload.data == data

    @pytest.mark.asyncio
    async def test_frame_order(self, channel):
        sender = FileSender(channel, BytesFileSource("a.txt", b"abc", "text/plain"))
        await sender.run()

        assert json.loads(channel.sent[0]) == {
            "type": "file-meta",
            "payload": {"name": "a.txt", "size": 3, "type": "text/plain"}
        }
        assert channel.sent[1] == b"abc"
        assert json.loads(channel.sent[2]) == {"type": "file-end"}
        assert len(channel.sent) == 3

    @pytest.mark.asyncio
    async def test_exact_multiple(self, channel):
        sender = FileSender(channel, BytesFileSource("x", b"\x01" * 32768))
        await sender.run()
        assert [len(c) for c in channel.binary_frames] == [16384, 16384]

    @pytest.mark.asyncio
    async def test_empty_file(self, channel):
        completed = []
        sender = FileSender(channel, BytesFileSource("empty.txt", b""), on_complete=completed.append)
        await sender.run()

        assert channel.binary_frames == []
        assert [r["type"] for r in _records(channel)] == ["file-meta", "file-end"]
        assert completed[0].file_info.size == 0
        assert sender.finished

    @pytest.mark.asyncio
    async def test_meta_sent_once(self, channel):
        sender = FileSender(channel, BytesFileSource("a", b"a"))
        sender.send_meta()
        await sender.run()

        assert [r["type"] for r in _records(channel)] == ["file-meta", "file-end"]

    @pytest.mark.asyncio
    async def test_custom_chunk_size(self, channel):
        sender = FileSender(channel, BytesFileSource("a", b"abcdefg"), chunk_size=3)
        await sender.run()
        assert channel.binary_frames == [b"abc", b"def", b"g"]


class TestBackpressure:
    """Suspension on a full buffer"""

    @pytest.mark.asyncio
    async def test_suspends_until_drained(self, channel):
        channel.buffered_amount = 100000
        sender = FileSender(channel, BytesFileSource("big.bin", b"z" * 40000))
        sender.send_meta()

        task = asyncio.ensure_future(sender.run())
        await settle()

        assert sender.awaiting_drain
        assert channel.binary_frames == []
        assert not task.done()

        channel.drain()
        message = await asyncio.wait_for(task, 1)

        assert not sender.awaiting_drain
        assert sender.drain_waits == 1
        assert len(channel.binary_frames) == 3
        assert message.file_info.name == "big.bin"

    @pytest.mark.asyncio
    async def test_at_threshold_does_not_suspend(self, channel):
        channel.buffered_amount = channel.buffered_amount_low_threshold
        sender = FileSender(channel, BytesFileSource("a", b"a" * 10))
        await asyncio.wait_for(sender.run(), 1)
        assert sender.drain_waits == 0

    @pytest.mark.asyncio
    async def test_stray_drain_signal_is_ignored(self, channel):
        sender = FileSender(channel, BytesFileSource("a", b"a"))
        sender.on_buffered_amount_low()
        assert not sender.awaiting_drain

    @pytest.mark.asyncio
    async def test_suspend_while_suspended_raises(self, channel):
        sender = FileSender(channel, BytesFileSource("a", b"a"))
        sender.awaiting_drain = True

        with pytest.raises(SenderBusyError) as exc_info:
            await sender._wait_for_drain()
        assert exc_info.value.error_code == "SENDER_BUSY"

    @pytest.mark.asyncio
    async def test_cancel_while_suspended_clears_state(self, channel):
        channel.buffered_amount = 100000
        sender = FileSender(channel, BytesFileSource("a", b"a" * 100))
        task = asyncio.ensure_future(sender.run())
        await settle()
        assert sender.awaiting_drain

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not sender.awaiting_drain
        assert channel.listeners("bufferedamountlow") == []


class TestClosedChannel:

    def test_meta_on_unopened_channel(self):
        channel = LoopbackChannel("sendChannel")
        sender = FileSender(channel, BytesFileSource("a", b"a"))

        with pytest.raises(ChannelNotOpenError):
            sender.send_meta()

    @pytest.mark.asyncio
    async def test_channel_closed_mid_transfer(self, channel):
        channel.buffered_amount = 100000
        sender = FileSender(channel, BytesFileSource("a", b"a" * 100))
        task = asyncio.ensure_future(sender.run())
        await settle()

        channel.close()
        channel.drain()

        with pytest.raises(ChannelNotOpenError):
            await task
